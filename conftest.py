import os

# Default to a throwaway in-memory SQLite database for tests
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
# Keep request logs quiet unless a test opts in
os.environ.setdefault("LOG_SAMPLE_2XX", "0")
