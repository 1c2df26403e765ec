# start_app.py
"""Launch the ordering API server.

Tables are created on startup, so a fresh SQLite file works out of the box.
"""

from __future__ import annotations

import argparse
import os
import sys

import uvicorn
from dotenv import load_dotenv

import config


def _warn_unconfigured(settings: config.Settings) -> None:
    if not settings.courier_configured and not settings.delivery_proxy_url:
        print(
            "courier credentials not set; delivery orders will not be booked",
            file=sys.stderr,
        )
    elif not settings.store_configured:
        print(
            "store name/phone/address/coordinates incomplete; bookings will be skipped",
            file=sys.stderr,
        )
    if not settings.redis_url:
        print(
            "REDIS_URL not set; advisory cooldowns and cross-process events disabled",
            file=sys.stderr,
        )


def main(argv: list[str] | None = None) -> None:
    """Load settings, then start the API."""

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--in-memory",
        action="store_true",
        help="Use a throwaway in-memory SQLite database",
    )
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))  # nosec B104
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    parser.add_argument("--reload", action="store_true", help="Restart on code changes")
    args = parser.parse_args(argv)

    load_dotenv()  # load environment variables from a .env file

    if args.in_memory:
        os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

    config.get_settings.cache_clear()
    settings = config.get_settings()  # fail fast on invalid configuration
    _warn_unconfigured(settings)

    try:
        uvicorn.run(
            "orderdesk.app.main:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=settings.log_level.lower(),
        )
    except ModuleNotFoundError as exc:
        missing = exc.name or str(exc)
        print(
            f"Missing dependency: {missing}. Install the project with 'pip install -e .'",
            file=sys.stderr,
        )
        raise SystemExit(1)


if __name__ == "__main__":
    main()
