from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from ..models import Base
from ..obs import add_query_logger

# Engines and session factories are built by the application lifespan (or by
# tests) and handed to components explicitly; nothing here is global.


def is_memory_url(url: str) -> bool:
    """Return True for SQLite URLs that point at a private in-memory database."""

    if not url.startswith("sqlite"):
        return False
    return ":memory:" in url or url.rstrip("/").endswith(":")


def create_engine(url: str, *, label: str = "orders") -> AsyncEngine:
    """Return an async engine for ``url`` with query logging attached.

    An in-memory SQLite database lives on a single connection, so the pool is
    limited to that one connection and transactions take turns on it; a
    rollback can then never discard another session's uncommitted writes.
    File-based SQLite gets a busy timeout so concurrent writers wait for the
    lock instead of failing immediately.
    """

    kwargs: dict = {}
    if url.startswith("sqlite"):
        connect_args: dict = {"check_same_thread": False}
        if is_memory_url(url):
            kwargs.update(
                poolclass=AsyncAdaptedQueuePool,
                pool_size=1,
                max_overflow=0,
                pool_timeout=30,
            )
        else:
            connect_args["timeout"] = 30
        kwargs["connect_args"] = connect_args
    engine = create_async_engine(url, **kwargs)
    add_query_logger(engine, label)
    return engine


def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return the session factory used throughout the application."""

    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create any missing tables."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = ["create_engine", "init_models", "is_memory_url", "session_factory"]
