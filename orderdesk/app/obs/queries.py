"""Statement timing for the orders database.

Every statement is timed into the ``db_query_seconds`` histogram labelled by
engine label and the table it touches. Slow statements are logged with the
SQL text; parameters are only ever logged as a digest since they carry
customer contact details.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import time

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine

from ..routes_metrics import db_query_seconds

SLOW_QUERY_MS = int(os.getenv("DB_SLOW_QUERY_MS", "200"))

_TABLE_RE = re.compile(r"\b(?:FROM|INTO|UPDATE|JOIN)\s+\"?(\w+)\"?", re.I)

logger = logging.getLogger("obs")


def _table(statement: str) -> str:
    match = _TABLE_RE.search(statement)
    return match.group(1).lower() if match else "other"


def _shorten(statement: str, limit: int = 200) -> str:
    sql = " ".join(statement.split())
    return sql if len(sql) <= limit else sql[: limit - 3] + "..."


def add_query_logger(engine: AsyncEngine, label: str) -> None:
    """Time every statement executed through ``engine``."""
    target = engine.sync_engine

    @event.listens_for(target, "before_cursor_execute")
    def _start(conn, cursor, statement, parameters, context, executemany):  # type: ignore[no-untyped-def]
        context._query_start_time = time.perf_counter()

    @event.listens_for(target, "after_cursor_execute")
    def _finish(conn, cursor, statement, parameters, context, executemany):  # type: ignore[no-untyped-def]
        elapsed = time.perf_counter() - context._query_start_time
        table = _table(statement)
        db_query_seconds.labels(db=label, table=table).observe(elapsed)
        if elapsed * 1000 > SLOW_QUERY_MS:
            digest = hashlib.sha256(repr(parameters).encode()).hexdigest()[:8]
            logger.warning(
                "slow query %dms db=%s table=%s sql=%s params=%s",
                int(elapsed * 1000),
                label,
                table,
                _shorten(statement),
                digest,
            )
