"""Helpers for building dialect-aware SQL statements."""

from __future__ import annotations

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def upsert(session: AsyncSession, model):
    """Return an ``INSERT`` construct supporting ``ON CONFLICT`` for ``session``.

    Both PostgreSQL and SQLite expose ``on_conflict_do_update`` with an
    optional ``where`` clause and ``RETURNING``, which lets callers express
    check-then-act as one conditional write.
    """
    dialect = session.get_bind().dialect.name
    try:
        insert = _UPSERT_DIALECTS[dialect]
    except KeyError as exc:
        raise RuntimeError(f"upsert not supported for dialect {dialect!r}") from exc
    return insert(model)


def escape_like(term: str) -> str:
    """Escape ``LIKE`` wildcards in ``term`` using ``\\`` as escape char."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
