"""Allocation of human-readable order numbers.

Numbers look like ``ORD-20250902-0001``: a fixed prefix, the business day and
a four-digit, zero-padded sequence scoped to that day.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import AllocationFailure
from ..models import Order, OrderNumberCounter
from .sql import upsert

PREFIX = "ORD"
DEFAULT_MAX_ATTEMPTS = 50

logger = logging.getLogger("orderdesk.intake")


def day_key(day: date) -> str:
    """Return the ``YYYYMMDD`` key used for ``day``."""
    return f"{day:%Y%m%d}"


def format_order_number(day: date, seq: int) -> str:
    """Return the order number for sequence ``seq`` on ``day``."""
    return f"{PREFIX}-{day_key(day)}-{seq:04d}"


async def _count_today(session: AsyncSession, key: str) -> int:
    result = await session.execute(
        select(func.count(Order.id)).where(Order.order_number.like(f"{PREFIX}-{key}-%"))
    )
    return int(result.scalar_one())


async def _advance(session: AsyncSession, key: str, seed: int) -> int:
    """Atomically bump the counter for ``key`` and return the new value.

    The first allocation of a day inserts ``seed``; later ones increment the
    stored value. The single upsert statement is what serialises concurrent
    allocators, so no separate read precedes the write.
    """
    stmt = upsert(session, OrderNumberCounter).values(day=key, current=seed)
    stmt = stmt.on_conflict_do_update(
        index_elements=[OrderNumberCounter.day],
        set_={"current": OrderNumberCounter.current + 1},
    ).returning(OrderNumberCounter.current)
    result = await session.execute(stmt)
    return int(result.scalar_one())


async def _taken(session: AsyncSession, number: str) -> bool:
    result = await session.execute(select(exists().where(Order.order_number == number)))
    return bool(result.scalar())


async def next_order_number(
    session: AsyncSession,
    day: date,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> str:
    """Return an unused order number for ``day``.

    Proposes ``count(orders of the day) + 1`` on the first allocation of the
    day, then keeps advancing the per-day counter while the proposed number is
    already taken. Runs inside the caller's transaction; the caller commits it
    together with the order row. Raises
    :class:`~orderdesk.app.errors.AllocationFailure` after ``max_attempts``
    proposals.
    """
    key = day_key(day)
    seed = await _count_today(session, key) + 1
    for attempt in range(1, max_attempts + 1):
        seq = await _advance(session, key, seed)
        number = format_order_number(day, seq)
        if not await _taken(session, number):
            return number
        logger.info("order number %s taken; attempt %d", number, attempt)
    raise AllocationFailure(
        f"no free order number for {key} after {max_attempts} attempts",
        details={"day": key, "attempts": max_attempts},
    )
