"""Order status enumeration and transition rules.

The happy path runs ``pending → confirmed → preparing → ready →
out_for_delivery → completed``. Staff may jump directly between any two
non-terminal states, and any non-terminal state may be cancelled. A cancelled
order stays cancelled. A completed order may only leave ``completed`` to
correct an erroneous completion, which clears its completion timestamp.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum


class OrderStatus(str, Enum):
    """Enumerate the lifecycle states for an order."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


HAPPY_PATH: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.COMPLETED,
)

TERMINAL: frozenset[OrderStatus] = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.CANCELLED}
)

ACTIVE: tuple[OrderStatus, ...] = tuple(s for s in OrderStatus if s not in TERMINAL)


def can_transition(src: OrderStatus, dst: OrderStatus) -> bool:
    """Return ``True`` if an order can move from ``src`` to ``dst``."""

    if src == dst:
        return True
    return src is not OrderStatus.CANCELLED


def is_correction(src: OrderStatus, dst: OrderStatus) -> bool:
    """Return ``True`` when ``dst`` undoes a completion."""

    return src is OrderStatus.COMPLETED and dst is not OrderStatus.COMPLETED


def completion_timestamp(
    src: OrderStatus,
    dst: OrderStatus,
    completed_at: datetime | None,
    now: datetime,
) -> datetime | None:
    """Return the ``completed_at`` value an order should carry after moving.

    Entering ``completed`` stamps ``now``; staying completed keeps the
    original stamp; any other target clears it.
    """

    if dst is OrderStatus.COMPLETED:
        if src is OrderStatus.COMPLETED and completed_at is not None:
            return completed_at
        return now
    return None
