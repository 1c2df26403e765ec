"""SQLAlchemy-backed repository helpers for orders.

Orders are inserted together with their line items by the intake service and
afterwards only change through :func:`update_status` and
:func:`record_booking`. Line items snapshot the name, price and selected
options at purchase time so later catalog edits never alter a placed order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List

from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..domain import OrderStatus, can_transition, completion_timestamp, is_correction
from ..errors import InvalidTransition, OrderDeskError, OrderNotFound, PersistenceConflict
from ..events import ORDERS, ChangeNotifier
from ..models import Order
from ..providers.base import DeliveryBooking
from ..routes_metrics import status_transitions_total
from ..utils.clock import day_bounds, utcnow
from ..utils.sql import escape_like

logger = logging.getLogger("orderdesk.status")


@dataclass
class OrderFilters:
    """Criteria for :func:`list_orders`; ``None`` means unfiltered."""

    status: str | None = None
    service_type: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    search: str | None = None
    limit: int = 100
    offset: int = 0


@dataclass
class StatusResult:
    """Per-order outcome of :func:`bulk_update_status`."""

    order_id: str
    ok: bool
    status: str | None = None
    error: str | None = None
    code: str | None = None


async def insert_order(session: AsyncSession, order: Order) -> Order:
    """Add ``order`` (with its items) and flush inside the caller's transaction.

    A unique constraint violation, typically a duplicate ``order_number``,
    surfaces as :class:`PersistenceConflict`.
    """

    session.add(order)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise PersistenceConflict(
            "order could not be persisted", details={"order_number": order.order_number}
        ) from exc
    return order


async def get_order(session: AsyncSession, order_id: str, *, for_update: bool = False) -> Order:
    """Return ``order_id`` with its items or raise :class:`OrderNotFound`."""

    stmt = select(Order).where(Order.id == order_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    order = result.scalar_one_or_none()
    if order is None:
        raise OrderNotFound(f"order {order_id} not found", details={"order_id": order_id})
    return order


async def list_orders(session: AsyncSession, filters: OrderFilters | None = None) -> List[Order]:
    """Return orders matching ``filters``, newest first."""

    filters = filters or OrderFilters()
    stmt = select(Order)
    if filters.status:
        stmt = stmt.where(Order.status == filters.status)
    if filters.service_type:
        stmt = stmt.where(Order.service_type == filters.service_type)
    if filters.created_from is not None:
        stmt = stmt.where(Order.created_at >= filters.created_from)
    if filters.created_to is not None:
        stmt = stmt.where(Order.created_at < filters.created_to)
    if filters.search:
        pattern = f"%{escape_like(filters.search.strip().lower())}%"
        stmt = stmt.where(
            or_(
                func.lower(Order.order_number).like(pattern, escape="\\"),
                func.lower(Order.customer_name).like(pattern, escape="\\"),
                func.lower(Order.contact_number).like(pattern, escape="\\"),
            )
        )
    stmt = stmt.order_by(Order.created_at.desc(), Order.order_number.desc())
    stmt = stmt.limit(filters.limit).offset(filters.offset)
    result = await session.execute(stmt)
    return list(result.scalars())


async def order_stats(session: AsyncSession, today: date, tz: str = "UTC") -> dict:
    """Return dashboard counters.

    ``today_revenue`` only counts orders placed today that are completed.
    """

    start, end = day_bounds(today, tz)
    is_today = (Order.created_at >= start) & (Order.created_at < end)
    completed = Order.status == OrderStatus.COMPLETED.value
    stmt = select(
        func.count(Order.id),
        func.sum(case((Order.status == OrderStatus.PENDING.value, 1), else_=0)),
        func.sum(case((is_today, 1), else_=0)),
        func.sum(case((is_today & completed, Order.total), else_=0)),
        func.sum(case((completed, 1), else_=0)),
        func.sum(case((Order.status == OrderStatus.CANCELLED.value, 1), else_=0)),
    )
    row = (await session.execute(stmt)).one()
    total, pending, today_count, revenue, done, cancelled = row
    return {
        "total": int(total or 0),
        "pending": int(pending or 0),
        "today": int(today_count or 0),
        "today_revenue": float(Decimal(str(revenue or 0))),
        "completed": int(done or 0),
        "cancelled": int(cancelled or 0),
    }


async def update_status(
    session: AsyncSession,
    order_id: str,
    status: OrderStatus | str,
    *,
    now: datetime | None = None,
    notifier: ChangeNotifier | None = None,
) -> Order:
    """Move ``order_id`` to ``status`` and commit.

    Re-applying the current status changes nothing and publishes nothing.
    The change event is published after the commit so no row lock is held
    while notifying.
    """

    dst = OrderStatus(status)
    now = now or utcnow()
    order = await get_order(session, order_id, for_update=True)
    src = OrderStatus(order.status)
    if src == dst:
        return order
    if not can_transition(src, dst):
        raise InvalidTransition(
            f"cannot move order from {src.value} to {dst.value}",
            details={"order_id": order_id, "from": src.value, "to": dst.value},
        )
    if is_correction(src, dst):
        logger.info("completion corrected order=%s to=%s", order_id, dst.value)
    order.status = dst.value
    order.completed_at = completion_timestamp(src, dst, order.completed_at, now)
    order.updated_at = now
    await session.commit()
    status_transitions_total.labels(status=dst.value).inc()
    logger.info(
        "status %s -> %s order=%s",
        src.value,
        dst.value,
        order_id,
        extra={"order_id": order_id},
    )
    if notifier is not None:
        await notifier.publish(
            ORDERS, "update", order.id, status=order.status, order_number=order.order_number
        )
    return order


async def bulk_update_status(
    sessions: async_sessionmaker[AsyncSession],
    order_ids: Iterable[str],
    status: OrderStatus | str,
    *,
    now: datetime | None = None,
    notifier: ChangeNotifier | None = None,
) -> List[StatusResult]:
    """Apply ``status`` to every order, each in its own transaction.

    A failure for one order is recorded in its result and does not stop the
    others.
    """

    results: List[StatusResult] = []
    for order_id in dict.fromkeys(order_ids):
        async with sessions() as session:
            try:
                order = await update_status(
                    session, order_id, status, now=now, notifier=notifier
                )
            except OrderDeskError as exc:
                await session.rollback()
                logger.warning("bulk status skipped order=%s: %s", order_id, exc.message)
                results.append(
                    StatusResult(order_id=order_id, ok=False, error=exc.message, code=exc.code)
                )
                continue
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("bulk status failed order=%s: %s", order_id, exc)
                results.append(
                    StatusResult(order_id=order_id, ok=False, error="database error", code="DB_ERROR")
                )
                continue
            results.append(StatusResult(order_id=order_id, ok=True, status=order.status))
    return results


async def record_booking(
    session: AsyncSession,
    order_id: str,
    booking: DeliveryBooking,
    *,
    now: datetime | None = None,
) -> Order:
    """Store the courier booking fields on ``order_id`` and commit."""

    order = await get_order(session, order_id)
    order.booking_id = booking.booking_id
    order.booking_status = booking.status
    order.tracking_url = booking.tracking_url
    order.driver_id = booking.driver_id
    order.updated_at = now or utcnow()
    await session.commit()
    return order


__all__ = [
    "OrderFilters",
    "StatusResult",
    "bulk_update_status",
    "get_order",
    "insert_order",
    "list_orders",
    "order_stats",
    "record_booking",
    "update_status",
]
