# routes_admin_orders.py

"""Staff dashboard: order list, counters and status changes."""

from __future__ import annotations

from dataclasses import asdict
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings

from .deps import (
    get_gate,
    get_notifier,
    get_session,
    get_sessions,
    get_settings_dep,
    resolve_identity,
)
from .domain import OrderStatus, ServiceType
from .events import ChangeNotifier
from .repos_sqlalchemy.orders_repo_sql import (
    OrderFilters,
    bulk_update_status,
    list_orders,
    order_stats,
    update_status,
)
from .schemas import BulkStatusUpdate, OrderOut, StatusUpdate
from .security.cooldown import CooldownGate, Identity
from .utils.clock import business_day, day_bounds, utcnow
from .utils.ratelimits import admin_action
from .utils.responses import ok

router = APIRouter(prefix="/admin/orders")


@router.get("")
async def list_orders_route(
    status: OrderStatus | None = None,
    service_type: ServiceType | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    q: str | None = Query(default=None, max_length=100),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings_dep),
) -> dict:
    """Return orders newest first; dates are business days, inclusive."""

    tz = settings.business_timezone
    filters = OrderFilters(
        status=status.value if status else None,
        service_type=service_type.value if service_type else None,
        created_from=day_bounds(date_from, tz)[0] if date_from else None,
        created_to=day_bounds(date_to, tz)[1] if date_to else None,
        search=q or None,
        limit=limit,
        offset=offset,
    )
    orders = await list_orders(session, filters)
    return ok([OrderOut.model_validate(o).model_dump(mode="json") for o in orders])


@router.get("/stats")
async def stats_route(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings_dep),
) -> dict:
    tz = settings.business_timezone
    return ok(await order_stats(session, business_day(utcnow(), tz), tz))


@router.patch("/{order_id}/status")
async def update_status_route(
    order_id: str,
    payload: StatusUpdate,
    session: AsyncSession = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_notifier),
) -> dict:
    order = await update_status(session, order_id, payload.status, notifier=notifier)
    return ok(OrderOut.model_validate(order).model_dump(mode="json"))


@router.post("/status/bulk")
async def bulk_status_route(
    payload: BulkStatusUpdate,
    identity: Identity = Depends(resolve_identity),
    gate: CooldownGate = Depends(get_gate),
    sessions=Depends(get_sessions),
    notifier: ChangeNotifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings_dep),
) -> dict:
    """Apply one status to many orders; each order succeeds or fails alone."""

    now = utcnow()
    policy = admin_action(settings)
    await gate.precheck(identity, policy, now)
    async with sessions() as session:
        async with session.begin():
            await gate.acquire(session, identity, policy, now)
    await gate.remember(identity, policy, now)

    results = await bulk_update_status(
        sessions, payload.order_ids, payload.status, now=now, notifier=notifier
    )
    return ok(
        {
            "results": [asdict(r) for r in results],
            "updated": sum(1 for r in results if r.ok),
            "failed": sum(1 for r in results if not r.ok),
        }
    )
