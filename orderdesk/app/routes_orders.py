# routes_orders.py

"""Customer-facing order submission and lookup."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .deps import get_intake, get_session, resolve_identity
from .repos_sqlalchemy.orders_repo_sql import get_order
from .schemas import OrderOut, OrderSubmission
from .security.cooldown import Identity
from .services.order_intake import OrderIntake
from .utils.responses import ok

router = APIRouter()


@router.post("/orders", status_code=201)
async def create_order(
    payload: OrderSubmission,
    identity: Identity = Depends(resolve_identity),
    intake: OrderIntake = Depends(get_intake),
) -> dict:
    """Place an order.

    Responds 429 with ``Retry-After`` while the caller is cooling down and
    201 with the stored order otherwise, whether or not a courier could be
    booked.
    """

    order = await intake.submit(payload, identity)
    return ok(OrderOut.model_validate(order).model_dump(mode="json"))


@router.get("/orders/{order_id}")
async def read_order(order_id: str, session: AsyncSession = Depends(get_session)) -> dict:
    order = await get_order(session, order_id)
    return ok(OrderOut.model_validate(order).model_dump(mode="json"))
