"""Order intake: validate a checkout, persist it, then book delivery.

The commit unit is a single transaction containing, in order, the
authoritative cooldown check-and-record, the order number allocation, the
order row and its line items. Either all of it is committed or none of it.

Courier booking happens after the commit and is isolated from it: a failed
booking is logged and leaves the booking fields empty, the order itself is
never affected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import Settings, get_settings

from ..domain import OrderStatus, ServiceType
from ..errors import (
    AllocationFailure,
    DeliveryError,
    PersistenceConflict,
    QuoteExpired,
    ValidationError,
)
from ..events import ORDER_ITEMS, ORDERS, ChangeNotifier
from ..models import Order, OrderItem
from ..obs import capture_exception
from ..providers.base import DeliveryGateway, StoreLocation
from ..repos_sqlalchemy.orders_repo_sql import insert_order, record_booking
from ..routes_metrics import (
    delivery_bookings_total,
    order_commit_retries_total,
    orders_created_total,
)
from ..schemas import CartLine, OrderSubmission
from ..security.cooldown import CooldownGate, Identity
from ..utils.clock import as_utc, business_day, utcnow
from ..utils.order_number import next_order_number
from ..utils.phone import normalize_phone
from ..utils.ratelimits import Policy, order_placement

CENT = Decimal("0.01")

logger = logging.getLogger("orderdesk.intake")


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricedLine:
    line: CartLine
    total_price: Decimal


@dataclass(frozen=True)
class PricedCart:
    lines: List[PricedLine]
    delivery_fee: Decimal | None
    total: Decimal


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def price_submission(submission: OrderSubmission, now: datetime) -> PricedCart:
    """Validate ``submission`` and compute its totals.

    Raises :class:`ValidationError` for anything malformed and
    :class:`QuoteExpired` when the delivery quote attached to the checkout
    has already lapsed. Nothing is written.
    """

    if not submission.cart:
        raise ValidationError("cart is empty")
    if _blank(submission.customer_name) or _blank(submission.contact_number):
        raise ValidationError("customer name and contact number are required")
    if _blank(submission.payment_method):
        raise ValidationError("payment method is required")

    lines: List[PricedLine] = []
    for index, line in enumerate(submission.cart):
        if line.quantity <= 0:
            raise ValidationError(
                "quantity must be positive", details={"line": index, "quantity": line.quantity}
            )
        if line.unit_price < 0:
            raise ValidationError(
                "unit price must not be negative", details={"line": index}
            )
        lines.append(PricedLine(line, _money(line.unit_price * line.quantity)))

    delivery_fee: Decimal | None = None
    if submission.service_type is ServiceType.DELIVERY:
        if _blank(submission.address):
            raise ValidationError("delivery orders require an address")
        ctx = submission.delivery
        delivery_fee = _money(ctx.delivery_fee) if ctx else Decimal("0.00")
        if ctx and ctx.quotation_id and ctx.quote_expires_at is not None:
            if as_utc(ctx.quote_expires_at) <= now:
                raise QuoteExpired("delivery quote has expired; fetch a new one")

    total = _money(sum((p.total_price for p in lines), Decimal("0")) + (delivery_fee or 0))
    if submission.total is not None and _money(submission.total) != total:
        raise ValidationError(
            "order total does not match cart",
            details={"claimed": str(_money(submission.total)), "computed": str(total)},
        )
    return PricedCart(lines=lines, delivery_fee=delivery_fee, total=total)


def build_order(
    submission: OrderSubmission,
    priced: PricedCart,
    order_number: str,
    identity: Identity,
    now: datetime,
) -> Order:
    """Return an unsaved :class:`Order` with its items attached."""

    order = Order(
        order_number=order_number,
        customer_name=submission.customer_name.strip(),
        contact_number=submission.contact_number.strip(),
        service_type=submission.service_type.value,
        address=submission.address,
        landmark=submission.landmark,
        pickup_time=submission.pickup_time,
        party_size=submission.party_size,
        dine_in_time=as_utc(submission.dine_in_time),
        payment_method=submission.payment_method,
        reference_number=submission.reference_number,
        notes=submission.notes,
        total=priced.total,
        delivery_fee=priced.delivery_fee,
        status=OrderStatus.PENDING.value,
        customer_identity=identity.authoritative,
        created_at=now,
        updated_at=now,
    )
    if submission.service_type is ServiceType.DELIVERY and submission.delivery:
        order.quotation_id = submission.delivery.quotation_id
    order.items = [
        OrderItem(
            position=position,
            menu_item_id=p.line.menu_item_id,
            menu_item_name=p.line.name,
            quantity=p.line.quantity,
            unit_price=_money(p.line.unit_price),
            total_price=p.total_price,
            selection_snapshot=p.line.selection.to_json(),
            created_at=now,
        )
        for position, p in enumerate(priced.lines)
    ]
    return order


class OrderIntake:
    """Accept customer checkouts."""

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        gate: CooldownGate,
        *,
        notifier: ChangeNotifier | None = None,
        gateway: DeliveryGateway | None = None,
        store: StoreLocation | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.sessions = sessions
        self.gate = gate
        self.notifier = notifier
        self.gateway = gateway
        self.store = store
        self.settings = settings or get_settings()

    async def submit(
        self,
        submission: OrderSubmission,
        identity: Identity,
        now: datetime | None = None,
    ) -> Order:
        """Persist ``submission`` as a pending order and return it.

        Raises :class:`ValidationError`, :class:`QuoteExpired`,
        :class:`RateLimitExceeded` or :class:`AllocationFailure`; in every
        case nothing has been persisted. Booking errors are never raised.
        """

        now = now or utcnow()
        priced = price_submission(submission, now)
        policy = order_placement(self.settings)
        await self.gate.precheck(identity, policy, now)

        order = await self._commit(submission, priced, identity, policy, now)
        orders_created_total.labels(service_type=order.service_type).inc()
        logger.info(
            "order %s placed service=%s total=%s",
            order.order_number,
            order.service_type,
            order.total,
            extra={"order_id": order.id, "action_kind": policy.action_kind},
        )
        await self._publish(order, "insert", items=True)
        await self.gate.remember(identity, policy, now)

        if (
            submission.service_type is ServiceType.DELIVERY
            and submission.delivery is not None
            and submission.delivery.quotation_id
        ):
            order = await self._book(order, submission, now)
        return order

    async def _commit(
        self,
        submission: OrderSubmission,
        priced: PricedCart,
        identity: Identity,
        policy: Policy,
        now: datetime,
    ) -> Order:
        attempts = self.settings.commit_max_attempts
        day = business_day(now, self.settings.business_timezone)
        for attempt in range(1, attempts + 1):
            async with self.sessions() as session:
                try:
                    async with session.begin():
                        await self.gate.acquire(session, identity, policy, now)
                        number = await next_order_number(
                            session, day, self.settings.order_number_max_attempts
                        )
                        order = build_order(submission, priced, number, identity, now)
                        await insert_order(session, order)
                    return order
                except PersistenceConflict as exc:
                    order_commit_retries_total.inc()
                    logger.warning(
                        "order commit conflict attempt %d/%d: %s",
                        attempt,
                        attempts,
                        exc.details,
                    )
        raise AllocationFailure(
            f"order could not be committed after {attempts} attempts",
            details={"attempts": attempts},
        )

    async def _publish(self, order: Order, kind: str, *, items: bool = False) -> None:
        if self.notifier is None:
            return
        await self.notifier.publish(
            ORDERS, kind, order.id, status=order.status, order_number=order.order_number
        )
        if items:
            await self.notifier.publish(
                ORDER_ITEMS, kind, order.id, status=order.status, order_number=order.order_number
            )

    async def _book(self, order: Order, submission: OrderSubmission, now: datetime) -> Order:
        ctx = submission.delivery
        if self.gateway is None or self.store is None:
            logger.warning(
                "delivery booking skipped for %s: courier or store not configured",
                order.order_number,
                extra={"order_id": order.id},
            )
            return order
        market = self.settings.courier_market
        metadata = {
            "orderId": order.id,
            "orderNumber": order.order_number,
            "deliveryAddress": order.address,
            "deliveryLat": ctx.lat,
            "deliveryLng": ctx.lng,
        }
        try:
            booking = await self.gateway.book(
                ctx.quotation_id,
                order.customer_name,
                normalize_phone(order.contact_number, market) or order.contact_number,
                metadata,
                sender=self.store,
                market=market,
            )
        except DeliveryError as exc:
            delivery_bookings_total.labels(outcome=exc.code.lower()).inc()
            logger.error(
                "booking failed order=%s quotation=%s error=%s: %s body=%s",
                order.id,
                ctx.quotation_id,
                exc.code,
                exc.message,
                exc.details.get("provider_body"),
                extra={"order_id": order.id},
            )
            return order
        except Exception as exc:
            delivery_bookings_total.labels(outcome="error").inc()
            logger.exception(
                "booking failed order=%s quotation=%s: %r",
                order.id,
                ctx.quotation_id,
                exc,
                extra={"order_id": order.id},
            )
            capture_exception(exc, order_id=order.id, quotation_id=ctx.quotation_id)
            return order

        delivery_bookings_total.labels(outcome="ok").inc()
        try:
            async with self.sessions() as session:
                order = await record_booking(session, order.id, booking, now=now)
        except SQLAlchemyError as exc:
            logger.error(
                "booking %s made but not stored for order=%s",
                booking.booking_id,
                order.id,
                extra={"order_id": order.id},
            )
            capture_exception(exc, order_id=order.id, booking_id=booking.booking_id)
            return order
        logger.info(
            "courier booked order=%s booking=%s status=%s",
            order.id,
            booking.booking_id,
            booking.status,
            extra={"order_id": order.id},
        )
        await self._publish(order, "update")
        return order


__all__ = ["OrderIntake", "PricedCart", "build_order", "price_submission"]
