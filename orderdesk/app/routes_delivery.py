# routes_delivery.py

"""Trusted signing proxy for the courier provider.

Browsers and other untrusted callers reach the provider only through these
routes; the API secret stays in server settings. Responses use the
provider-neutral shapes ``{quotationId, price, currency, expiresAt}`` and
``{orderId, status, shareLink, driverId}``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from config import Settings

from .deps import get_settings_dep
from .errors import DeliveryError, SigningFailure
from .providers.base import Stop, StoreLocation
from .providers.courier import CourierClient
from .routes_metrics import delivery_quotes_total
from .schemas import BookingRequest, QuoteRequest

logger = logging.getLogger("orderdesk.delivery")

router = APIRouter(prefix="/delivery")


def _client(request: Request, settings: Settings, sandbox: bool) -> CourierClient:
    if not settings.courier_configured:
        raise SigningFailure("courier credentials are not configured")
    return CourierClient.from_settings(
        settings,
        http=getattr(request.app.state, "http", None),
        redis=getattr(request.app.state, "redis", None),
        sandbox=sandbox,
    )


@router.post("/quote")
async def quote(
    payload: QuoteRequest,
    request: Request,
    settings: Settings = Depends(get_settings_dep),
) -> dict:
    """Fetch a fresh quotation. Every call creates a new one."""

    client = _client(request, settings, payload.sandbox)
    pickup = StoreLocation(
        name=payload.store_name,
        phone=payload.store_phone,
        address=payload.store_address,
        latitude=payload.store_latitude,
        longitude=payload.store_longitude,
    )
    dropoff = Stop(
        address=payload.delivery_address,
        latitude=payload.delivery_lat,
        longitude=payload.delivery_lng,
    )
    try:
        result = await client.get_quote(
            pickup, dropoff, payload.market.upper(), payload.service_type
        )
    except DeliveryError as exc:
        delivery_quotes_total.labels(outcome=exc.code.lower()).inc()
        raise
    delivery_quotes_total.labels(outcome="ok").inc()
    logger.info("quotation %s price=%s %s", result.quotation_id, result.price, result.currency)
    return result.as_payload()


@router.post("/order")
async def book(
    payload: BookingRequest,
    request: Request,
    settings: Settings = Depends(get_settings_dep),
) -> dict:
    """Book a courier against a previously fetched quotation.

    The sender name and phone come from the request; the pickup stop itself
    is resolved from the quotation.
    """

    client = _client(request, settings, payload.sandbox)
    sender = StoreLocation(
        name=payload.store_name,
        phone=payload.store_phone,
        address=settings.store_address or "",
        latitude=float(settings.store_latitude or 0.0),
        longitude=float(settings.store_longitude or 0.0),
    )
    booking = await client.book(
        payload.quotation_id,
        payload.recipient_name,
        payload.recipient_phone,
        payload.metadata,
        sender=sender,
        market=payload.market.upper(),
    )
    logger.info(
        "booked quotation %s as %s status=%s",
        payload.quotation_id,
        booking.booking_id,
        booking.status,
    )
    return booking.as_payload()


@router.api_route(
    "/{path:path}",
    methods=["GET", "HEAD", "PUT", "PATCH", "DELETE", "OPTIONS"],
    include_in_schema=False,
)
async def not_found(path: str) -> None:
    """Only POST is served under ``/delivery``."""

    raise HTTPException(status_code=404, detail="Not Found")
