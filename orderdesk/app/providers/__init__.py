"""Courier delivery providers."""

from __future__ import annotations

import httpx
from redis.asyncio import Redis

from config import Settings

from .base import (
    DeliveryBooking,
    DeliveryGateway,
    DeliveryQuote,
    Stop,
    StoreLocation,
)
from .courier import CourierClient, sign_request
from .courier_proxy import CourierProxyClient


def store_location(settings: Settings) -> StoreLocation | None:
    """Return the configured pickup point, or ``None`` when incomplete."""

    if not settings.store_configured:
        return None
    return StoreLocation(
        name=settings.store_name,
        phone=settings.store_phone,
        address=settings.store_address,
        latitude=float(settings.store_latitude),
        longitude=float(settings.store_longitude),
    )


def build_gateway(
    settings: Settings,
    *,
    http: httpx.AsyncClient | None = None,
    redis: Redis | None = None,
) -> DeliveryGateway | None:
    """Pick the gateway for this deployment.

    Direct signing when credentials are present, the remote proxy when only
    ``delivery_proxy_url`` is set, otherwise ``None`` (booking disabled).
    """

    if settings.courier_configured:
        return CourierClient.from_settings(settings, http=http, redis=redis)
    if settings.delivery_proxy_url:
        return CourierProxyClient(
            settings.delivery_proxy_url,
            sandbox=settings.courier_sandbox,
            http=http,
            timeout=settings.courier_timeout_secs,
        )
    return None


__all__ = [
    "CourierClient",
    "CourierProxyClient",
    "DeliveryBooking",
    "DeliveryGateway",
    "DeliveryQuote",
    "Stop",
    "StoreLocation",
    "build_gateway",
    "sign_request",
    "store_location",
]
