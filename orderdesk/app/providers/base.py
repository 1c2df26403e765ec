"""Delivery gateway interface and the value types it exchanges."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Protocol


@dataclass(frozen=True)
class StoreLocation:
    """Pickup point and sender contact for courier jobs."""

    name: str
    phone: str
    address: str
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Stop:
    """Drop-off point for a delivery."""

    address: str
    latitude: float
    longitude: float


@dataclass(frozen=True)
class DeliveryQuote:
    """Time-bounded price offer for one pickup/drop-off pair."""

    quotation_id: str
    price: Decimal
    currency: str
    expires_at: datetime | None = None

    def as_payload(self) -> Dict[str, Any]:
        return {
            "quotationId": self.quotation_id,
            "price": float(self.price),
            "currency": self.currency,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass(frozen=True)
class DeliveryBooking:
    """Courier assignment made against a quote."""

    booking_id: str
    status: str
    tracking_url: str | None = None
    driver_id: str | None = None

    def as_payload(self) -> Dict[str, Any]:
        return {
            "orderId": self.booking_id,
            "status": self.status,
            "shareLink": self.tracking_url,
            "driverId": self.driver_id,
        }


class DeliveryGateway(Protocol):
    """Anything able to quote and book courier deliveries."""

    async def get_quote(
        self,
        pickup: StoreLocation,
        dropoff: Stop,
        market: str,
        service_class: str,
    ) -> DeliveryQuote:
        ...

    async def book(
        self,
        quotation_id: str,
        recipient_name: str,
        recipient_phone: str,
        metadata: Dict[str, Any] | None,
        *,
        sender: StoreLocation,
        market: str,
    ) -> DeliveryBooking:
        ...
