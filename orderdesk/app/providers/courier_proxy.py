"""Delivery gateway that talks to the signing proxy instead of the provider.

Used by deployments where the ordering service does not hold courier
credentials itself; the proxy (see :mod:`orderdesk.app.routes_delivery`)
signs on its behalf.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

import httpx

from ..errors import DeliveryRejected, QuoteExpired, UpstreamUnavailable
from .base import DeliveryBooking, DeliveryQuote, Stop, StoreLocation
from .courier import _parse_instant

logger = logging.getLogger("orderdesk.delivery")


class CourierProxyClient:
    """Call ``POST {base}/quote`` and ``POST {base}/order`` on the proxy."""

    def __init__(
        self,
        base_url: str,
        *,
        sandbox: bool = True,
        http: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.sandbox = sandbox
        self.http = http
        self.timeout = timeout

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            if self.http is not None:
                resp = await self.http.post(url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"delivery proxy unreachable: {exc!r}") from exc
        body = resp.text
        try:
            data = resp.json()
        except ValueError:
            data = None
        if resp.is_success:
            if not isinstance(data, dict):
                logger.warning("delivery proxy %s returned a non-JSON body: %s", path, body)
                raise UpstreamUnavailable(
                    "malformed response from delivery proxy", status=resp.status_code, body=body
                )
            return data
        code = None
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            code = data["error"].get("code")
        logger.warning("delivery proxy %s failed status=%d body=%s", path, resp.status_code, body)
        if code == "QUOTE_EXPIRED":
            raise QuoteExpired("delivery quotation expired", status=resp.status_code, body=body)
        if code == "DELIVERY_REJECTED" or 400 <= resp.status_code < 500:
            raise DeliveryRejected(
                f"delivery proxy rejected request ({resp.status_code})",
                status=resp.status_code,
                body=body,
            )
        raise UpstreamUnavailable(
            f"delivery proxy error {resp.status_code}", status=resp.status_code, body=body
        )

    async def get_quote(
        self,
        pickup: StoreLocation,
        dropoff: Stop,
        market: str,
        service_class: str,
    ) -> DeliveryQuote:
        data = await self._post(
            "/quote",
            {
                "deliveryAddress": dropoff.address,
                "deliveryLat": dropoff.latitude,
                "deliveryLng": dropoff.longitude,
                "market": market,
                "serviceType": service_class,
                "sandbox": self.sandbox,
                "storeName": pickup.name,
                "storePhone": pickup.phone,
                "storeAddress": pickup.address,
                "storeLatitude": pickup.latitude,
                "storeLongitude": pickup.longitude,
            },
        )
        try:
            return DeliveryQuote(
                quotation_id=str(data["quotationId"]),
                price=Decimal(str(data["price"])),
                currency=str(data.get("currency") or ""),
                expires_at=_parse_instant(data.get("expiresAt")),
            )
        except (KeyError, InvalidOperation, ValueError) as exc:
            raise UpstreamUnavailable("malformed quote from proxy", status=200, body=str(data)) from exc

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
        data = await self._post(
            "/order",
            {
                "quotationId": quotation_id,
                "recipientName": recipient_name,
                "recipientPhone": recipient_phone,
                "market": market,
                "sandbox": self.sandbox,
                "storeName": sender.name,
                "storePhone": sender.phone,
                "metadata": metadata or {},
            },
        )
        if not data.get("orderId"):
            raise DeliveryRejected("booking response without order id", status=200, body=str(data))
        return DeliveryBooking(
            booking_id=str(data["orderId"]),
            status=str(data.get("status") or ""),
            tracking_url=data.get("shareLink"),
            driver_id=data.get("driverId"),
        )
