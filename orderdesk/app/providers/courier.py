"""Signed client for the courier provider's REST API.

Every request is authenticated with an HMAC-SHA256 signature over::

    <timestamp>\\r\\n<METHOD>\\r\\n<path>\\r\\n\\r\\n<body>

sent as ``Authorization: hmac <api key>:<base64 signature>`` together with the
market header and a fresh request id. The shared secret only ever lives in
this server-side client; browsers reach it through the proxy routes in
:mod:`orderdesk.app.routes_delivery`.

Booking is a two-step protocol: the quotation is re-fetched to learn the stop
ids the provider assigned, then the order is placed against those stops. The
placing request is retried only when no response at all was received;
any answer from the provider, success or business error, is final so a
courier is never booked twice.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Dict, Tuple

import httpx
from redis.asyncio import Redis
from redis.exceptions import RedisError

from config import Settings

from ..errors import (
    DeliveryError,
    DeliveryRejected,
    QuoteExpired,
    SigningFailure,
    UpstreamUnavailable,
)
from ..utils.clock import utcnow
from ..utils.phone import normalize_phone
from .base import DeliveryBooking, DeliveryQuote, Stop, StoreLocation

BASE_URLS = {
    True: "https://rest.sandbox.lalamove.com",
    False: "https://rest.lalamove.com",
}
QUOTATIONS_PATH = "/v3/quotations"
ORDERS_PATH = "/v3/orders"
BOOKING_CLAIM_TTL = 86400

LANGUAGES = {
    "HK": "en_HK",
    "SG": "en_SG",
    "TH": "th_TH",
    "PH": "en_PH",
    "TW": "zh_TW",
    "MY": "ms_MY",
    "VN": "vi_VN",
}

EXPIRED_ERROR_IDS = {"ERR_QUOTATION_EXPIRED", "ERR_INVALID_QUOTATION_ID_EXPIRED"}

logger = logging.getLogger("orderdesk.delivery")


def language_for_market(market: str) -> str:
    """Return the address language the provider expects for ``market``."""
    return LANGUAGES.get(market.upper(), "en_US")


def iso_timestamp(now: datetime | None = None) -> str:
    """Return ``now`` as ISO-8601 UTC with millisecond precision."""
    now = (now or utcnow()).astimezone(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def sign_request(
    secret: str | None,
    method: str,
    path: str,
    body: str,
    timestamp: str | None = None,
) -> Tuple[str, str]:
    """Return ``(timestamp, signature)`` for a provider request.

    Raises :class:`~orderdesk.app.errors.SigningFailure` when the secret is
    missing or the message cannot be encoded.
    """
    if not secret:
        raise SigningFailure("courier API secret is not configured")
    timestamp = timestamp or iso_timestamp()
    message = f"{timestamp}\r\n{method.upper()}\r\n{path}\r\n\r\n{body}"
    try:
        digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256).digest()
        signature = base64.b64encode(digest).decode()
    except (UnicodeError, TypeError, ValueError, binascii.Error) as exc:
        raise SigningFailure(f"could not sign request: {exc}") from exc
    return timestamp, signature


def auth_headers(api_key: str, signature: str, market: str) -> Dict[str, str]:
    """Return the headers every provider request carries."""
    return {
        "Content-Type": "application/json",
        "Authorization": f"hmac {api_key}:{signature}",
        "X-LLM-Market": market,
        "X-Request-Id": f"srv-{uuid.uuid4()}",
    }


def _error_ids(body: str) -> tuple[list[str], str]:
    try:
        payload = json.loads(body)
    except ValueError:
        return [], body
    errors = payload.get("errors") if isinstance(payload, dict) else None
    if not isinstance(errors, list):
        return [], body
    ids = [str(e.get("id", "")) for e in errors if isinstance(e, dict)]
    messages = " ".join(str(e.get("message", "")) for e in errors if isinstance(e, dict))
    return ids, messages or body


def map_error(status: int, body: str) -> UpstreamUnavailable:
    """Return the domain error for a non-2xx provider response."""
    if status >= 500:
        return UpstreamUnavailable(
            f"courier provider error {status}", status=status, body=body
        )
    ids, message = _error_ids(body)
    if any(i in EXPIRED_ERROR_IDS for i in ids) or (
        "quotation" in message.lower() and "expired" in message.lower()
    ):
        return QuoteExpired("delivery quotation expired", status=status, body=body)
    return DeliveryRejected(
        f"courier provider rejected request ({status})", status=status, body=body
    )


def _unwrap(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload if isinstance(payload, dict) else {}


def _parse_instant(value: Any) -> datetime | None:
    if not value:
        return None
    text = str(value).replace("Z", "+00:00")
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_stops(pickup: StoreLocation, dropoff: Stop) -> list[Dict[str, Any]]:
    """Return the two-stop list (store first, customer second).

    Coordinates are sent as strings, as the provider requires.
    """

    def _stop(address: str, lat: float, lng: float) -> Dict[str, Any]:
        return {
            "coordinates": {"lat": str(lat), "lng": str(lng)},
            "address": address,
        }

    return [
        _stop(pickup.address, pickup.latitude, pickup.longitude),
        _stop(dropoff.address, dropoff.latitude, dropoff.longitude),
    ]


class CourierClient:
    """Server-side signing client for quotations and bookings."""

    def __init__(
        self,
        api_key: str | None,
        api_secret: str | None,
        *,
        sandbox: bool = True,
        http: httpx.AsyncClient | None = None,
        redis: Redis | None = None,
        timeout: float = 10.0,
        max_attempts: int = 2,
    ) -> None:
        self.api_key = api_key or ""
        self.api_secret = api_secret
        self.sandbox = sandbox
        self.http = http
        self.redis = redis
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        http: httpx.AsyncClient | None = None,
        redis: Redis | None = None,
        sandbox: bool | None = None,
    ) -> "CourierClient":
        return cls(
            settings.courier_api_key,
            settings.courier_api_secret,
            sandbox=settings.courier_sandbox if sandbox is None else sandbox,
            http=http,
            redis=redis,
            timeout=settings.courier_timeout_secs,
            max_attempts=settings.booking_max_attempts,
        )

    @property
    def base_url(self) -> str:
        return BASE_URLS[bool(self.sandbox)]

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.http is not None:
            yield self.http
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def _send(
        self,
        method: str,
        path: str,
        body: Dict[str, Any] | None,
        market: str,
    ) -> Dict[str, Any]:
        """Sign and send one request, retrying only when nothing came back."""
        body_text = json.dumps(body, separators=(",", ":")) if body is not None else ""
        last_exc: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            _, signature = sign_request(self.api_secret, method, path, body_text)
            headers = auth_headers(self.api_key, signature, market)
            try:
                async with self._client() as client:
                    resp = await client.request(
                        method,
                        f"{self.base_url}{path}",
                        content=body_text or None,
                        headers=headers,
                        timeout=self.timeout,
                    )
            except httpx.TransportError as exc:
                last_exc = exc
                logger.warning(
                    "courier %s %s attempt %d/%d got no response: %r",
                    method,
                    path,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                continue
            if not resp.is_success:
                error = map_error(resp.status_code, resp.text)
                logger.warning(
                    "courier %s %s failed status=%d body=%s",
                    method,
                    path,
                    resp.status_code,
                    resp.text,
                )
                raise error
            try:
                return _unwrap(resp.json())
            except ValueError:
                return {}
        raise UpstreamUnavailable(f"courier provider unreachable: {last_exc!r}")

    async def get_quote(
        self,
        pickup: StoreLocation,
        dropoff: Stop,
        market: str,
        service_class: str,
    ) -> DeliveryQuote:
        """Request a price for delivering from ``pickup`` to ``dropoff``.

        Not idempotent: every call creates a new quotation.
        """
        body = {
            "data": {
                "serviceType": service_class,
                "language": language_for_market(market),
                "stops": build_stops(pickup, dropoff),
                "item": {"quantity": "1", "weight": "1"},
            }
        }
        data = await self._send("POST", QUOTATIONS_PATH, body, market)
        breakdown = data.get("priceBreakdown") or {}
        quotation_id = data.get("quotationId")
        try:
            price = Decimal(str(breakdown.get("total")))
            expires_at = _parse_instant(data.get("expiresAt"))
        except (InvalidOperation, ValueError) as exc:
            raise UpstreamUnavailable(
                "malformed quotation response", status=200, body=json.dumps(data)
            ) from exc
        if not quotation_id:
            raise UpstreamUnavailable(
                "quotation response without id", status=200, body=json.dumps(data)
            )
        return DeliveryQuote(
            quotation_id=str(quotation_id),
            price=price,
            currency=str(breakdown.get("currency") or ""),
            expires_at=expires_at,
        )

    async def _claim(self, quotation_id: str) -> None:
        if self.redis is None:
            return
        try:
            claimed = await self.redis.set(
                f"booking:{quotation_id}", "1", nx=True, ex=BOOKING_CLAIM_TTL
            )
        except RedisError as exc:
            logger.warning("booking claim unavailable for %s: %s", quotation_id, exc)
            return
        if not claimed:
            raise DeliveryRejected(f"quotation {quotation_id} is already booked")

    async def _release(self, quotation_id: str) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.delete(f"booking:{quotation_id}")
        except RedisError as exc:
            logger.warning("booking claim not released for %s: %s", quotation_id, exc)

    async def _resolve_stops(self, quotation_id: str, market: str) -> tuple[str, str]:
        quotation = await self._send(
            "GET", f"{QUOTATIONS_PATH}/{quotation_id}", None, market
        )
        stops = quotation.get("stops") or []
        ids = [s.get("stopId") or s.get("id") for s in stops if isinstance(s, dict)]
        if len(ids) < 2 or not all(ids[:2]):
            raise DeliveryRejected(
                f"quotation {quotation_id} has no resolvable stops",
                body=json.dumps(quotation),
            )
        return str(ids[0]), str(ids[1])

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
        """Book a courier against ``quotation_id``.

        Expiry is not re-validated here; the provider answers with a business
        error that surfaces as :class:`~orderdesk.app.errors.QuoteExpired`.
        """
        await self._claim(quotation_id)
        try:
            sender_stop, recipient_stop = await self._resolve_stops(quotation_id, market)
        except DeliveryError:
            await self._release(quotation_id)
            raise

        body = {
            "data": {
                "quotationId": quotation_id,
                "sender": {
                    "stopId": sender_stop,
                    "name": sender.name,
                    "phone": normalize_phone(sender.phone, market) or sender.phone,
                },
                "recipients": [
                    {
                        "stopId": recipient_stop,
                        "name": recipient_name,
                        "phone": normalize_phone(recipient_phone, market)
                        or recipient_phone,
                        "remarks": "",
                    }
                ],
                "isPODEnabled": True,
                "metadata": {k: str(v) for k, v in (metadata or {}).items() if v is not None},
            }
        }
        try:
            data = await self._send("POST", ORDERS_PATH, body, market)
        except UpstreamUnavailable as exc:
            if not exc.responded:
                await self._release(quotation_id)
            raise
        except DeliveryError:
            await self._release(quotation_id)
            raise

        booking_id = data.get("orderId") or data.get("id")
        if not booking_id:
            raise DeliveryRejected(
                "booking response without order id", status=200, body=json.dumps(data)
            )
        driver = data.get("driverId")
        return DeliveryBooking(
            booking_id=str(booking_id),
            status=str(data.get("status") or "ASSIGNING_DRIVER"),
            tracking_url=data.get("shareLink"),
            driver_id=str(driver) if driver else None,
        )
