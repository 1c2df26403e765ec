import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from factories import STORE, mock_http
from orderdesk.app.errors import DeliveryRejected, QuoteExpired, UpstreamUnavailable
from orderdesk.app.providers import CourierClient, CourierProxyClient, build_gateway
from orderdesk.app.providers.base import Stop

BASE = "https://proxy.example/delivery"
DROPOFF = Stop(address="22 Mabini St, Manila", latitude=14.6, longitude=121.0)


def _proxy(handler, **kwargs):
    return CourierProxyClient(BASE, http=mock_http(handler), **kwargs)


async def _book(client):
    return await client.book(
        "q-1", "Ana Cruz", "+639171234567", {"orderNumber": "ORD-1"}, sender=STORE, market="PH"
    )


@pytest.mark.anyio
async def test_quote_payload_and_mapping():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "quotationId": "q-1",
                "price": 58.5,
                "currency": "PHP",
                "expiresAt": "2025-09-02T10:05:00.000Z",
            },
        )

    quote = await _proxy(handler, sandbox=False).get_quote(STORE, DROPOFF, "PH", "MOTORCYCLE")

    assert quote.quotation_id == "q-1"
    assert quote.price == Decimal("58.5")
    assert quote.currency == "PHP"
    assert quote.expires_at == datetime(2025, 9, 2, 10, 5, tzinfo=timezone.utc)
    assert str(seen[0].url) == f"{BASE}/quote"
    body = json.loads(seen[0].content)
    assert body["deliveryAddress"] == DROPOFF.address
    assert body["storeLatitude"] == STORE.latitude
    assert body["serviceType"] == "MOTORCYCLE"
    assert body["sandbox"] is False


@pytest.mark.anyio
async def test_booking_payload_and_mapping():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "orderId": "lm-1",
                "status": "ASSIGNING_DRIVER",
                "shareLink": "https://share.example/lm-1",
                "driverId": "d-4",
            },
        )

    booking = await _book(_proxy(handler))

    assert booking.booking_id == "lm-1"
    assert booking.status == "ASSIGNING_DRIVER"
    assert booking.tracking_url == "https://share.example/lm-1"
    assert booking.driver_id == "d-4"
    assert str(seen[0].url) == f"{BASE}/order"
    body = json.loads(seen[0].content)
    assert body["quotationId"] == "q-1"
    assert body["storeName"] == STORE.name
    assert body["metadata"] == {"orderNumber": "ORD-1"}


@pytest.mark.anyio
@pytest.mark.parametrize(
    "response, error",
    [
        (
            httpx.Response(409, json={"ok": False, "error": {"code": "QUOTE_EXPIRED"}}),
            QuoteExpired,
        ),
        (
            httpx.Response(502, json={"ok": False, "error": {"code": "DELIVERY_REJECTED"}}),
            DeliveryRejected,
        ),
        (httpx.Response(400, text="bad request"), DeliveryRejected),
        (httpx.Response(502, text="bad gateway"), UpstreamUnavailable),
    ],
)
async def test_error_responses_mapped(response, error):
    with pytest.raises(error) as caught:
        await _book(_proxy(lambda request: response))
    assert caught.value.status == response.status_code
    assert caught.value.responded
    if error is UpstreamUnavailable:
        assert not isinstance(caught.value, DeliveryRejected)


@pytest.mark.anyio
async def test_unreachable_proxy():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(UpstreamUnavailable) as caught:
        await _book(_proxy(handler))
    assert not caught.value.responded


@pytest.mark.anyio
async def test_redirect_loop_is_unavailable():
    def handler(request):
        return httpx.Response(302, headers={"Location": f"{BASE}/order"})

    client = CourierProxyClient(
        BASE,
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True),
    )
    with pytest.raises(UpstreamUnavailable):
        await _book(client)


@pytest.mark.anyio
async def test_non_json_success_is_unavailable():
    def handler(request):
        return httpx.Response(200, text="<html>gateway login</html>")

    with pytest.raises(UpstreamUnavailable) as caught:
        await _book(_proxy(handler))
    assert caught.value.details["provider_body"] == "<html>gateway login</html>"


@pytest.mark.anyio
async def test_booking_without_order_id_rejected():
    with pytest.raises(DeliveryRejected):
        await _book(_proxy(lambda request: httpx.Response(200, json={"status": "ASSIGNING_DRIVER"})))


@pytest.mark.anyio
async def test_malformed_quote_is_unavailable():
    with pytest.raises(UpstreamUnavailable):
        await _proxy(lambda request: httpx.Response(200, json={"price": "cheap"})).get_quote(
            STORE, DROPOFF, "PH", "MOTORCYCLE"
        )


def test_gateway_selection(settings):
    assert isinstance(build_gateway(settings), CourierClient)
    proxied = settings.model_copy(
        update={"courier_api_secret": None, "delivery_proxy_url": BASE}
    )
    gateway = build_gateway(proxied)
    assert isinstance(gateway, CourierProxyClient)
    assert gateway.base_url == BASE
    none = settings.model_copy(update={"courier_api_secret": None, "delivery_proxy_url": None})
    assert build_gateway(none) is None
