"""Builders shared by the test modules."""

from datetime import datetime, timezone
from decimal import Decimal

import httpx

from orderdesk.app.models import Order, OrderItem
from orderdesk.app.providers.base import StoreLocation
from orderdesk.app.schemas import OrderSubmission

NOW = datetime(2025, 9, 2, 10, 0, tzinfo=timezone.utc)

STORE = StoreLocation(
    name="Shake Shop",
    phone="09171234567",
    address="1 Rizal Ave, Manila",
    latitude=14.5995,
    longitude=120.9842,
)


def mock_http(handler) -> httpx.AsyncClient:
    """Return an async client whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def shake_order(**overrides) -> OrderSubmission:
    data = {
        "cart": [{"name": "Shake", "quantity": 2, "unit_price": "120"}],
        "customer_name": "Ana Cruz",
        "contact_number": "09171234567",
        "service_type": "dine-in",
        "party_size": 2,
        "payment_method": "cash",
    }
    data.update(overrides)
    return OrderSubmission.model_validate(data)


def delivery_order(expires_at: datetime, **overrides) -> OrderSubmission:
    data = {
        "service_type": "delivery",
        "address": "22 Mabini St, Manila",
        "landmark": "blue gate",
        "party_size": None,
        "payment_method": "gcash",
        "reference_number": "REF123",
        "delivery": {
            "quotation_id": "q-1",
            "delivery_fee": "58",
            "quote_expires_at": expires_at.isoformat(),
            "lat": 14.6,
            "lng": 121.0,
        },
    }
    data.update(overrides)
    return shake_order(**data)


async def make_order(sessions, number: str, *, status: str = "pending", **fields) -> Order:
    """Insert an order with a single line directly, bypassing intake."""
    values = dict(
        order_number=number,
        customer_name="Ana Cruz",
        contact_number="09171234567",
        service_type="pickup",
        payment_method="cash",
        total=Decimal("120.00"),
        status=status,
        customer_identity="test",
        created_at=NOW,
        updated_at=NOW,
    )
    values.update(fields)
    order = Order(**values)
    order.items = [
        OrderItem(
            position=0,
            menu_item_name="Shake",
            quantity=1,
            unit_price=Decimal("120.00"),
            total_price=Decimal("120.00"),
            created_at=NOW,
        )
    ]
    async with sessions() as session:
        session.add(order)
        await session.commit()
    return order
