# schemas.py

"""Pydantic models for API payloads and responses."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .domain import OrderStatus, SelectionSnapshot, ServiceType, decode_snapshot
from .errors import ValidationError
from .utils.clock import as_utc


def _snapshot(value: Any) -> SelectionSnapshot:
    try:
        return decode_snapshot(value)
    except ValidationError as exc:
        raise ValueError(exc.message) from exc


Snapshot = Annotated[SelectionSnapshot, BeforeValidator(_snapshot)]


class CartLine(BaseModel):
    """One line of the submitted cart, priced by the client."""

    menu_item_id: Optional[str] = None
    name: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    selection: Snapshot = Field(default_factory=SelectionSnapshot)


class DeliveryContext(BaseModel):
    """Quote previously fetched for a delivery checkout."""

    quotation_id: Optional[str] = None
    delivery_fee: Decimal = Field(default=Decimal("0"), ge=0)
    quote_expires_at: Optional[datetime] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


class OrderSubmission(BaseModel):
    """Checkout payload accepted by ``POST /orders``."""

    cart: List[CartLine]
    customer_name: str = Field(min_length=1)
    contact_number: str = Field(min_length=1)
    service_type: ServiceType
    address: Optional[str] = None
    landmark: Optional[str] = None
    pickup_time: Optional[str] = None
    party_size: Optional[int] = Field(default=None, gt=0)
    dine_in_time: Optional[datetime] = None
    payment_method: str = Field(min_length=1)
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    total: Optional[Decimal] = None
    delivery: Optional[DeliveryContext] = None


def _money(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


def _instant(value: Any) -> Any:
    if isinstance(value, datetime):
        return as_utc(value)
    return value


Money = Annotated[float, BeforeValidator(_money)]
Instant = Annotated[datetime, BeforeValidator(_instant)]


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    menu_item_id: Optional[str] = None
    menu_item_name: str
    quantity: int
    unit_price: Money
    total_price: Money
    selection_snapshot: Snapshot = Field(default_factory=SelectionSnapshot)


class OrderOut(BaseModel):
    """Order with its line items as returned to callers."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    order_number: str
    customer_name: str
    contact_number: str
    service_type: ServiceType
    address: Optional[str] = None
    landmark: Optional[str] = None
    pickup_time: Optional[str] = None
    party_size: Optional[int] = None
    dine_in_time: Optional[Instant] = None
    payment_method: str
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    total: Money
    delivery_fee: Optional[Money] = None
    quotation_id: Optional[str] = None
    booking_id: Optional[str] = None
    booking_status: Optional[str] = None
    tracking_url: Optional[str] = None
    driver_id: Optional[str] = None
    status: OrderStatus
    created_at: Instant
    updated_at: Instant
    completed_at: Optional[Instant] = None
    items: List[OrderItemOut] = []


class StatusUpdate(BaseModel):
    status: OrderStatus


class BulkStatusUpdate(BaseModel):
    order_ids: List[str] = Field(min_length=1, max_length=200)
    status: OrderStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QuoteRequest(_CamelModel):
    """Body of ``POST /delivery/quote``. Every field is required."""

    delivery_address: str = Field(min_length=1)
    delivery_lat: float
    delivery_lng: float
    market: str = Field(min_length=2)
    service_type: str = Field(min_length=1)
    sandbox: bool
    store_name: str = Field(min_length=1)
    store_phone: str = Field(min_length=1)
    store_address: str = Field(min_length=1)
    store_latitude: float
    store_longitude: float


class BookingRequest(_CamelModel):
    """Body of ``POST /delivery/order``; only ``metadata`` may be omitted."""

    quotation_id: str = Field(min_length=1)
    recipient_name: str = Field(min_length=1)
    recipient_phone: str = Field(min_length=1)
    market: str = Field(min_length=2)
    sandbox: bool
    store_name: str = Field(min_length=1)
    store_phone: str = Field(min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)
