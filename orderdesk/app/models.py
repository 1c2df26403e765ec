"""Database models for orders, their line items and cooldown bookkeeping.

These models are kept isolated from any application wiring so that they can
be used in tests or scripts independently. Timestamps are always written by
the application in UTC; see :func:`orderdesk.app.utils.clock.as_utc` for
reading them back from drivers that drop the offset.
"""

from __future__ import annotations

import uuid

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .domain import OrderStatus, ServiceType
from .utils.clock import utcnow

Base = declarative_base()

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in OrderStatus)
_SERVICE_VALUES = ", ".join(f"'{s.value}'" for s in ServiceType)


def _uuid() -> str:
    return str(uuid.uuid4())


class Order(Base):
    """One customer submission."""

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_orders_status"),
        CheckConstraint(
            f"service_type IN ({_SERVICE_VALUES})", name="ck_orders_service_type"
        ),
        Index("idx_orders_status_created", "status", "created_at"),
        Index("idx_orders_identity_created", "customer_identity", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    order_number = Column(String(32), unique=True, nullable=False)
    customer_name = Column(String, nullable=False)
    contact_number = Column(String, nullable=False)
    service_type = Column(String(16), nullable=False)
    address = Column(Text, nullable=True)
    landmark = Column(Text, nullable=True)
    pickup_time = Column(String, nullable=True)
    party_size = Column(Integer, nullable=True)
    dine_in_time = Column(DateTime(timezone=True), nullable=True)
    payment_method = Column(String, nullable=False)
    reference_number = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    total = Column(Numeric(10, 2), nullable=False)
    delivery_fee = Column(Numeric(10, 2), nullable=True)
    quotation_id = Column(String, nullable=True)
    booking_id = Column(String, nullable=True)
    booking_status = Column(String, nullable=True)
    tracking_url = Column(Text, nullable=True)
    driver_id = Column(String, nullable=True)
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING.value)
    customer_identity = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )


class OrderItem(Base):
    """Line items belonging to an order.

    ``menu_item_id`` points at the external catalog and may dangle once the
    catalog entry is removed; name and prices are snapshotted here.
    """

    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity"),
        Index("idx_order_items_order_id", "order_id"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    position = Column(Integer, nullable=False, default=0)
    menu_item_id = Column(String, nullable=True)
    menu_item_name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    selection_snapshot = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    order = relationship("Order", back_populates="items")


class RateLimitEntry(Base):
    """Cooldown record for one (identity, action kind) pair.

    The unique constraint keeps at most one row per pair; a new gated action
    overwrites the previous row in place.
    """

    __tablename__ = "rate_limit_entries"
    __table_args__ = (
        UniqueConstraint("identity", "action_kind", name="uq_rate_limit_pair"),
        CheckConstraint(
            "action_kind IN ('order_placement', 'admin_action')",
            name="ck_rate_limit_action_kind",
        ),
        Index("idx_rate_limit_expires", "expires_at"),
    )

    id = Column(Integer, primary_key=True)
    identity = Column(String, nullable=False)
    action_kind = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)


class OrderNumberCounter(Base):
    """Per-day sequence backing ``ORD-YYYYMMDD-NNNN`` numbers."""

    __tablename__ = "order_number_counters"

    day = Column(String(8), primary_key=True)
    current = Column(Integer, nullable=False)


__all__ = ["Base", "Order", "OrderItem", "RateLimitEntry", "OrderNumberCounter"]
