"""Domain models and helpers."""

from .order_status import (
    ACTIVE,
    HAPPY_PATH,
    TERMINAL,
    OrderStatus,
    can_transition,
    completion_timestamp,
    is_correction,
)
from .selection import (
    AddOnSelection,
    SelectionSnapshot,
    VariationSelection,
    decode_snapshot,
)
from .service_type import ServiceType

__all__ = [
    "ACTIVE",
    "HAPPY_PATH",
    "TERMINAL",
    "OrderStatus",
    "can_transition",
    "completion_timestamp",
    "is_correction",
    "AddOnSelection",
    "SelectionSnapshot",
    "VariationSelection",
    "decode_snapshot",
    "ServiceType",
]
