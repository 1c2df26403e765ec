"""Service types an order can be placed for."""

from __future__ import annotations

from enum import Enum


class ServiceType(str, Enum):
    DINE_IN = "dine-in"
    PICKUP = "pickup"
    DELIVERY = "delivery"
