"""Central cooldown policies for gated actions."""

from __future__ import annotations

import os
from dataclasses import dataclass

from config import MAX_COOLDOWN_SECS, Settings, get_settings

ORDER_PLACEMENT = "order_placement"
ADMIN_ACTION = "admin_action"
ACTION_KINDS = (ORDER_PLACEMENT, ADMIN_ACTION)


@dataclass(frozen=True)
class Policy:
    """Cooldown configuration for one action kind."""

    action_kind: str
    cooldown_secs: int


def _policy(name: str, cooldown: int) -> Policy:
    raw = int(os.getenv(f"RL_{name.upper()}_COOLDOWN", cooldown))
    return Policy(action_kind=name, cooldown_secs=max(1, min(raw, MAX_COOLDOWN_SECS)))


def order_placement(settings: Settings | None = None) -> Policy:
    """Limit how often one identity may place an order."""
    settings = settings or get_settings()
    return _policy(ORDER_PLACEMENT, settings.order_cooldown_secs)


def admin_action(settings: Settings | None = None) -> Policy:
    """Throttle bulk staff operations."""
    settings = settings or get_settings()
    return _policy(ADMIN_ACTION, settings.admin_cooldown_secs)


__all__ = [
    "ACTION_KINDS",
    "ADMIN_ACTION",
    "ORDER_PLACEMENT",
    "Policy",
    "admin_action",
    "order_placement",
]
