"""Abuse controls for public endpoints."""

from .cooldown import (
    CooldownDecision,
    CooldownGate,
    Identity,
    RedisCooldownStore,
    SqlCooldownStore,
    cooldown_message,
    decide,
    purge_expired,
)

__all__ = [
    "CooldownDecision",
    "CooldownGate",
    "Identity",
    "RedisCooldownStore",
    "SqlCooldownStore",
    "cooldown_message",
    "decide",
    "purge_expired",
]
