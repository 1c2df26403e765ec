"""Dependency helpers resolving components built by the app lifespan."""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings

from ..events import ChangeNotifier
from ..security.cooldown import CooldownGate, Identity
from ..services.order_intake import OrderIntake


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield a session from the application's session factory."""

    async with request.app.state.sessions() as session:
        yield session


def get_sessions(request: Request):
    return request.app.state.sessions


def get_notifier(request: Request) -> ChangeNotifier:
    return request.app.state.notifier


def get_gate(request: Request) -> CooldownGate:
    return request.app.state.gate


def get_intake(request: Request) -> OrderIntake:
    return request.app.state.intake


def resolve_identity(
    request: Request,
    x_session_id: str | None = Header(default=None),
) -> Identity:
    """Return the caller identity for cooldown checks.

    The session token comes from ``X-Session-Id``; the network address is
    the client address as seen by the server.
    """

    token = x_session_id.strip()[:128] if x_session_id else None
    address = request.client.host if request.client else None
    return Identity(session_token=token or None, network_address=address)


__all__ = [
    "get_gate",
    "get_intake",
    "get_notifier",
    "get_session",
    "get_sessions",
    "get_settings_dep",
    "resolve_identity",
]
