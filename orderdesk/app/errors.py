"""Error taxonomy for order intake, status changes and courier calls.

Every error carries the HTTP status and machine code used by the exception
handler in :mod:`orderdesk.app.main` to render the standard error envelope.
"""

from __future__ import annotations

from typing import Any, Dict


class OrderDeskError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    code = "ERROR"

    def __init__(
        self,
        message: str = "",
        *,
        details: Dict[str, Any] | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details or {}
        self.hint = hint


class ValidationError(OrderDeskError):
    """Malformed or missing submission fields; raised before any side effect."""

    status_code = 400
    code = "VALIDATION"


class RateLimitExceeded(OrderDeskError):
    """The identity is still inside its cooldown window for ``action_kind``."""

    status_code = 429
    code = "RATE_LIMIT"

    def __init__(self, remaining: int, action_kind: str) -> None:
        from .security.cooldown import cooldown_message

        super().__init__(
            cooldown_message(remaining),
            details={"remaining": remaining, "action_kind": action_kind},
            hint=f"retry in {max(remaining, 0)}s",
        )
        self.remaining = remaining
        self.action_kind = action_kind


class AllocationFailure(OrderDeskError):
    """Order number retries exhausted; nothing was persisted."""

    status_code = 503
    code = "ALLOCATION_FAILED"


class PersistenceConflict(OrderDeskError):
    """A unique constraint was hit while persisting; re-derive and retry."""

    status_code = 409
    code = "CONFLICT"


class OrderNotFound(OrderDeskError):
    status_code = 404
    code = "NOT_FOUND"


class InvalidTransition(OrderDeskError):
    status_code = 409
    code = "INVALID_TRANSITION"


class DeliveryError(OrderDeskError):
    """Base class for courier provider failures."""

    status_code = 502
    code = "DELIVERY_ERROR"


class UpstreamUnavailable(DeliveryError):
    """The courier provider answered non-2xx or could not be reached.

    ``status`` is ``None`` when no response was received at all.
    """

    code = "UPSTREAM_UNAVAILABLE"

    def __init__(
        self,
        message: str = "",
        *,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if status is not None:
            details["provider_status"] = status
        if body:
            details["provider_body"] = body
        super().__init__(message, details=details)
        self.status = status
        self.body = body

    @property
    def responded(self) -> bool:
        """Return ``True`` when the provider sent back any response."""

        return self.status is not None


class DeliveryRejected(UpstreamUnavailable):
    """Business error returned by the provider (4xx)."""

    code = "DELIVERY_REJECTED"


class QuoteExpired(DeliveryRejected):
    """The quotation can no longer be booked and must be re-fetched."""

    status_code = 409
    code = "QUOTE_EXPIRED"


class SigningFailure(DeliveryError):
    """Local failure computing the request signature; never retried."""

    status_code = 500
    code = "SIGNING_FAILED"


__all__ = [
    "OrderDeskError",
    "ValidationError",
    "RateLimitExceeded",
    "AllocationFailure",
    "PersistenceConflict",
    "OrderNotFound",
    "InvalidTransition",
    "DeliveryError",
    "UpstreamUnavailable",
    "DeliveryRejected",
    "QuoteExpired",
    "SigningFailure",
]
