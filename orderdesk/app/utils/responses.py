"""Response envelopes shared by every route.

Success bodies are ``{"ok": true, "data": ...}``; failures are
``{"ok": false, "request_id": ..., "error": {"code", "message", "hint",
"details"}}``. The courier proxy routes are the exception and return the
provider-neutral shapes unwrapped.
"""

from typing import Any, Dict

from fastapi.responses import JSONResponse
from starlette.status import HTTP_429_TOO_MANY_REQUESTS

from ..errors import OrderDeskError, RateLimitExceeded


def ok(data: Any) -> Dict[str, Any]:
    """Return a success envelope."""
    return {"ok": True, "data": data}


def err(
    code: int | str,
    message: str,
    details: Dict[str, Any] | None = None,
    hint: str | None = None,
) -> Dict[str, Any]:
    """Return an error envelope tagged with the current request id."""
    from ..middlewares.request_id import request_id_ctx

    error: Dict[str, Any] = {"code": code, "message": message}
    if hint:
        error["hint"] = hint
    if details:
        error["details"] = details

    return {"ok": False, "request_id": request_id_ctx.get(None), "error": error}


def rate_limited(exc: RateLimitExceeded) -> JSONResponse:
    """Return the 429 response for ``exc`` with a ``Retry-After`` header."""
    retry_after = max(exc.remaining, 1)
    return JSONResponse(
        err(exc.code, exc.message, exc.details, exc.hint),
        status_code=HTTP_429_TOO_MANY_REQUESTS,
        headers={"Retry-After": str(retry_after)},
    )


def error_response(exc: OrderDeskError) -> JSONResponse:
    """Render any domain error with its status code."""
    if isinstance(exc, RateLimitExceeded):
        return rate_limited(exc)
    return JSONResponse(
        err(exc.code, exc.message, exc.details, exc.hint), status_code=exc.status_code
    )
