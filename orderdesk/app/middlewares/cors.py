from __future__ import annotations

from typing import Callable, Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.status import HTTP_204_NO_CONTENT, HTTP_403_FORBIDDEN

from ..utils.responses import err

ALLOW_METHODS = "GET, POST, PATCH, OPTIONS"
ALLOW_HEADERS = "Content-Type, X-Session-Id, X-Request-ID"


class CORSMiddleware(BaseHTTPMiddleware):
    """CORS for browser callers with an optional origin whitelist.

    With no whitelist configured every origin is accepted and answered with
    ``*``. Preflight requests are answered here and never reach the routes.
    """

    def __init__(
        self,
        app: Callable,
        allowed_origins: Iterable[str] | None = None,
        max_age: int = 3600,
    ) -> None:
        super().__init__(app)
        self.allowed = set(allowed_origins or [])
        self.max_age = max_age

    def _allow_origin(self, origin: str | None) -> str | None:
        if not self.allowed:
            return "*"
        if origin and origin in self.allowed:
            return origin
        return None

    async def dispatch(self, request: Request, call_next: Callable) -> Response:  # type: ignore[override]
        origin = request.headers.get("origin")
        if self.allowed and origin and origin not in self.allowed:
            return JSONResponse(
                err("FORBIDDEN_ORIGIN", "ForbiddenOrigin"),
                status_code=HTTP_403_FORBIDDEN,
                headers={"Vary": "Origin"},
            )
        allow = self._allow_origin(origin)
        if request.method == "OPTIONS" and request.headers.get(
            "access-control-request-method"
        ):
            headers = {
                "Access-Control-Allow-Methods": ALLOW_METHODS,
                "Access-Control-Allow-Headers": ALLOW_HEADERS,
                "Access-Control-Max-Age": str(self.max_age),
                "Vary": "Origin",
            }
            if allow:
                headers["Access-Control-Allow-Origin"] = allow
            return Response(status_code=HTTP_204_NO_CONTENT, headers=headers)
        response = await call_next(request)
        response.headers.setdefault("Vary", "Origin")
        if allow:
            response.headers.setdefault("Access-Control-Allow-Origin", allow)
        return response
