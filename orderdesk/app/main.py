# main.py

"""Application factory for the ordering API.

Components (database engine, Redis, courier gateway, change notifier,
cooldown gate and intake service) are built in :func:`lifespan` and exposed
on ``app.state``; routes reach them through :mod:`orderdesk.app.deps`.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.asyncio import Redis, from_url
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings

from .db import create_engine, init_models, session_factory
from .errors import OrderDeskError
from .events import ChangeNotifier
from .middlewares import CORSMiddleware, LoggingMiddleware, RequestIdMiddleware
from .obs import capture_exception, init_sentry
from .obs.logging import configure_logging
from .providers import build_gateway, store_location
from .providers.base import DeliveryGateway
from .routes_admin_orders import router as admin_orders_router
from .routes_delivery import router as delivery_router
from .routes_maintenance import router as maintenance_router
from .routes_metrics import router as metrics_router
from .routes_orders import router as orders_router
from .routes_orders_sse import router as orders_sse_router
from .security.cooldown import CooldownGate
from .services.order_intake import OrderIntake
from .utils.responses import err, error_response, ok

logger = logging.getLogger("api")


def _relay_stopped(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("change relay stopped: %r", exc)
        capture_exception(exc, component="change_relay")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    engine = create_engine(settings.database_url)
    await init_models(engine)
    sessions = session_factory(engine)

    own_redis = app.state.redis is None and bool(settings.redis_url)
    if own_redis:
        app.state.redis = from_url(settings.redis_url, decode_responses=True)
    redis: Redis | None = app.state.redis

    own_http = app.state.http is None
    if own_http:
        app.state.http = httpx.AsyncClient(timeout=settings.courier_timeout_secs)

    notifier = ChangeNotifier(redis)
    gate = CooldownGate(redis)
    gateway: DeliveryGateway | None = app.state.gateway or build_gateway(
        settings, http=app.state.http, redis=redis
    )
    app.state.engine = engine
    app.state.sessions = sessions
    app.state.notifier = notifier
    app.state.gate = gate
    app.state.gateway = gateway
    app.state.intake = OrderIntake(
        sessions,
        gate,
        notifier=notifier,
        gateway=gateway,
        store=store_location(settings),
        settings=settings,
    )
    if gateway is None:
        logger.warning("courier gateway not configured; delivery orders will not be booked")

    relay = None
    if redis is not None:
        relay = asyncio.create_task(notifier.relay())
        relay.add_done_callback(_relay_stopped)
    try:
        yield
    finally:
        if relay is not None:
            relay.cancel()
            await asyncio.gather(relay, return_exceptions=True)
        if own_http:
            await app.state.http.aclose()
        if own_redis:
            await redis.aclose()
        await engine.dispose()


def create_app(
    settings: Settings | None = None,
    *,
    redis: Redis | None = None,
    http: httpx.AsyncClient | None = None,
    gateway: DeliveryGateway | None = None,
) -> FastAPI:
    """Return a configured application.

    ``redis``, ``http`` and ``gateway`` replace the clients the lifespan would
    otherwise build, which is how tests inject fakes.
    """

    settings = settings or get_settings()
    app = FastAPI(title="OrderDesk API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.redis = redis
    app.state.http = http
    app.state.gateway = gateway

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(CORSMiddleware, allowed_origins=settings.origins)

    @app.exception_handler(OrderDeskError)
    async def domain_error_handler(request: Request, exc: OrderDeskError):
        extra = {"status": exc.status_code, "route": request.url.path}
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.code, exc.message, extra=extra)
        else:
            logger.warning("%s: %s", exc.code, exc.message, extra=extra)
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
            for e in exc.errors()
        ]
        return JSONResponse(
            err("VALIDATION", "Invalid request", {"errors": errors}), status_code=400
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(
            exc.detail, extra={"status": exc.status_code, "route": request.url.path}
        )
        return JSONResponse(
            err(exc.status_code, str(exc.detail)),
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        logger.exception(
            "unhandled_error", extra={"status": 500, "route": request.url.path}
        )
        capture_exception(exc, route=request.url.path)
        return JSONResponse(err(500, "Internal Server Error"), status_code=500)

    app.include_router(orders_router)
    app.include_router(admin_orders_router)
    app.include_router(orders_sse_router)
    app.include_router(delivery_router)
    app.include_router(maintenance_router)
    app.include_router(metrics_router)

    @app.get("/health")
    async def health() -> dict:
        return ok({"status": "ok"})

    return app


LOG_LEVEL = os.getenv("LOG_LEVEL", get_settings().log_level).upper()
configure_logging(LOG_LEVEL)
init_sentry(env=os.getenv("ENV"))

app = create_app()
