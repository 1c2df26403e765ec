"""Error reporting to Sentry.

Events are scrubbed before they leave the process: request bodies carry
customer contact details, and courier calls carry the signed
``Authorization`` header.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

import sentry_sdk

logger = logging.getLogger("obs")

SCRUBBED_KEYS = {
    "authorization",
    "x-session-id",
    "customer_name",
    "contact_number",
    "address",
    "landmark",
    "reference_number",
    "recipientphone",
    "storephone",
    "courier_api_secret",
}


def _scrub(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: ("[Filtered]" if str(k).lower() in SCRUBBED_KEYS else _scrub(v))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_scrub(v) for v in value]
    return value


def scrub_event(event: dict, hint: dict | None = None) -> dict:
    """``before_send`` hook removing contact details and credentials."""
    request = event.get("request")
    if isinstance(request, dict):
        for key in ("headers", "data", "cookies"):
            if key in request:
                request[key] = _scrub(request[key])
    if "extra" in event:
        event["extra"] = _scrub(event["extra"])
    return event


def init_sentry(dsn: Optional[str] = None, env: Optional[str] = None) -> None:
    """Initialize Sentry if a DSN is provided."""
    dsn = dsn or os.getenv("ERROR_DSN")
    if not dsn:
        logger.info("ERROR_DSN not set; error sink disabled")
        return
    sentry_sdk.init(
        dsn=dsn,
        environment=env,
        send_default_pii=False,
        before_send=scrub_event,
    )


def capture_exception(exc: Exception, **tags: Any) -> None:
    """Forward ``exc`` to Sentry with ``tags`` (e.g. ``order_id``), else log it."""
    if not sentry_sdk.get_client().is_active():
        logger.error("Unhandled exception %s", tags or "", exc_info=exc)
        return
    with sentry_sdk.new_scope() as scope:
        for key, value in tags.items():
            if value is not None:
                scope.set_tag(key, str(value))
        sentry_sdk.capture_exception(exc)
