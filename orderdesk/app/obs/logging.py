"""JSON log formatting with PII scrubbing.

Log lines may mention customers (names are never logged, but phone numbers
and e-mails can slip into provider bodies) and courier credentials (the
``Authorization: hmac <key>:<signature>`` header), so every message passes
through :func:`_redact_pii` before it is written.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

from ..middlewares.request_id import request_id_ctx

EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+", re.I)
# local (09171234567) and international (+639171234567) mobile numbers
PHONE_RE = re.compile(r"(?<![\w-])\+?\d{10,13}\b")
HMAC_AUTH_RE = re.compile(r"(hmac\s+)[^\s:]+:[A-Za-z0-9+/=]+", re.I)

# Attributes passed through ``extra=`` that end up as top-level JSON keys
CONTEXT_FIELDS = (
    "req_id",
    "order_id",
    "order_number",
    "action_kind",
    "quotation_id",
    "route",
    "status",
    "latency_ms",
)

# Third-party loggers that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def _redact_pii(text: str) -> str:
    """Replace e-mails, phone numbers and courier credentials with ***."""
    text = HMAC_AUTH_RE.sub(lambda m: m.group(1) + "***", text)
    text = EMAIL_RE.sub("***", text)
    return PHONE_RE.sub("***", text)


class RequestIdFilter(logging.Filter):
    """Attach request id from context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - trivial
        if getattr(record, "req_id", None) is None:
            record.req_id = request_id_ctx.get(None)
        return True


class JsonFormatter(logging.Formatter):
    """Render logs as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
        }
        for field in CONTEXT_FIELDS:
            data[field] = getattr(record, field, None)
        data["msg"] = _redact_pii(record.getMessage())
        if record.exc_info:
            data["exc"] = _redact_pii(self.formatException(record.exc_info))
        return json.dumps(data, default=str)


def configure_logging(level: int | str = logging.INFO) -> None:
    """Send every log record to stderr as JSON at ``level``.

    ``level`` may be a name such as ``"debug"``; unknown names fall back to
    ``INFO``.
    """

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
