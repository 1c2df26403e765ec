import json
import logging
import os
import random
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..obs import capture_exception
from ..routes_metrics import http_errors_total
from ..utils.responses import err

# Request fields that carry customer contact details
PII_KEYS = {
    "customer_name",
    "contact_number",
    "address",
    "landmark",
    "reference_number",
    "recipientname",
    "recipientphone",
    "deliveryaddress",
    "storephone",
    "email",
}
LOG_SAMPLE_2XX = float(os.getenv("LOG_SAMPLE_2XX", "0.1"))
LOG_SAMPLE_4XX = float(os.getenv("LOG_SAMPLE_4XX", "1.0"))

logger = logging.getLogger("api")


def _redact(obj):
    if isinstance(obj, dict):
        return {
            k: ("***" if k.lower() in PII_KEYS else _redact(v)) for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [_redact(v) for v in obj]
    return obj


class LoggingMiddleware(BaseHTTPMiddleware):
    """Emit sampled inbound/outbound request logs and count error responses."""

    async def dispatch(self, request: Request, call_next):
        req_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())

        body = None
        if request.method in ("POST", "PATCH", "PUT") and request.headers.get(
            "content-type", ""
        ).startswith("application/json"):
            raw = await request.body()
            if raw:
                try:
                    body = json.loads(raw)
                except ValueError:
                    body = None

        inbound = {
            "req_id": req_id,
            "path": request.url.path,
            "method": request.method,
            "ip": request.client.host if request.client else None,
            "ua": request.headers.get("user-agent"),
        }
        query = dict(request.query_params)
        if query:
            inbound["query"] = _redact(query)
        if body is not None:
            inbound["body"] = _redact(body)

        start = time.perf_counter()
        error_id = None
        try:
            response = await call_next(request)
        except Exception as exc:
            error_id = str(uuid.uuid4())
            logger.exception(json.dumps({"req_id": req_id, "error_id": error_id}))
            capture_exception(exc, route=request.url.path, error_id=error_id)
            payload = err("INTERNAL", "Internal Server Error")
            payload["error_id"] = error_id
            response = JSONResponse(payload, status_code=500)
        dur_ms = int((time.perf_counter() - start) * 1000)
        status = response.status_code
        if status >= 400:
            http_errors_total.labels(status=str(status)).inc()

        outbound = {
            "req_id": req_id,
            "route": request.url.path,
            "status": status,
            "latency_ms": dur_ms,
        }
        if error_id:
            outbound["error_id"] = error_id

        if status < 400:
            should_log = random.random() < LOG_SAMPLE_2XX
        elif status < 500:
            should_log = random.random() < LOG_SAMPLE_4XX
        else:
            should_log = True

        if should_log:
            logger.info(json.dumps(inbound))
            extra = {"route": request.url.path, "status": status, "latency_ms": dur_ms}
            if status >= 500:
                logger.error(json.dumps(outbound), extra=extra)
            else:
                logger.info(json.dumps(outbound), extra=extra)

        response.headers.setdefault("X-Request-ID", req_id)
        return response
