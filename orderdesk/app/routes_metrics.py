# routes_metrics.py

"""Prometheus metrics and /metrics endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# Counters
orders_created_total = Counter(
    "orders_created_total", "Total orders created", ["service_type"]
)
for _svc in ("dine-in", "pickup", "delivery"):
    orders_created_total.labels(service_type=_svc).inc(0)

order_commit_retries_total = Counter(
    "order_commit_retries_total", "Order commits retried after a conflict"
)
order_commit_retries_total.inc(0)

rate_limit_denied_total = Counter(
    "rate_limit_denied_total", "Gated actions denied by cooldown", ["action_kind", "tier"]
)
rate_limit_denied_total.labels(action_kind="order_placement", tier="advisory").inc(0)

status_transitions_total = Counter(
    "status_transitions_total", "Order status transitions applied", ["status"]
)
status_transitions_total.labels(status="pending").inc(0)

delivery_quotes_total = Counter(
    "delivery_quotes_total", "Courier quotations requested", ["outcome"]
)
delivery_quotes_total.labels(outcome="ok").inc(0)

delivery_bookings_total = Counter(
    "delivery_bookings_total", "Courier bookings attempted", ["outcome"]
)
delivery_bookings_total.labels(outcome="ok").inc(0)

http_errors_total = Counter("http_errors_total", "Total HTTP errors", ["status"])
http_errors_total.labels(status="0").inc(0)

db_query_seconds = Histogram(
    "db_query_seconds",
    "Statement latency on the orders database",
    ["db", "table"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

sse_clients_gauge = Gauge("sse_clients", "Connected order stream clients")
sse_clients_gauge.set(0)

change_subscribers_gauge = Gauge(
    "change_subscribers", "Local subscribers of the order change notifier"
)
change_subscribers_gauge.set(0)

router = APIRouter()


@router.get("/metrics")
async def metrics_endpoint(request: Request) -> Response:
    """Expose Prometheus metrics."""
    notifier = getattr(request.app.state, "notifier", None)
    if notifier is not None:
        change_subscribers_gauge.set(notifier.subscriber_count)
    data = generate_latest()
    return Response(data, media_type=CONTENT_TYPE_LATEST)
