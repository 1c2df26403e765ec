import json
import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from orderdesk.app.middlewares.logging import LoggingMiddleware
from orderdesk.app.middlewares.request_id import RequestIdMiddleware
from orderdesk.app.obs.errors import scrub_event
from orderdesk.app.obs.logging import JsonFormatter, configure_logging
from orderdesk.app.obs.queries import _table


def _make_app():
    test_app = FastAPI()
    test_app.add_middleware(LoggingMiddleware)
    test_app.add_middleware(RequestIdMiddleware)

    @test_app.get("/health")
    async def health():
        return {"ok": True}

    @test_app.post("/echo")
    async def echo(data: dict):
        return data

    @test_app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    return test_app


def _api_messages(caplog):
    return [json.loads(r.getMessage()) for r in caplog.records if r.name == "api"]


def test_request_id_propagation(monkeypatch, caplog):
    monkeypatch.setattr("orderdesk.app.middlewares.logging.LOG_SAMPLE_2XX", 1)
    client = TestClient(_make_app())
    with caplog.at_level(logging.INFO, logger="api"):
        resp = client.get("/health", headers={"X-Request-ID": "abc"})
    assert resp.headers["X-Request-ID"] == "abc"
    inbound, outbound = _api_messages(caplog)
    assert inbound["req_id"] == "abc"
    assert outbound["status"] == 200


def test_malformed_request_id_replaced():
    client = TestClient(_make_app())
    resp = client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
    assert resp.headers["X-Request-ID"] != "bad id with spaces"
    assert len(resp.headers["X-Request-ID"]) == 36


def test_body_redaction(monkeypatch, caplog):
    monkeypatch.setattr("orderdesk.app.middlewares.logging.LOG_SAMPLE_2XX", 1)
    client = TestClient(_make_app())
    payload = {
        "customer_name": "Ana Cruz",
        "contact_number": "09171234567",
        "cart": [{"name": "Shake", "quantity": 2}],
        "delivery": {"address": "22 Mabini St"},
        "recipientPhone": "+639171234567",
    }
    with caplog.at_level(logging.INFO, logger="api"):
        resp = client.post("/echo", json=payload)
    assert resp.json() == payload
    body = _api_messages(caplog)[0]["body"]
    assert body["customer_name"] == "***"
    assert body["contact_number"] == "***"
    assert body["delivery"]["address"] == "***"
    assert body["recipientPhone"] == "***"
    assert body["cart"][0]["quantity"] == 2


def test_2xx_sampled_out(monkeypatch, caplog):
    monkeypatch.setattr("orderdesk.app.middlewares.logging.LOG_SAMPLE_2XX", 0)
    client = TestClient(_make_app())
    with caplog.at_level(logging.INFO, logger="api"):
        client.get("/health")
    assert _api_messages(caplog) == []


def test_unhandled_error_logged_and_counted(monkeypatch, caplog):
    monkeypatch.setattr("orderdesk.app.middlewares.logging.LOG_SAMPLE_2XX", 0)
    before = REGISTRY.get_sample_value("http_errors_total", {"status": "500"}) or 0
    client = TestClient(_make_app())
    with caplog.at_level(logging.INFO, logger="api"):
        resp = client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["ok"] is False
    assert body["error_id"]
    assert REGISTRY.get_sample_value("http_errors_total", {"status": "500"}) == before + 1
    assert any(r.levelno == logging.ERROR for r in caplog.records if r.name == "api")


def test_json_logger_redaction():
    formatter = JsonFormatter()
    record = logging.LogRecord(
        "orderdesk.intake",
        logging.INFO,
        __file__,
        0,
        "order ORD-20250902-0001 for 09171234567 / +639171234567 mail ana@example.com",
        (),
        None,
    )
    record.order_id = "o-1"
    data = json.loads(formatter.format(record))
    msg = data["msg"]
    assert "ORD-20250902-0001" in msg
    assert "09171234567" not in msg
    assert "639171234567" not in msg
    assert "ana@example.com" not in msg
    assert data["order_id"] == "o-1"
    assert data["logger"] == "orderdesk.intake"


def test_configure_logging_installs_json_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging("debug")
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        configure_logging("nonsense")
        assert root.level == logging.INFO
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def test_courier_credentials_redacted():
    formatter = JsonFormatter()
    record = logging.LogRecord(
        "orderdesk.delivery",
        logging.WARNING,
        __file__,
        0,
        "rejected Authorization: hmac pk_test:c2lnbmF0dXJl== body=%s",
        ("{}",),
        None,
    )
    msg = json.loads(formatter.format(record))["msg"]
    assert "pk_test" not in msg
    assert "c2lnbmF0dXJl" not in msg
    assert "hmac ***" in msg


def test_sentry_events_scrubbed():
    event = {
        "request": {
            "headers": {"Authorization": "hmac pk:sig", "User-Agent": "ua"},
            "data": {"customer_name": "Ana", "cart": [{"name": "Shake"}]},
        },
        "extra": {"contact_number": "0917"},
    }
    scrubbed = scrub_event(event)
    assert scrubbed["request"]["headers"] == {"Authorization": "[Filtered]", "User-Agent": "ua"}
    assert scrubbed["request"]["data"]["customer_name"] == "[Filtered]"
    assert scrubbed["request"]["data"]["cart"] == [{"name": "Shake"}]
    assert scrubbed["extra"]["contact_number"] == "[Filtered]"


def test_query_table_labels():
    assert _table('INSERT INTO orders (id) VALUES (?)') == "orders"
    assert _table('SELECT count(*) FROM "rate_limit_entries" WHERE x') == "rate_limit_entries"
    assert _table("PRAGMA main.table_info(orders)") == "other"
