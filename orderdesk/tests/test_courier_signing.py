import base64
import hashlib
import hmac
import re
from datetime import datetime, timezone

import pytest

from orderdesk.app.errors import (
    DeliveryRejected,
    QuoteExpired,
    SigningFailure,
    UpstreamUnavailable,
)
from orderdesk.app.providers.courier import (
    auth_headers,
    iso_timestamp,
    language_for_market,
    map_error,
    sign_request,
)


def test_signature_matches_canonical_string():
    body = '{"data":{"serviceType":"MOTORCYCLE"}}'
    ts, sig = sign_request(
        "sk_test", "post", "/v3/quotations", body, timestamp="2025-09-02T10:00:00.000Z"
    )
    raw = f"2025-09-02T10:00:00.000Z\r\nPOST\r\n/v3/quotations\r\n\r\n{body}"
    expected = base64.b64encode(
        hmac.new(b"sk_test", raw.encode(), hashlib.sha256).digest()
    ).decode()
    assert ts == "2025-09-02T10:00:00.000Z"
    assert sig == expected


def test_signature_covers_body():
    _, a = sign_request("sk", "POST", "/v3/orders", "{}", timestamp="t")
    _, b = sign_request("sk", "POST", "/v3/orders", '{"x":1}', timestamp="t")
    assert a != b


def test_missing_secret_is_signing_failure():
    with pytest.raises(SigningFailure):
        sign_request(None, "GET", "/v3/quotations/q1", "")
    with pytest.raises(SigningFailure):
        sign_request("", "GET", "/v3/quotations/q1", "")


def test_timestamp_is_iso_utc_with_millis():
    ts = iso_timestamp(datetime(2025, 9, 2, 10, 0, 1, 234567, tzinfo=timezone.utc))
    assert ts == "2025-09-02T10:00:01.234Z"


def test_auth_headers_shape():
    headers = auth_headers("pk_test", "c2ln", "PH")
    assert headers["Authorization"] == "hmac pk_test:c2ln"
    assert headers["X-LLM-Market"] == "PH"
    assert re.fullmatch(r"srv-[0-9a-f-]{36}", headers["X-Request-Id"])
    assert headers["Content-Type"] == "application/json"


def test_request_ids_are_fresh():
    assert auth_headers("k", "s", "PH")["X-Request-Id"] != auth_headers("k", "s", "PH")["X-Request-Id"]


def test_language_for_market():
    assert language_for_market("ph") == "en_PH"
    assert language_for_market("SG") == "en_SG"
    assert language_for_market("ZZ") == "en_US"


def test_error_mapping():
    assert type(map_error(503, "down")) is UpstreamUnavailable
    rejected = map_error(400, '{"errors":[{"id":"ERR_INVALID_FIELD","message":"bad"}]}')
    assert type(rejected) is DeliveryRejected
    assert rejected.status == 400
    expired = map_error(422, '{"errors":[{"id":"ERR_QUOTATION_EXPIRED","message":"Quotation expired"}]}')
    assert isinstance(expired, QuoteExpired)
    # every provider error carries the body for replay
    assert isinstance(expired, UpstreamUnavailable)
    assert "ERR_QUOTATION_EXPIRED" in expired.details["provider_body"]
