import pytest

from orderdesk.app.utils.phone import normalize_phone


@pytest.mark.parametrize(
    "raw,market,expected",
    [
        ("09171234567", "PH", "+639171234567"),
        ("0917 123 4567", "PH", "+639171234567"),
        ("9171234567", "PH", "+639171234567"),
        ("639171234567", "PH", "+639171234567"),
        ("+63 917-123-4567", "PH", "+639171234567"),
        ("0063 917 123 4567", "PH", "+639171234567"),
        ("91234567", "SG", "+6591234567"),
        ("12345678", "ZZ", "+12345678"),
    ],
)
def test_normalize_phone(raw, market, expected):
    assert normalize_phone(raw, market) == expected


def test_blank_phone():
    assert normalize_phone("", "PH") is None
    assert normalize_phone("   ", "PH") is None
    assert normalize_phone(None, "PH") is None
