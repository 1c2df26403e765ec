"""Phone number normalisation for courier requests."""

from __future__ import annotations

import re

# Country calling codes for the courier's markets.
CALLING_CODES: dict[str, str] = {
    "PH": "63",
    "SG": "65",
    "HK": "852",
    "TH": "66",
    "MY": "60",
    "VN": "84",
    "TW": "886",
    "ID": "62",
    "MX": "52",
    "BR": "55",
}

_NON_DIGIT = re.compile(r"\D")
# National significant numbers in these markets are at most 10 digits.
_MAX_NATIONAL_DIGITS = 10


def normalize_phone(phone: str | None, market: str) -> str | None:
    """Return ``phone`` in ``+<country><number>`` form for ``market``.

    Numbers already starting with ``+`` are kept. Local numbers with a trunk
    ``0`` prefix or without a country code are rewritten with the market's
    calling code. Returns ``None`` for blank input.
    """

    if phone is None:
        return None
    trimmed = phone.strip()
    if not trimmed:
        return None
    if trimmed.startswith("+"):
        return "+" + _NON_DIGIT.sub("", trimmed)
    digits = _NON_DIGIT.sub("", trimmed)
    if not digits:
        return None
    if digits.startswith("00"):
        return f"+{digits[2:]}"
    code = CALLING_CODES.get(market.upper())
    if code is None:
        return f"+{digits}"
    if digits.startswith("0"):
        return f"+{code}{digits[1:]}"
    if digits.startswith(code) and len(digits) > _MAX_NATIONAL_DIGITS:
        return f"+{digits}"
    if len(digits) <= _MAX_NATIONAL_DIGITS:
        return f"+{code}{digits}"
    return f"+{digits}"
