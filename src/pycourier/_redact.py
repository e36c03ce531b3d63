"""Scrub driver API payloads before they reach DEBUG logs.

Credentials and delivery tokens are dropped outright. Customer phone
numbers keep their last four digits so a support engineer can still match
a call, and coordinates are coarsened to roughly a hundred metres.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

REDACTED = "<redacted>"

_MAX_DEPTH = 20
_COORDINATE_PLACES = 3

_SECRET_KEYS = frozenset(
    {
        "password",
        "pin",
        "token",
        "accesstoken",
        "refreshtoken",
        "authorization",
        "cookie",
        "deliverytoken",
        "recipientsignature",
        "accountnumber",
    }
)
_PHONE_KEYS = frozenset({"phone", "phonenumber", "alternatephone", "contactphone"})
_COORDINATE_KEYS = frozenset({"lat", "lng", "latitude", "longitude"})


def _field_name(key: object) -> str:
    return str(key).lower().replace("_", "").replace("-", "")


def mask_phone(value: Any) -> str:
    """Keep the last four digits of a phone number, or nothing for short ones."""
    digits = "".join(ch for ch in str(value) if ch.isdigit())
    if len(digits) <= 4:
        return REDACTED
    return f"***{digits[-4:]}"


def redact_for_log(value: Any, *, max_string: int = 512) -> Any:
    """Return a scrubbed copy of *value*; the original is never modified."""
    return _scrub(value, max_string, 0)


def _scrub(value: Any, max_string: int, depth: int) -> Any:
    if depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        if len(value) <= max_string:
            return value
        return f"{value[:max_string]}…<truncated {len(value) - max_string} chars>"
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if isinstance(value, Mapping):
        return {str(key): _scrub_field(key, item, max_string, depth + 1) for key, item in value.items()}
    if isinstance(value, Sequence):
        return [_scrub(item, max_string, depth + 1) for item in value]
    return repr(value)


def _scrub_field(key: object, value: Any, max_string: int, depth: int) -> Any:
    if value is None:
        return None
    name = _field_name(key)
    if name in _SECRET_KEYS:
        return REDACTED
    if name in _PHONE_KEYS:
        return mask_phone(value)
    if name in _COORDINATE_KEYS and isinstance(value, (int, float)) and not isinstance(value, bool):
        return round(value, _COORDINATE_PLACES)
    return _scrub(value, max_string, depth)
