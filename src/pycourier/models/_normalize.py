"""Normalization helpers.

Centralizes defensive parsing of loosely typed backend values.
"""

from __future__ import annotations

import math
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, str):
        # "1.2km", "₦2,500"
        value = "".join(ch for ch in value if ch.isdigit() or ch in ".-")
        if not value:
            return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def extract_coordinates(value: Any) -> tuple[float, float] | None:
    """Return ``(lat, lng)`` from any of the coordinate shapes the backend emits.

    Accepted shapes::

        {"lat": .., "lng": ..}
        {"latitude": .., "longitude": ..}
        {"coordinates": {"lat": .., "lng": ..}}
        {"coordinates": {"type": "Point", "coordinates": [lng, lat]}}
        {"coordinates": [lng, lat]}
    """
    if not isinstance(value, dict):
        return None

    for lat_key, lng_key in (("lat", "lng"), ("latitude", "longitude")):
        lat = value.get(lat_key)
        lng = value.get(lng_key)
        if _is_number(lat) and _is_number(lng):
            return float(lat), float(lng)

    coords = value.get("coordinates")
    if isinstance(coords, dict):
        if _is_number(coords.get("lat")) and _is_number(coords.get("lng")):
            return float(coords["lat"]), float(coords["lng"])
        coords = coords.get("coordinates")
    # GeoJSON order is [lng, lat].
    if isinstance(coords, (list, tuple)) and len(coords) == 2:
        lng, lat = coords
        if _is_number(lat) and _is_number(lng):
            return float(lat), float(lng)
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)
