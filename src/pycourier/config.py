"""Client configuration for pycourier."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pycourier._constants import (
    BASE_URL,
    GEOFENCE_RADIUS_M,
    NAVIGATION_GUARD_WINDOW_SECONDS,
    PAYOUT_POLL_INTERVAL_SECONDS,
    PAYOUT_POLL_MAX_ERRORS,
    PAYOUT_POLL_TIMEOUT_SECONDS,
    SCAN_DURATION_SECONDS,
    SCAN_TICK_SECONDS,
)
from pycourier.exceptions import CourierConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class CourierConfig:
    """Client and core configuration.

    Parameters
    ----------
    access_token : str or None
        Bearer token for the driver API. Required for any remote call.
    base_url : str
        API base URL, without trailing slash.
    request_timeout : float
        Total timeout for a single HTTP request in seconds.
    scan_duration : int
        Length of an area scan countdown in ticks.
    scan_tick : float
        Seconds per scan countdown tick.
    payout_poll_interval : float
        Seconds between two payout status polls.
    payout_poll_timeout : float
        Wall-clock ceiling per watched payout, in seconds.
    payout_poll_max_errors : int
        Consecutive poll errors tolerated before a payout watch is dropped.
    navigation_guard_window : float
        Seconds a navigation guard stays valid after ``set()``.
    geofence_radius_m : float
        Radius around pickup/dropoff within which arrival is allowed.
    location_tracking_enabled : bool
        Run the background location tracker while a delivery is active.
    api_trace_enabled : bool
        Log redacted request/response bodies at DEBUG level.
    """

    access_token: str | None = None
    base_url: str = BASE_URL
    request_timeout: float = 15.0
    scan_duration: int = SCAN_DURATION_SECONDS
    scan_tick: float = SCAN_TICK_SECONDS
    payout_poll_interval: float = PAYOUT_POLL_INTERVAL_SECONDS
    payout_poll_timeout: float = PAYOUT_POLL_TIMEOUT_SECONDS
    payout_poll_max_errors: int = PAYOUT_POLL_MAX_ERRORS
    navigation_guard_window: float = NAVIGATION_GUARD_WINDOW_SECONDS
    geofence_radius_m: float = GEOFENCE_RADIUS_M
    location_tracking_enabled: bool = True
    api_trace_enabled: bool = False

    def __post_init__(self) -> None:
        if self.scan_duration <= 0:
            raise CourierConfigError(f"scan_duration must be positive, got {self.scan_duration}")
        if self.payout_poll_max_errors < 1:
            raise CourierConfigError(f"payout_poll_max_errors must be >= 1, got {self.payout_poll_max_errors}")
        if self.payout_poll_interval < 0 or self.payout_poll_timeout <= 0:
            raise CourierConfigError("payout poll interval/timeout must be positive")
        if self.navigation_guard_window < 0:
            raise CourierConfigError("navigation_guard_window must not be negative")

    @classmethod
    def from_env(cls, **overrides: Any) -> CourierConfig:
        """Create configuration from environment variables.

        Reads ``COURIER_ACCESS_TOKEN``, ``COURIER_BASE_URL`` and the
        optional numeric/boolean ``COURIER_*`` variables. Explicit keyword
        arguments override environment values.
        """
        env = os.environ

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in (
            ("COURIER_ACCESS_TOKEN", "access_token"),
            ("COURIER_BASE_URL", "base_url"),
        ):
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type]] = {
            "COURIER_REQUEST_TIMEOUT": ("request_timeout", float),
            "COURIER_SCAN_DURATION": ("scan_duration", int),
            "COURIER_SCAN_TICK": ("scan_tick", float),
            "COURIER_PAYOUT_POLL_INTERVAL": ("payout_poll_interval", float),
            "COURIER_PAYOUT_POLL_TIMEOUT": ("payout_poll_timeout", float),
            "COURIER_PAYOUT_POLL_MAX_ERRORS": ("payout_poll_max_errors", int),
            "COURIER_NAVIGATION_GUARD_WINDOW": ("navigation_guard_window", float),
            "COURIER_GEOFENCE_RADIUS_M": ("geofence_radius_m", float),
        }
        for env_key, (field_name, caster) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = caster(val)
            except ValueError as exc:
                raise CourierConfigError(f"{env_key} is not a valid {caster.__name__}: {val!r}") from exc

        if "location_tracking_enabled" not in overrides:
            config_kwargs["location_tracking_enabled"] = _env_bool(env.get("COURIER_LOCATION_TRACKING"), True)

        if "api_trace_enabled" not in overrides:
            config_kwargs["api_trace_enabled"] = _env_bool(env.get("COURIER_API_TRACE_ENABLED"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
