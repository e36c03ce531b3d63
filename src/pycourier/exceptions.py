"""Custom exception hierarchy for pycourier."""

from __future__ import annotations

from enum import StrEnum


class CourierError(Exception):
    """Base exception for all pycourier errors."""


class CourierConfigError(CourierError):
    """Invalid or missing configuration."""


class CourierTransportError(CourierError):
    """HTTP-level failure (network, 5xx, timeout, invalid JSON).

    Always transient from the caller's point of view: retrying the same
    call later is safe.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class CourierApiError(CourierError):
    """Backend answered but refused the request (4xx or ``success: false``)."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        super().__init__(message)


class RemoteRejectionError(CourierApiError):
    """Backend rejected a state-changing request (e.g. order already claimed).

    The message is meant to be shown to the driver verbatim.
    """


class LocationFailure(StrEnum):
    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"


class LocationUnavailableError(CourierError):
    """No usable device location fix.

    Reported distinctly from network failures so the caller can prompt
    for location instead of retrying blindly.
    """

    def __init__(self, message: str = "Location unavailable", *, reason: LocationFailure = LocationFailure.UNAVAILABLE) -> None:
        self.reason = reason
        super().__init__(message)


class LocationPermissionDeniedError(LocationUnavailableError):
    """The platform refused location access."""

    def __init__(self, message: str = "Location permission denied") -> None:
        super().__init__(message, reason=LocationFailure.PERMISSION_DENIED)


class ScanBusyError(CourierError):
    """Another scan session is already running."""


class InvariantViolationError(CourierError):
    """A programming-contract failure.

    Raised when a caller asks for something the state machine forbids
    (accepting a second order, starting a running scan, ...). Never
    user-recoverable and never converted into a user-facing message.
    """


class IllegalTransitionError(InvariantViolationError):
    """Requested delivery/scan transition is not allowed from the current state."""

    def __init__(self, message: str, *, current: str = "", requested: str = "") -> None:
        self.current = current
        self.requested = requested
        super().__init__(message)


class OutsideGeofenceError(CourierError):
    """The driver is too far from the pickup/dropoff point to mark arrival."""

    def __init__(self, message: str, *, distance_m: float, radius_m: float) -> None:
        self.distance_m = distance_m
        self.radius_m = radius_m
        super().__init__(message)
