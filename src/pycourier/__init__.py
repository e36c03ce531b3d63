"""pycourier - Async driver-side core for a courier delivery platform."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pycourier")
except PackageNotFoundError:
    __version__ = "0+local"
from pycourier.client import CourierClient, DeliveryApi
from pycourier.config import CourierConfig
from pycourier.core import DriverCore
from pycourier.exceptions import (
    CourierApiError,
    CourierConfigError,
    CourierError,
    CourierTransportError,
    IllegalTransitionError,
    InvariantViolationError,
    LocationFailure,
    LocationPermissionDeniedError,
    LocationUnavailableError,
    OutsideGeofenceError,
    RemoteRejectionError,
    ScanBusyError,
)
from pycourier.lifecycle import DeliveryLifecycle
from pycourier.location import LocationProvider, LocationTracker, haversine_m, proximity_tier
from pycourier.models import (
    ActiveOrder,
    DeliveryReview,
    DeliveryStage,
    DiscoveredOrder,
    DriverProfile,
    Location,
    PayoutStatus,
    PayoutStatusResult,
    ScanPhase,
    ScanResult,
    ScanSettings,
    VerificationData,
)
from pycourier.navigation import NavigationGuard
from pycourier.polling import PayoutPoller, PollingManager, PollOutcome, PollState
from pycourier.scan import ScanCoordinator, ScanSession, ScanSettingsStore
from pycourier.session import DriverSession, InMemorySessionPersistence, SessionPersistence
from pycourier.tab_cache import TabOrderCache, TabOrderCacheEntry

__all__ = [
    "__version__",
    "ActiveOrder",
    "CourierApiError",
    "CourierClient",
    "CourierConfig",
    "CourierConfigError",
    "CourierError",
    "CourierTransportError",
    "DeliveryApi",
    "DeliveryLifecycle",
    "DeliveryReview",
    "DeliveryStage",
    "DiscoveredOrder",
    "DriverCore",
    "DriverProfile",
    "DriverSession",
    "IllegalTransitionError",
    "InMemorySessionPersistence",
    "InvariantViolationError",
    "Location",
    "LocationFailure",
    "LocationPermissionDeniedError",
    "LocationProvider",
    "LocationTracker",
    "LocationUnavailableError",
    "NavigationGuard",
    "OutsideGeofenceError",
    "PayoutPoller",
    "PayoutStatus",
    "PayoutStatusResult",
    "PollOutcome",
    "PollState",
    "PollingManager",
    "RemoteRejectionError",
    "ScanBusyError",
    "ScanCoordinator",
    "ScanPhase",
    "ScanResult",
    "ScanSession",
    "ScanSettings",
    "ScanSettingsStore",
    "SessionPersistence",
    "TabOrderCache",
    "TabOrderCacheEntry",
    "VerificationData",
    "haversine_m",
    "proximity_tier",
]
