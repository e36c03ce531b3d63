"""Data models for the driver API and the delivery core."""

from pycourier.models._base import CourierBaseModel, CourierEnum, Timestamp, parse_epoch
from pycourier.models.delivery import (
    STAGE_ORDER,
    AcceptResponse,
    AcceptResult,
    CompletionResult,
    DeliveryReview,
    DeliveryStage,
    LifecycleSnapshot,
    VerificationData,
)
from pycourier.models.location import ContactInfo, Location, OrderLocation
from pycourier.models.order import ActiveOrder, DiscoveredOrder, OrderPriority, PackageInfo, Pricing
from pycourier.models.payout import PayoutStatus, PayoutStatusResult
from pycourier.models.scan import (
    PriorityFilter,
    ScanArea,
    ScanPhase,
    ScanResult,
    ScanSessionState,
    ScanSettings,
)
from pycourier.models.user import DriverProfile

__all__ = [
    "AcceptResponse",
    "AcceptResult",
    "ActiveOrder",
    "CompletionResult",
    "ContactInfo",
    "CourierBaseModel",
    "CourierEnum",
    "DeliveryReview",
    "DeliveryStage",
    "DiscoveredOrder",
    "DriverProfile",
    "LifecycleSnapshot",
    "Location",
    "OrderLocation",
    "OrderPriority",
    "PackageInfo",
    "PayoutStatus",
    "PayoutStatusResult",
    "Pricing",
    "PriorityFilter",
    "ScanArea",
    "ScanPhase",
    "ScanResult",
    "ScanSessionState",
    "ScanSettings",
    "STAGE_ORDER",
    "Timestamp",
    "VerificationData",
    "parse_epoch",
]
