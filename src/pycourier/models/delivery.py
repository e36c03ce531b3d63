"""Delivery lifecycle models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pycourier.models._base import CourierBaseModel
from pycourier.models.order import ActiveOrder
from pycourier.models.user import DriverProfile


class DeliveryStage(StrEnum):
    """Where a driver is between discovering work and finishing it.

    Stages move strictly forward along :data:`STAGE_ORDER`; ``CANCELLED``
    is the only escape and is reachable from any non-terminal stage once
    an order is bound.
    """

    DISCOVERING = "discovering"
    ACCEPTED = "accepted"
    ARRIVED_PICKUP = "arrived_pickup"
    PICKED_UP = "picked_up"
    ARRIVED_DROPOFF = "arrived_dropoff"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStage.COMPLETED, DeliveryStage.CANCELLED)

    @property
    def is_active(self) -> bool:
        """An order is bound and still being worked on."""
        return self not in (DeliveryStage.DISCOVERING, DeliveryStage.COMPLETED, DeliveryStage.CANCELLED)

    @property
    def successor(self) -> DeliveryStage | None:
        try:
            index = STAGE_ORDER.index(self)
        except ValueError:
            return None
        if index + 1 >= len(STAGE_ORDER):
            return None
        return STAGE_ORDER[index + 1]


STAGE_ORDER: tuple[DeliveryStage, ...] = (
    DeliveryStage.DISCOVERING,
    DeliveryStage.ACCEPTED,
    DeliveryStage.ARRIVED_PICKUP,
    DeliveryStage.PICKED_UP,
    DeliveryStage.ARRIVED_DROPOFF,
    DeliveryStage.DELIVERED,
    DeliveryStage.COMPLETED,
)


class VerificationData(BaseModel):
    """Evidence collected at pickup or dropoff."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    photos: tuple[str, ...] = ()
    video: str | None = None
    notes: str = ""
    package_condition: str | None = None
    weight: float | None = None
    contact_person_verified: bool = False
    recipient_name: str = ""
    recipient_signature: str | None = None
    delivery_token: str | None = None
    token_verified: bool = False

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class DeliveryReview(BaseModel):
    """Driver's rating of the finished delivery."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    rating: int = Field(ge=1, le=5)
    categories: dict[str, int] = Field(default_factory=dict)
    comment: str = ""


class AcceptResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    active_order: ActiveOrder
    user: DriverProfile | None = None


class AcceptResponse(CourierBaseModel):
    """Raw shape returned by the acceptance endpoint."""

    order: dict[str, Any] = Field(default_factory=dict)
    user: DriverProfile | None = None


class CompletionResult(CourierBaseModel):
    user: DriverProfile | None = None
    earnings: float | None = None
    next_action: str | None = None


class LifecycleSnapshot(BaseModel):
    """Read-only projection of the lifecycle for UI collaborators."""

    model_config = ConfigDict(frozen=True)

    stage: DeliveryStage
    active_order: ActiveOrder | None = None
    accepted_at: datetime | None = None
    completed_at: datetime | None = None
    is_in_pickup_geofence: bool = False
    is_in_dropoff_geofence: bool = False
    pickup_proximity_warnings: frozenset[int] = frozenset()
    dropoff_proximity_warnings: frozenset[int] = frozenset()
    pickup_verification: VerificationData | None = None
    delivery_verification: VerificationData | None = None

    @property
    def is_on_active_delivery(self) -> bool:
        return self.stage.is_active
