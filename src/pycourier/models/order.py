"""Delivery order models (discovered offers and the bound active order)."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, Field, field_validator, model_validator

from pycourier.models._base import CourierBaseModel, CourierEnum, Timestamp
from pycourier.models._normalize import safe_float, safe_str
from pycourier.models.location import OrderLocation


class OrderPriority(CourierEnum):
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"
    UNKNOWN = "unknown"


class PackageInfo(CourierBaseModel):
    category: str | None = None
    description: str | None = None
    weight: float | None = None
    quantity: int | None = None
    is_fragile: bool = False

    @field_validator("weight", mode="before")
    @classmethod
    def _coerce_weight(cls, value: Any) -> float | None:
        return safe_float(value)


class Pricing(CourierBaseModel):
    total_amount: float | None = None
    currency: str = "NGN"
    driver_earnings: float | None = None

    @field_validator("total_amount", "driver_earnings", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> float | None:
        return safe_float(value)


def _vehicle_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value if item)


def _flatten_order_payload(values: dict[str, Any]) -> dict[str, Any]:
    """Lift nested ``location.pickUp``/``location.dropOff`` and pricing totals."""
    merged = dict(values)
    location = values.get("location")
    if isinstance(location, dict):
        merged.setdefault("pickup", location.get("pickUp") or location.get("pickup"))
        merged.setdefault("dropoff", location.get("dropOff") or location.get("dropoff"))
    if "package" not in merged and isinstance(values.get("packageDetails"), dict):
        merged["package"] = values["packageDetails"]
    return merged


class DiscoveredOrder(CourierBaseModel):
    """An offer visible to the driver before acceptance.

    Only ever lives inside a tab cache entry or a scan result.
    """

    id: str = Field(validation_alias=AliasChoices("_id", "id", "orderId"))
    order_ref: str | None = None
    distance_km: float | None = Field(default=None, validation_alias=AliasChoices("distanceKm", "distance", "distance_km"))
    priority: OrderPriority = OrderPriority.NORMAL
    vehicle_requirements: tuple[str, ...] = ()
    pricing_total: float | None = Field(
        default=None,
        validation_alias=AliasChoices("pricingTotal", "price", "pricing_total", "totalAmount"),
    )
    pickup: OrderLocation | None = None
    dropoff: OrderLocation | None = None
    package: PackageInfo | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        merged = _flatten_order_payload(values)
        pricing = values.get("pricing")
        if isinstance(pricing, dict) and "pricingTotal" not in merged and "price" not in merged:
            merged["pricingTotal"] = pricing.get("totalAmount")
        return merged

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        text = safe_str(value)
        if text is None:
            raise ValueError("order id must be non-empty")
        return text

    @field_validator("distance_km", "pricing_total", mode="before")
    @classmethod
    def _coerce_numbers(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("vehicle_requirements", mode="before")
    @classmethod
    def _coerce_vehicles(cls, value: Any) -> tuple[str, ...]:
        return _vehicle_tuple(value)


class ActiveOrder(CourierBaseModel):
    """The order bound to the driver between acceptance and reset."""

    id: str = Field(validation_alias=AliasChoices("_id", "id", "orderId"))
    order_ref: str | None = None
    status: str | None = None
    priority: OrderPriority = OrderPriority.NORMAL
    pickup: OrderLocation | None = None
    dropoff: OrderLocation | None = None
    package: PackageInfo | None = None
    pricing: Pricing | None = None
    vehicle_requirements: tuple[str, ...] = ()
    accepted_at: Timestamp = None

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        return _flatten_order_payload(values)

    @field_validator("vehicle_requirements", mode="before")
    @classmethod
    def _coerce_vehicles(cls, value: Any) -> tuple[str, ...]:
        return _vehicle_tuple(value)

    @classmethod
    def from_acceptance(cls, candidate: DiscoveredOrder, bound: dict[str, Any] | None) -> ActiveOrder:
        """Build the active order from the accepted candidate and the server's bound order.

        Server fields win; the candidate fills whatever the server omitted.
        """
        payload: dict[str, Any] = {
            "id": candidate.id,
            "orderRef": candidate.order_ref,
            "priority": candidate.priority.value,
            "vehicleRequirements": list(candidate.vehicle_requirements),
        }
        if candidate.pickup is not None:
            payload["pickup"] = candidate.pickup
        if candidate.dropoff is not None:
            payload["dropoff"] = candidate.dropoff
        if candidate.package is not None:
            payload["package"] = candidate.package
        if candidate.pricing_total is not None:
            payload["pricing"] = {"totalAmount": candidate.pricing_total}
        if bound:
            server = CourierBaseModel._clean_dict(_flatten_order_payload(bound))
            server.pop("location", None)
            payload.update(server)
        payload.setdefault("acceptedAt", datetime.now(UTC))
        payload["raw"] = dict(bound) if bound else dict(candidate.raw)
        return cls.model_validate(payload)
