"""Location and contact models."""

from __future__ import annotations

import time
from typing import Any

from pydantic import Field, field_validator, model_validator

from pycourier.models._base import CourierBaseModel
from pycourier.models._normalize import extract_coordinates, safe_float, safe_str


class Location(CourierBaseModel):
    """A single position fix.

    Parameters
    ----------
    lat : float
        Latitude in degrees.
    lng : float
        Longitude in degrees.
    accuracy : float
        Horizontal accuracy in metres (``0`` when unknown).
    timestamp : float
        Epoch seconds the fix was taken.
    """

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy: float = 0.0
    timestamp: float = Field(default_factory=time.time)

    @model_validator(mode="before")
    @classmethod
    def _flatten_coordinates(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        coords = extract_coordinates(values)
        if coords is None:
            return values
        merged = dict(values)
        merged["lat"], merged["lng"] = coords
        return merged

    @field_validator("accuracy", mode="before")
    @classmethod
    def _coerce_accuracy(cls, value: Any) -> float:
        parsed = safe_float(value)
        return parsed if parsed is not None and parsed >= 0 else 0.0

    def to_payload(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng, "accuracy": self.accuracy}


class ContactInfo(CourierBaseModel):
    name: str | None = None
    phone: str | None = None
    alternate_phone: str | None = None

    @field_validator("name", "phone", "alternate_phone", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str | None:
        return safe_str(value)


class OrderLocation(CourierBaseModel):
    """A pickup or dropoff point with its on-site contact."""

    address: str | None = None
    landmark: str | None = None
    coordinates: Location | None = None
    contact_person: ContactInfo | None = None
    extra_information: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _coordinates_from_any_shape(cls, values: Any) -> Any:
        if not isinstance(values, dict) or isinstance(values.get("coordinates"), Location):
            return values
        coords = extract_coordinates(values)
        merged = dict(values)
        merged["coordinates"] = {"lat": coords[0], "lng": coords[1]} if coords is not None else None
        return merged
