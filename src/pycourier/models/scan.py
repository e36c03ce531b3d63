"""Scan settings and area-scan state models."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pycourier.models.location import Location
from pycourier.models.order import DiscoveredOrder


class ScanArea(StrEnum):
    CURRENT = "current"
    TERRITORIAL = "territorial"


class PriorityFilter(StrEnum):
    ALL = "all"
    HIGH_PRIORITY = "high_priority"
    URGENT = "urgent"


class ScanSettings(BaseModel):
    """Driver-configurable discovery filters.

    The defaults are also the values :meth:`ScanSettingsStore.reset`
    restores.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_default=True,
    )

    area: ScanArea = ScanArea.CURRENT
    radius: float = Field(default=5, gt=0)
    """Search radius in km, only sent when ``area`` is ``current``."""
    max_distance: float = Field(default=10, gt=0)
    """Maximum pickup distance in km."""
    vehicle_filter: tuple[str, ...] = ()
    priority_filter: PriorityFilter = PriorityFilter.ALL

    @field_validator("vehicle_filter", mode="before")
    @classmethod
    def _dedupe_vehicles(cls, value: Any) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        seen: dict[str, None] = {}
        for item in value:
            text = str(item).strip()
            if text:
                seen.setdefault(text, None)
        return tuple(seen)

    def to_query(self, origin: Location) -> dict[str, str | float]:
        """Build the discovery query parameters for *origin*.

        ``None`` entries are omitted instead of being sent as empty strings.
        """
        params: dict[str, str | float | None] = {
            "lat": origin.lat,
            "lng": origin.lng,
            "area": self.area.value,
            "radius": self.radius if self.area == ScanArea.CURRENT else None,
            "vehicleFilter": ",".join(self.vehicle_filter) if self.vehicle_filter else None,
            "priorityFilter": self.priority_filter.value,
            "maxDistance": self.max_distance,
        }
        return {key: value for key, value in params.items() if value is not None}


class ScanPhase(StrEnum):
    IDLE = "idle"
    SCANNING = "scanning"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ScanResult(BaseModel):
    """Outcome of one completed area scan."""

    model_config = ConfigDict(frozen=True)

    success: bool
    count: int = Field(default=0, ge=0)
    message: str = ""
    orders: tuple[DiscoveredOrder, ...] = ()


class ScanSessionState(BaseModel):
    """Read-only snapshot of a scan session for the UI."""

    model_config = ConfigDict(frozen=True)

    phase: ScanPhase = ScanPhase.IDLE
    seconds_left: int = Field(default=30, ge=0)
    result: ScanResult | None = None

    @property
    def is_scanning(self) -> bool:
        return self.phase == ScanPhase.SCANNING
