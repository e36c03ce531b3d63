"""Driver profile model."""

from __future__ import annotations

from pydantic import AliasChoices, Field

from pycourier.models._base import CourierBaseModel


class DriverProfile(CourierBaseModel):
    """The driver/user record the backend returns after state changes.

    Only a handful of fields are typed; the full record stays in ``raw``
    and is what gets persisted.
    """

    id: str | None = Field(default=None, validation_alias=AliasChoices("_id", "id", "userId"))
    full_name: str | None = None
    email: str | None = None
    role: str | None = None
    availability: str | None = None
