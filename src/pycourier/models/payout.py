"""Payout status model."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, Field, field_validator

from pycourier.models._base import CourierBaseModel, CourierEnum, Timestamp
from pycourier.models._normalize import safe_float


class PayoutStatus(CourierEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"


_IN_FLIGHT = frozenset({PayoutStatus.PENDING, PayoutStatus.PROCESSING})


class PayoutStatusResult(CourierBaseModel):
    """Status of one payout request."""

    payout_id: str | None = Field(default=None, validation_alias=AliasChoices("payoutId", "_id", "id", "payout_id"))
    status: PayoutStatus = PayoutStatus.UNKNOWN
    amount: float | None = None
    reference: str | None = None
    failure_reason: str | None = None
    updated_at: Timestamp = None

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> float | None:
        return safe_float(value)

    @property
    def is_pending(self) -> bool:
        """Whether the payout is still moving through the payment provider."""
        return self.status in _IN_FLIGHT
