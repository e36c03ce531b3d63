"""Driver session state and its persistence collaborator."""

from __future__ import annotations

import time
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from pycourier.models.user import DriverProfile

#: Default access token time-to-live in seconds (12 hours).
DEFAULT_SESSION_TTL: float = 12 * 3600


class DriverSession(BaseModel):
    """Authenticated driver session.

    Parameters
    ----------
    access_token : str
        Bearer token sent with every request.
    user : DriverProfile or None
        Latest driver record returned by the backend.
    created_at : float
        Monotonic timestamp (``time.monotonic()``) when the session
        was created. Defaults to *now* if not provided.
    ttl : float
        Time-to-live in seconds.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_default=True,
        str_strip_whitespace=True,
    )

    access_token: str
    user: DriverProfile | None = None
    created_at: float = Field(default_factory=time.monotonic)
    ttl: float = DEFAULT_SESSION_TTL

    @property
    def is_expired(self) -> bool:
        """Whether the session has exceeded its TTL."""
        return (time.monotonic() - self.created_at) >= self.ttl

    @property
    def age(self) -> float:
        """Seconds since the session was created."""
        return time.monotonic() - self.created_at

    def with_user(self, user: DriverProfile) -> DriverSession:
        return self.model_copy(update={"user": user})


class SessionPersistence(Protocol):
    """Call-and-await sink for updated driver records.

    The storage format is the implementer's business; the core only awaits
    the call after acceptance and after the review step.
    """

    async def save_user(self, user: DriverProfile) -> None:
        ...


class InMemorySessionPersistence:
    """Keeps the latest driver record in memory."""

    def __init__(self, session: DriverSession | None = None) -> None:
        self._session = session
        self._user: DriverProfile | None = session.user if session is not None else None
        self.saves = 0

    @property
    def session(self) -> DriverSession | None:
        return self._session

    @property
    def user(self) -> DriverProfile | None:
        return self._user

    async def save_user(self, user: DriverProfile) -> None:
        self._user = user
        self.saves += 1
        if self._session is not None:
            self._session = self._session.with_user(user)
