"""Position fixes: the provider protocol, distance math and background tracking."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from typing import Protocol

from pycourier._constants import (
    EARTH_RADIUS_M,
    PROXIMITY_WARNING_TIERS_M,
    TRACKING_INTERVAL_IDLE,
    TRACKING_INTERVAL_MOVING,
    TRACKING_INTERVAL_NAVIGATING,
    TRACKING_INTERVAL_WAITING,
)
from pycourier.exceptions import LocationUnavailableError
from pycourier.models.delivery import DeliveryStage
from pycourier.models.location import Location

_logger = logging.getLogger(__name__)

FixCallback = Callable[[Location], Awaitable[None]]
FailureCallback = Callable[[LocationUnavailableError, int], Awaitable[None]]


class LocationProvider(Protocol):
    """Source of the device position.

    Implementations raise :class:`~pycourier.exceptions.LocationPermissionDeniedError`
    when access was refused and :class:`~pycourier.exceptions.LocationUnavailableError`
    when no fix could be obtained.
    """

    async def get_current_location(self) -> Location: ...


def haversine_m(a: Location, b: Location) -> float:
    """Great-circle distance between two fixes in metres."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)
    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def proximity_tier(distance_m: float) -> int | None:
    """The tightest warning tier *distance_m* falls within, if any."""
    for tier in PROXIMITY_WARNING_TIERS_M:
        if distance_m <= tier:
            return tier
    return None


def tracking_interval(stage: DeliveryStage, *, navigating: bool = False) -> float:
    """Seconds between fixes for the given delivery stage."""
    if navigating:
        return TRACKING_INTERVAL_NAVIGATING
    if stage in (DeliveryStage.ACCEPTED, DeliveryStage.PICKED_UP):
        return TRACKING_INTERVAL_MOVING
    if stage in (DeliveryStage.ARRIVED_PICKUP, DeliveryStage.ARRIVED_DROPOFF):
        return TRACKING_INTERVAL_WAITING
    return TRACKING_INTERVAL_IDLE


class LocationTracker:
    """Samples the provider in the background at a caller-chosen interval.

    The interval is re-read before every sleep, so a stage change takes
    effect from the next fix. :meth:`stop` cancels the task immediately and
    a stopped run never reports another fix.
    """

    def __init__(
        self,
        provider: LocationProvider,
        *,
        interval_for: Callable[[], float] = lambda: TRACKING_INTERVAL_IDLE,
        on_fix: FixCallback | None = None,
        on_failure: FailureCallback | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._interval_for = interval_for
        self._on_fix = on_fix
        self._on_failure = on_failure
        self._sleep = sleep
        self._current: Location | None = None
        self._failures = 0
        self._task: asyncio.Task[None] | None = None
        self._run_id = 0

    @property
    def current(self) -> Location | None:
        return self._current

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def is_tracking(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_callbacks(self, *, on_fix: FixCallback | None = None, on_failure: FailureCallback | None = None) -> None:
        self._on_fix = on_fix
        self._on_failure = on_failure

    def set_interval(self, interval_for: Callable[[], float]) -> None:
        self._interval_for = interval_for

    def start(self) -> None:
        if self.is_tracking:
            return
        self._run_id += 1
        self._failures = 0
        self._task = asyncio.get_running_loop().create_task(self._run(self._run_id), name="location-tracker")
        _logger.debug("Location tracking started")

    def stop(self) -> None:
        self._run_id += 1
        self._current = None
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            _logger.debug("Location tracking stopped")

    async def refresh(self) -> Location | None:
        """Take one fix now. Returns ``None`` when the provider fails."""
        return await self._sample(self._run_id)

    async def _run(self, run_id: int) -> None:
        while run_id == self._run_id:
            await self._sample(run_id)
            if run_id != self._run_id:
                return
            await self._sleep(self._interval_for())

    async def _sample(self, run_id: int) -> Location | None:
        try:
            fix = await self._provider.get_current_location()
        except LocationUnavailableError as exc:
            if run_id != self._run_id:
                return None
            self._failures += 1
            _logger.debug("Location fix failed (%d in a row): %s", self._failures, exc)
            if self._on_failure is not None:
                await self._dispatch(self._on_failure(exc, self._failures))
            return None

        if run_id != self._run_id:
            return None
        self._failures = 0
        self._current = fix
        if self._on_fix is not None:
            await self._dispatch(self._on_fix(fix))
        return fix

    async def _dispatch(self, pending: Awaitable[None]) -> None:
        try:
            await pending
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.exception("Location callback raised")
