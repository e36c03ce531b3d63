"""Timed area scans and the driver's discovery settings."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from pycourier._constants import SCAN_DURATION_SECONDS, SCAN_TICK_SECONDS
from pycourier.exceptions import CourierError, IllegalTransitionError, ScanBusyError
from pycourier.models.order import DiscoveredOrder
from pycourier.models.scan import ScanPhase, ScanResult, ScanSessionState, ScanSettings

_logger = logging.getLogger(__name__)

ScanQuery = Callable[[], Awaitable[Sequence[DiscoveredOrder]]]

_FOUND_MESSAGE = "Found {count} available orders nearby!"
_EMPTY_MESSAGE = "No orders found in your area. Try moving to a different location."
_FAILED_MESSAGE = "Failed to scan for orders. Please try again."


class ScanSettingsStore:
    """Holds the driver's discovery filters.

    Only :meth:`save` and :meth:`reset` change the stored value; callers
    read a frozen :class:`ScanSettings` and never mutate it in place.
    """

    def __init__(self, initial: ScanSettings | None = None) -> None:
        self._settings = initial or ScanSettings()

    @property
    def settings(self) -> ScanSettings:
        return self._settings

    def save(self, settings: ScanSettings | None = None, **changes: Any) -> ScanSettings:
        base = settings if settings is not None else self._settings
        if changes:
            base = ScanSettings.model_validate({**base.model_dump(), **changes})
        self._settings = base
        _logger.debug("Scan settings saved: %s", base)
        return base

    def reset(self) -> ScanSettings:
        self._settings = ScanSettings()
        return self._settings


class ScanCoordinator:
    """Allows at most one scanning session at a time."""

    def __init__(self) -> None:
        self._owner: ScanSession | None = None

    @property
    def active(self) -> ScanSession | None:
        return self._owner

    def acquire(self, session: ScanSession) -> None:
        if self._owner is not None and self._owner is not session:
            raise ScanBusyError("Another area scan is already running")
        self._owner = session

    def release(self, session: ScanSession) -> None:
        if self._owner is session:
            self._owner = None


class ScanSession:
    """A countdown that runs one discovery query when it reaches zero.

    ``idle -> scanning -> completed``; :meth:`stop` goes back to ``idle``
    from ``scanning`` and drops the partial result.
    """

    def __init__(
        self,
        query: ScanQuery,
        *,
        duration: int = SCAN_DURATION_SECONDS,
        tick: float = SCAN_TICK_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        coordinator: ScanCoordinator | None = None,
        on_complete: Callable[[ScanResult], None] | None = None,
    ) -> None:
        self._query = query
        self._duration = duration
        self._tick = tick
        self._sleep = sleep
        self._coordinator = coordinator or ScanCoordinator()
        self._on_complete = on_complete
        self._phase = ScanPhase.IDLE
        self._seconds_left = duration
        self._result: ScanResult | None = None
        self._task: asyncio.Task[None] | None = None
        self._future: asyncio.Future[ScanResult] | None = None

    @property
    def phase(self) -> ScanPhase:
        return self._phase

    @property
    def seconds_left(self) -> int:
        return self._seconds_left

    @property
    def result(self) -> ScanResult | None:
        return self._result

    @property
    def state(self) -> ScanSessionState:
        return ScanSessionState(phase=self._phase, seconds_left=self._seconds_left, result=self._result)

    def start(self) -> asyncio.Future[ScanResult]:
        """Begin the countdown and return a future for its result."""
        if self._phase not in (ScanPhase.IDLE, ScanPhase.COMPLETED):
            raise IllegalTransitionError(
                f"Cannot start a scan while {self._phase}",
                current=self._phase,
                requested=ScanPhase.SCANNING,
            )
        self._coordinator.acquire(self)

        loop = asyncio.get_running_loop()
        self._phase = ScanPhase.SCANNING
        self._seconds_left = self._duration
        self._result = None
        future: asyncio.Future[ScanResult] = loop.create_future()
        self._future = future
        self._task = loop.create_task(self._run(future), name="area-scan")
        _logger.info("Area scan started (%ds)", self._duration)
        return future

    def stop(self) -> None:
        """Abort a running scan. No result is produced and no callback fires."""
        if self._phase != ScanPhase.SCANNING:
            raise IllegalTransitionError(
                f"Cannot stop a scan while {self._phase}",
                current=self._phase,
                requested=ScanPhase.CANCELLED,
            )
        future, task = self._future, self._task
        self._future = None
        self._task = None
        if task is not None and not task.done():
            task.cancel()
        if future is not None and not future.done():
            future.cancel()
        self._coordinator.release(self)
        _logger.info("Area scan stopped with %ds left", self._seconds_left)
        self._phase = ScanPhase.IDLE
        self._seconds_left = self._duration

    def reset(self) -> None:
        """Return to ``idle`` and forget any result."""
        if self._phase == ScanPhase.SCANNING:
            self.stop()
        self._phase = ScanPhase.IDLE
        self._seconds_left = self._duration
        self._result = None

    async def _run(self, future: asyncio.Future[ScanResult]) -> None:
        try:
            await self._countdown(future)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            _logger.exception("Area scan failed unexpectedly")
            if self._future is future:
                self._future = None
                self._task = None
                self._phase = ScanPhase.IDLE
                self._coordinator.release(self)
                if not future.done():
                    future.set_exception(exc)

    async def _countdown(self, future: asyncio.Future[ScanResult]) -> None:
        while self._seconds_left > 0:
            await self._sleep(self._tick)
            if self._future is not future:
                return
            self._seconds_left = max(0, self._seconds_left - 1)

        try:
            orders = list(await self._query())
        except CourierError as exc:
            _logger.warning("Area scan query failed: %s", exc)
            result = ScanResult(success=False, message=_FAILED_MESSAGE)
        else:
            count = len(orders)
            message = _FOUND_MESSAGE.format(count=count) if count else _EMPTY_MESSAGE
            result = ScanResult(success=True, count=count, message=message, orders=tuple(orders))

        if self._future is not future:
            return
        self._future = None
        self._task = None
        self._result = result
        self._phase = ScanPhase.COMPLETED
        self._coordinator.release(self)
        _logger.info("Area scan completed: %s", result.message)
        if not future.done():
            future.set_result(result)
        if self._on_complete is not None:
            try:
                self._on_complete(result)
            except Exception:
                _logger.exception("Scan completion callback raised")
