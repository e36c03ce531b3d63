"""Bounded-duration status polling for independently identified remote operations.

Each watched key gets its own task, start time, attempt and error
counters. A record is torn down when:

- the remote status is no longer pending (``resolved``; callback fires once),
- the wall-clock ceiling is reached (``timed_out``; presumed still pending),
- consecutive poll errors reach the cap, or the attempt cap is hit
  (``abandoned``),
- the key leaves the watch set or the manager is stopped (``cancelled``).

Teardown cancels the task synchronously and every write is guarded by an
identity check on the record, so a torn-down poll can never mutate state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Generic, TypeVar

from pycourier._constants import (
    PAYOUT_POLL_INTERVAL_SECONDS,
    PAYOUT_POLL_MAX_ERRORS,
    PAYOUT_POLL_TIMEOUT_SECONDS,
)
from pycourier.config import CourierConfig
from pycourier.exceptions import CourierApiError, CourierTransportError
from pycourier.models.payout import PayoutStatusResult

if TYPE_CHECKING:
    from pycourier.client import DeliveryApi

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class PollState(StrEnum):
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    ABANDONED = "abandoned"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class PollOutcome(Generic[T]):
    """How the watch on one key ended."""

    key: str
    state: PollState
    result: T | None = None
    attempts: int = 0


@dataclass(slots=True)
class PollRecord(Generic[T]):
    key: str
    started_at: float
    outcome: asyncio.Future[PollOutcome[T]]
    attempts: int = 0
    errors: int = 0
    task: asyncio.Task[None] | None = None


class PollingManager(Generic[T]):
    """Poll many keys concurrently, each with its own timer and caps."""

    def __init__(
        self,
        fetch: Callable[[str], Awaitable[T]],
        *,
        is_pending: Callable[[T], bool],
        interval: float = PAYOUT_POLL_INTERVAL_SECONDS,
        timeout: float = PAYOUT_POLL_TIMEOUT_SECONDS,
        max_errors: int = PAYOUT_POLL_MAX_ERRORS,
        max_attempts: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        transient_errors: tuple[type[BaseException], ...] = (CourierTransportError, CourierApiError),
    ) -> None:
        self._fetch = fetch
        self._is_pending = is_pending
        self._interval = interval
        self._timeout = timeout
        self._max_errors = max_errors
        self._max_attempts = max_attempts
        self._clock = clock
        self._sleep = sleep
        self._transient_errors = transient_errors
        self._records: dict[str, PollRecord[T]] = {}
        self._finished: dict[str, PollOutcome[T]] = {}
        self._on_resolve: Callable[[str, T], None] | None = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return bool(self._records)

    @property
    def watching(self) -> frozenset[str]:
        return frozenset(self._records)

    @property
    def finished(self) -> Mapping[str, PollOutcome[T]]:
        return dict(self._finished)

    def record(self, key: str) -> PollRecord[T] | None:
        return self._records.get(key)

    def outcome(self, key: str) -> asyncio.Future[PollOutcome[T]]:
        """One-shot channel that completes when the watch on *key* ends."""
        record = self._records.get(key)
        if record is not None:
            return record.outcome
        finished = self._finished.get(key)
        if finished is None:
            raise KeyError(key)
        future: asyncio.Future[PollOutcome[T]] = asyncio.get_running_loop().create_future()
        future.set_result(finished)
        return future

    # ------------------------------------------------------------------
    # Watch set
    # ------------------------------------------------------------------

    def watch(self, ids: Iterable[str] | None, on_resolve: Callable[[str, T], None] | None = None) -> None:
        """Make the watch set exactly *ids*.

        New keys start polling immediately; keys no longer listed are torn
        down; keys that already finished are not polled again while they
        stay listed. An empty or missing list tears everything down.
        """
        wanted = list(dict.fromkeys(ids or ()))
        if not wanted:
            self.stop_all()
            return
        if on_resolve is not None:
            self._on_resolve = on_resolve

        wanted_set = set(wanted)
        for key in list(self._records):
            if key not in wanted_set:
                self.stop(key)
        for key in list(self._finished):
            if key not in wanted_set:
                del self._finished[key]

        for key in wanted:
            if key in self._records or key in self._finished:
                continue
            self._start(key)

    def stop(self, key: str) -> None:
        """Tear down the watch on *key* without notifying."""
        record = self._records.pop(key, None)
        if record is None:
            return
        self._cancel_task(record)
        outcome = PollOutcome(key=key, state=PollState.CANCELLED, attempts=record.attempts)
        self._finished[key] = outcome
        if not record.outcome.done():
            record.outcome.set_result(outcome)
        _logger.debug("Stopped polling %s", key)

    def stop_all(self) -> None:
        for key in list(self._records):
            self.stop(key)
        self._finished.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start(self, key: str) -> None:
        loop = asyncio.get_running_loop()
        record: PollRecord[T] = PollRecord(key=key, started_at=self._clock(), outcome=loop.create_future())
        self._records[key] = record
        record.task = loop.create_task(self._run(record), name=f"poll:{key}")
        _logger.debug("Started polling %s", key)

    def _cancel_task(self, record: PollRecord[T]) -> None:
        task = record.task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    def _is_live(self, record: PollRecord[T]) -> bool:
        return self._records.get(record.key) is record

    def _finish(self, record: PollRecord[T], state: PollState, result: T | None = None) -> None:
        if not self._is_live(record):
            return
        del self._records[record.key]
        outcome = PollOutcome(key=record.key, state=state, result=result, attempts=record.attempts)
        self._finished[record.key] = outcome
        if not record.outcome.done():
            record.outcome.set_result(outcome)

    async def _run(self, record: PollRecord[T]) -> None:
        try:
            await self._poll_loop(record)
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.exception("Polling %s failed unexpectedly", record.key)
            self._finish(record, PollState.ABANDONED)

    async def _poll_loop(self, record: PollRecord[T]) -> None:
        key = record.key
        while self._is_live(record):
            elapsed = self._clock() - record.started_at
            if elapsed >= self._timeout:
                _logger.info("Stopping auto-polling for %s after %.0fs", key, elapsed)
                self._finish(record, PollState.TIMED_OUT)
                return
            if self._max_attempts is not None and record.attempts >= self._max_attempts:
                _logger.info("Stopping auto-polling for %s after %d attempts", key, record.attempts)
                self._finish(record, PollState.ABANDONED)
                return

            try:
                result = await self._fetch(key)
            except self._transient_errors as exc:
                if not self._is_live(record):
                    return
                record.errors += 1
                _logger.warning("Error polling %s (%d/%d): %s", key, record.errors, self._max_errors, exc)
                if record.errors >= self._max_errors:
                    self._finish(record, PollState.ABANDONED)
                    return
            else:
                if not self._is_live(record):
                    return
                record.attempts += 1
                record.errors = 0
                if not self._is_pending(result):
                    _logger.info("Poll for %s resolved after %d attempt(s)", key, record.attempts)
                    self._finish(record, PollState.RESOLVED, result)
                    self._notify(key, result)
                    return

            await self._sleep(self._interval)

    def _notify(self, key: str, result: T) -> None:
        callback = self._on_resolve
        if callback is None:
            return
        try:
            callback(key, result)
        except Exception:
            _logger.exception("Resolve callback for %s raised", key)


class PayoutPoller(PollingManager[PayoutStatusResult]):
    """Watches payout requests until they leave ``pending``/``processing``."""

    def __init__(
        self,
        api: DeliveryApi,
        config: CourierConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        config = config or CourierConfig()
        super().__init__(
            api.get_payout_status,
            is_pending=lambda result: result.is_pending,
            interval=config.payout_poll_interval,
            timeout=config.payout_poll_timeout,
            max_errors=config.payout_poll_max_errors,
            clock=clock,
            sleep=sleep,
        )
