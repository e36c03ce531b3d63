"""Delivery lifecycle state machine.

Owns the single active order and the stage the driver is in. Every remote
step is awaited before the stage moves, and every write after an await is
guarded by an epoch check so a :meth:`DeliveryLifecycle.reset_store` that
ran meanwhile is never overwritten by stale work.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pydantic import ValidationError

from pycourier._constants import LOCATION_FAILURE_NOTIFY_AT, LOCATION_FAILURE_WARN_AT
from pycourier.config import CourierConfig
from pycourier.exceptions import (
    CourierError,
    IllegalTransitionError,
    InvariantViolationError,
    LocationUnavailableError,
    OutsideGeofenceError,
    RemoteRejectionError,
)
from pycourier.location import LocationProvider, LocationTracker, haversine_m, proximity_tier, tracking_interval
from pycourier.models.delivery import (
    AcceptResult,
    CompletionResult,
    DeliveryStage,
    LifecycleSnapshot,
    VerificationData,
)
from pycourier.models.location import Location, OrderLocation
from pycourier.models.order import ActiveOrder, DiscoveredOrder
from pycourier.session import SessionPersistence
from pycourier.tab_cache import TabOrderCache

if TYPE_CHECKING:
    from pycourier.client import DeliveryApi

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DeliveryLifecycle:
    """Stage machine for one driver's current delivery.

    Parameters
    ----------
    api : DeliveryApi
        Remote operations.
    tab_cache : TabOrderCache
        Discovery caches; invalidated on acceptance and reset.
    persistence : SessionPersistence
        Receives the driver record after acceptance and completion.
    location_provider : LocationProvider
        Queried when an operation needs a fresh fix.
    tracker : LocationTracker or None
        Background tracker; one is built from *location_provider* when omitted.
    config : CourierConfig or None
        Geofence radius and whether tracking runs at all.
    clock : callable
        Returns the current UTC datetime.
    """

    def __init__(
        self,
        api: DeliveryApi,
        *,
        tab_cache: TabOrderCache,
        persistence: SessionPersistence,
        location_provider: LocationProvider,
        tracker: LocationTracker | None = None,
        config: CourierConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api = api
        self._tab_cache = tab_cache
        self._persistence = persistence
        self._location_provider = location_provider
        self._config = config or CourierConfig()
        self._clock = clock
        self._tracker = tracker or LocationTracker(location_provider, sleep=sleep)
        self._tracker.set_callbacks(on_fix=self._handle_fix, on_failure=self._handle_location_failure)
        self._tracker.set_interval(lambda: tracking_interval(self._stage, navigating=self._navigating))

        self._epoch = 0
        self._accepting = False
        self._navigating = False
        self._stage = DeliveryStage.DISCOVERING
        self._active_order: ActiveOrder | None = None
        self._accepted_at: datetime | None = None
        self._completed_at: datetime | None = None
        self._last_location: Location | None = None
        self._in_pickup_geofence = False
        self._in_dropoff_geofence = False
        self._pickup_warnings: set[int] = set()
        self._dropoff_warnings: set[int] = set()
        self._token_verified = False
        self._pickup_verification: VerificationData | None = None
        self._delivery_verification: VerificationData | None = None

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------

    @property
    def stage(self) -> DeliveryStage:
        return self._stage

    @property
    def active_order(self) -> ActiveOrder | None:
        return self._active_order

    @property
    def is_on_active_delivery(self) -> bool:
        return self._stage.is_active

    @property
    def is_accepting(self) -> bool:
        return self._accepting

    @property
    def token_verified(self) -> bool:
        return self._token_verified

    @property
    def last_location(self) -> Location | None:
        return self._last_location

    @property
    def tracker(self) -> LocationTracker:
        return self._tracker

    def snapshot(self) -> LifecycleSnapshot:
        return LifecycleSnapshot(
            stage=self._stage,
            active_order=self._active_order,
            accepted_at=self._accepted_at,
            completed_at=self._completed_at,
            is_in_pickup_geofence=self._in_pickup_geofence,
            is_in_dropoff_geofence=self._in_dropoff_geofence,
            pickup_proximity_warnings=frozenset(self._pickup_warnings),
            dropoff_proximity_warnings=frozenset(self._dropoff_warnings),
            pickup_verification=self._pickup_verification,
            delivery_verification=self._delivery_verification,
        )

    def set_navigating(self, navigating: bool) -> None:
        """Tighten the tracking interval while turn-by-turn navigation is open."""
        self._navigating = navigating

    # ------------------------------------------------------------------
    # Acceptance
    # ------------------------------------------------------------------

    async def accept_order(self, candidate: DiscoveredOrder, location: Location | None = None) -> AcceptResult:
        """Claim *candidate* and bind it as the active order.

        Raises
        ------
        InvariantViolationError
            Not discovering, an order is already bound, or another accept
            is in flight.
        LocationUnavailableError
            No location was given and none could be obtained.
        RemoteRejectionError
            The backend refused; the candidate is dropped from every tab.
        """
        if self._stage != DeliveryStage.DISCOVERING:
            raise InvariantViolationError(f"Cannot accept an order while {self._stage}")
        if self._active_order is not None:
            raise InvariantViolationError(f"Order {self._active_order.id} is already active")
        if self._accepting:
            raise InvariantViolationError("Another order acceptance is in progress")

        epoch = self._epoch
        self._accepting = True
        try:
            if location is None:
                location = await self._location_provider.get_current_location()
            try:
                response = await self._api.accept_order(candidate.id, location)
            except RemoteRejectionError as exc:
                _logger.info("Order %s rejected: %s", candidate.id, exc)
                self._tab_cache.remove_order(candidate.id)
                raise
        finally:
            self._accepting = False

        if epoch != self._epoch:
            raise InvariantViolationError("Delivery state was reset while the order was being accepted")

        try:
            order = ActiveOrder.from_acceptance(candidate, response.order)
        except ValidationError as exc:
            # Already claimed remotely; bind the offer as accepted.
            _logger.warning(
                "Order %s accepted but the bound order did not parse (%d error(s)); using the offer",
                candidate.id,
                exc.error_count(),
            )
            order = ActiveOrder.from_acceptance(candidate, None)
        self._active_order = order
        self._accepted_at = order.accepted_at or self._clock()
        self._completed_at = None
        self._last_location = location
        self._set_stage(DeliveryStage.ACCEPTED)
        self._tab_cache.invalidate_all()
        self._start_tracking()

        if response.user is not None:
            await self._persistence.save_user(response.user)
        return AcceptResult(active_order=order, user=response.user)

    # ------------------------------------------------------------------
    # Stage transitions
    # ------------------------------------------------------------------

    def advance_stage(self, next_stage: DeliveryStage | str) -> DeliveryStage:
        """Move to the immediate successor of the current stage."""
        requested = DeliveryStage(next_stage)
        if self._active_order is None or self._stage.successor != requested:
            raise IllegalTransitionError(
                f"Cannot move from {self._stage} to {requested}",
                current=self._stage,
                requested=requested,
            )
        self._set_stage(requested)
        return requested

    async def arrive_at_pickup(self) -> None:
        order = self._require_stage(DeliveryStage.ACCEPTED)
        epoch = self._epoch
        location = await self._fresh_location()
        self._check_geofence(location, order.pickup, "pickup")
        await self._api.arrive_at_pickup(order.id, location)
        if self._still_current(epoch, DeliveryStage.ACCEPTED):
            self._set_stage(DeliveryStage.ARRIVED_PICKUP)

    async def confirm_pickup(self, verification: VerificationData) -> None:
        order = self._require_stage(DeliveryStage.ARRIVED_PICKUP)
        epoch = self._epoch
        await self._api.confirm_pickup(order.id, verification, self._best_location())
        if self._still_current(epoch, DeliveryStage.ARRIVED_PICKUP):
            self._pickup_verification = verification
            self._set_stage(DeliveryStage.PICKED_UP)

    async def arrive_at_dropoff(self) -> None:
        order = self._require_stage(DeliveryStage.PICKED_UP)
        epoch = self._epoch
        location = await self._fresh_location()
        self._check_geofence(location, order.dropoff, "dropoff")
        await self._api.arrive_at_dropoff(order.id, location)
        if self._still_current(epoch, DeliveryStage.PICKED_UP):
            self._set_stage(DeliveryStage.ARRIVED_DROPOFF)

    async def verify_delivery_token(self, token: str) -> bool:
        order = self._require_stage(DeliveryStage.ARRIVED_DROPOFF)
        token = token.strip()
        if not token:
            return False
        epoch = self._epoch
        verified = await self._api.verify_delivery_token(order.id, token, self._stage)
        if verified and self._still_current(epoch, DeliveryStage.ARRIVED_DROPOFF):
            self._token_verified = True
        return verified

    async def complete_delivery(self, verification: VerificationData) -> CompletionResult:
        order = self._require_stage(DeliveryStage.ARRIVED_DROPOFF)
        if not self._token_verified:
            raise InvariantViolationError("Delivery token must be verified before completing the delivery")
        verification = verification.model_copy(update={"token_verified": True})
        epoch = self._epoch
        result = await self._api.complete_delivery(order.id, verification, self._best_location())
        if self._still_current(epoch, DeliveryStage.ARRIVED_DROPOFF):
            self._delivery_verification = verification
            self._set_stage(DeliveryStage.DELIVERED)
        if result.user is not None:
            await self._persistence.save_user(result.user)
        return result

    def finalize_delivery(self) -> None:
        """Mark the delivery completed. Repeated calls change nothing.

        The active order is kept so the review step can still show it.
        """
        if self._stage.is_terminal:
            return
        if self._stage == DeliveryStage.DISCOVERING:
            raise IllegalTransitionError(
                "No delivery to finalize",
                current=self._stage,
                requested=DeliveryStage.COMPLETED,
            )
        self._set_stage(DeliveryStage.COMPLETED)

    async def cancel_delivery(self, reason: str, description: str | None = None) -> None:
        if not self._stage.is_active or self._active_order is None:
            raise IllegalTransitionError(
                f"Cannot cancel while {self._stage}",
                current=self._stage,
                requested=DeliveryStage.CANCELLED,
            )
        order = self._active_order
        stage = self._stage
        epoch = self._epoch
        await self._api.cancel_delivery(order.id, reason, description, self._best_location(), stage)
        if self._still_current(epoch, stage):
            _logger.info("Delivery %s cancelled: %s", order.id, reason)
            self._set_stage(DeliveryStage.CANCELLED)

    def reset_store(self) -> None:
        """Drop the active order and everything derived from it."""
        self._epoch += 1
        self._tracker.stop()
        self._tab_cache.invalidate_all()
        self._stage = DeliveryStage.DISCOVERING
        self._active_order = None
        self._accepted_at = None
        self._completed_at = None
        self._last_location = None
        self._navigating = False
        self._in_pickup_geofence = False
        self._in_dropoff_geofence = False
        self._pickup_warnings.clear()
        self._dropoff_warnings.clear()
        self._token_verified = False
        self._pickup_verification = None
        self._delivery_verification = None
        _logger.debug("Delivery state reset")

    def close(self) -> None:
        self._tracker.stop()

    # ------------------------------------------------------------------
    # Location handling
    # ------------------------------------------------------------------

    async def _handle_fix(self, fix: Location) -> None:
        self._last_location = fix
        self._update_geofences(fix)
        order = self._active_order
        if order is None or not self._stage.is_active:
            return
        try:
            await self._api.update_location(order.id, fix, self._stage)
        except CourierError as exc:
            _logger.warning("Failed to sync location for %s: %s", order.id, exc)

    async def _handle_location_failure(self, error: LocationUnavailableError, count: int) -> None:
        if count == LOCATION_FAILURE_WARN_AT:
            _logger.warning("Location unavailable for %d consecutive fixes: %s", count, error)
        if count != LOCATION_FAILURE_NOTIFY_AT:
            return
        order = self._active_order
        if order is None or not self._stage.is_active:
            return
        try:
            await self._api.notify_location_loss(order.id, self._last_location, count)
        except CourierError as exc:
            _logger.warning("Failed to report location loss for %s: %s", order.id, exc)

    def _update_geofences(self, fix: Location) -> None:
        order = self._active_order
        if order is None:
            self._in_pickup_geofence = self._in_dropoff_geofence = False
            self._pickup_warnings.clear()
            self._dropoff_warnings.clear()
            return

        in_pickup = self._within(fix, order.pickup)
        if in_pickup != self._in_pickup_geofence:
            _logger.info("%s pickup geofence for %s", "Entered" if in_pickup else "Left", order.id)
            self._pickup_warnings.clear()
        self._in_pickup_geofence = in_pickup

        in_dropoff = self._within(fix, order.dropoff)
        if in_dropoff != self._in_dropoff_geofence:
            _logger.info("%s dropoff geofence for %s", "Entered" if in_dropoff else "Left", order.id)
            self._dropoff_warnings.clear()
        self._in_dropoff_geofence = in_dropoff

        if self._stage == DeliveryStage.ACCEPTED:
            self._latch_proximity(fix, order.pickup, self._pickup_warnings, "pickup")
        elif self._stage == DeliveryStage.PICKED_UP:
            self._latch_proximity(fix, order.dropoff, self._dropoff_warnings, "dropoff")

    def _latch_proximity(self, fix: Location, point: OrderLocation | None, latched: set[int], label: str) -> None:
        if point is None or point.coordinates is None:
            return
        distance = haversine_m(fix, point.coordinates)
        tier = proximity_tier(distance)
        if tier is None or tier in latched:
            return
        latched.add(tier)
        _logger.info("Within %dm of the %s location (%.0fm away)", tier, label, distance)

    def _within(self, fix: Location, point: OrderLocation | None) -> bool:
        if point is None or point.coordinates is None:
            return False
        return haversine_m(fix, point.coordinates) <= self._config.geofence_radius_m

    def _check_geofence(self, fix: Location, point: OrderLocation | None, label: str) -> None:
        if point is None or point.coordinates is None:
            _logger.debug("No %s coordinates; skipping geofence check", label)
            return
        distance = haversine_m(fix, point.coordinates)
        radius = self._config.geofence_radius_m
        if distance > radius:
            raise OutsideGeofenceError(
                f"You must be within {radius:.0f}m of the {label} location ({distance:.0f}m away)",
                distance_m=distance,
                radius_m=radius,
            )

    async def _fresh_location(self) -> Location:
        fix = await self._location_provider.get_current_location()
        self._last_location = fix
        self._update_geofences(fix)
        return fix

    def _best_location(self) -> Location | None:
        return self._tracker.current or self._last_location

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_stage(self, expected: DeliveryStage) -> ActiveOrder:
        if self._stage != expected or self._active_order is None:
            raise IllegalTransitionError(
                f"Expected stage {expected}, current stage is {self._stage}",
                current=self._stage,
                requested=expected.successor or expected,
            )
        return self._active_order

    def _still_current(self, epoch: int, stage: DeliveryStage) -> bool:
        if epoch == self._epoch and self._stage == stage:
            return True
        _logger.debug("Discarding stale %s result; state moved on", stage)
        return False

    def _set_stage(self, stage: DeliveryStage) -> None:
        _logger.info("Delivery stage %s -> %s", self._stage, stage)
        self._stage = stage
        if stage.is_terminal:
            if stage == DeliveryStage.COMPLETED:
                self._completed_at = self._clock()
            self._navigating = False
            self._tracker.stop()

    def _start_tracking(self) -> None:
        if self._config.location_tracking_enabled:
            self._tracker.start()
