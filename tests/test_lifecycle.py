from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest
from conftest import FakeClock, FakeDeliveryApi, FakeLocationProvider, make_order, settle

from pycourier.config import CourierConfig
from pycourier.exceptions import (
    CourierTransportError,
    IllegalTransitionError,
    InvariantViolationError,
    LocationPermissionDeniedError,
    LocationUnavailableError,
    OutsideGeofenceError,
    RemoteRejectionError,
)
from pycourier.lifecycle import DeliveryLifecycle
from pycourier.location import LocationTracker
from pycourier.models.delivery import AcceptResponse, CompletionResult, DeliveryStage, VerificationData
from pycourier.models.location import Location
from pycourier.models.scan import ScanSettings
from pycourier.session import InMemorySessionPersistence
from pycourier.tab_cache import TabOrderCache

_DROPOFF = Location(lat=6.5744, lng=3.4292)
_FAR_AWAY = Location(lat=9.0765, lng=7.3986)


class _Harness:
    def __init__(self, api: FakeDeliveryApi, provider: FakeLocationProvider, clock: FakeClock, **config: Any) -> None:
        self.cache = TabOrderCache(api, ScanSettings)
        self.persistence = InMemorySessionPersistence()
        self.tracker = LocationTracker(provider, sleep=clock.sleep)
        self.lifecycle = DeliveryLifecycle(
            api,
            tab_cache=self.cache,
            persistence=self.persistence,
            location_provider=provider,
            tracker=self.tracker,
            config=CourierConfig(**config),
        )


@pytest.fixture
def harness(api: FakeDeliveryApi, provider: FakeLocationProvider, clock: FakeClock) -> _Harness:
    return _Harness(api, provider, clock)


@pytest.mark.asyncio
async def test_accept_binds_order_and_invalidates_caches(
    api: FakeDeliveryApi, harness: _Harness, here: Location
) -> None:
    candidate = make_order("a")
    api.orders = [candidate, make_order("b")]
    await harness.cache.fetch_available_orders(here, tab_key="nearby")
    api.accept_response = AcceptResponse.model_validate(
        {"order": {"_id": "a", "status": "accepted"}, "user": {"_id": "u1", "fullName": "Ada Obi"}}
    )
    lifecycle = harness.lifecycle

    result = await lifecycle.accept_order(candidate, here)

    assert lifecycle.stage == DeliveryStage.ACCEPTED
    assert lifecycle.is_on_active_delivery
    assert lifecycle.active_order is result.active_order
    assert result.active_order.id == "a"
    assert result.active_order.status == "accepted"
    assert result.active_order.pickup is not None
    assert result.active_order.pickup.address == "12 Marina Rd"
    assert result.active_order.accepted_at is not None
    assert harness.cache.entry("nearby").order_count == 0
    assert harness.persistence.user is not None and harness.persistence.user.id == "u1"
    assert harness.persistence.saves == 1
    assert harness.tracker.is_tracking

    await settle()
    assert ("update_location", ("a", here, DeliveryStage.ACCEPTED)) in api.calls
    assert lifecycle.snapshot().is_in_pickup_geofence is True
    lifecycle.close()


@pytest.mark.asyncio
async def test_malformed_bound_order_falls_back_to_the_offer(
    api: FakeDeliveryApi, harness: _Harness, here: Location, caplog: pytest.LogCaptureFixture
) -> None:
    candidate = make_order("a")
    api.accept_response = AcceptResponse(order={"_id": "a", "pricing": 1500}, user=None)

    with caplog.at_level(logging.WARNING, logger="pycourier.lifecycle"):
        result = await harness.lifecycle.accept_order(candidate, here)

    assert harness.lifecycle.stage == DeliveryStage.ACCEPTED
    assert result.active_order.id == "a"
    assert result.active_order.pricing is not None
    assert result.active_order.pricing.total_amount == 2500.0
    assert result.active_order.pickup == candidate.pickup
    assert "did not parse" in caplog.text
    harness.lifecycle.close()


@pytest.mark.asyncio
async def test_second_accept_is_an_invariant_violation(api: FakeDeliveryApi, harness: _Harness, here: Location) -> None:
    await harness.lifecycle.accept_order(make_order("a"), here)
    with pytest.raises(InvariantViolationError):
        await harness.lifecycle.accept_order(make_order("b"), here)
    assert harness.lifecycle.active_order is not None
    assert harness.lifecycle.active_order.id == "a"
    assert api.names().count("accept_order") == 1
    harness.lifecycle.close()


@pytest.mark.asyncio
async def test_concurrent_accept_is_rejected(api: FakeDeliveryApi, harness: _Harness, here: Location) -> None:
    api.accept_gate = asyncio.get_running_loop().create_future()
    first = asyncio.create_task(harness.lifecycle.accept_order(make_order("a"), here))
    await settle()
    assert harness.lifecycle.is_accepting

    with pytest.raises(InvariantViolationError):
        await harness.lifecycle.accept_order(make_order("b"), here)

    api.accept_gate.set_result(None)
    await first
    assert harness.lifecycle.active_order is not None
    assert harness.lifecycle.active_order.id == "a"
    assert not harness.lifecycle.is_accepting
    harness.lifecycle.close()


@pytest.mark.asyncio
async def test_accept_without_location_leaves_state_untouched(
    api: FakeDeliveryApi, harness: _Harness, provider: FakeLocationProvider
) -> None:
    provider.location = None
    with pytest.raises(LocationUnavailableError):
        await harness.lifecycle.accept_order(make_order("a"))

    assert harness.lifecycle.stage == DeliveryStage.DISCOVERING
    assert harness.lifecycle.active_order is None
    assert not harness.lifecycle.is_accepting
    assert "accept_order" not in api.names()


@pytest.mark.asyncio
async def test_permission_denied_is_a_location_error(harness: _Harness, provider: FakeLocationProvider) -> None:
    provider.error = LocationPermissionDeniedError()
    with pytest.raises(LocationUnavailableError) as exc_info:
        await harness.lifecycle.accept_order(make_order("a"))
    assert exc_info.value.reason == "permission_denied"


@pytest.mark.asyncio
async def test_accept_asks_provider_when_no_location_given(
    api: FakeDeliveryApi, harness: _Harness, provider: FakeLocationProvider, here: Location
) -> None:
    await harness.lifecycle.accept_order(make_order("a"))
    assert ("accept_order", ("a", here)) in api.calls
    assert provider.calls == 1
    harness.lifecycle.close()


@pytest.mark.asyncio
async def test_rejection_removes_candidate_and_propagates(
    api: FakeDeliveryApi, harness: _Harness, here: Location
) -> None:
    candidate = make_order("a")
    api.orders = [candidate, make_order("b")]
    await harness.cache.fetch_available_orders(here, tab_key="one")
    await harness.cache.fetch_available_orders(here, tab_key="two")
    api.accept_error = RemoteRejectionError("Order already accepted by another driver", code="409")

    with pytest.raises(RemoteRejectionError, match="already accepted"):
        await harness.lifecycle.accept_order(candidate, here)

    assert harness.lifecycle.stage == DeliveryStage.DISCOVERING
    assert harness.lifecycle.active_order is None
    for tab in ("one", "two"):
        assert [o.id for o in harness.cache.entry(tab).available_orders] == ["b"]


@pytest.mark.asyncio
async def test_transport_error_keeps_candidate(api: FakeDeliveryApi, harness: _Harness, here: Location) -> None:
    candidate = make_order("a")
    api.orders = [candidate]
    await harness.cache.fetch_available_orders(here)
    api.accept_error = CourierTransportError("offline")

    with pytest.raises(CourierTransportError):
        await harness.lifecycle.accept_order(candidate, here)

    assert harness.lifecycle.stage == DeliveryStage.DISCOVERING
    assert harness.cache.entry().order_count == 1


@pytest.mark.asyncio
async def test_reset_during_accept_discards_result(api: FakeDeliveryApi, harness: _Harness, here: Location) -> None:
    api.accept_gate = asyncio.get_running_loop().create_future()
    pending = asyncio.create_task(harness.lifecycle.accept_order(make_order("a"), here))
    await settle()

    harness.lifecycle.reset_store()
    api.accept_gate.set_result(None)
    with pytest.raises(InvariantViolationError):
        await pending

    assert harness.lifecycle.active_order is None
    assert harness.lifecycle.stage == DeliveryStage.DISCOVERING
    assert not harness.tracker.is_tracking


@pytest.mark.asyncio
async def test_advance_stage_only_to_successor(harness: _Harness, here: Location) -> None:
    lifecycle = harness.lifecycle
    with pytest.raises(IllegalTransitionError):
        lifecycle.advance_stage(DeliveryStage.ACCEPTED)

    await lifecycle.accept_order(make_order("a"), here)
    with pytest.raises(IllegalTransitionError) as exc_info:
        lifecycle.advance_stage(DeliveryStage.PICKED_UP)
    assert exc_info.value.current == DeliveryStage.ACCEPTED
    assert isinstance(exc_info.value, InvariantViolationError)
    with pytest.raises(IllegalTransitionError):
        lifecycle.advance_stage(DeliveryStage.CANCELLED)

    assert lifecycle.advance_stage("arrived_pickup") == DeliveryStage.ARRIVED_PICKUP
    assert lifecycle.stage == DeliveryStage.ARRIVED_PICKUP
    lifecycle.close()


@pytest.mark.asyncio
async def test_full_delivery_flow(
    api: FakeDeliveryApi, harness: _Harness, provider: FakeLocationProvider, here: Location
) -> None:
    lifecycle = harness.lifecycle
    api.completion = CompletionResult.model_validate({"earnings": 1800, "user": {"_id": "u1"}})
    await lifecycle.accept_order(make_order("a"), here)

    await lifecycle.arrive_at_pickup()
    assert lifecycle.stage == DeliveryStage.ARRIVED_PICKUP

    pickup_evidence = VerificationData(photos=("pickup.jpg",), notes="sealed")
    await lifecycle.confirm_pickup(pickup_evidence)
    assert lifecycle.stage == DeliveryStage.PICKED_UP
    assert lifecycle.snapshot().pickup_verification == pickup_evidence

    provider.location = _DROPOFF
    await lifecycle.arrive_at_dropoff()
    assert lifecycle.stage == DeliveryStage.ARRIVED_DROPOFF
    assert lifecycle.snapshot().is_in_dropoff_geofence is True

    assert await lifecycle.verify_delivery_token("4821") is True
    result = await lifecycle.complete_delivery(VerificationData(recipient_name="Bola"))
    assert result.earnings == 1800
    assert lifecycle.stage == DeliveryStage.DELIVERED
    assert lifecycle.snapshot().delivery_verification is not None
    assert lifecycle.snapshot().delivery_verification.token_verified is True
    assert harness.persistence.saves == 1

    lifecycle.finalize_delivery()
    assert lifecycle.stage == DeliveryStage.COMPLETED
    assert not lifecycle.is_on_active_delivery
    assert not harness.tracker.is_tracking
    assert lifecycle.active_order is not None
    completed_at = lifecycle.snapshot().completed_at
    assert completed_at is not None

    lifecycle.finalize_delivery()
    assert lifecycle.stage == DeliveryStage.COMPLETED
    assert lifecycle.snapshot().completed_at == completed_at

    lifecycle.reset_store()
    assert lifecycle.stage == DeliveryStage.DISCOVERING
    assert lifecycle.active_order is None
    assert lifecycle.snapshot().pickup_verification is None
    assert not lifecycle.token_verified


@pytest.mark.asyncio
async def test_arrival_outside_geofence_is_refused(
    api: FakeDeliveryApi, harness: _Harness, provider: FakeLocationProvider, here: Location
) -> None:
    await harness.lifecycle.accept_order(make_order("a"), here)
    provider.location = _FAR_AWAY

    with pytest.raises(OutsideGeofenceError) as exc_info:
        await harness.lifecycle.arrive_at_pickup()

    assert exc_info.value.radius_m == 500.0
    assert exc_info.value.distance_m > 500.0
    assert harness.lifecycle.stage == DeliveryStage.ACCEPTED
    assert "arrive_at_pickup" not in api.names()
    harness.lifecycle.close()


@pytest.mark.asyncio
async def test_remote_failure_does_not_advance(api: FakeDeliveryApi, harness: _Harness, here: Location) -> None:
    await harness.lifecycle.accept_order(make_order("a"), here)
    api.stage_error = RemoteRejectionError("Order was cancelled by the customer")

    with pytest.raises(RemoteRejectionError):
        await harness.lifecycle.arrive_at_pickup()
    assert harness.lifecycle.stage == DeliveryStage.ACCEPTED
    harness.lifecycle.close()


@pytest.mark.asyncio
async def test_completion_requires_verified_token(
    api: FakeDeliveryApi, harness: _Harness, provider: FakeLocationProvider, here: Location
) -> None:
    lifecycle = harness.lifecycle
    await lifecycle.accept_order(make_order("a"), here)
    lifecycle.advance_stage(DeliveryStage.ARRIVED_PICKUP)
    lifecycle.advance_stage(DeliveryStage.PICKED_UP)
    lifecycle.advance_stage(DeliveryStage.ARRIVED_DROPOFF)

    api.token_valid = False
    assert await lifecycle.verify_delivery_token("0000") is False
    with pytest.raises(InvariantViolationError):
        await lifecycle.complete_delivery(VerificationData(recipient_name="Bola"))
    assert "complete_delivery" not in api.names()
    assert lifecycle.stage == DeliveryStage.ARRIVED_DROPOFF
    lifecycle.close()


@pytest.mark.asyncio
async def test_stage_operation_from_wrong_stage(harness: _Harness, here: Location) -> None:
    await harness.lifecycle.accept_order(make_order("a"), here)
    with pytest.raises(IllegalTransitionError):
        await harness.lifecycle.arrive_at_dropoff()
    harness.lifecycle.close()


@pytest.mark.asyncio
async def test_finalize_from_discovering_is_illegal(harness: _Harness) -> None:
    with pytest.raises(IllegalTransitionError):
        harness.lifecycle.finalize_delivery()


@pytest.mark.asyncio
async def test_cancel_delivery(api: FakeDeliveryApi, harness: _Harness, here: Location) -> None:
    lifecycle = harness.lifecycle
    with pytest.raises(IllegalTransitionError):
        await lifecycle.cancel_delivery("changed my mind")

    await lifecycle.accept_order(make_order("a"), here)
    await lifecycle.cancel_delivery("vehicle_breakdown", "Flat tyre")

    assert lifecycle.stage == DeliveryStage.CANCELLED
    assert not harness.tracker.is_tracking
    name, args = api.calls[-1]
    assert name == "cancel_delivery"
    assert args[0] == "a"
    assert args[1:3] == ("vehicle_breakdown", "Flat tyre")
    assert args[4] == DeliveryStage.ACCEPTED

    lifecycle.finalize_delivery()
    assert lifecycle.stage == DeliveryStage.CANCELLED
    with pytest.raises(IllegalTransitionError):
        await lifecycle.cancel_delivery("again")
    with pytest.raises(InvariantViolationError):
        await lifecycle.accept_order(make_order("b"), here)

    lifecycle.reset_store()
    await lifecycle.accept_order(make_order("b"), here)
    assert lifecycle.stage == DeliveryStage.ACCEPTED
    lifecycle.close()


@pytest.mark.asyncio
async def test_location_loss_is_reported_after_five_failures(
    api: FakeDeliveryApi, harness: _Harness, provider: FakeLocationProvider, clock: FakeClock, here: Location
) -> None:
    await harness.lifecycle.accept_order(make_order("a"), here)
    provider.error = LocationUnavailableError("GPS signal lost")

    await settle()
    assert harness.tracker.failure_count == 1
    await clock.advance(90)
    assert harness.tracker.failure_count == 4
    assert "notify_location_loss" not in api.names()

    await clock.advance(30)
    assert harness.tracker.failure_count == 5
    assert ("notify_location_loss", ("a", here, 5)) in api.calls
    harness.lifecycle.close()


@pytest.mark.asyncio
async def test_location_sync_failure_is_not_fatal(
    api: FakeDeliveryApi, harness: _Harness, clock: FakeClock, here: Location
) -> None:
    api.location_error = CourierTransportError("offline")
    await harness.lifecycle.accept_order(make_order("a"), here)
    await clock.advance(60)

    assert api.names().count("update_location") == 3
    assert harness.tracker.is_tracking
    harness.lifecycle.close()


@pytest.mark.asyncio
async def test_tracking_can_be_disabled(api: FakeDeliveryApi, provider: FakeLocationProvider, clock: FakeClock, here: Location) -> None:
    harness = _Harness(api, provider, clock, location_tracking_enabled=False)
    await harness.lifecycle.accept_order(make_order("a"), here)
    await settle()
    assert not harness.tracker.is_tracking
    assert "update_location" not in api.names()


def _north_of(point: Location, metres: float) -> Location:
    return Location(lat=point.lat + metres / 111_195, lng=point.lng)


@pytest.mark.asyncio
async def test_pickup_proximity_warnings_latch_per_geofence_visit(
    api: FakeDeliveryApi, provider: FakeLocationProvider, clock: FakeClock, here: Location
) -> None:
    harness = _Harness(api, provider, clock, location_tracking_enabled=False)
    lifecycle = harness.lifecycle
    await lifecycle.accept_order(make_order("a"), _north_of(here, 600))

    seen: list[tuple[bool, frozenset[int]]] = []
    for metres in (600, 20, 12, 20, 5, 600, 5):
        provider.location = _north_of(here, metres)
        await harness.tracker.refresh()
        snapshot = lifecycle.snapshot()
        seen.append((snapshot.is_in_pickup_geofence, snapshot.pickup_proximity_warnings))

    assert seen == [
        (False, frozenset()),
        (True, frozenset({25})),
        (True, frozenset({25, 15})),
        (True, frozenset({25, 15})),
        (True, frozenset({25, 15, 10})),
        (False, frozenset()),
        (True, frozenset({10})),
    ]
    assert lifecycle.snapshot().dropoff_proximity_warnings == frozenset()


@pytest.mark.asyncio
async def test_dropoff_proximity_warnings_only_while_carrying(
    api: FakeDeliveryApi, provider: FakeLocationProvider, clock: FakeClock, here: Location
) -> None:
    harness = _Harness(api, provider, clock, location_tracking_enabled=False)
    lifecycle = harness.lifecycle
    await lifecycle.accept_order(make_order("a"), here)
    provider.location = here
    await harness.tracker.refresh()
    assert lifecycle.snapshot().pickup_proximity_warnings == frozenset({10})

    lifecycle.advance_stage(DeliveryStage.ARRIVED_PICKUP)
    lifecycle.advance_stage(DeliveryStage.PICKED_UP)
    provider.location = _north_of(_DROPOFF, 12)
    await harness.tracker.refresh()

    snapshot = lifecycle.snapshot()
    assert snapshot.is_in_dropoff_geofence is True
    assert snapshot.dropoff_proximity_warnings == frozenset({15})
    assert snapshot.is_in_pickup_geofence is False
    assert snapshot.pickup_proximity_warnings == frozenset()


@pytest.mark.asyncio
async def test_reset_forgets_previous_fix_and_warnings(
    api: FakeDeliveryApi, provider: FakeLocationProvider, clock: FakeClock, here: Location
) -> None:
    harness = _Harness(api, provider, clock, location_tracking_enabled=False)
    lifecycle = harness.lifecycle
    await lifecycle.accept_order(make_order("a"), here)
    await harness.tracker.refresh()
    assert harness.tracker.current == here
    assert lifecycle.snapshot().pickup_proximity_warnings == frozenset({10})

    lifecycle.reset_store()

    assert lifecycle.last_location is None
    assert harness.tracker.current is None
    snapshot = lifecycle.snapshot()
    assert snapshot.pickup_proximity_warnings == frozenset()
    assert snapshot.dropoff_proximity_warnings == frozenset()
    assert snapshot.is_in_pickup_geofence is False
