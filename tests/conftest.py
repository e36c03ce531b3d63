from __future__ import annotations

import asyncio
import heapq
from collections import defaultdict
from typing import Any

import pytest

from pycourier.exceptions import LocationUnavailableError
from pycourier.models.delivery import (
    AcceptResponse,
    CompletionResult,
    DeliveryReview,
    DeliveryStage,
    VerificationData,
)
from pycourier.models.location import Location
from pycourier.models.order import DiscoveredOrder
from pycourier.models.payout import PayoutStatusResult
from pycourier.models.scan import ScanSettings


async def settle(rounds: int = 20) -> None:
    """Let every ready task run until the loop is quiet."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """Virtual monotonic clock with a matching ``sleep``.

    ``sleep`` parks the caller until :meth:`advance` moves time past its
    deadline. Sleepers wake in deadline order and the loop is settled after
    each wake-up, so chains of sleeps inside one ``advance`` behave like
    real time.
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._seq = 0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self.now + max(delay, 0.0), self._seq, future))
        self._seq += 1
        await future

    @property
    def sleepers(self) -> int:
        return sum(1 for _, _, future in self._sleepers if not future.done())

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self.now = max(self.now, deadline)
            if not future.done():
                future.set_result(None)
            await settle()
        self.now = target
        await settle()


class FakeLocationProvider:
    def __init__(self, location: Location | None = None) -> None:
        self.location = location
        self.error: LocationUnavailableError | None = None
        self.calls = 0

    async def get_current_location(self) -> Location:
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.location is None:
            raise LocationUnavailableError()
        return self.location


class FakeDeliveryApi:
    """In-memory stand-in for :class:`pycourier.client.DeliveryApi`.

    Set ``hold_orders`` to park every discovery call on a future in
    ``order_requests`` so a test decides when (and in which order) they
    complete.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.orders: list[DiscoveredOrder] = []
        self.orders_error: Exception | None = None
        self.hold_orders = False
        self.order_requests: list[tuple[ScanSettings, Location, asyncio.Future[list[DiscoveredOrder]]]] = []
        self.accept_error: Exception | None = None
        self.accept_response = AcceptResponse(order={}, user=None)
        self.accept_gate: asyncio.Future[None] | None = None
        self.stage_error: Exception | None = None
        self.token_valid = True
        self.completion = CompletionResult()
        self.location_error: Exception | None = None
        self.review_error: Exception | None = None
        self.payout_script: dict[str, list[PayoutStatusResult | Exception]] = defaultdict(list)

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def get_available_orders(self, settings: ScanSettings, origin: Location) -> list[DiscoveredOrder]:
        self.calls.append(("get_available_orders", (settings, origin)))
        if self.hold_orders:
            future: asyncio.Future[list[DiscoveredOrder]] = asyncio.get_running_loop().create_future()
            self.order_requests.append((settings, origin, future))
            return await future
        if self.orders_error is not None:
            raise self.orders_error
        return list(self.orders)

    async def accept_order(self, order_id: str, location: Location) -> AcceptResponse:
        self.calls.append(("accept_order", (order_id, location)))
        if self.accept_gate is not None:
            await self.accept_gate
        if self.accept_error is not None:
            raise self.accept_error
        return self.accept_response

    async def _stage(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if self.stage_error is not None:
            raise self.stage_error

    async def arrive_at_pickup(self, order_id: str, location: Location | None) -> None:
        await self._stage("arrive_at_pickup", order_id, location)

    async def confirm_pickup(self, order_id: str, verification: VerificationData, location: Location | None) -> None:
        await self._stage("confirm_pickup", order_id, verification, location)

    async def arrive_at_dropoff(self, order_id: str, location: Location | None) -> None:
        await self._stage("arrive_at_dropoff", order_id, location)

    async def verify_delivery_token(self, order_id: str, token: str, stage: DeliveryStage) -> bool:
        await self._stage("verify_delivery_token", order_id, token, stage)
        return self.token_valid

    async def complete_delivery(
        self, order_id: str, verification: VerificationData, location: Location | None
    ) -> CompletionResult:
        await self._stage("complete_delivery", order_id, verification, location)
        return self.completion

    async def cancel_delivery(
        self,
        order_id: str,
        reason: str,
        description: str | None,
        location: Location | None,
        stage: DeliveryStage,
    ) -> None:
        await self._stage("cancel_delivery", order_id, reason, description, location, stage)

    async def update_location(self, order_id: str, location: Location, stage: DeliveryStage) -> None:
        self.calls.append(("update_location", (order_id, location, stage)))
        if self.location_error is not None:
            raise self.location_error

    async def notify_location_loss(self, order_id: str, last_location: Location | None, failure_count: int) -> None:
        self.calls.append(("notify_location_loss", (order_id, last_location, failure_count)))

    async def submit_review(self, order_id: str, review: DeliveryReview) -> None:
        self.calls.append(("submit_review", (order_id, review)))
        if self.review_error is not None:
            raise self.review_error

    async def get_payout_status(self, payout_id: str) -> PayoutStatusResult:
        self.calls.append(("get_payout_status", (payout_id,)))
        script = self.payout_script[payout_id]
        step = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(step, Exception):
            raise step
        return step


def make_order(order_id: str, *, lat: float = 6.5244, lng: float = 3.3792, **extra: Any) -> DiscoveredOrder:
    payload: dict[str, Any] = {
        "_id": order_id,
        "orderRef": f"REF-{order_id}",
        "priority": "normal",
        "pricing": {"totalAmount": 2500},
        "location": {
            "pickUp": {"address": "12 Marina Rd", "coordinates": {"lat": lat, "lng": lng}},
            "dropOff": {"address": "4 Allen Ave", "coordinates": {"lat": lat + 0.05, "lng": lng + 0.05}},
        },
    }
    payload.update(extra)
    return DiscoveredOrder.model_validate(payload)


def payout(status: str, payout_id: str = "p1") -> PayoutStatusResult:
    return PayoutStatusResult.model_validate({"payoutId": payout_id, "status": status})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def api() -> FakeDeliveryApi:
    return FakeDeliveryApi()


@pytest.fixture
def here() -> Location:
    return Location(lat=6.5244, lng=3.3792)


@pytest.fixture
def provider(here: Location) -> FakeLocationProvider:
    return FakeLocationProvider(here)
