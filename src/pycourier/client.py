"""High-level async client for the driver API."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import aiohttp

from pycourier._api import delivery as _delivery_api
from pycourier._api import orders as _orders_api
from pycourier._api import payouts as _payouts_api
from pycourier._transport import HttpTransport, Transport
from pycourier.config import CourierConfig
from pycourier.exceptions import CourierConfigError, CourierError
from pycourier.models.delivery import AcceptResponse, CompletionResult, DeliveryReview, DeliveryStage, VerificationData
from pycourier.models.location import Location
from pycourier.models.order import DiscoveredOrder
from pycourier.models.payout import PayoutStatusResult
from pycourier.models.scan import ScanSettings

_logger = logging.getLogger(__name__)


class DeliveryApi(Protocol):
    """Remote operations the delivery core depends on.

    :class:`CourierClient` is the HTTP implementation; tests pass fakes.
    """

    async def get_available_orders(self, settings: ScanSettings, origin: Location) -> list[DiscoveredOrder]: ...

    async def accept_order(self, order_id: str, location: Location) -> AcceptResponse: ...

    async def arrive_at_pickup(self, order_id: str, location: Location | None) -> None: ...

    async def confirm_pickup(
        self, order_id: str, verification: VerificationData, location: Location | None
    ) -> None: ...

    async def arrive_at_dropoff(self, order_id: str, location: Location | None) -> None: ...

    async def verify_delivery_token(self, order_id: str, token: str, stage: DeliveryStage) -> bool: ...

    async def complete_delivery(
        self, order_id: str, verification: VerificationData, location: Location | None
    ) -> CompletionResult: ...

    async def cancel_delivery(
        self,
        order_id: str,
        reason: str,
        description: str | None,
        location: Location | None,
        stage: DeliveryStage,
    ) -> None: ...

    async def update_location(self, order_id: str, location: Location, stage: DeliveryStage) -> None: ...

    async def notify_location_loss(self, order_id: str, last_location: Location | None, failure_count: int) -> None: ...

    async def submit_review(self, order_id: str, review: DeliveryReview) -> None: ...

    async def get_payout_status(self, payout_id: str) -> PayoutStatusResult: ...


class CourierClient:
    """Async client for the driver API.

    Usage::

        async with CourierClient(config) as client:
            orders = await client.get_available_orders(settings, origin)
    """

    def __init__(
        self,
        config: CourierConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport: Transport | None = transport
        self._external_transport = transport is not None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> CourierClient:
        if self._external_transport:
            return self
        if not self._config.access_token:
            raise CourierConfigError("access_token is required (set COURIER_ACCESS_TOKEN)")
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._transport = HttpTransport(self._config, self._http_session)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._external_transport:
            return
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._transport = None

    @property
    def config(self) -> CourierConfig:
        return self._config

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise CourierError("Client is not open; use 'async with CourierClient(config)'")
        return self._transport

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def get_available_orders(self, settings: ScanSettings, origin: Location) -> list[DiscoveredOrder]:
        return await _orders_api.fetch_available_orders(self._require_transport(), settings, origin)

    async def accept_order(self, order_id: str, location: Location) -> AcceptResponse:
        _logger.info("Accepting order %s", order_id)
        return await _orders_api.accept_order(self._require_transport(), order_id, location)

    # ------------------------------------------------------------------
    # Delivery stages
    # ------------------------------------------------------------------

    async def arrive_at_pickup(self, order_id: str, location: Location | None) -> None:
        await _delivery_api.arrive_at_pickup(self._require_transport(), order_id, location)

    async def confirm_pickup(self, order_id: str, verification: VerificationData, location: Location | None) -> None:
        await _delivery_api.confirm_pickup(self._require_transport(), order_id, verification, location)

    async def arrive_at_dropoff(self, order_id: str, location: Location | None) -> None:
        await _delivery_api.arrive_at_dropoff(self._require_transport(), order_id, location)

    async def verify_delivery_token(self, order_id: str, token: str, stage: DeliveryStage) -> bool:
        return await _delivery_api.verify_delivery_token(self._require_transport(), order_id, token, stage)

    async def complete_delivery(
        self,
        order_id: str,
        verification: VerificationData,
        location: Location | None,
    ) -> CompletionResult:
        return await _delivery_api.complete_delivery(self._require_transport(), order_id, verification, location)

    async def cancel_delivery(
        self,
        order_id: str,
        reason: str,
        description: str | None,
        location: Location | None,
        stage: DeliveryStage,
    ) -> None:
        await _delivery_api.cancel_delivery(self._require_transport(), order_id, reason, description, location, stage)

    async def update_location(self, order_id: str, location: Location, stage: DeliveryStage) -> None:
        await _delivery_api.update_location(self._require_transport(), order_id, location, stage)

    async def notify_location_loss(self, order_id: str, last_location: Location | None, failure_count: int) -> None:
        await _delivery_api.notify_location_loss(self._require_transport(), order_id, last_location, failure_count)

    async def submit_review(self, order_id: str, review: DeliveryReview) -> None:
        await _delivery_api.submit_review(self._require_transport(), order_id, review)

    # ------------------------------------------------------------------
    # Finance
    # ------------------------------------------------------------------

    async def get_payout_status(self, payout_id: str) -> PayoutStatusResult:
        return await _payouts_api.get_payout_status(self._require_transport(), payout_id)
