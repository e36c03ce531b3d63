"""Driver-side core: one object wiring every component to one API and config."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING

from pycourier.config import CourierConfig
from pycourier.exceptions import CourierError
from pycourier.lifecycle import DeliveryLifecycle
from pycourier.location import LocationProvider, LocationTracker
from pycourier.models.delivery import DeliveryReview
from pycourier.models.order import DiscoveredOrder
from pycourier.models.payout import PayoutStatusResult
from pycourier.models.scan import ScanPhase, ScanResult, ScanSettings
from pycourier.models.user import DriverProfile
from pycourier.navigation import NavigationGuard
from pycourier.polling import PayoutPoller
from pycourier.scan import ScanCoordinator, ScanSession, ScanSettingsStore
from pycourier.session import InMemorySessionPersistence, SessionPersistence
from pycourier.tab_cache import TabOrderCache

if TYPE_CHECKING:
    from pycourier.client import DeliveryApi

_logger = logging.getLogger(__name__)


class DriverCore:
    """Everything one logged-in driver needs between discovery and payout.

    Usage::

        async with CourierClient(config) as client:
            core = DriverCore(client, location_provider=gps, config=config)
            result = await core.new_scan_session().start()
            await core.lifecycle.accept_order(result.orders[0])
    """

    def __init__(
        self,
        api: DeliveryApi,
        *,
        location_provider: LocationProvider,
        persistence: SessionPersistence | None = None,
        config: CourierConfig | None = None,
        settings: ScanSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api = api
        self._config = config or CourierConfig()
        self._location_provider = location_provider
        self._persistence = persistence or InMemorySessionPersistence()
        self._sleep = sleep

        self.settings = ScanSettingsStore(settings)
        self.scan_coordinator = ScanCoordinator()
        self.guard = NavigationGuard(window=self._config.navigation_guard_window, clock=clock)
        self.tab_cache = TabOrderCache(
            api,
            lambda: self.settings.settings,
            location_fallback=location_provider.get_current_location,
        )
        self.lifecycle = DeliveryLifecycle(
            api,
            tab_cache=self.tab_cache,
            persistence=self._persistence,
            location_provider=location_provider,
            tracker=LocationTracker(location_provider, sleep=sleep),
            config=self._config,
        )
        self.payouts = PayoutPoller(api, self._config, clock=clock, sleep=sleep)

    @property
    def config(self) -> CourierConfig:
        return self._config

    @property
    def persistence(self) -> SessionPersistence:
        return self._persistence

    def new_scan_session(self, on_complete: Callable[[ScanResult], None] | None = None) -> ScanSession:
        """Build a scan whose query runs with the settings and location at expiry."""

        async def query() -> list[DiscoveredOrder]:
            origin = await self._location_provider.get_current_location()
            return await self._api.get_available_orders(self.settings.settings, origin)

        return ScanSession(
            query,
            duration=self._config.scan_duration,
            tick=self._config.scan_tick,
            sleep=self._sleep,
            coordinator=self.scan_coordinator,
            on_complete=on_complete,
        )

    def should_redirect_to_live_delivery(self) -> bool:
        """Whether a screen should send the driver back to live tracking."""
        if not self.lifecycle.is_on_active_delivery:
            return False
        return not self.guard.consume_if_active()

    async def complete_review(
        self,
        review: DeliveryReview | None = None,
        user: DriverProfile | None = None,
    ) -> bool:
        """Leave the review step: finalize, submit, persist, reset.

        Returns whether a review was submitted. A failed submission is
        logged and does not keep the driver on the review step.
        """
        self.lifecycle.finalize_delivery()
        self.guard.set()

        submitted = False
        order = self.lifecycle.active_order
        if review is not None and order is not None:
            try:
                await self._api.submit_review(order.id, review)
            except CourierError as exc:
                _logger.warning("Submitting review for %s failed: %s", order.id, exc)
            else:
                submitted = True

        if user is not None:
            await self._persistence.save_user(user)
        self.lifecycle.reset_store()
        return submitted

    def watch_payouts(
        self,
        payout_ids: Iterable[str] | None,
        on_resolve: Callable[[str, PayoutStatusResult], None] | None = None,
    ) -> None:
        self.payouts.watch(payout_ids, on_resolve)

    def close(self) -> None:
        """Stop every background task this core started."""
        scan = self.scan_coordinator.active
        if scan is not None and scan.phase == ScanPhase.SCANNING:
            scan.stop()
        self.payouts.stop_all()
        self.lifecycle.close()
