"""Per-tab cache of discovered orders.

Each tab key owns one immutable :class:`TabOrderCacheEntry`. Updates build
a new entry and swap it in, so readers never observe a half-applied
fetch. A per-tab generation counter decides which fetch may write: only
the most recently *started* request for a tab applies its result.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pycourier.exceptions import CourierError, LocationUnavailableError
from pycourier.models.location import Location
from pycourier.models.order import DiscoveredOrder
from pycourier.models.scan import ScanSettings

if TYPE_CHECKING:
    from pycourier.client import DeliveryApi

_logger = logging.getLogger(__name__)

DEFAULT_TAB = "default"

LocationFallback = Callable[[], Awaitable[Location]]


@dataclass(frozen=True, slots=True)
class TabOrderCacheEntry:
    """What one tab currently shows."""

    origin: Location | None = None
    available_orders: tuple[DiscoveredOrder, ...] = ()
    order_count: int = 0
    is_fetching: bool = False
    last_fetch_at: float | None = None
    last_error: str | None = None


_EMPTY_ENTRY = TabOrderCacheEntry()


class TabOrderCache:
    """Discovery results keyed by tab, isolated from one another."""

    def __init__(
        self,
        api: DeliveryApi,
        settings_provider: Callable[[], ScanSettings],
        *,
        location_fallback: LocationFallback | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._api = api
        self._settings_provider = settings_provider
        self._location_fallback = location_fallback
        self._clock = clock
        self._entries: dict[str, TabOrderCacheEntry] = {}
        self._origins: dict[str, Location] = {}
        self._generations: dict[str, int] = {}
        self._tasks: set[asyncio.Task[TabOrderCacheEntry]] = set()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def entry(self, tab_key: str = DEFAULT_TAB) -> TabOrderCacheEntry:
        return self._entries.get(tab_key, _EMPTY_ENTRY)

    def entries(self) -> dict[str, TabOrderCacheEntry]:
        return dict(self._entries)

    def origin(self, tab_key: str = DEFAULT_TAB) -> Location | None:
        return self._origins.get(tab_key)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def fetch_available_orders(
        self,
        origin: Location | None = None,
        force_origin: bool = False,
        tab_key: str = DEFAULT_TAB,
    ) -> TabOrderCacheEntry:
        """Refresh *tab_key* and return the entry the fetch leaves behind.

        The request's place in line and the scan settings it queries with
        are both fixed when the call is made, before any origin lookup.

        Raises
        ------
        LocationUnavailableError
            No origin could be resolved. Cached orders are left untouched.
        """
        generation = self._bump(tab_key)
        settings = self._settings_provider()

        try:
            resolved = await self._resolve_origin(tab_key, origin)
        except LocationUnavailableError:
            if self._is_current(tab_key, generation) and self.entry(tab_key).is_fetching:
                self._replace(tab_key, is_fetching=False)
            raise
        if not self._is_current(tab_key, generation):
            _logger.debug("Fetch for tab %s superseded while resolving its origin", tab_key)
            return self.entry(tab_key)

        if force_origin and origin is not None:
            self._origins[tab_key] = origin

        self._replace(tab_key, origin=resolved, is_fetching=True)
        _logger.debug("Fetching orders for tab %s (generation %d)", tab_key, generation)

        try:
            orders = await self._api.get_available_orders(settings, resolved)
        except CourierError as exc:
            if not self._is_current(tab_key, generation):
                return self.entry(tab_key)
            _logger.warning("Fetching orders for tab %s failed: %s", tab_key, exc)
            self._replace(tab_key, is_fetching=False, last_error=str(exc))
            return self.entry(tab_key)

        if not self._is_current(tab_key, generation):
            _logger.debug("Discarding superseded fetch for tab %s (generation %d)", tab_key, generation)
            return self.entry(tab_key)

        self._replace(
            tab_key,
            available_orders=tuple(orders),
            order_count=len(orders),
            is_fetching=False,
            last_fetch_at=self._clock(),
            last_error=None,
        )
        return self.entry(tab_key)

    def schedule_fetch(
        self,
        origin: Location | None = None,
        force_origin: bool = False,
        tab_key: str = DEFAULT_TAB,
    ) -> asyncio.Task[TabOrderCacheEntry]:
        """Start a fetch in the background and return its task."""
        task = asyncio.get_running_loop().create_task(
            self.fetch_available_orders(origin, force_origin, tab_key),
            name=f"tab-fetch:{tab_key}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[TabOrderCacheEntry]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.warning("Background order fetch failed: %s", exc)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def clear_tab_orders(self, tab_key: str = DEFAULT_TAB) -> None:
        """Empty one tab and supersede any fetch it has in flight."""
        self._bump(tab_key)
        if tab_key in self._entries:
            self._replace(tab_key, available_orders=(), order_count=0, is_fetching=False)

    def remove_order(self, order_id: str) -> None:
        """Drop *order_id* from every tab."""
        for tab_key, entry in list(self._entries.items()):
            kept = tuple(order for order in entry.available_orders if order.id != order_id)
            if len(kept) != len(entry.available_orders):
                self._entries[tab_key] = dataclasses.replace(entry, available_orders=kept, order_count=len(kept))

    def invalidate_all(self) -> None:
        """Empty every tab and supersede all in-flight fetches. Origins are kept."""
        for tab_key in set(self._entries) | set(self._generations):
            self._bump(tab_key)
        self._entries = {
            tab_key: TabOrderCacheEntry(origin=entry.origin) for tab_key, entry in self._entries.items()
        }
        _logger.debug("Order caches invalidated")

    def reset(self) -> None:
        """Forget every tab, including recorded origins."""
        for tab_key in set(self._entries) | set(self._generations):
            self._bump(tab_key)
        self._entries.clear()
        self._origins.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _bump(self, tab_key: str) -> int:
        generation = self._generations.get(tab_key, 0) + 1
        self._generations[tab_key] = generation
        return generation

    def _is_current(self, tab_key: str, generation: int) -> bool:
        return self._generations.get(tab_key) == generation

    def _replace(self, tab_key: str, **changes: object) -> None:
        self._entries[tab_key] = dataclasses.replace(self.entry(tab_key), **changes)

    async def _resolve_origin(self, tab_key: str, origin: Location | None) -> Location:
        if origin is not None:
            return origin
        recorded = self._origins.get(tab_key)
        if recorded is not None:
            return recorded
        if self._location_fallback is not None:
            return await self._location_fallback()
        raise LocationUnavailableError("No origin available for order discovery")
