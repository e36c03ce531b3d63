"""Short-lived guard that suppresses one live-delivery redirect.

Leaving the post-delivery review step sets the guard; the next screen
consults it before redirecting an "active" driver back to live tracking.
The guard expires on its own so a screen that never loads cannot leave
the redirect disabled.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from pycourier._constants import NAVIGATION_GUARD_WINDOW_SECONDS

_logger = logging.getLogger(__name__)


class NavigationGuard:
    """A boolean flag with auto-expiry."""

    def __init__(
        self,
        *,
        window: float = NAVIGATION_GUARD_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window
        self._clock = clock
        self._active = False
        self._set_at: float | None = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def set_at(self) -> float | None:
        return self._set_at

    def set(self) -> None:
        self._active = True
        self._set_at = self._clock()
        _logger.debug("Navigation guard set")

    def clear(self) -> None:
        self._active = False
        self._set_at = None

    def consume_if_active(self) -> bool:
        """Return whether the guard still applies.

        Inside the window the flag is left in place so every check during
        the same transition agrees. Past the window the flag is cleared.
        """
        if not self._active or self._set_at is None:
            return False
        if self._clock() - self._set_at > self._window:
            _logger.debug("Navigation guard expired")
            self.clear()
            return False
        return True
