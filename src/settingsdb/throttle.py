"""Debounced call scheduling on an asyncio event loop."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

_logger = logging.getLogger(__name__)


class Throttler:
    """Run only the latest of a burst of calls.

    Every :meth:`throttle` call replaces the pending one. The call runs
    after ``minimum_delay`` seconds, or on the next loop iteration when
    more than ``minimum_delay`` seconds have passed since the previous run.
    """

    def __init__(
        self,
        minimum_delay: float,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if minimum_delay < 0:
            raise ValueError("minimum_delay must be >= 0")
        self._minimum_delay = minimum_delay
        self._loop = loop
        self._clock = clock
        self._handle: asyncio.Handle | None = None
        self._previous_run: float | None = None

    @property
    def minimum_delay(self) -> float:
        return self._minimum_delay

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def _delay(self) -> float:
        if self._previous_run is None:
            return self._minimum_delay
        elapsed = self._clock() - self._previous_run
        return 0.0 if elapsed > self._minimum_delay else self._minimum_delay

    def throttle(self, fn: Callable[[], None]) -> None:
        """Schedule *fn*, cancelling whatever was scheduled before."""
        self.cancel()
        loop = self._loop or asyncio.get_running_loop()
        delay = self._delay()
        if delay > 0:
            self._handle = loop.call_later(delay, self._run, fn)
        else:
            self._handle = loop.call_soon(self._run, fn)

    def cancel(self) -> None:
        handle = self._handle
        self._handle = None
        if handle is not None:
            handle.cancel()

    def _run(self, fn: Callable[[], None]) -> None:
        self._handle = None
        self._previous_run = self._clock()
        try:
            fn()
        except Exception:
            _logger.warning("Throttled call %r failed", fn, exc_info=True)
