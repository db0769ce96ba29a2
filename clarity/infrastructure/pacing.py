"""
Fixed-interval pacing for rate-limited collaborators.

The notes workspace allows roughly three requests per second; every sequential
loop talking to it shares one IntervalScheduler instead of sleeping inline.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from clarity.observability.telemetry import counter


class IntervalScheduler:
    """Guarantees at least `interval` seconds between consecutive `wait()` returns."""

    def __init__(
        self,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep_fn: Callable[[float], None] = time.sleep,
        name: str = "pacing",
    ) -> None:
        self.interval = interval
        self.name = name
        self._clock = clock
        self._sleep = sleep_fn
        self._last: float | None = None

    def wait(self) -> float:
        """Block until the next slot. Returns the time slept (0.0 for the first call).

        Side Effects:
            - Sleeps via sleep_fn when called sooner than `interval` after the previous call
            - Increments telemetry counter ({name}.throttled) when it sleeps
        """
        slept = 0.0
        now = self._clock()
        if self._last is not None:
            remaining = self.interval - (now - self._last)
            if remaining > 0:
                counter(f"{self.name}.throttled")
                self._sleep(remaining)
                slept = remaining
                now = self._clock()
        self._last = now
        return slept

    def reset(self) -> None:
        self._last = None
