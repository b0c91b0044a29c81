"""Millisecond clocks shared by the cache and the aggregator."""

from __future__ import annotations

import threading
import time
from typing import Callable

Clock = Callable[[], float]


def monotonic_ms() -> float:
    """Current monotonic time in milliseconds."""
    return time.monotonic() * 1000.0


class ManualClock:
    """Clock that only moves when told to.

    Used to drive time-based behavior deterministically.

    Example:
        >>> clock = ManualClock()
        >>> cache = InMemoryAlarmCache(clock=clock)
        >>> clock.advance(1500)
    """

    def __init__(self, start_ms: float = 0.0) -> None:
        self._now = float(start_ms)
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self._now

    def advance(self, millis: float) -> float:
        """Move the clock forward and return the new time."""
        with self._lock:
            self._now += millis
            return self._now

    def set(self, millis: float) -> None:
        """Set the absolute time. Time never moves backwards."""
        with self._lock:
            self._now = max(self._now, float(millis))
