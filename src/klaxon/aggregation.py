"""Time-windowed coalescing of repeated unconditional alarms.

When a buffer window is configured, alarms sent with
``send_alarm_always`` are not delivered immediately. They are collected
into buckets keyed by (source, message) and reviewed by a ticker thread:

- a bucket seen more than once is flushed once the window has passed
  since it was first seen, as a single ``"<message> (<n>x)"`` alarm;
- a bucket seen only once is flushed on the next tick, unannotated.

Alarms received once are therefore delivered one to two tick periods
after arriving, while bursts wait out the full window so the count is
meaningful.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from klaxon.clock import Clock, monotonic_ms

logger = logging.getLogger(__name__)

DEFAULT_TICK_SECONDS = 30.0

# Schedulers tend to fire a little early; a once-seen bucket that is this
# close to a full period old is treated as due.
DEFAULT_JITTER_GUARD_MS = 200

Deliver = Callable[[str, Optional[str]], None]


def annotate(message: str, count: int) -> str:
    """Append the repeat count to a coalesced alarm."""
    return f"{message} ({count}x)"


@dataclass
class AggregationBucket:
    """Occurrences of one (source, message) pair inside the window.

    Attributes:
        message: Alarm text.
        source: Alarm source, or None.
        first_seen: Clock time of the first occurrence (ms).
        last_seen: Clock time of the latest occurrence (ms).
        repeat_count: Occurrences so far, at least 1.
    """

    message: str
    source: str | None
    first_seen: float
    last_seen: float
    repeat_count: int = 1

    def touch(self, now: float) -> None:
        """Record one more occurrence."""
        self.repeat_count += 1
        self.last_seen = max(self.last_seen, now)

    def is_due(self, now: float, window_ms: float, period_ms: float, guard_ms: float) -> bool:
        """Check if the bucket should be flushed at ``now``."""
        if self.repeat_count > 1:
            return now - self.first_seen >= window_ms
        return now - self.last_seen >= period_ms - guard_ms

    def render(self) -> str:
        """Text to deliver for this bucket."""
        if self.repeat_count > 1:
            return annotate(self.message, self.repeat_count)
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "message": self.message,
            "source": self.source,
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
            "repeat_count": self.repeat_count,
        }


class AlarmAggregator:
    """Buffers unconditional alarms and flushes them periodically.

    Example:
        >>> aggregator = AlarmAggregator(window_ms=65_000, deliver=fan_out)
        >>> aggregator.start()
        >>> aggregator.add("queue backlog", "worker-3")
        >>> ...
        >>> aggregator.stop()
    """

    def __init__(
        self,
        window_ms: int,
        deliver: Deliver,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        jitter_guard_ms: int = DEFAULT_JITTER_GUARD_MS,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the aggregator.

        Args:
            window_ms: Buffer window in milliseconds; must be positive.
            deliver: Called with (text, source) for every flushed bucket.
            tick_seconds: Period between bucket reviews.
            jitter_guard_ms: Tolerance for early ticks on once-seen buckets.
            clock: Millisecond clock (monotonic by default).
        """
        if window_ms <= 0:
            raise ValueError("window_ms must be positive to enable aggregation")
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")

        self._window_ms = int(window_ms)
        self._deliver = deliver
        self._tick_seconds = float(tick_seconds)
        self._jitter_guard_ms = int(jitter_guard_ms)
        self._clock = clock or monotonic_ms

        self._buckets: dict[tuple[str, str], AggregationBucket] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._error_count = 0

    @property
    def window_ms(self) -> int:
        """Buffer window in milliseconds."""
        return self._window_ms

    @property
    def tick_seconds(self) -> float:
        """Period between bucket reviews."""
        return self._tick_seconds

    @property
    def is_running(self) -> bool:
        """Check if the ticker thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def add(self, message: str, source: str | None = None) -> AggregationBucket:
        """Record one occurrence of an alarm.

        Returns:
            A snapshot of the bucket after the update.
        """
        key = (source or "", message)
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = AggregationBucket(
                    message=message,
                    source=source,
                    first_seen=now,
                    last_seen=now,
                )
                self._buckets[key] = bucket
            else:
                bucket.touch(now)
            return AggregationBucket(**bucket.to_dict())

    def pending(self) -> list[AggregationBucket]:
        """Snapshot of the live buckets."""
        with self._lock:
            return [AggregationBucket(**b.to_dict()) for b in self._buckets.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def flush_due(self, now: float | None = None) -> int:
        """Flush every bucket that is due.

        Buckets are removed before delivery so a later tick cannot flush
        the same bucket twice.

        Args:
            now: Clock time to evaluate against (current time if None).

        Returns:
            Number of buckets flushed.
        """
        if now is None:
            now = self._clock()
        period_ms = self._tick_seconds * 1000.0

        with self._lock:
            due = [
                key
                for key, bucket in self._buckets.items()
                if bucket.is_due(now, self._window_ms, period_ms, self._jitter_guard_ms)
            ]
            flushed = [self._buckets.pop(key) for key in due]

        for bucket in flushed:
            try:
                self._deliver(bucket.render(), bucket.source)
            except Exception:
                logger.exception(f"Delivering aggregated alarm '{bucket.message}' failed")

        if flushed:
            logger.debug(f"Flushed {len(flushed)} aggregated alarm(s)")
        return len(flushed)

    def flush_all(self) -> int:
        """Flush every live bucket regardless of age."""
        with self._lock:
            flushed = list(self._buckets.values())
            self._buckets.clear()

        for bucket in flushed:
            try:
                self._deliver(bucket.render(), bucket.source)
            except Exception:
                logger.exception(f"Delivering aggregated alarm '{bucket.message}' failed")
        return len(flushed)

    def start(self) -> None:
        """Start the ticker thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="klaxon-aggregator",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            f"Alarm aggregator started (window={self._window_ms}ms, tick={self._tick_seconds}s)"
        )

    def stop(self, timeout: float | None = 10.0) -> None:
        """Stop the ticker and wait for it to exit.

        Once this returns no further flush runs. Buckets still buffered are
        discarded.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Alarm aggregator did not stop within timeout")
            self._thread = None

        with self._lock:
            dropped = len(self._buckets)
            self._buckets.clear()
        if dropped:
            logger.warning(f"Alarm aggregator stopped with {dropped} buffered alarm(s) discarded")

    def get_stats(self) -> dict[str, Any]:
        """Get aggregator counters."""
        with self._lock:
            buckets = len(self._buckets)
        return {
            "window_ms": self._window_ms,
            "tick_seconds": self._tick_seconds,
            "buckets": buckets,
            "ticks": self._tick_count,
            "errors": self._error_count,
            "running": self.is_running,
        }

    def _run_loop(self) -> None:
        """Ticker loop; wakes every period until stopped."""
        while not self._stop_event.wait(self._tick_seconds):
            try:
                self._tick_count += 1
                self.flush_due()
            except Exception:
                self._error_count += 1
                logger.exception("Alarm aggregator tick failed")
