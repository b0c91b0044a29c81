"""In-process dedup cache."""

from __future__ import annotations

import threading
from typing import Any

from klaxon.cache.protocols import DEFAULT_INTERVAL_MS, effective_interval, make_dedup_key
from klaxon.channels.protocols import AlarmChannel
from klaxon.clock import Clock, monotonic_ms


class InMemoryAlarmCache:
    """Thread-safe map of dedup key to last send time.

    Entries are overwritten on every allowed send and never expire. The
    number of distinct alarms is assumed to stay modest; use a TTL-capable
    backend such as :class:`~klaxon.cache.redis.RedisAlarmCache` otherwise.

    Example:
        >>> cache = InMemoryAlarmCache(default_interval_ms=3000)
        >>> if cache.should_resend(channel, "db01", "disk full"):
        ...     cache.store(channel, "db01", "disk full")
    """

    def __init__(
        self,
        default_interval_ms: int = DEFAULT_INTERVAL_MS,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            default_interval_ms: Interval for alarms not tied to a channel.
            clock: Millisecond clock (monotonic by default).
        """
        self._default_interval = int(default_interval_ms)
        self._clock = clock or monotonic_ms
        self._last_sends: dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def default_interval(self) -> int:
        """Resend interval for the channel-less bucket, in milliseconds."""
        return self._default_interval

    def should_resend(
        self,
        channel: AlarmChannel | None,
        source: str | None,
        message: str,
    ) -> bool:
        interval = effective_interval(channel, self._default_interval)
        if interval <= 0:
            return True

        key = make_dedup_key(channel, source, message)
        with self._lock:
            then = self._last_sends.get(key)
        if then is None:
            return True
        return self._clock() - then >= interval

    def store(
        self,
        channel: AlarmChannel | None,
        source: str | None,
        message: str,
    ) -> None:
        if effective_interval(channel, self._default_interval) <= 0:
            return

        key = make_dedup_key(channel, source, message)
        now = self._clock()
        with self._lock:
            # Keep per-key timestamps non-decreasing under racing writers.
            previous = self._last_sends.get(key)
            if previous is None or now > previous:
                self._last_sends[key] = now

    def shutdown(self) -> None:
        pass

    def clear(self) -> None:
        """Forget every recorded send."""
        with self._lock:
            self._last_sends.clear()

    def describe(self) -> str:
        """Short description for status output."""
        return f"InMemory({len(self)} keys)"

    def to_dict(self) -> dict[str, Any]:
        """Summarize the cache for diagnostics."""
        return {
            "backend": "memory",
            "default_interval_ms": self._default_interval,
            "keys": len(self),
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_sends)

    def __str__(self) -> str:
        return self.describe()

    def __repr__(self) -> str:
        return f"InMemoryAlarmCache(default_interval_ms={self._default_interval})"
