"""Alarm dispatcher: the public entry point of klaxon.

The dispatcher fans every alarm out to an ordered list of channels. Two
sending modes exist:

- ``send_alarm`` consults the dedup cache per channel, so a channel that
  delivered the same (source, message) too recently skips it while other
  channels may still deliver;
- ``send_alarm_always`` bypasses the cache. With a buffer window it goes
  through the :class:`~klaxon.aggregation.AlarmAggregator`, which
  coalesces bursts into one annotated alarm.

Nothing raised by a channel or the cache ever reaches the caller.

Example:
    >>> from klaxon import AlarmDispatcher, InMemoryAlarmCache
    >>> from klaxon.channels import LogBuilder, QueuedChannel
    >>>
    >>> dispatcher = AlarmDispatcher(
    ...     channels=[QueuedChannel("ops-log", LogBuilder(), min_resend_interval_ms=60_000)],
    ...     cache=InMemoryAlarmCache(default_interval_ms=120_000),
    ...     buffer_window_ms=65_000,
    ... )
    >>> dispatcher.send_alarm("replica lag above 30s", source="db01")
    >>> dispatcher.send_alarm_always("nightly export finished")
    >>> dispatcher.shutdown()
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Iterable

from klaxon.aggregation import DEFAULT_JITTER_GUARD_MS, DEFAULT_TICK_SECONDS, AlarmAggregator
from klaxon.cache.memory import InMemoryAlarmCache
from klaxon.cache.protocols import AlarmCache
from klaxon.channels.protocols import AlarmChannel, channel_identity
from klaxon.clock import Clock
from klaxon.exceptions import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatcherStatus:
    """Diagnostic summary of a dispatcher.

    Attributes:
        channel_count: Number of registered channels.
        buffer_window_ms: Aggregation window (0 when disabled).
        cache: Description of the dedup cache.
        buffered_alarms: Alarms waiting in the aggregator.
        is_shutdown: Whether the dispatcher has been shut down.
    """

    channel_count: int
    buffer_window_ms: int
    cache: str
    buffered_alarms: int = 0
    is_shutdown: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "channel_count": self.channel_count,
            "buffer_window_ms": self.buffer_window_ms,
            "cache": self.cache,
            "buffered_alarms": self.buffered_alarms,
            "is_shutdown": self.is_shutdown,
        }

    def __str__(self) -> str:
        return (
            f"AlarmDispatcher with {self.channel_count} channels, "
            f"time buffer {self.buffer_window_ms}, cache {self.cache}"
        )


def _describe_cache(cache: AlarmCache) -> str:
    describe = getattr(cache, "describe", None)
    if callable(describe):
        try:
            return str(describe())
        except Exception:
            logger.exception("Describing alarm cache failed")
    return type(cache).__name__


class AlarmDispatcher:
    """Fans alarms out to channels with per-channel deduplication.

    Channels are fixed at construction; their order is the order in which
    each alarm is offered to them. Construction also creates the default
    in-process cache (when none is given) and starts the aggregator
    ticker (when ``buffer_window_ms`` is positive).
    """

    def __init__(
        self,
        channels: Iterable[AlarmChannel] = (),
        cache: AlarmCache | None = None,
        buffer_window_ms: int = 0,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        jitter_guard_ms: int = DEFAULT_JITTER_GUARD_MS,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            channels: Delivery channels, in delivery order.
            cache: Dedup cache. An :class:`InMemoryAlarmCache` is created
                when omitted.
            buffer_window_ms: Aggregation window for unconditional alarms;
                0 or less sends them immediately.
            tick_seconds: Aggregator review period.
            jitter_guard_ms: Aggregator tolerance for early ticks.
            clock: Millisecond clock for the default cache and aggregator.

        Raises:
            ConfigError: If two channels share a dedup identity.
        """
        self._channels: tuple[AlarmChannel, ...] = tuple(channels)

        identities = [channel_identity(channel) for channel in self._channels]
        duplicates = sorted({name for name in identities if identities.count(name) > 1})
        if duplicates:
            raise ConfigError(
                "Channel names must be unique",
                [f"duplicate name '{name}'" for name in duplicates],
            )

        self._cache: AlarmCache = cache if cache is not None else InMemoryAlarmCache(clock=clock)
        self._buffer_window_ms = max(int(buffer_window_ms), 0)
        self._shutdown = False
        self._shutdown_lock = threading.Lock()

        self._aggregator: AlarmAggregator | None = None
        if self._buffer_window_ms > 0:
            self._aggregator = AlarmAggregator(
                window_ms=self._buffer_window_ms,
                deliver=self._fan_out,
                tick_seconds=tick_seconds,
                jitter_guard_ms=jitter_guard_ms,
                clock=clock,
            )
            self._aggregator.start()

        logger.debug(f"{self.status()}")

    @property
    def channels(self) -> tuple[AlarmChannel, ...]:
        """Registered channels, in delivery order."""
        return self._channels

    @property
    def cache(self) -> AlarmCache:
        """The dedup cache."""
        return self._cache

    @property
    def aggregator(self) -> AlarmAggregator | None:
        """The aggregator, or None when buffering is disabled."""
        return self._aggregator

    @property
    def buffer_window_ms(self) -> int:
        """Aggregation window in milliseconds (0 when disabled)."""
        return self._buffer_window_ms

    @property
    def is_shutdown(self) -> bool:
        """Check if the dispatcher has been shut down."""
        return self._shutdown

    def send_alarm(self, message: str | None, source: str | None = None) -> None:
        """Send an alarm on every channel that has not sent it too recently.

        Each channel decides independently using its own resend interval
        and its own record of the last delivery.

        Args:
            message: Alarm text. None is ignored.
            source: Optional alarm source; channels may use it to choose
                recipients, and it is part of the dedup key.
        """
        if message is None or self._shutdown:
            return

        for channel in self._channels:
            if not self._should_resend(channel, source, message):
                logger.debug(
                    f"Suppressed alarm on channel {channel_identity(channel)} (sent recently)"
                )
                continue
            self._store(channel, source, message)
            self._send(channel, message, source)

    def send_alarm_always(self, message: str | None, source: str | None = None) -> None:
        """Send an alarm on every channel regardless of previous sends.

        With a buffer window the alarm is coalesced with identical ones and
        delivered by the aggregator; otherwise it is delivered right away.
        """
        if message is None or self._shutdown:
            return

        if self._aggregator is not None:
            try:
                self._aggregator.add(message, source)
            except Exception:
                logger.exception("Buffering alarm failed, sending it immediately")
                self._fan_out(message, source)
            return

        self._fan_out(message, source)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for channels to finish queued deliveries.

        Only channels exposing ``wait_idle`` are waited on.

        Returns:
            True if every such channel went idle within the timeout.
        """
        idle = True
        for channel in self._channels:
            wait_idle = getattr(channel, "wait_idle", None)
            if callable(wait_idle):
                try:
                    idle = bool(wait_idle(timeout)) and idle
                except Exception:
                    logger.exception(f"Waiting on channel {channel_identity(channel)} failed")
                    idle = False
        return idle

    def shutdown(self) -> None:
        """Shut down the aggregator, every channel and the cache.

        Idempotent. After this call every send is a silent no-op.
        """
        with self._shutdown_lock:
            if self._shutdown:
                return
            self._shutdown = True

        if self._aggregator is not None:
            try:
                self._aggregator.stop()
            except Exception:
                logger.exception("Stopping alarm aggregator failed")

        for channel in self._channels:
            try:
                channel.shutdown()
            except Exception:
                logger.exception(f"Shutting down channel {channel_identity(channel)} failed")

        try:
            self._cache.shutdown()
        except Exception:
            logger.exception("Shutting down alarm cache failed")

        logger.info("Alarm dispatcher shut down")

    def status(self) -> DispatcherStatus:
        """Return a diagnostic summary."""
        return DispatcherStatus(
            channel_count=len(self._channels),
            buffer_window_ms=self._buffer_window_ms,
            cache=_describe_cache(self._cache),
            buffered_alarms=len(self._aggregator) if self._aggregator is not None else 0,
            is_shutdown=self._shutdown,
        )

    def _should_resend(self, channel: AlarmChannel, source: str | None, message: str) -> bool:
        try:
            return self._cache.should_resend(channel, source, message)
        except Exception:
            logger.exception("Alarm cache lookup failed, sending alarm anyway")
            return True

    def _store(self, channel: AlarmChannel, source: str | None, message: str) -> None:
        try:
            self._cache.store(channel, source, message)
        except Exception:
            logger.exception("Alarm cache store failed")

    def _send(self, channel: AlarmChannel, message: str, source: str | None) -> None:
        try:
            channel.send(message, source)
        except Exception:
            logger.exception(f"Channel {channel_identity(channel)} failed to accept alarm")

    def _fan_out(self, message: str, source: str | None) -> None:
        if self._shutdown:
            return
        for channel in self._channels:
            self._send(channel, message, source)

    def __enter__(self) -> AlarmDispatcher:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return (
            f"AlarmDispatcher(channels={len(self._channels)}, "
            f"buffer_window_ms={self._buffer_window_ms})"
        )
