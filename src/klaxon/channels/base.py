"""Queued channel: a task builder composed with a dispatch queue."""

from __future__ import annotations

import logging
import threading
from typing import Any

from klaxon.channels.protocols import DEFAULT_MIN_RESEND_INTERVAL_MS, SendTaskBuilder
from klaxon.channels.queue import ChannelDispatchQueue, QueueState, QueueStats

logger = logging.getLogger(__name__)


class QueuedChannel:
    """Channel that delivers through its own single-worker queue.

    The builder decides what a delivery does (print, log, run a command,
    call a webhook); this class supplies the asynchronous, in-order,
    failure-isolated execution around it.

    Example:
        >>> channel = QueuedChannel(
        ...     "ops-log",
        ...     LogBuilder(level="ERROR"),
        ...     min_resend_interval_ms=30_000,
        ... )
        >>> channel.send("disk almost full", source="db01")
    """

    def __init__(
        self,
        name: str,
        builder: SendTaskBuilder,
        min_resend_interval_ms: int = DEFAULT_MIN_RESEND_INTERVAL_MS,
        max_pending: int = 1000,
    ) -> None:
        self._name = name
        self._builder = builder
        self._min_resend_interval = int(min_resend_interval_ms)
        self._queue = ChannelDispatchQueue(name, builder.build_task, max_pending=max_pending)
        self._queue.start()
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def name(self) -> str:
        """Get the channel name."""
        return self._name

    @property
    def builder(self) -> SendTaskBuilder:
        """Get the task builder."""
        return self._builder

    @property
    def min_resend_interval(self) -> int:
        """Minimum milliseconds between identical alarms on this channel."""
        return self._min_resend_interval

    @property
    def state(self) -> QueueState:
        """Lifecycle state of the underlying queue."""
        return self._queue.state

    @property
    def is_shutdown(self) -> bool:
        """Check if the channel has been shut down."""
        return self._queue.state is QueueState.SHUTDOWN

    def send(self, message: str, source: str | None = None) -> None:
        """Queue the alarm. Silently ignored after shutdown."""
        self._queue.submit(message, source)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until queued deliveries have finished."""
        return self._queue.wait_idle(timeout)

    def get_stats(self) -> QueueStats:
        """Get delivery counters."""
        return self._queue.get_stats()

    def shutdown(self, wait: bool = False, timeout: float | None = None) -> None:
        """Stop accepting alarms and release transport resources."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._queue.shutdown(wait=wait, timeout=timeout)
        close = getattr(self._builder, "close", None)
        if callable(close):
            try:
                close()
            except Exception:
                logger.exception(f"Channel '{self._name}' failed to release resources")

    def to_dict(self) -> dict[str, Any]:
        """Summarize the channel for diagnostics."""
        return {
            "name": self._name,
            "type": type(self._builder).__name__,
            "min_resend_interval_ms": self._min_resend_interval,
            "state": self._queue.state.value,
            "stats": self._queue.get_stats().to_dict(),
        }

    def __repr__(self) -> str:
        return (
            f"QueuedChannel(name={self._name!r}, "
            f"min_resend_interval={self._min_resend_interval})"
        )
