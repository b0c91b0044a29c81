"""Per-channel asynchronous dispatch lane.

Every channel owns one :class:`ChannelDispatchQueue`: a bounded FIFO
served by a single dedicated worker thread. Delivery attempts on a channel
therefore run one at a time and in submission order, and a slow channel
never delays the caller or any other channel.

When the lane cannot accept work (queue full, or the worker not started)
the task runs inline on the calling thread instead of being dropped.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from klaxon.channels.protocols import SendTask

logger = logging.getLogger(__name__)

TaskBuilder = Callable[[str, Optional[str]], Optional[SendTask]]


class QueueState(str, Enum):
    """Lifecycle of a dispatch queue."""

    CREATED = "created"
    RUNNING = "running"
    SHUTDOWN = "shutdown"

    def __str__(self) -> str:
        return self.value


@dataclass
class QueueStats:
    """Counters for one dispatch queue.

    Attributes:
        queued: Tasks handed to the worker thread.
        inline: Tasks executed on the caller's thread as a fallback.
        declined: Messages for which the builder returned no task.
        completed: Tasks that finished without raising.
        failed: Tasks that raised (logged, never propagated).
        rejected: Submissions ignored because the queue was shut down.
    """

    queued: int = 0
    inline: int = 0
    declined: int = 0
    completed: int = 0
    failed: int = 0
    rejected: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "queued": self.queued,
            "inline": self.inline,
            "declined": self.declined,
            "completed": self.completed,
            "failed": self.failed,
            "rejected": self.rejected,
        }


class ChannelDispatchQueue:
    """Single-worker FIFO lane for one channel.

    Example:
        >>> lane = ChannelDispatchQueue("ops-mail", builder.build_task)
        >>> lane.start()
        >>> lane.submit("disk full", "db01")
        >>> lane.shutdown()
    """

    def __init__(
        self,
        name: str,
        builder: TaskBuilder,
        max_pending: int = 1000,
        poll_interval: float = 0.5,
    ) -> None:
        """Initialize the queue.

        Args:
            name: Channel name, used for the worker thread and logs.
            builder: Callable returning a task for (message, source), or
                None when the channel declines the message.
            max_pending: Maximum tasks waiting for the worker. Further
                submissions run inline.
            poll_interval: Seconds the idle worker waits before checking
                for shutdown.
        """
        self._name = name
        self._builder = builder
        self._queue: queue.Queue[SendTask] = queue.Queue(maxsize=max(max_pending, 1))
        self._poll_interval = poll_interval
        self._state = QueueState.CREATED
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending = 0
        self._stats = QueueStats()
        self._worker: threading.Thread | None = None

    @property
    def name(self) -> str:
        """Get the queue name."""
        return self._name

    @property
    def state(self) -> QueueState:
        """Get the current lifecycle state."""
        return self._state

    @property
    def pending(self) -> int:
        """Number of queued tasks not yet finished."""
        with self._lock:
            return self._pending

    def start(self) -> None:
        """Start the worker thread. No effect unless the queue is new."""
        with self._lock:
            if self._state is not QueueState.CREATED:
                return
            self._state = QueueState.RUNNING
            self._worker = threading.Thread(
                target=self._run_worker,
                name=f"klaxon-{self._name}",
                daemon=True,
            )
            self._worker.start()
        logger.debug(f"Dispatch queue '{self._name}' started")

    def submit(self, message: str, source: str | None = None) -> bool:
        """Submit a message for delivery.

        Returns:
            True if a task was queued or executed inline, False if the
            message was declined or the queue is shut down.
        """
        if self._state is QueueState.SHUTDOWN:
            with self._lock:
                self._stats.rejected += 1
            return False

        try:
            task = self._builder(message, source)
        except Exception:
            logger.exception(f"Channel '{self._name}' failed to build a send task")
            return False

        if task is None:
            with self._lock:
                self._stats.declined += 1
            return False

        with self._lock:
            if self._state is QueueState.SHUTDOWN:
                self._stats.rejected += 1
                return False
            if self._state is QueueState.RUNNING:
                try:
                    self._queue.put_nowait(task)
                except queue.Full:
                    pass
                else:
                    self._pending += 1
                    self._stats.queued += 1
                    return True
            self._stats.inline += 1

        logger.debug(f"Channel '{self._name}' running send task inline")
        self._execute(task)
        return True

    def shutdown(self, wait: bool = False, timeout: float | None = None) -> None:
        """Stop accepting work. Idempotent.

        Tasks already queued are still delivered by the worker.

        Args:
            wait: Block until the worker has drained the queue and exited.
            timeout: Maximum seconds to wait when ``wait`` is set.
        """
        with self._lock:
            if self._state is QueueState.SHUTDOWN:
                worker = None
            else:
                self._state = QueueState.SHUTDOWN
                worker = self._worker
                logger.debug(f"Dispatch queue '{self._name}' shutting down")

        if wait and worker is not None:
            worker.join(timeout=timeout)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every queued task has finished.

        Returns:
            True if the queue went idle, False on timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._pending > 0:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
            return True

    def get_stats(self) -> QueueStats:
        """Get a snapshot of the queue counters."""
        with self._lock:
            return QueueStats(**self._stats.to_dict())

    def _run_worker(self) -> None:
        """Worker loop: drain the queue, exit once shut down and empty."""
        while True:
            try:
                task = self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                # Puts only happen under the lock while RUNNING, so once
                # SHUTDOWN is observed the queue can no longer grow.
                with self._lock:
                    if self._state is QueueState.SHUTDOWN and self._queue.empty():
                        break
                continue

            try:
                self._execute(task)
            finally:
                self._queue.task_done()
                with self._idle:
                    self._pending -= 1
                    if self._pending == 0:
                        self._idle.notify_all()

        logger.debug(f"Dispatch queue '{self._name}' worker exited")

    def _execute(self, task: SendTask) -> None:
        try:
            task()
        except Exception:
            with self._lock:
                self._stats.failed += 1
            logger.exception(f"Channel '{self._name}' failed to deliver alarm")
        else:
            with self._lock:
                self._stats.completed += 1

    def __repr__(self) -> str:
        return f"ChannelDispatchQueue(name={self._name!r}, state={self._state.value})"
