"""Channel capability contracts.

A channel is one independent delivery endpoint. The dispatcher only ever
talks to channels through :class:`AlarmChannel`; concrete transports are
plain task builders (:class:`SendTaskBuilder`) composed with a dispatch
queue by :class:`~klaxon.channels.base.QueuedChannel`.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

SendTask = Callable[[], None]

DEFAULT_MIN_RESEND_INTERVAL_MS = 60_000


@runtime_checkable
class AlarmChannel(Protocol):
    """Protocol every delivery channel must satisfy."""

    @property
    def min_resend_interval(self) -> int:
        """Minimum milliseconds between two deliveries of the same alarm.

        A value of 0 or less means the channel never suppresses.
        """
        ...

    def send(self, message: str, source: str | None = None) -> None:
        """Queue the alarm for asynchronous delivery without blocking."""
        ...

    def shutdown(self) -> None:
        """Release channel resources. Idempotent and terminal."""
        ...


@runtime_checkable
class SendTaskBuilder(Protocol):
    """Builds one unit of delivery work for a message.

    Returning ``None`` means the transport declines this message (for
    example, the source is not one it serves). That is not an error.

    Transports that filter by source also expose ``has_source(source)``,
    which is true exactly for the sources ``build_task`` accepts.
    """

    def build_task(self, message: str, source: str | None) -> SendTask | None:
        ...


def channel_identity(channel: Any) -> str:
    """Return the identity used for a channel in dedup keys.

    Channels with a ``name`` attribute are identified by it, which keeps
    keys stable across processes when a shared cache backend is used.
    """
    name = getattr(channel, "name", None)
    if name:
        return str(name)
    return f"chan{id(channel)}"
