"""Dedup cache protocol and key derivation.

The cache answers one question: may this (channel, source, message) be
sent again now? Channel-specific questions use the channel's own resend
interval; questions without a channel fall into a single global bucket
governed by the cache's default interval.
"""

from __future__ import annotations

import hashlib
from typing import Any, Protocol, runtime_checkable

from klaxon.channels.protocols import AlarmChannel, channel_identity

GLOBAL_BUCKET = "ALL"

DEFAULT_INTERVAL_MS = 120_000


def message_digest(message: str) -> str:
    """Stable hex digest of an alarm message."""
    return hashlib.sha256(message.encode("utf-8")).hexdigest()[:32]


def make_dedup_key(channel: Any | None, source: str | None, message: str) -> str:
    """Derive the dedup key for a (channel, source, message) triple.

    Format: ``<channel identity or ALL>:<source or ''>:<digest>``.
    """
    scope = GLOBAL_BUCKET if channel is None else channel_identity(channel)
    return f"{scope}:{source or ''}:{message_digest(message)}"


def effective_interval(channel: AlarmChannel | None, default_interval_ms: int) -> int:
    """Resend interval governing a key, in milliseconds."""
    if channel is None:
        return int(default_interval_ms)
    return int(channel.min_resend_interval)


@runtime_checkable
class AlarmCache(Protocol):
    """Protocol for dedup cache backends.

    Implementations must be safe for concurrent use and must fail open:
    when the backend cannot answer, ``should_resend`` returns True.
    """

    def should_resend(
        self,
        channel: AlarmChannel | None,
        source: str | None,
        message: str,
    ) -> bool:
        """Check if enough time has passed to send the alarm again."""
        ...

    def store(
        self,
        channel: AlarmChannel | None,
        source: str | None,
        message: str,
    ) -> None:
        """Record that the alarm is being sent now."""
        ...

    def shutdown(self) -> None:
        """Release backend resources."""
        ...
