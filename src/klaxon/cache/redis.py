"""Redis-backed dedup cache shared between processes.

Several applications using the same channels would each send an alarm for
the same event with an in-process cache. Pointing them at one Redis lets
them suppress each other's duplicates.

Each allowed send stores a key whose TTL equals the effective resend
interval, so a present key means "sent too recently". Every backend
failure fails open: lookups answer True and failed writes are logged.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from klaxon.cache.protocols import DEFAULT_INTERVAL_MS, effective_interval, make_dedup_key
from klaxon.channels.protocols import AlarmChannel
from klaxon.exceptions import CacheBackendError

logger = logging.getLogger(__name__)


class RedisAlarmCache:
    """Dedup cache stored in Redis with per-key expiry.

    Attributes:
        url: Redis connection URL.
        prefix: Namespace prepended to every key.
        default_interval_ms: Interval for alarms not tied to a channel.

    Example:
        >>> cache = RedisAlarmCache(url="redis://cache:6379/2", prefix="billing")
        >>> dispatcher = AlarmDispatcher(channels, cache=cache)
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = "klaxon",
        default_interval_ms: int = DEFAULT_INTERVAL_MS,
        client: Any | None = None,
        socket_timeout: float = 2.0,
    ) -> None:
        """Initialize the cache.

        Args:
            url: Redis URL, used when no client is given.
            prefix: Key namespace.
            default_interval_ms: Interval for the channel-less bucket.
            client: Pre-built client exposing ``exists``, ``set`` and ``close``.
            socket_timeout: Connect and read timeout in seconds.
        """
        self.url = url
        self.prefix = prefix
        self.default_interval_ms = int(default_interval_ms)
        self._socket_timeout = socket_timeout
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                import redis
            except ImportError as e:
                raise CacheBackendError("redis", "connect", e) from e
            self._client = redis.Redis.from_url(
                self.url,
                socket_connect_timeout=self._socket_timeout,
                socket_timeout=self._socket_timeout,
            )
            logger.info(f"RedisAlarmCache connected: {self.url}")
        return self._client

    def _key(self, channel: AlarmChannel | None, source: str | None, message: str) -> str:
        return f"{self.prefix}:{make_dedup_key(channel, source, message)}"

    def _exists(self, key: str) -> bool:
        try:
            return bool(self._get_client().exists(key))
        except CacheBackendError:
            raise
        except Exception as e:
            raise CacheBackendError("redis", "lookup", e) from e

    def _set(self, key: str, ttl_ms: int) -> None:
        try:
            self._get_client().set(key, str(int(time.time() * 1000)), px=ttl_ms)
        except CacheBackendError:
            raise
        except Exception as e:
            raise CacheBackendError("redis", "store", e) from e

    def should_resend(
        self,
        channel: AlarmChannel | None,
        source: str | None,
        message: str,
    ) -> bool:
        if effective_interval(channel, self.default_interval_ms) <= 0:
            return True

        key = self._key(channel, source, message)
        try:
            return not self._exists(key)
        except CacheBackendError as e:
            logger.error(f"Retrieving key {key} from redis failed, allowing alarm: {e}")
            return True

    def store(
        self,
        channel: AlarmChannel | None,
        source: str | None,
        message: str,
    ) -> None:
        interval = effective_interval(channel, self.default_interval_ms)
        if interval <= 0:
            return

        key = self._key(channel, source, message)
        try:
            self._set(key, interval)
        except CacheBackendError as e:
            logger.error(f"Storing key {key} in redis failed: {e}")

    def shutdown(self) -> None:
        if self._client is None:
            return
        try:
            self._client.close()
        except Exception as e:
            logger.warning(f"Closing redis client failed: {e}")
        finally:
            self._client = None

    def describe(self) -> str:
        """Short description for status output."""
        state = "disconnected" if self._client is None else self.url
        return f"Redis({state})"

    def to_dict(self) -> dict[str, Any]:
        """Summarize the cache for diagnostics."""
        return {
            "backend": "redis",
            "url": self.url,
            "prefix": self.prefix,
            "default_interval_ms": self.default_interval_ms,
            "connected": self._client is not None,
        }

    def __str__(self) -> str:
        return self.describe()
