"""Dedup caches.

Key Components:
    - AlarmCache: Protocol for dedup backends
    - InMemoryAlarmCache: Thread-safe in-process cache (default)
    - RedisAlarmCache: Cache shared between processes through Redis
    - make_dedup_key: Key derivation shared by all backends
"""

from klaxon.cache.memory import InMemoryAlarmCache
from klaxon.cache.protocols import (
    DEFAULT_INTERVAL_MS,
    GLOBAL_BUCKET,
    AlarmCache,
    effective_interval,
    make_dedup_key,
    message_digest,
)
from klaxon.cache.redis import RedisAlarmCache

__all__ = [
    "AlarmCache",
    "InMemoryAlarmCache",
    "RedisAlarmCache",
    "DEFAULT_INTERVAL_MS",
    "GLOBAL_BUCKET",
    "effective_interval",
    "make_dedup_key",
    "message_digest",
]
