"""Klaxon - Deduplicated, rate-limited alarms for Python applications."""

from klaxon.aggregation import AggregationBucket, AlarmAggregator
from klaxon.cache import AlarmCache, InMemoryAlarmCache, RedisAlarmCache
from klaxon.channels import (
    AlarmChannel,
    ChannelDispatchQueue,
    CommandBuilder,
    ConsoleBuilder,
    EmailBuilder,
    LogBuilder,
    QueuedChannel,
    WebhookBuilder,
    create_channel,
    register_channel,
)
from klaxon.clock import ManualClock
from klaxon.config import CacheConfig, DispatcherConfig, build_dispatcher, load_config
from klaxon.decorators import alarm_on_exception
from klaxon.dispatcher import AlarmDispatcher, DispatcherStatus
from klaxon.exceptions import CacheBackendError, ChannelConfigError, ConfigError, KlaxonError

__version__ = "0.1.0"

__all__ = [
    # Dispatcher
    "AlarmDispatcher",
    "DispatcherStatus",
    "AlarmAggregator",
    "AggregationBucket",
    # Caches
    "AlarmCache",
    "InMemoryAlarmCache",
    "RedisAlarmCache",
    # Channels
    "AlarmChannel",
    "ChannelDispatchQueue",
    "QueuedChannel",
    "ConsoleBuilder",
    "LogBuilder",
    "CommandBuilder",
    "EmailBuilder",
    "WebhookBuilder",
    "create_channel",
    "register_channel",
    # Configuration
    "CacheConfig",
    "DispatcherConfig",
    "load_config",
    "build_dispatcher",
    # Utilities
    "alarm_on_exception",
    "ManualClock",
    # Exceptions
    "KlaxonError",
    "ConfigError",
    "ChannelConfigError",
    "CacheBackendError",
]
