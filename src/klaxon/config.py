"""Dispatcher configuration.

A dispatcher can be described in a YAML or JSON file:

    buffer_window_ms: 65000
    cache:
      backend: redis
      url: redis://cache:6379/2
      default_interval_ms: 120000
    channels:
      - type: log
        level: error
        min_resend_interval_ms: 60000
      - type: webhook
        url: https://chat.example.com/hooks/ops?text=${alarm}
        alarm_sources: [db01, db02]

Environment variables override the file:

    KLAXON_BUFFER_WINDOW_MS, KLAXON_TICK_SECONDS,
    KLAXON_CACHE_BACKEND, KLAXON_REDIS_URL

Example:
    >>> config = load_config("alarms.yaml")
    >>> with build_dispatcher(config) as dispatcher:
    ...     dispatcher.send_alarm("disk full", source="db01")
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from klaxon.aggregation import DEFAULT_JITTER_GUARD_MS, DEFAULT_TICK_SECONDS
from klaxon.cache.memory import InMemoryAlarmCache
from klaxon.cache.protocols import DEFAULT_INTERVAL_MS, AlarmCache
from klaxon.cache.redis import RedisAlarmCache
from klaxon.channels.base import QueuedChannel
from klaxon.channels.factory import channel_name, create_builder, create_channel
from klaxon.clock import Clock
from klaxon.dispatcher import AlarmDispatcher
from klaxon.exceptions import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "KLAXON_"

CACHE_BACKENDS = ("memory", "redis")


@dataclass
class CacheConfig:
    """Dedup cache settings.

    Attributes:
        backend: ``memory`` or ``redis``.
        default_interval_ms: Interval for alarms not tied to a channel.
        url: Redis URL (redis backend only).
        prefix: Redis key namespace (redis backend only).
    """

    backend: str = "memory"
    default_interval_ms: int = DEFAULT_INTERVAL_MS
    url: str = "redis://localhost:6379/0"
    prefix: str = "klaxon"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CacheConfig:
        """Create from a mapping; unknown keys are ignored."""
        return cls(
            backend=str(data.get("backend", "memory")).lower(),
            default_interval_ms=data.get("default_interval_ms", DEFAULT_INTERVAL_MS),
            url=str(data.get("url", "redis://localhost:6379/0")),
            prefix=str(data.get("prefix", "klaxon")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "backend": self.backend,
            "default_interval_ms": self.default_interval_ms,
            "url": self.url,
            "prefix": self.prefix,
        }

    def validate(self) -> list[str]:
        """Return a list of problems (empty when valid)."""
        errors: list[str] = []
        if self.backend not in CACHE_BACKENDS:
            errors.append(
                f"cache.backend must be one of {', '.join(CACHE_BACKENDS)}, got '{self.backend}'"
            )
        if not isinstance(self.default_interval_ms, int) or isinstance(
            self.default_interval_ms, bool
        ):
            errors.append("cache.default_interval_ms must be an integer")
        if self.backend == "redis" and not self.url:
            errors.append("cache.url is required for the redis backend")
        return errors

    def build(self, clock: Clock | None = None) -> AlarmCache:
        """Create the configured cache."""
        if self.backend == "redis":
            return RedisAlarmCache(
                url=self.url,
                prefix=self.prefix,
                default_interval_ms=self.default_interval_ms,
            )
        return InMemoryAlarmCache(default_interval_ms=self.default_interval_ms, clock=clock)


@dataclass
class DispatcherConfig:
    """Everything needed to build an :class:`AlarmDispatcher`.

    Attributes:
        buffer_window_ms: Aggregation window; 0 disables aggregation.
        tick_seconds: Aggregator review period.
        jitter_guard_ms: Aggregator tolerance for early ticks.
        cache: Dedup cache settings.
        channels: Channel mappings, each with a ``type`` key.
    """

    buffer_window_ms: int = 0
    tick_seconds: float = DEFAULT_TICK_SECONDS
    jitter_guard_ms: int = DEFAULT_JITTER_GUARD_MS
    cache: CacheConfig = field(default_factory=CacheConfig)
    channels: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DispatcherConfig:
        """Create from a mapping such as a parsed config file.

        Raises:
            ConfigError: If a section has the wrong shape.
        """
        if not isinstance(data, Mapping):
            raise ConfigError(f"Configuration must be a mapping, got {type(data).__name__}")

        cache_data = data.get("cache") or {}
        if not isinstance(cache_data, Mapping):
            raise ConfigError("'cache' must be a mapping")

        channels = data.get("channels") or []
        if not isinstance(channels, list):
            raise ConfigError("'channels' must be a list")
        for index, spec in enumerate(channels):
            if not isinstance(spec, Mapping):
                raise ConfigError(f"Channel #{index} must be a mapping")

        return cls(
            buffer_window_ms=data.get("buffer_window_ms", 0),
            tick_seconds=data.get("tick_seconds", DEFAULT_TICK_SECONDS),
            jitter_guard_ms=data.get("jitter_guard_ms", DEFAULT_JITTER_GUARD_MS),
            cache=CacheConfig.from_dict(cache_data),
            channels=[dict(spec) for spec in channels],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "buffer_window_ms": self.buffer_window_ms,
            "tick_seconds": self.tick_seconds,
            "jitter_guard_ms": self.jitter_guard_ms,
            "cache": self.cache.to_dict(),
            "channels": [dict(spec) for spec in self.channels],
        }

    def validate(self) -> list[str]:
        """Check the whole configuration without starting anything.

        Returns:
            A list of problems (empty when valid).
        """
        errors: list[str] = []

        if not _is_int(self.buffer_window_ms):
            errors.append("buffer_window_ms must be an integer")
        if not _is_number(self.tick_seconds) or self.tick_seconds <= 0:
            errors.append("tick_seconds must be a positive number")
        if not _is_int(self.jitter_guard_ms) or self.jitter_guard_ms < 0:
            errors.append("jitter_guard_ms must be a non-negative integer")

        errors.extend(self.cache.validate())

        seen_names: set[str] = set()
        for index, spec in enumerate(self.channels):
            name = channel_name(spec, index)
            if name in seen_names:
                errors.append(f"Channel #{index}: duplicate name '{name}'")
            seen_names.add(name)

            try:
                create_builder(spec, index)
            except ConfigError as e:
                errors.append(str(e))
                continue
            for key in ("min_resend_interval_ms", "max_pending"):
                if key in spec and not _is_int(spec[key]):
                    errors.append(f"Channel #{index}: {key} must be an integer")

        return errors


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _read_file(path: Path) -> Any:
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()
    content = path.read_text(encoding="utf-8")
    try:
        if suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        if suffix == ".json":
            return json.loads(content)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to parse {path}: {e}") from e
    raise ConfigError(f"Unsupported configuration format: {suffix}")


def _parse_env_number(name: str, value: str, convert: type) -> Any:
    try:
        return convert(value)
    except ValueError:
        raise ConfigError(f"Environment variable {name} is not a valid number: {value!r}") from None


def apply_env_overrides(
    config: DispatcherConfig,
    environ: Mapping[str, str] | None = None,
) -> DispatcherConfig:
    """Apply ``KLAXON_*`` environment variables to a configuration in place.

    Args:
        config: Configuration to update.
        environ: Environment mapping (``os.environ`` by default).

    Returns:
        The same configuration object.
    """
    env = os.environ if environ is None else environ

    name = f"{ENV_PREFIX}BUFFER_WINDOW_MS"
    if env.get(name):
        config.buffer_window_ms = _parse_env_number(name, env[name], int)

    name = f"{ENV_PREFIX}TICK_SECONDS"
    if env.get(name):
        config.tick_seconds = _parse_env_number(name, env[name], float)

    name = f"{ENV_PREFIX}CACHE_BACKEND"
    if env.get(name):
        config.cache.backend = env[name].strip().lower()

    name = f"{ENV_PREFIX}REDIS_URL"
    if env.get(name):
        config.cache.url = env[name].strip()

    return config


def load_config(
    path: str | Path,
    environ: Mapping[str, str] | None = None,
) -> DispatcherConfig:
    """Load a dispatcher configuration from YAML or JSON.

    Args:
        path: ``.yaml``, ``.yml`` or ``.json`` file.
        environ: Environment used for overrides (``os.environ`` by default).

    Returns:
        A validated configuration.

    Raises:
        ConfigError: If the file is missing, unparseable or invalid.
    """
    path = Path(path)
    config = DispatcherConfig.from_dict(_read_file(path))
    apply_env_overrides(config, environ)

    errors = config.validate()
    if errors:
        raise ConfigError(f"Invalid configuration in {path}", errors)

    logger.debug(f"Loaded configuration from {path} ({len(config.channels)} channels)")
    return config


def build_dispatcher(
    config: DispatcherConfig,
    clock: Clock | None = None,
) -> AlarmDispatcher:
    """Create a running dispatcher from a configuration.

    Raises:
        ConfigError: If the configuration is invalid.

    Whatever fails during construction, channels created before the
    failure are shut down before the exception propagates.
    """
    errors = config.validate()
    if errors:
        raise ConfigError("Invalid configuration", errors)

    channels: list[QueuedChannel] = []
    try:
        for index, spec in enumerate(config.channels):
            channels.append(create_channel(spec, index))

        return AlarmDispatcher(
            channels=channels,
            cache=config.cache.build(clock),
            buffer_window_ms=config.buffer_window_ms,
            tick_seconds=config.tick_seconds,
            jitter_guard_ms=config.jitter_guard_ms,
            clock=clock,
        )
    except Exception:
        for channel in channels:
            channel.shutdown()
        raise
