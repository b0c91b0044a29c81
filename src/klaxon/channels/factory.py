"""Factory functions for creating channels.

Channels are described by plain mappings (as found in configuration
files) with a ``type`` key. Built-in types are ``console``, ``log``,
``command``, ``webhook`` and ``email``; more can be registered at runtime.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping

from klaxon.channels.base import QueuedChannel
from klaxon.channels.command import CommandBuilder
from klaxon.channels.console import ConsoleBuilder
from klaxon.channels.log import LogBuilder
from klaxon.channels.mail import EmailBuilder
from klaxon.channels.protocols import DEFAULT_MIN_RESEND_INTERVAL_MS, SendTaskBuilder
from klaxon.channels.webhook import WebhookBuilder
from klaxon.exceptions import ChannelConfigError, ConfigError

BuilderConstructor = Callable[..., SendTaskBuilder]

# Keys consumed by the factory itself; everything else goes to the builder.
_CHANNEL_KEYS = ("type", "name", "min_resend_interval_ms", "max_pending")

_builder_registry: dict[str, BuilderConstructor] = {
    "console": ConsoleBuilder,
    "log": LogBuilder,
    "command": CommandBuilder,
    "webhook": WebhookBuilder,
    "email": EmailBuilder,
}


def register_channel(name: str) -> Callable[[BuilderConstructor], BuilderConstructor]:
    """Decorator to register a task builder under a channel type.

    Example:
        >>> @register_channel("pager")
        ... @dataclass
        ... class PagerBuilder:
        ...     number: str
        ...     def build_task(self, message, source):
        ...         ...
    """

    def decorator(cls: BuilderConstructor) -> BuilderConstructor:
        _builder_registry[name.lower()] = cls
        return cls

    return decorator


def list_channel_types() -> list[str]:
    """Return the registered channel type names."""
    return sorted(_builder_registry)


def create_builder(spec: Mapping[str, Any], index: int = 0) -> SendTaskBuilder:
    """Create only the task builder described by a channel mapping.

    No thread is started, which makes this suitable for validation.

    Raises:
        ConfigError: If the mapping has no type.
        ChannelConfigError: If the type is unknown or the options are invalid.
    """
    channel_type = str(spec.get("type", "")).lower().strip()
    if not channel_type:
        raise ConfigError(f"Channel #{index} has no type")

    constructor = _builder_registry.get(channel_type)
    if constructor is None:
        raise ChannelConfigError(
            channel_type,
            f"unknown type (available: {', '.join(list_channel_types())})",
        )

    options = {key: value for key, value in spec.items() if key not in _CHANNEL_KEYS}
    try:
        return constructor(**options)
    except ChannelConfigError:
        raise
    except (TypeError, ValueError) as e:
        raise ChannelConfigError(channel_type, str(e)) from e


def channel_name(spec: Mapping[str, Any], index: int = 0) -> str:
    """Return the name a channel mapping gets: ``name``, else ``<type>-<index>``.

    The name is the channel's dedup identity, so it must be unique.
    """
    if spec.get("name"):
        return str(spec["name"])
    channel_type = str(spec.get("type", "")).lower().strip()
    return f"{channel_type}-{index}"


def create_channel(spec: Mapping[str, Any], index: int = 0) -> QueuedChannel:
    """Create a queued channel from a mapping.

    Args:
        spec: Channel description, e.g.
            ``{"type": "log", "level": "error", "min_resend_interval_ms": 5000}``.
        index: Position in the channel list, used for the default name.

    Returns:
        A started channel.

    Raises:
        ChannelConfigError: If the type is unknown or the options are invalid.
    """
    builder = create_builder(spec, index)
    channel_type = str(spec["type"]).lower().strip()

    try:
        interval = int(spec.get("min_resend_interval_ms", DEFAULT_MIN_RESEND_INTERVAL_MS))
        max_pending = int(spec.get("max_pending", 1000))
    except (TypeError, ValueError) as e:
        raise ChannelConfigError(channel_type, str(e)) from e

    return QueuedChannel(
        name=channel_name(spec, index),
        builder=builder,
        min_resend_interval_ms=interval,
        max_pending=max_pending,
    )
