"""Delivery channels.

Key Components:
    - AlarmChannel: Protocol every channel satisfies
    - ChannelDispatchQueue: Single-worker FIFO lane per channel
    - QueuedChannel: Task builder + dispatch queue
    - ConsoleBuilder, LogBuilder, CommandBuilder, WebhookBuilder,
      EmailBuilder: transports
    - create_channel: Build a channel from a configuration mapping
"""

from klaxon.channels.base import QueuedChannel
from klaxon.channels.command import CommandBuilder
from klaxon.channels.console import ConsoleBuilder
from klaxon.channels.factory import (
    channel_name,
    create_builder,
    create_channel,
    list_channel_types,
    register_channel,
)
from klaxon.channels.log import LogBuilder
from klaxon.channels.mail import EmailBuilder
from klaxon.channels.protocols import (
    DEFAULT_MIN_RESEND_INTERVAL_MS,
    AlarmChannel,
    SendTask,
    SendTaskBuilder,
    channel_identity,
)
from klaxon.channels.queue import ChannelDispatchQueue, QueueState, QueueStats
from klaxon.channels.webhook import WebhookBuilder

__all__ = [
    # Protocols
    "AlarmChannel",
    "SendTask",
    "SendTaskBuilder",
    "channel_identity",
    "DEFAULT_MIN_RESEND_INTERVAL_MS",
    # Queue
    "ChannelDispatchQueue",
    "QueueState",
    "QueueStats",
    "QueuedChannel",
    # Transports
    "ConsoleBuilder",
    "LogBuilder",
    "CommandBuilder",
    "WebhookBuilder",
    "EmailBuilder",
    # Factory
    "channel_name",
    "create_builder",
    "create_channel",
    "list_channel_types",
    "register_channel",
]
