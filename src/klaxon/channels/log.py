"""Log channel that emits alarms as log records."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from klaxon.channels.protocols import SendTask

ALARM_LOGGER = "klaxon.alarm"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def parse_level(level: int | str) -> int:
    """Convert a level name or number to a logging level."""
    if isinstance(level, int):
        return level
    try:
        return _LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level}") from None


@dataclass
class LogBuilder:
    """Emits each alarm on ``klaxon.alarm`` or ``klaxon.alarm.<source>``.

    Routing by logger name lets applications send alarms from different
    sources to different handlers with plain logging configuration.

    Attributes:
        level: Level of the emitted records (name or number).
        logger_name: Base logger name.
    """

    level: int | str = logging.WARNING
    logger_name: str = ALARM_LOGGER

    def __post_init__(self) -> None:
        self.level = parse_level(self.level)

    def build_task(self, message: str, source: str | None) -> SendTask | None:
        name = self.logger_name if source is None else f"{self.logger_name}.{source}"
        target = logging.getLogger(name)
        level = int(self.level)

        def task() -> None:
            target.log(level, message)

        return task
