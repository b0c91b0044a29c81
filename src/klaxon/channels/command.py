"""Command channel that runs an external program for each alarm.

The message reaches the program either as an argument (the ``${alarm}``
placeholder, or appended when the command is a single string) or on its
standard input when the first element starts with ``STDIN:``.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from klaxon.channels.protocols import SendTask
from klaxon.exceptions import ChannelConfigError

logger = logging.getLogger(__name__)

ALARM_PLACEHOLDER = "${alarm}"
STDIN_PREFIX = "STDIN:"


def _normalize_command(command: str | Sequence[str]) -> list[str]:
    if isinstance(command, str):
        return [command, ALARM_PLACEHOLDER]
    return [str(part) for part in command]


@dataclass
class CommandBuilder:
    """Runs a command per alarm.

    Attributes:
        command: Default command. A string is run with the alarm as its
            only argument; a list is run as-is with ``${alarm}`` replaced.
        commands_by_source: Per-source commands, same forms as ``command``.
        timeout_seconds: Maximum run time of one invocation.

    Example:
        >>> builder = CommandBuilder(
        ...     command=["STDIN:/usr/bin/mail", "-s", "alarm", "ops@example.com"],
        ...     commands_by_source={"billing": "/opt/bin/page-billing"},
        ... )
    """

    command: str | Sequence[str] | None = None
    commands_by_source: Mapping[str, str | Sequence[str]] = field(default_factory=dict)
    timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if not self.command and not self.commands_by_source:
            raise ChannelConfigError("command", "either command or commands_by_source is required")
        self._default = _normalize_command(self.command) if self.command else None
        self._by_source = {
            source: _normalize_command(cmd) for source, cmd in self.commands_by_source.items()
        }

    def has_source(self, source: str | None) -> bool:
        """Check if alarms from the source have a command to run."""
        return self.resolve(source) is not None

    def resolve(self, source: str | None) -> list[str] | None:
        """Return the command template for a source."""
        if source is not None and source in self._by_source:
            return self._by_source[source]
        return self._default

    def build_task(self, message: str, source: str | None) -> SendTask | None:
        if not self.has_source(source):
            return None

        template = self.resolve(source)

        # Work on a copy; templates are shared across tasks.
        argv = list(template)
        stdin_data: bytes | None = None
        if argv[0].startswith(STDIN_PREFIX):
            argv[0] = argv[0][len(STDIN_PREFIX):]
            stdin_data = message.encode("utf-8")
        else:
            argv = [message if part == ALARM_PLACEHOLDER else part for part in argv]

        timeout = self.timeout_seconds

        def task() -> None:
            try:
                result = subprocess.run(
                    argv,
                    input=stdin_data,
                    capture_output=True,
                    timeout=timeout,
                    check=False,
                )
            except subprocess.TimeoutExpired:
                logger.error(f"Alarm command timed out after {timeout}s: {argv[0]}")
                return
            except OSError as e:
                logger.error(f"Unable to execute command for alarm '{message}': {e}")
                return

            if result.returncode != 0:
                stderr = result.stderr.decode("utf-8", errors="replace") if result.stderr else ""
                logger.warning(
                    f"Alarm command {argv[0]} exited with code {result.returncode}: {stderr[:500]}"
                )

        return task
