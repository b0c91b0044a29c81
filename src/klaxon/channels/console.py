"""Console channel that prints alarms to standard output."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import IO

from rich.console import Console

from klaxon.channels.protocols import SendTask


@dataclass
class ConsoleBuilder:
    """Prints ``ALARM: <message>`` lines.

    Attributes:
        alarm_source: When set, only alarms from this source are printed;
            others are declined.
        file: Target stream (stdout when None).
    """

    alarm_source: str | None = None
    file: IO[str] | None = None
    _console: Console = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._console = Console(file=self.file, highlight=False, soft_wrap=True)

    def has_source(self, source: str | None) -> bool:
        """Check if alarms from the source are delivered by this channel."""
        return self.alarm_source is None or self.alarm_source == source

    def build_task(self, message: str, source: str | None) -> SendTask | None:
        if not self.has_source(source):
            return None

        if self.alarm_source is None:
            line = f"ALARM: {message}"
        else:
            line = f"ALARM: [{self.alarm_source}] {message}"

        def task() -> None:
            self._console.print(line, markup=False)

        return task
