"""Exception hierarchy for klaxon.

Exceptions are raised at wiring time only (configuration loading and
channel construction). Once a dispatcher is running, failures stay at the
channel or cache boundary and are reported through logging.
"""

from __future__ import annotations


class KlaxonError(Exception):
    """Base class for all klaxon errors."""

    pass


class ConfigError(KlaxonError):
    """Configuration is missing or invalid."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = errors or []
        if self.errors:
            message = f"{message}: {'; '.join(self.errors)}"
        super().__init__(message)


class ChannelConfigError(ConfigError):
    """A channel description cannot be turned into a channel."""

    def __init__(self, channel_type: str, message: str) -> None:
        self.channel_type = channel_type
        super().__init__(f"Invalid '{channel_type}' channel: {message}")


class CacheBackendError(KlaxonError):
    """A dedup cache backend could not complete an operation.

    Cache implementations raise this internally and catch it at their
    own boundary, where lookups fail open.
    """

    def __init__(self, backend: str, operation: str, cause: Exception | None = None) -> None:
        self.backend = backend
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{backend} cache {operation} failed{detail}")
