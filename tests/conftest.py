"""Shared fixtures for klaxon tests."""

from __future__ import annotations

import threading
from typing import Any

import pytest

from klaxon.clock import ManualClock


# =============================================================================
# Test Doubles
# =============================================================================


class RecordingChannel:
    """Channel that records deliveries synchronously."""

    def __init__(self, name: str, min_resend_interval: int = 0) -> None:
        self.name = name
        self._min_resend_interval = min_resend_interval
        self.sent: list[tuple[str, str | None]] = []
        self.shutdown_calls = 0
        self._lock = threading.Lock()

    @property
    def min_resend_interval(self) -> int:
        return self._min_resend_interval

    def send(self, message: str, source: str | None = None) -> None:
        with self._lock:
            self.sent.append((message, source))

    def shutdown(self) -> None:
        self.shutdown_calls += 1

    @property
    def messages(self) -> list[str]:
        with self._lock:
            return [message for message, _ in self.sent]


class FailingChannel(RecordingChannel):
    """Channel whose send always raises."""

    def send(self, message: str, source: str | None = None) -> None:
        raise RuntimeError("channel is down")

    def shutdown(self) -> None:
        self.shutdown_calls += 1
        raise RuntimeError("shutdown failed")


class FailingCache:
    """Cache whose every operation raises."""

    def __init__(self) -> None:
        self.shutdown_calls = 0

    def should_resend(self, channel: Any, source: str | None, message: str) -> bool:
        raise ConnectionError("cache unreachable")

    def store(self, channel: Any, source: str | None, message: str) -> None:
        raise ConnectionError("cache unreachable")

    def shutdown(self) -> None:
        self.shutdown_calls += 1

    def describe(self) -> str:
        return "Failing"


class RecordingBuilder:
    """Task builder that records executed tasks."""

    def __init__(self, decline_sources: set[str] | None = None) -> None:
        self.delivered: list[tuple[str, str | None]] = []
        self.threads: list[str] = []
        self.decline_sources = decline_sources or set()
        self.closed = False
        self._lock = threading.Lock()

    def build_task(self, message: str, source: str | None):
        if source in self.decline_sources:
            return None

        def task() -> None:
            with self._lock:
                self.delivered.append((message, source))
                self.threads.append(threading.current_thread().name)

        return task

    def close(self) -> None:
        self.closed = True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> ManualClock:
    """Manual millisecond clock starting at 0."""
    return ManualClock()


@pytest.fixture
def recording_builder() -> RecordingBuilder:
    """Builder that records delivered alarms."""
    return RecordingBuilder()


@pytest.fixture
def make_channel():
    """Factory for recording channels."""

    def factory(name: str, min_resend_interval: int = 0) -> RecordingChannel:
        return RecordingChannel(name, min_resend_interval)

    return factory


@pytest.fixture
def failing_channel() -> FailingChannel:
    """Channel whose send and shutdown raise."""
    return FailingChannel("broken")


@pytest.fixture
def failing_cache() -> FailingCache:
    """Cache whose lookups and stores raise."""
    return FailingCache()
