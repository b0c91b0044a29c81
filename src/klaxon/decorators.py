"""Decorators that raise alarms around application code."""

from __future__ import annotations

import traceback
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from klaxon.dispatcher import AlarmDispatcher

F = TypeVar("F", bound=Callable[..., Any])


def _describe_exception(exc: BaseException) -> str:
    return f"{type(exc).__qualname__}: {exc}"


def format_exception_alarm(
    exc: BaseException,
    message: str = "Exception thrown!",
    stack_lines: int = 0,
) -> str:
    """Build the alarm text for an exception.

    Args:
        exc: The exception that was raised.
        message: Prefix for the alarm.
        stack_lines: Number of trailing traceback lines to append; -1
            appends all of them, 0 none.

    Returns:
        ``"<message> <Type>: <text>"``, optionally followed by the cause
        and the traceback tail.
    """
    parts = [f"{message} {_describe_exception(exc)}"]
    cause = exc.__cause__
    if cause is not None:
        parts.append(f"(Caused by {_describe_exception(cause)})")

    if stack_lines:
        origin = cause if cause is not None else exc
        lines = [
            line.rstrip()
            for chunk in traceback.format_tb(origin.__traceback__)
            for line in chunk.splitlines()
        ]
        if stack_lines > 0:
            lines = lines[-stack_lines:]
        if lines:
            parts.append("\n" + "\n".join(lines))

    return " ".join(parts)


def alarm_on_exception(
    dispatcher: AlarmDispatcher,
    message: str = "Exception thrown!",
    source: str | None = None,
    stack_lines: int = 0,
) -> Callable[[F], F]:
    """Decorator that sends an alarm whenever the wrapped function raises.

    The alarm goes through ``send_alarm``, so repeated failures are
    deduplicated like any other alarm. The exception is always re-raised.

    Usage:
        @alarm_on_exception(dispatcher, message="Billing sync failed", source="billing")
        def sync_invoices():
            ...

    Args:
        dispatcher: Dispatcher to send through.
        message: Prefix for the alarm text.
        source: Alarm source.
        stack_lines: Trailing traceback lines to include (-1 for all).
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                dispatcher.send_alarm(format_exception_alarm(e, message, stack_lines), source)
                raise

        return wrapper  # type: ignore[return-value]

    return decorator
