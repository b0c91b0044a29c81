"""Webhook channel that sends alarms over HTTP GET or POST."""

from __future__ import annotations

import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Collection

from klaxon.channels.protocols import SendTask
from klaxon.exceptions import ChannelConfigError

logger = logging.getLogger(__name__)

ALARM_VAR = "${alarm}"
SOURCE_VAR = "${source}"

# Only this much of the response body is scanned for the expected text.
MAX_RESPONSE_BYTES = 4096


def _fill(template: str, message: str, source: str | None) -> str:
    return template.replace(ALARM_VAR, urllib.parse.quote_plus(message)).replace(
        SOURCE_VAR, urllib.parse.quote_plus(source or "")
    )


@dataclass
class WebhookBuilder:
    """Calls a URL for each alarm.

    ``${alarm}`` and ``${source}`` in the URL or POST data are replaced
    with the URL-encoded alarm and source. POST is used when ``post_data``
    is set, GET otherwise.

    Attributes:
        url: Target URL, optionally containing variables.
        post_data: Request body template; switches the method to POST.
        alarm_sources: If set, only alarms from these sources are sent.
        expected_response: Text that must appear in the response body;
            a warning is logged when it does not.
        headers: Extra request headers.
        timeout_seconds: Socket timeout for the request.

    Example:
        >>> builder = WebhookBuilder(
        ...     url="https://status.example.com/notify",
        ...     post_data="text=${alarm}&origin=${source}",
        ...     expected_response="OK",
        ... )
    """

    url: str = ""
    post_data: str | None = None
    alarm_sources: Collection[str] | None = None
    expected_response: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if not self.url:
            raise ChannelConfigError("webhook", "url is required")
        if ALARM_VAR not in self.url and SOURCE_VAR not in self.url and self.post_data is None:
            raise ChannelConfigError("webhook", "post_data is needed if url has no variables")
        if self.alarm_sources is not None:
            self.alarm_sources = frozenset(self.alarm_sources)

    def has_source(self, source: str | None) -> bool:
        """Check if alarms from the source are delivered by this channel."""
        return self.alarm_sources is None or source in self.alarm_sources

    def build_request(self, message: str, source: str | None) -> urllib.request.Request:
        """Build the HTTP request for an alarm."""
        url = _fill(self.url, message, source)
        data = None
        if self.post_data is not None:
            data = _fill(self.post_data, message, source).encode("utf-8")

        request = urllib.request.Request(url, data=data, method="POST" if data is not None else "GET")
        if data is not None:
            request.add_header("Content-Type", "application/x-www-form-urlencoded")
        for name, value in self.headers.items():
            request.add_header(name, value)
        return request

    def build_task(self, message: str, source: str | None) -> SendTask | None:
        if not self.has_source(source):
            return None

        request = self.build_request(message, source)

        def task() -> None:
            try:
                with urllib.request.urlopen(request, timeout=self.timeout_seconds) as response:
                    if self.expected_response is None:
                        return
                    body = response.read(MAX_RESPONSE_BYTES).decode("utf-8", errors="replace")
            except urllib.error.HTTPError as e:
                logger.error(f"Webhook returned HTTP {e.code} sending alarm to {request.full_url}")
                return
            except (urllib.error.URLError, OSError) as e:
                logger.error(f"Sending alarm over URL {request.full_url} failed: {e}")
                return

            if self.expected_response not in body:
                logger.warning(
                    f"Did not get expected response sending alarm over URL {request.full_url}"
                )

        return task
