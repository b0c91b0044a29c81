"""Tests for concrete transports and the channel factory."""

from __future__ import annotations

import io
import logging
import re
import smtplib
import subprocess
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from klaxon.channels import (
    CommandBuilder,
    ConsoleBuilder,
    EmailBuilder,
    LogBuilder,
    QueuedChannel,
    WebhookBuilder,
    create_builder,
    create_channel,
    list_channel_types,
    register_channel,
)
from klaxon.channels.log import parse_level
from klaxon.exceptions import ChannelConfigError, ConfigError


# =============================================================================
# Console
# =============================================================================


class TestConsoleBuilder:
    """Tests for ConsoleBuilder."""

    def test_prints_alarm(self):
        out = io.StringIO()
        builder = ConsoleBuilder(file=out)

        builder.build_task("disk full", "db01")()

        assert out.getvalue() == "ALARM: disk full\n"

    def test_source_filter(self):
        out = io.StringIO()
        builder = ConsoleBuilder(alarm_source="db01", file=out)

        assert builder.build_task("disk full", "db02") is None
        builder.build_task("disk full", "db01")()

        assert out.getvalue() == "ALARM: [db01] disk full\n"
        assert builder.has_source("db01") is True
        assert builder.has_source("db02") is False
        assert ConsoleBuilder(file=out).has_source("db02") is True

    def test_markup_is_not_interpreted(self):
        out = io.StringIO()

        ConsoleBuilder(file=out).build_task("[bold]raw[/bold]", None)()

        assert "[bold]raw[/bold]" in out.getvalue()


# =============================================================================
# Log
# =============================================================================


class TestLogBuilder:
    """Tests for LogBuilder."""

    def test_logs_to_alarm_logger(self, caplog):
        builder = LogBuilder(level="error")

        with caplog.at_level(logging.DEBUG, logger="klaxon.alarm"):
            builder.build_task("disk full", None)()

        record = caplog.records[-1]
        assert record.name == "klaxon.alarm"
        assert record.levelno == logging.ERROR
        assert record.getMessage() == "disk full"

    def test_source_selects_child_logger(self, caplog):
        builder = LogBuilder()

        with caplog.at_level(logging.DEBUG, logger="klaxon.alarm"):
            builder.build_task("disk full", "db01")()

        assert caplog.records[-1].name == "klaxon.alarm.db01"
        assert caplog.records[-1].levelno == logging.WARNING

    def test_parse_level(self):
        assert parse_level("warn") == logging.WARNING
        assert parse_level(logging.INFO) == logging.INFO
        with pytest.raises(ValueError):
            parse_level("loud")


# =============================================================================
# Command
# =============================================================================


class TestCommandBuilder:
    """Tests for CommandBuilder."""

    def test_requires_a_command(self):
        with pytest.raises(ChannelConfigError):
            CommandBuilder()

    def test_string_command_receives_alarm_argument(self):
        builder = CommandBuilder(command="/usr/local/bin/notify")

        with patch("klaxon.channels.command.subprocess.run") as run:
            run.return_value = MagicMock(returncode=0, stderr=b"")
            builder.build_task("disk full", None)()

        argv = run.call_args.args[0]
        assert argv == ["/usr/local/bin/notify", "disk full"]
        assert run.call_args.kwargs["input"] is None

    def test_placeholder_replaced(self):
        builder = CommandBuilder(command=["notify", "--text", "${alarm}", "--urgent"])

        with patch("klaxon.channels.command.subprocess.run") as run:
            run.return_value = MagicMock(returncode=0, stderr=b"")
            builder.build_task("disk full", None)()

        assert run.call_args.args[0] == ["notify", "--text", "disk full", "--urgent"]

    def test_stdin_prefix(self):
        builder = CommandBuilder(command=["STDIN:/usr/bin/mail", "-s", "alarm", "ops@example.com"])

        with patch("klaxon.channels.command.subprocess.run") as run:
            run.return_value = MagicMock(returncode=0, stderr=b"")
            builder.build_task("disk full", None)()

        assert run.call_args.args[0] == ["/usr/bin/mail", "-s", "alarm", "ops@example.com"]
        assert run.call_args.kwargs["input"] == b"disk full"

    def test_template_not_mutated(self):
        builder = CommandBuilder(command=["STDIN:mail", "ops"])

        with patch("klaxon.channels.command.subprocess.run") as run:
            run.return_value = MagicMock(returncode=0, stderr=b"")
            builder.build_task("one", None)()
            builder.build_task("two", None)()

        assert run.call_args_list[1].args[0] == ["mail", "ops"]
        assert builder.resolve(None) == ["STDIN:mail", "ops"]

    def test_per_source_command(self):
        builder = CommandBuilder(commands_by_source={"billing": "page-billing"})

        assert builder.build_task("msg", "other") is None
        assert builder.resolve("billing") == ["page-billing", "${alarm}"]
        assert builder.has_source("billing") is True
        assert builder.has_source("other") is False
        assert builder.has_source(None) is False

    def test_source_falls_back_to_default(self):
        builder = CommandBuilder(command="notify", commands_by_source={"billing": "page"})

        assert builder.resolve("other") == ["notify", "${alarm}"]
        assert builder.has_source("other") is True

    def test_failures_are_logged(self, caplog):
        builder = CommandBuilder(command="notify")

        with patch("klaxon.channels.command.subprocess.run") as run:
            run.side_effect = FileNotFoundError("notify")
            builder.build_task("msg", None)()
            run.side_effect = subprocess.TimeoutExpired("notify", 30)
            builder.build_task("msg", None)()
            run.side_effect = None
            run.return_value = MagicMock(returncode=2, stderr=b"bad recipient")
            builder.build_task("msg", None)()

        text = caplog.text
        assert "Unable to execute command" in text
        assert "timed out" in text
        assert "exited with code 2" in text


# =============================================================================
# Webhook
# =============================================================================


def _response(body: bytes = b"") -> MagicMock:
    response = MagicMock()
    response.__enter__.return_value.read.return_value = body
    return response


class TestWebhookBuilder:
    """Tests for WebhookBuilder."""

    def test_requires_url(self):
        with pytest.raises(ChannelConfigError):
            WebhookBuilder()

    def test_requires_post_data_without_variables(self):
        with pytest.raises(ChannelConfigError):
            WebhookBuilder(url="https://hooks.example.com/notify")

    def test_get_request_encodes_variables(self):
        builder = WebhookBuilder(url="https://hooks.example.com/notify?text=${alarm}&from=${source}")

        request = builder.build_request("disk full!", "db 01")

        assert request.full_url == "https://hooks.example.com/notify?text=disk+full%21&from=db+01"
        assert request.get_method() == "GET"
        assert request.data is None

    def test_post_request(self):
        builder = WebhookBuilder(
            url="https://hooks.example.com/notify",
            post_data="text=${alarm}",
            headers={"X-Token": "abc"},
        )

        request = builder.build_request("disk full", None)

        assert request.get_method() == "POST"
        assert request.data == b"text=disk+full"
        assert request.get_header("X-token") == "abc"

    def test_source_filter(self):
        builder = WebhookBuilder(url="https://h/?t=${alarm}", alarm_sources=["db01"])

        assert builder.build_task("msg", "db02") is None
        assert builder.build_task("msg", None) is None
        assert builder.build_task("msg", "db01") is not None
        assert isinstance(builder.alarm_sources, frozenset)
        assert builder.has_source("db01") is True
        assert builder.has_source("db02") is False
        assert WebhookBuilder(url="https://h/?t=${alarm}").has_source("db02") is True

    def test_task_calls_urlopen(self):
        builder = WebhookBuilder(url="https://h/?t=${alarm}", timeout_seconds=3.0)

        with patch("klaxon.channels.webhook.urllib.request.urlopen") as urlopen:
            urlopen.return_value = _response()
            builder.build_task("msg", None)()

        request = urlopen.call_args.args[0]
        assert request.full_url == "https://h/?t=msg"
        assert urlopen.call_args.kwargs["timeout"] == 3.0

    def test_unexpected_response_logged(self, caplog):
        builder = WebhookBuilder(url="https://h/?t=${alarm}", expected_response="OK")

        with patch("klaxon.channels.webhook.urllib.request.urlopen") as urlopen:
            urlopen.return_value = _response(b"ERROR")
            builder.build_task("msg", None)()

        assert "Did not get expected response" in caplog.text

    def test_expected_response_found(self, caplog):
        builder = WebhookBuilder(url="https://h/?t=${alarm}", expected_response="OK")

        with patch("klaxon.channels.webhook.urllib.request.urlopen") as urlopen:
            urlopen.return_value = _response(b"status: OK")
            builder.build_task("msg", None)()

        assert "Did not get expected response" not in caplog.text

    def test_http_error_logged(self, caplog):
        builder = WebhookBuilder(url="https://h/?t=${alarm}")

        with patch("klaxon.channels.webhook.urllib.request.urlopen") as urlopen:
            urlopen.side_effect = urllib.error.HTTPError(
                "https://h/?t=msg", 503, "Service Unavailable", hdrs=None, fp=None
            )
            builder.build_task("msg", None)()

        assert "HTTP 503" in caplog.text

    def test_connection_error_logged(self, caplog):
        builder = WebhookBuilder(url="https://h/?t=${alarm}")

        with patch("klaxon.channels.webhook.urllib.request.urlopen") as urlopen:
            urlopen.side_effect = urllib.error.URLError("connection refused")
            builder.build_task("msg", None)()

        assert "failed" in caplog.text


# =============================================================================
# Email
# =============================================================================


class TestEmailBuilder:
    """Tests for EmailBuilder."""

    def test_requires_sender(self):
        with pytest.raises(ChannelConfigError, match="from_address"):
            EmailBuilder(to_addresses=["ops@example.com"])

    def test_requires_recipients(self):
        with pytest.raises(ChannelConfigError, match="to_addresses"):
            EmailBuilder(from_address="alarms@example.com")

    def test_recipients_by_source(self):
        builder = EmailBuilder(
            from_address="alarms@example.com",
            to_addresses="ops@example.com",
            recipients_by_source={"billing": ["billing@example.com", "cfo@example.com"]},
        )

        assert builder.recipients("billing") == ["billing@example.com", "cfo@example.com"]
        assert builder.recipients("db01") == ["ops@example.com"]
        assert builder.recipients(None) == ["ops@example.com"]
        assert builder.has_source("db01") is True

    def test_unknown_source_declined_without_default_recipients(self):
        builder = EmailBuilder(
            from_address="alarms@example.com",
            recipients_by_source={"billing": "billing@example.com"},
        )

        assert builder.build_task("msg", "db01") is None
        assert builder.build_task("msg", None) is None
        assert builder.has_source("db01") is False
        assert builder.has_source("billing") is True

    def test_message_body(self):
        builder = EmailBuilder(
            from_address="alarms@example.com",
            to_addresses=["ops@example.com"],
            subject="[klaxon] ${source}",
            body_template="Check the dashboard: ${alarm}",
        )

        msg = builder.build_message("disk full", "db01", ["ops@example.com"])
        body = msg.get_payload(decode=True).decode("utf-8")

        assert msg["Subject"] == "[klaxon] db01"
        assert msg["From"] == "alarms@example.com"
        assert msg["To"] == "ops@example.com"
        assert re.fullmatch(r"\(\d{2}:\d{2}:\d{2}\) Check the dashboard: disk full", body)

    def test_body_without_placeholder_is_alarm(self):
        builder = EmailBuilder(
            from_address="alarms@example.com", to_addresses=["ops@example.com"], body_template="x"
        )

        body = builder.build_message("disk full", None, ["ops@example.com"]).get_payload(decode=True)

        assert body.decode("utf-8").endswith(") disk full")

    def test_sends_with_starttls_and_login(self):
        builder = EmailBuilder(
            smtp_host="smtp.example.com",
            smtp_port=2525,
            smtp_user="alarms",
            smtp_password="secret",
            from_address="alarms@example.com",
            to_addresses=["ops@example.com"],
            recipients_by_source={"billing": ["billing@example.com"]},
            timeout_seconds=5.0,
        )

        with patch("klaxon.channels.mail.smtplib.SMTP") as smtp_class:
            builder.build_task("invoice run failed", "billing")()

        smtp_class.assert_called_once_with("smtp.example.com", 2525, timeout=5.0)
        smtp = smtp_class.return_value
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("alarms", "secret")
        sender, recipients, text = smtp.sendmail.call_args.args
        assert sender == "alarms@example.com"
        assert recipients == ["billing@example.com"]
        assert "Subject: Alarm from billing" in text
        smtp.quit.assert_called_once()

    def test_sends_over_ssl(self):
        builder = EmailBuilder(
            smtp_port=465,
            use_ssl=True,
            from_address="alarms@example.com",
            to_addresses=["ops@example.com"],
        )

        with patch("klaxon.channels.mail.smtplib.SMTP_SSL") as ssl_class, patch(
            "klaxon.channels.mail.smtplib.SMTP"
        ) as smtp_class:
            builder.build_task("msg", None)()

        ssl_class.assert_called_once_with("localhost", 465, timeout=30.0)
        smtp_class.assert_not_called()
        ssl_class.return_value.starttls.assert_not_called()
        ssl_class.return_value.login.assert_not_called()
        ssl_class.return_value.quit.assert_called_once()

    def test_smtp_failure_logged(self, caplog):
        builder = EmailBuilder(
            use_tls=False, from_address="alarms@example.com", to_addresses=["ops@example.com"]
        )

        with patch("klaxon.channels.mail.smtplib.SMTP") as smtp_class:
            smtp = smtp_class.return_value
            smtp.sendmail.side_effect = smtplib.SMTPRecipientsRefused({})
            builder.build_task("disk full", None)()

        smtp.starttls.assert_not_called()
        smtp.quit.assert_called_once()
        assert "cannot send alarm 'disk full'" in caplog.text

    def test_connection_failure_logged(self, caplog):
        builder = EmailBuilder(from_address="alarms@example.com", to_addresses=["ops@example.com"])

        with patch("klaxon.channels.mail.smtplib.SMTP") as smtp_class:
            smtp_class.side_effect = ConnectionRefusedError("refused")
            builder.build_task("disk full", None)()

        assert "cannot send alarm" in caplog.text

    def test_created_from_config(self):
        builder = create_builder(
            {
                "type": "email",
                "name": "mail",
                "from_address": "alarms@example.com",
                "to_addresses": ["ops@example.com"],
                "min_resend_interval_ms": 600_000,
            }
        )

        assert isinstance(builder, EmailBuilder)
        assert builder.to_addresses == ["ops@example.com"]


# =============================================================================
# Source Filtering
# =============================================================================


@pytest.mark.parametrize(
    "builder",
    [
        ConsoleBuilder(alarm_source="db01", file=io.StringIO()),
        WebhookBuilder(url="https://h/?t=${alarm}", alarm_sources=["db01"]),
        CommandBuilder(commands_by_source={"db01": "page-db"}),
        EmailBuilder(from_address="a@example.com", recipients_by_source={"db01": "db@example.com"}),
    ],
    ids=["console", "webhook", "command", "email"],
)
def test_has_source_matches_build_task(builder):
    for source in ("db01", "db02", None):
        assert builder.has_source(source) is (builder.build_task("msg", source) is not None)


# =============================================================================
# Factory
# =============================================================================


class TestChannelFactory:
    """Tests for create_channel and the builder registry."""

    def test_builtin_types(self):
        assert {"console", "log", "command", "webhook", "email"} <= set(list_channel_types())

    def test_create_log_channel(self):
        channel = create_channel(
            {"type": "log", "level": "error", "min_resend_interval_ms": 5000}, index=2
        )

        assert isinstance(channel, QueuedChannel)
        assert channel.name == "log-2"
        assert channel.min_resend_interval == 5000
        assert isinstance(channel.builder, LogBuilder)
        channel.shutdown()

    def test_explicit_name_and_type_case(self):
        channel = create_channel({"type": "Console", "name": "stdout"})

        assert channel.name == "stdout"
        assert channel.min_resend_interval == 60_000
        channel.shutdown()

    def test_missing_type(self):
        with pytest.raises(ConfigError, match="has no type"):
            create_builder({"level": "error"}, index=3)

    def test_unknown_type(self):
        with pytest.raises(ChannelConfigError, match="unknown type"):
            create_builder({"type": "carrier-pigeon"})

    def test_unknown_option(self):
        with pytest.raises(ChannelConfigError):
            create_builder({"type": "log", "colour": "red"})

    def test_invalid_option_value(self):
        with pytest.raises(ChannelConfigError):
            create_builder({"type": "log", "level": "loud"})

    def test_invalid_interval(self):
        with pytest.raises(ChannelConfigError):
            create_channel({"type": "log", "min_resend_interval_ms": "soon"})

    def test_register_channel(self):
        @register_channel("test-null")
        class NullBuilder:
            def __init__(self, **options):
                self.options = options

            def build_task(self, message, source):
                return None

        channel = create_channel({"type": "test-null", "flavour": "plain"})

        assert "test-null" in list_channel_types()
        assert channel.builder.options == {"flavour": "plain"}
        channel.shutdown()
