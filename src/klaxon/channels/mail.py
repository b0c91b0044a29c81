"""Email channel that mails alarms through an SMTP server."""

from __future__ import annotations

import logging
import smtplib
import time
from dataclasses import dataclass, field
from email.mime.text import MIMEText
from typing import Mapping, Sequence

from klaxon.channels.protocols import SendTask
from klaxon.exceptions import ChannelConfigError

logger = logging.getLogger(__name__)

ALARM_VAR = "${alarm}"
SOURCE_VAR = "${source}"


@dataclass
class EmailBuilder:
    """Sends one email per alarm.

    Alarms from a source listed in ``recipients_by_source`` go to those
    addresses; every other alarm goes to ``to_addresses``. An alarm with
    no recipients at all is declined.

    The body is ``body_template`` with ``${alarm}`` replaced by the alarm
    (the alarm alone when the placeholder is missing), prefixed with the
    local send time.

    Attributes:
        smtp_host: SMTP server hostname.
        smtp_port: SMTP server port.
        smtp_user: SMTP authentication username.
        smtp_password: SMTP authentication password.
        use_tls: Upgrade the connection with STARTTLS.
        use_ssl: Connect over SSL from the start (takes precedence).
        from_address: Sender address.
        to_addresses: Default recipients.
        recipients_by_source: Per-source recipients.
        subject: Subject template; ``${source}`` is replaced.
        body_template: Body template; ``${alarm}`` is replaced.
        timeout_seconds: Socket timeout for the SMTP connection.

    Example:
        >>> builder = EmailBuilder(
        ...     smtp_host="smtp.example.com",
        ...     from_address="alarms@example.com",
        ...     to_addresses=["ops@example.com"],
        ...     recipients_by_source={"billing": ["billing-oncall@example.com"]},
        ... )
    """

    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    use_tls: bool = True
    use_ssl: bool = False
    from_address: str = ""
    to_addresses: Sequence[str] = field(default_factory=list)
    recipients_by_source: Mapping[str, Sequence[str]] = field(default_factory=dict)
    subject: str = "Alarm from ${source}"
    body_template: str = ALARM_VAR
    timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if not self.from_address:
            raise ChannelConfigError("email", "from_address is required")
        if isinstance(self.to_addresses, str):
            self.to_addresses = [self.to_addresses]
        self.to_addresses = list(self.to_addresses)
        self.recipients_by_source = {
            source: [addresses] if isinstance(addresses, str) else list(addresses)
            for source, addresses in self.recipients_by_source.items()
        }
        if not self.to_addresses and not any(self.recipients_by_source.values()):
            raise ChannelConfigError(
                "email", "either to_addresses or recipients_by_source is required"
            )

    def recipients(self, source: str | None) -> list[str]:
        """Return the addresses an alarm from the source is mailed to."""
        if source is not None and source in self.recipients_by_source:
            return list(self.recipients_by_source[source])
        return list(self.to_addresses)

    def has_source(self, source: str | None) -> bool:
        """Check if alarms from the source have any recipient."""
        return bool(self.recipients(source))

    def build_message(self, message: str, source: str | None, recipients: list[str]) -> MIMEText:
        """Build the email for an alarm."""
        if ALARM_VAR in self.body_template:
            body = self.body_template.replace(ALARM_VAR, message)
        else:
            body = message
        msg = MIMEText(f"({time.strftime('%H:%M:%S')}) {body}", "plain", "utf-8")
        msg["Subject"] = self.subject.replace(SOURCE_VAR, source or "unknown source")
        msg["From"] = self.from_address
        msg["To"] = ", ".join(recipients)
        return msg

    def build_task(self, message: str, source: str | None) -> SendTask | None:
        if not self.has_source(source):
            return None

        recipients = self.recipients(source)
        msg = self.build_message(message, source, recipients)

        def task() -> None:
            try:
                self._send(recipients, msg)
            except (smtplib.SMTPException, OSError) as e:
                logger.error(f"Email channel cannot send alarm '{message}': {e}")

        return task

    def _send(self, recipients: list[str], msg: MIMEText) -> None:
        if self.use_ssl:
            smtp = smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=self.timeout_seconds)
        else:
            smtp = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout_seconds)
            if self.use_tls:
                smtp.starttls()

        try:
            if self.smtp_user and self.smtp_password:
                smtp.login(self.smtp_user, self.smtp_password)
            smtp.sendmail(self.from_address, recipients, msg.as_string())
        finally:
            smtp.quit()
