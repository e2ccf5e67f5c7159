"""
SMTP mail transport for digest delivery.

One connection per send, no pooling.  smtplib is blocking, so the send runs in
a worker thread to keep the event loop (and the control endpoint) responsive.
"""

from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from typing import TYPE_CHECKING, Sequence

import structlog

from ownly_headless.channels.formatting import strip_html_tags
from ownly_headless.errors import DeliveryError
from ownly_headless.types import DeliveryInfo

if TYPE_CHECKING:
    from ownly_headless.config import MailConfig

logger = structlog.get_logger(__name__)


def build_message(
    sender: str,
    to: Sequence[str],
    subject: str,
    html_body: str,
) -> EmailMessage:
    """Build a multipart/alternative message; BCC stays off the headers."""
    msg = EmailMessage()
    msg["Subject"] = subject or ""
    msg["From"] = sender
    msg["To"] = ", ".join(to)
    msg["Message-ID"] = make_msgid()
    msg.set_content(strip_html_tags(html_body))
    msg.add_alternative(html_body, subtype="html")
    return msg


class SmtpMailTransport:
    """Delivers HTML mail through a single SMTP relay."""

    def __init__(self, config: "MailConfig") -> None:
        self._host = config.smtp_host
        self._port = config.smtp_port
        self._security = config.smtp_security
        self._username = config.smtp_username
        self._password = config.smtp_password
        self._timeout = config.smtp_timeout

    async def send(
        self,
        sender: str,
        to: Sequence[str],
        bcc: Sequence[str],
        subject: str,
        html_body: str,
    ) -> DeliveryInfo:
        if not to:
            raise DeliveryError("no recipients")
        msg = build_message(sender, to, subject, html_body)
        envelope = list(to) + list(bcc)
        try:
            await asyncio.to_thread(self._deliver, msg, sender, envelope)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP delivery via {self._host}:{self._port} failed: {e}") from e
        logger.info("mail.sent", host=self._host, recipients=len(envelope))
        return DeliveryInfo(message_id=str(msg["Message-ID"]), accepted=envelope)

    def _connect(self) -> smtplib.SMTP:
        if self._security == "ssl":
            return smtplib.SMTP_SSL(self._host, self._port, timeout=self._timeout)
        return smtplib.SMTP(self._host, self._port, timeout=self._timeout)

    def _deliver(self, msg: EmailMessage, sender: str, envelope: list[str]) -> None:
        client = self._connect()
        try:
            client.ehlo()
            if self._security == "starttls":
                client.starttls()
                client.ehlo()
            if self._username:
                client.login(self._username, self._password or "")
            client.send_message(msg, from_addr=sender, to_addrs=envelope)
        finally:
            try:
                client.quit()
            except (smtplib.SMTPException, OSError):
                client.close()
