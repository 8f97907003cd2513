"""Email transports.

`SMTPEmailTransport` talks to a real SMTP server through `smtplib`, run in a
worker thread so a slow server only stalls the email pool's own worker.
`LoggingEmailTransport` is used when no SMTP host is configured: it records
the message in the log and reports success.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from attendflow.config import Settings
from attendflow.errors import EmailSendError

logger = logging.getLogger(__name__)


class EmailTransport(Protocol):
    async def send(self, to: str, subject: str, body: str) -> None:  # pragma: no cover - Protocol
        ...


class SMTPEmailTransport:
    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        from_address: str,
        use_ssl: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._from = from_address
        self._use_ssl = use_ssl
        self._timeout = timeout

    def _build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self._from
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        if self._use_ssl:
            smtp_conn: smtplib.SMTP = smtplib.SMTP_SSL(self._host, self._port, timeout=self._timeout)
        else:
            smtp_conn = smtplib.SMTP(self._host, self._port, timeout=self._timeout)
        with smtp_conn as smtp:
            smtp.ehlo()
            if not self._use_ssl:
                smtp.starttls()
                smtp.ehlo()
            if self._username and self._password:
                smtp.login(self._username, self._password)
            smtp.send_message(msg)

    async def send(self, to: str, subject: str, body: str) -> None:
        msg = self._build_message(to, subject, body)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailSendError(f"SMTP delivery via {self._host}:{self._port} failed: {exc}") from exc


class LoggingEmailTransport:
    def __init__(self, logger_: logging.Logger | None = None) -> None:
        self._logger = logger_ or logger

    async def send(self, to: str, subject: str, body: str) -> None:
        self._logger.info("email (not sent, no SMTP host) to=%s subject=%r body=%r", to, subject, body)


def create_transport(settings: Settings) -> EmailTransport:
    if not settings.smtp_host:
        logger.warning("SMTP_HOST not set; emails will only be logged")
        return LoggingEmailTransport()
    return SMTPEmailTransport(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        from_address=settings.smtp_from,
        use_ssl=settings.smtp_use_ssl,
        timeout=settings.smtp_timeout_seconds,
    )
