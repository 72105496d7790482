"""
notify/email.py -- Email delivery and the auth message templates.

Two senders share the EmailSender protocol:
  SmtpEmailSender  -- smtplib + email.message.EmailMessage, STARTTLS optional.
  LogEmailSender   -- development fallback when SMTP_HOST is empty. Logs the
                      recipient and subject only; bodies can contain sign-in
                      links and codes, which must never reach the log.

build_sender(settings) picks one. The message builders return
(subject, body) pairs so the login flow never formats email text itself.
"""

from __future__ import annotations

import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("permitauth.notify")


class EmailSender(Protocol):
    def send(self, to: str, subject: str, body: str) -> None: ...


class SmtpEmailSender:
    def __init__(
        self,
        host: str,
        port: int = 587,
        sender: str = "no-reply@localhost",
        username: str = "",
        password: str = "",
        starttls: bool = True,
        timeout: float = 10.0,
        log: logging.Logger | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._starttls = starttls
        self._timeout = timeout
        self._log = log or logger

    def send(self, to: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self._sender
        msg["To"] = to
        msg.set_content(body)

        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            if self._starttls:
                server.starttls()
            if self._username:
                server.login(self._username, self._password)
            server.send_message(msg)
        self._log.info("Email sent to %s: %s", to, subject)


class LogEmailSender:
    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def send(self, to: str, subject: str, body: str) -> None:
        self._log.info("Email (not delivered, no SMTP host) to %s: %s", to, subject)


def build_sender(settings: Settings) -> EmailSender:
    if not settings.smtp_host:
        logger.warning("SMTP_HOST not set -- emails will be logged, not delivered")
        return LogEmailSender()
    return SmtpEmailSender(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.smtp_sender,
        username=settings.smtp_username,
        password=settings.smtp_password,
        starttls=settings.smtp_starttls,
        timeout=settings.smtp_timeout_seconds,
    )


# ---------------------------------------------------------------------------
# Message builders
# ---------------------------------------------------------------------------


def magic_link_message(url: str, expires_in_minutes: int) -> tuple[str, str]:
    return (
        "Your sign-in link",
        "Use the link below to sign in. It can be used once and expires in "
        f"{expires_in_minutes} minutes.\n\n{url}\n\n"
        "If you did not request this, you can ignore this email.",
    )


def login_otp_message(code: str, expires_in_minutes: int) -> tuple[str, str]:
    return (
        "Your verification code",
        f"Your verification code is {code}\n\n"
        f"It expires in {expires_in_minutes} minutes. Never share this code with anyone.",
    )


def password_reset_message(url: str, code: str, expires_in_minutes: int) -> tuple[str, str]:
    return (
        "Reset your password",
        f"Your password reset code is {code}\n\n"
        f"Open the link below and enter the code to choose a new password:\n{url}\n\n"
        f"The code expires in {expires_in_minutes} minutes. "
        "If you did not request a reset, you can ignore this email.",
    )


def device_registered_message(device_name: str, registered_at: datetime, ip_address: str) -> tuple[str, str]:
    when = registered_at.strftime("%Y-%m-%d %H:%M UTC")
    return (
        "New trusted device on your account",
        f"A new device was registered as trusted on your account.\n\n"
        f"Device: {device_name}\nTime: {when}\nIP address: {ip_address or 'unknown'}\n\n"
        "If this was not you, change your password and contact an administrator.",
    )
