"""
auth/mailer.py -- Outbound mail for one-time codes.

The code flows only need "deliver this code to this address". Two backends:

  ConsoleMailer -- logs the message (development, tests). Selected with
                   MAIL_BACKEND=console (the default).
  SmtpMailer    -- smtplib with a bounded socket timeout so a dead relay
                   fails fast instead of hanging the request.

Message bodies are Jinja2 templates keyed by purpose. Any exception from
send() is the caller's signal that delivery failed; the code flow turns it
into a generic DELIVERY_FAILED outcome and keeps the detail in server logs.
"""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

from jinja2 import Environment, DictLoader, StrictUndefined

from core.config import Settings

logger = logging.getLogger("eventara.mail")

_TEMPLATES = {
    "reset.subject": "Your Eventara password reset code",
    "reset.body": (
        "Hello,\n\n"
        "We received a request to reset the password for {{ email }}.\n\n"
        "Your reset code is: {{ code }}\n\n"
        "The code expires on {{ expires }}. If you did not request a reset,\n"
        "you can ignore this message; your password has not changed.\n\n"
        "-- The Eventara team\n"
    ),
    "reactivate.subject": "Reactivate your Eventara account",
    "reactivate.body": (
        "Hello,\n\n"
        "Your Eventara account {{ email }} was deactivated after a period of inactivity.\n\n"
        "Your reactivation code is: {{ code }}\n\n"
        "The code expires on {{ expires }}.\n\n"
        "-- The Eventara team\n"
    ),
}

_env = Environment(loader=DictLoader(_TEMPLATES), undefined=StrictUndefined, autoescape=False)


@dataclass(frozen=True)
class CodeMessage:
    to: str
    purpose: str  # "reset" | "reactivate"
    code: str
    expires: str  # human-readable expiry, e.g. "Oct 18, 2026 at 3:04 PM UTC"


def render(message: CodeMessage) -> tuple[str, str]:
    """Return (subject, body) for a code message."""
    context = {"email": message.to, "code": message.code, "expires": message.expires}
    subject = _env.get_template(f"{message.purpose}.subject").render(**context)
    body = _env.get_template(f"{message.purpose}.body").render(**context)
    return subject, body


class Mailer(Protocol):
    def send_code(self, message: CodeMessage) -> None: ...


class ConsoleMailer:
    """Logs outgoing mail instead of sending it. The code appears only at DEBUG level."""

    def send_code(self, message: CodeMessage) -> None:
        subject, body = render(message)
        logger.info("[DEV MAIL] To: %s Subject: %s", message.to, subject)
        logger.debug("[DEV MAIL] Body:\n%s", body)


class SmtpMailer:
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = False,
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout

    def send_code(self, message: CodeMessage) -> None:
        subject, body = render(message)
        email = EmailMessage()
        email["From"] = self._sender
        email["To"] = message.to
        email["Subject"] = subject
        email.set_content(body)

        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as conn:
            if self._use_tls:
                conn.starttls()
            if self._username:
                conn.login(self._username, self._password)
            conn.send_message(email)
        logger.info("Sent %s code mail to %s", message.purpose, message.to)


def build_mailer(settings: Settings) -> Mailer:
    if settings.mail_backend == "smtp":
        return SmtpMailer(
            host=settings.mail_host,
            port=settings.mail_port,
            sender=settings.mail_from,
            username=settings.mail_username,
            password=settings.mail_password,
            use_tls=settings.mail_use_tls,
            timeout=settings.mail_timeout_seconds,
        )
    return ConsoleMailer()
