"""
mail/sender.py -- SMTP email collaborator.

One attempt per call, bounded by a socket timeout; the engine never retries a
send. Any SMTP or socket failure is raised as DeliveryError so the calling
operation can surface it.

When no SMTP host is configured (local development) the mailer logs the
recipient and subject instead of sending. Message bodies are never logged:
they carry verification and reset codes.

Layer rule: may import auth.errors; auth/ never imports from mail/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage

from auth.errors import DeliveryError

logger = logging.getLogger("keyward.mail")


def _redact(address: str) -> str:
    """Shorten an address for logs: alice@example.com -> al***@example.com."""
    if "@" not in address:
        return "redacted"
    local, domain = address.rsplit("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpMailer:
    """Send mail through an SMTP relay with STARTTLS.

    Usage:
        mailer = SmtpMailer(host="smtp.example.com", username="u", password="p")
        mailer.send("alice@example.com", "registration@tld.com", "Hi", "<p>Hello</p>")
    """

    def __init__(
        self,
        host: str = "",
        port: int = 587,
        username: str = "",
        password: str = "",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.host)

    def send(self, to: str, sender: str, subject: str, body: str) -> None:
        """Deliver one HTML message. Raises DeliveryError on any failure."""
        if not self.is_configured:
            logger.info("SMTP not configured; dropping message to %s (%s)", _redact(to), subject)
            return

        msg = EmailMessage()
        msg["From"] = sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls(context=ssl.create_default_context())
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email to %s failed: %s", _redact(to), exc.__class__.__name__)
            raise DeliveryError("Unable to send email.", detail=exc.__class__.__name__) from exc

        logger.info("Email sent to %s (%s)", _redact(to), subject)
