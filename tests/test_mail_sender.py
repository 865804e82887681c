"""
tests/test_mail_sender.py -- SmtpMailer with smtplib.SMTP patched out.
"""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from auth.errors import DeliveryError
from mail.sender import SmtpMailer


def _smtp_mock() -> tuple[MagicMock, MagicMock]:
    server = MagicMock()
    factory = MagicMock()
    factory.return_value.__enter__.return_value = server
    return factory, server


def test_unconfigured_mailer_does_not_connect() -> None:
    factory, _ = _smtp_mock()
    with patch("mail.sender.smtplib.SMTP", factory):
        SmtpMailer().send("alice@example.com", "registration@tld.com", "Hi", "<p>1234ABCD</p>")
    factory.assert_not_called()


def test_send_uses_starttls_and_login() -> None:
    factory, server = _smtp_mock()
    mailer = SmtpMailer(host="smtp.example.com", username="u", password="p", timeout=3.0)
    with patch("mail.sender.smtplib.SMTP", factory):
        mailer.send("alice@example.com", "registration@tld.com", "Verify your email", "<p>code</p>")

    factory.assert_called_once_with("smtp.example.com", 587, timeout=3.0)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("u", "p")
    msg = server.send_message.call_args.args[0]
    assert msg["To"] == "alice@example.com"
    assert msg["From"] == "registration@tld.com"
    assert msg["Subject"] == "Verify your email"
    assert msg.get_content_subtype() == "html"


def test_send_without_credentials_skips_login() -> None:
    factory, server = _smtp_mock()
    with patch("mail.sender.smtplib.SMTP", factory):
        SmtpMailer(host="smtp.example.com").send("alice@example.com", "registration@tld.com", "S", "B")
    server.login.assert_not_called()


@pytest.mark.parametrize("error", [smtplib.SMTPRecipientsRefused({}), ConnectionRefusedError(), TimeoutError()])
def test_failures_become_delivery_error(error: Exception) -> None:
    factory, server = _smtp_mock()
    server.send_message.side_effect = error
    with patch("mail.sender.smtplib.SMTP", factory):
        with pytest.raises(DeliveryError):
            SmtpMailer(host="smtp.example.com").send("alice@example.com", "registration@tld.com", "S", "B")
