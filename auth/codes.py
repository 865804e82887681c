"""
auth/codes.py -- One-time codes for email verification and password reset.

Lifecycle of a code:
  issue()  -- persist (code, email, kind, created_ts, expiry_ts, used=0),
              then send it by email. A failed send raises DeliveryError but
              the row is kept; the caller decides whether that is fatal.
  redeem() -- consume the newest matching unused, unexpired code and apply
              its effect in one store transaction. Second redemption of the
              same code, a wrong code, or an expired one all raise
              InvalidOrExpiredCode.

Several live codes of one kind may exist for an email (e.g. the user asked
twice); any of them redeems, each at most once.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

from auth.errors import InvalidOrExpiredCode
from auth.models import CodeKind, VerificationCode
from auth.store import AccountStore
from auth.tokens import CODE_LENGTH, generate_token

logger = logging.getLogger("keyward.auth.codes")


class Mailer(Protocol):
    def send(self, to: str, sender: str, subject: str, body: str) -> None: ...


_TEMPLATES: dict[CodeKind, tuple[str, str]] = {
    CodeKind.email_verification: (
        "Verify your email",
        "<p>Thank you for registering.</p> <p>Please verify your email using the following code {code}.</p>",
    ),
    CodeKind.password_reset: (
        "Password Reset",
        "<p>A password reset was requested for your account.</p> "
        "<p>Use this code to reset your password: {code}</p> "
        "<p>If you did not request this, please ignore this email.</p>",
    ),
}


class VerificationCodeManager:
    def __init__(
        self,
        store: AccountStore,
        mailer: Mailer,
        sender: str,
        ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.sender = sender
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(self, email: str, kind: CodeKind, recipient: str | None = None) -> str:
        """Create a code for email and mail it. Returns the code.

        recipient is an optional display name ("alice <alice@example.com>").
        """
        code = generate_token(CODE_LENGTH)
        now = int(self._clock())
        self.store.create_code(
            VerificationCode(code=code, email=email, kind=kind, created_ts=now, expiry_ts=now + self.ttl_seconds)
        )
        logger.info("Issued %s code for %s", CodeKind(kind).value, email)

        subject, body = _TEMPLATES[CodeKind(kind)]
        to = f"{recipient} <{email}>" if recipient else email
        self.mailer.send(to, self.sender, subject, body.format(code=code))
        return code

    def redeem(self, email: str, code: str, kind: CodeKind, new_password_hash: str | None = None) -> None:
        """Consume a code and apply its effect, or raise InvalidOrExpiredCode.

        EmailVerification marks the account verified. PasswordReset stores
        new_password_hash and zeroes the failed-login counter.
        """
        code = (code or "").strip().upper()
        now = int(self._clock())
        kind = CodeKind(kind)
        if kind is CodeKind.email_verification:
            consumed = self.store.redeem_email_verification(email, code, now)
        elif new_password_hash is None:
            raise ValueError("PasswordReset redemption requires new_password_hash")
        else:
            consumed = self.store.redeem_password_reset(email, code, now, new_password_hash)

        if not consumed:
            logger.info("Rejected %s code for %s", kind.value, email)
            raise InvalidOrExpiredCode("Invalid or expired verification code")
        logger.info("Redeemed %s code for %s", kind.value, email)
