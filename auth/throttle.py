"""
auth/throttle.py -- Per-account failed-login counter and lockout.

The counter lives on the user row and only ever moves in SQL. Every password
check first reserves an attempt with a conditional increment
(``login_attempts < max``), so concurrent logins cannot together run more
than max_attempts checks against a locked-out account. A successful check
gives the reservation back by zeroing the counter.

It has no time decay: once an account reaches the limit the only way back is
a successful password reset, which zeroes it in the same transaction that
stores the new hash.
"""

from __future__ import annotations

import logging

from auth.errors import TooManyAttempts
from auth.models import User
from auth.store import AccountStore

logger = logging.getLogger("keyward.auth.throttle")


class LoginThrottle:
    def __init__(self, store: AccountStore, max_attempts: int) -> None:
        self.store = store
        self.max_attempts = max_attempts

    def reserve(self, user: User) -> int:
        """Count this attempt and return the new total. Call before any password check.

        Raises TooManyAttempts when the account is already at the limit.
        """
        attempts = self.store.reserve_login_attempt(user.id, self.max_attempts)
        if attempts is None:
            logger.warning("Login refused for %s: account locked after %d failures", user.username, self.max_attempts)
            raise TooManyAttempts("Too many login attempts, please reset your password")
        return attempts

    def record_failure(self, user: User, attempts: int) -> None:
        logger.info("Failed login for %s (%d/%d)", user.username, attempts, self.max_attempts)

    def record_success(self, user: User) -> None:
        self.store.reset_login_attempts(user.id)
