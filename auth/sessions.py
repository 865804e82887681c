"""
auth/sessions.py -- Session issue, validation and revocation.

A session is an opaque random token handed to the client as a cookie. The
server keeps only HMAC(SECRET_KEY, token), the owner's username and an
absolute expiry. A session is valid iff now < expiry; validate() enforces that
on every call, so the reaper is a storage concern, not a security one.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from auth.errors import Unauthorized
from auth.models import Session, User
from auth.store import AccountStore
from auth.tokens import SESSION_TOKEN_LENGTH, digest_token, generate_token, session_token_from_cookie_header

logger = logging.getLogger("keyward.auth.sessions")


class SessionManager:
    def __init__(
        self,
        store: AccountStore,
        secret_key: str,
        lifetime_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.lifetime_seconds = lifetime_seconds
        self._secret_key = secret_key
        self._clock = clock

    def _digest(self, token: str) -> str:
        return digest_token(self._secret_key, token)

    def create_session(self, user: User) -> tuple[str, int]:
        """Mint and persist a session for user. Returns (token, expiry)."""
        token = generate_token(SESSION_TOKEN_LENGTH)
        expiry = int(self._clock()) + self.lifetime_seconds
        self.store.create_session(Session(token_digest=self._digest(token), username=user.username, expiry=expiry))
        logger.info("Session created for %s", user.username)
        return token, expiry

    def validate(self, token: str | None) -> str:
        """Return the username owning token, or raise Unauthorized.

        Absent and expired sessions fail through the same query and the same
        exception; the HMAC is computed even for an empty token so both paths
        do the same work.
        """
        digest = self._digest(token or "")
        username = self.store.get_session_username(digest, int(self._clock())) if token else None
        if username is None:
            raise Unauthorized("Unauthorised")
        return username

    def authenticate(self, cookie_header: str | None) -> str:
        """Resolve a raw Cookie header to a username (the route interceptor)."""
        token = session_token_from_cookie_header(cookie_header)
        if token is None:
            logger.info("No session key cookie was found")
        return self.validate(token)

    def revoke(self, token: str) -> bool:
        """Delete one session (logout). Returns False if it did not exist."""
        return self.store.delete_session(self._digest(token))

    def revoke_all(self, username: str, keep_token: str | None = None) -> int:
        """Delete every session of username, optionally keeping the caller's own."""
        keep = self._digest(keep_token) if keep_token else None
        count = self.store.delete_sessions_for_user(username, keep_digest=keep)
        if count:
            logger.info("Revoked %d session(s) for %s", count, username)
        return count
