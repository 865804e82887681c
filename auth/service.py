"""
auth/service.py -- Request-level account operations consumed by the HTTP layer.

AccountService wires the engine's components together and exposes one method
per operation: register, login, login_with_identity_token, verify_email,
change_password, initiate_password_reset, complete_password_reset, logout,
authenticate and get_user, plus the administrative create_admin and
revoke_sessions used by the CLI and the admin route. Each method either
returns its result or raises an AuthError subclass; none of them catches and
hides an engine error.

Every method re-reads what it needs from the store. Nothing about a user is
kept between calls.

Usage:
    service = AccountService.from_settings(get_settings(), store, mailer, verifier)
    user = service.register("alice", "alice@example.com", "Passw0rd!", "Passw0rd!")
    user, token, expiry = service.login("alice@example.com", "Passw0rd!")
    service.authenticate(f"session-key={token}")  # -> "alice"
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable, Protocol

from auth.codes import Mailer, VerificationCodeManager
from auth.errors import Unauthorized
from auth.identity import IdentityResolver
from auth.models import AuthLevel, CodeKind, DefaultIdentity, FederatedIdentity, IdentityClaims, IdentityProvider, User
from auth.passwords import hash_password, verify_password
from auth.sessions import SessionManager
from auth.store import AccountStore
from auth.throttle import LoginThrottle
from auth.validation import normalize_email, validate_email, validate_new_password, validate_username

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("keyward.auth.service")


class IdentityTokenVerifier(Protocol):
    def verify(self, token: str, audience: str) -> IdentityClaims: ...


class AccountService:
    def __init__(
        self,
        store: AccountStore,
        sessions: SessionManager,
        codes: VerificationCodeManager,
        resolver: IdentityResolver,
        verifier: IdentityTokenVerifier,
        google_client_id: str = "",
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.codes = codes
        self.resolver = resolver
        self.verifier = verifier
        self.google_client_id = google_client_id

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: AccountStore,
        mailer: Mailer,
        verifier: IdentityTokenVerifier,
        clock: Callable[[], float] = time.time,
    ) -> AccountService:
        throttle = LoginThrottle(store, settings.max_login_attempts)
        return cls(
            store=store,
            sessions=SessionManager(store, settings.secret_key, settings.session_lifetime_seconds, clock=clock),
            codes=VerificationCodeManager(store, mailer, settings.mail_from, settings.code_ttl_seconds, clock=clock),
            resolver=IdentityResolver(store, throttle, clock=clock),
            verifier=verifier,
            google_client_id=settings.google_client_id,
        )

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, username: str, email: str, password: str, confirm_password: str) -> User:
        """Create a local account and mail it an EmailVerification code.

        All input checks run before the first query. If the email cannot be
        sent the account still exists and DeliveryError is raised.
        """
        email = normalize_email(email)
        validate_email(email)
        validate_username(username)
        validate_new_password(password, confirm_password)

        user = self.resolver.register_local(username, email, password)
        logger.info("Sending a verification email to %s", email)
        self.codes.issue(email, CodeKind.email_verification, recipient=username)
        return user

    def login(self, email: str, password: str) -> tuple[User, str, int]:
        """Password login. Returns (user, session_token, expiry)."""
        email = normalize_email(email)
        user, _ = self.resolver.resolve(DefaultIdentity(email=email, password=password))
        token, expiry = self.sessions.create_session(user)
        return user, token, expiry

    def login_with_identity_token(self, credential: str) -> tuple[User, str, int]:
        """Google login. Returns (user, session_token, expiry).

        A first login with an unverified Google email also mails an
        EmailVerification code.
        """
        claims = self.verifier.verify(credential, audience=self.google_client_id)
        user, created = self.resolver.resolve(FederatedIdentity(provider=IdentityProvider.google, claims=claims))
        if created and not claims.email_verified:
            self.codes.issue(user.email, CodeKind.email_verification, recipient=user.username)
        token, expiry = self.sessions.create_session(user)
        return user, token, expiry

    def logout(self, token: str | None) -> None:
        if token:
            self.sessions.revoke(token)

    # ------------------------------------------------------------------
    # Session-scoped operations
    # ------------------------------------------------------------------

    def authenticate(self, cookie_header: str | None) -> str:
        """Resolve a Cookie header to a username or raise Unauthorized."""
        return self.sessions.authenticate(cookie_header)

    def get_user(self, username: str) -> User:
        """Load the session owner. A session for a deleted user is Unauthorized."""
        user = self.store.get_by_username(username)
        if user is None:
            raise Unauthorized("Unauthorised")
        return user

    def verify_email(self, username: str, code: str) -> None:
        user = self.get_user(username)
        self.codes.redeem(user.email, code, CodeKind.email_verification)

    def change_password(
        self,
        username: str,
        old_password: str,
        password: str,
        confirm_password: str,
        current_token: str | None = None,
    ) -> None:
        """Replace the password after checking the old one.

        Every other session of the user is revoked; the caller's own session
        (current_token) survives.
        """
        validate_new_password(password, confirm_password)
        user = self.get_user(username)
        if user.provider is not IdentityProvider.default or not verify_password(user.hashed_password, old_password):
            raise Unauthorized("Incorrect password")

        self.store.update_password(user.id, hash_password(password))
        self.sessions.revoke_all(user.username, keep_token=current_token)
        logger.info("Password changed for %s", user.username)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def create_admin(self, username: str, email: str, password: str) -> User:
        """Create a verified admin account. No verification email is sent."""
        email = normalize_email(email)
        validate_email(email)
        validate_username(username)
        validate_new_password(password, password)
        return self.resolver.register_local(username, email, password, auth_level=AuthLevel.admin)

    def revoke_sessions(self, username: str) -> int:
        """Administrative invalidation: delete every session username holds."""
        return self.sessions.revoke_all(username)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def initiate_password_reset(self, email: str) -> str:
        """Issue and mail a PasswordReset code. Returns the code."""
        email = normalize_email(email)
        user = self.store.get_by_email(email)
        if user is None or user.provider is not IdentityProvider.default:
            raise Unauthorized("No password account is registered with that email")
        return self.codes.issue(user.email, CodeKind.password_reset, recipient=user.username)

    def complete_password_reset(self, email: str, code: str, password: str, confirm_password: str) -> None:
        """Redeem a PasswordReset code: new hash, counter zeroed, all sessions revoked."""
        email = normalize_email(email)
        validate_new_password(password, confirm_password)
        self.codes.redeem(email, code, CodeKind.password_reset, new_password_hash=hash_password(password))
        user = self.store.get_by_email(email)
        if user is not None:
            self.sessions.revoke_all(user.username)
        logger.info("Password reset completed for %s", email)
