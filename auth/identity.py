"""
auth/identity.py -- Resolution of local and federated identities to one user namespace.

The resolver is the single place that decides which account an inbound
identity maps to. It dispatches on the tagged variant from auth/models.py:

  DefaultIdentity(email, password)
      email lookup -> attempt reservation -> Argon2 verification. Unknown email,
      wrong password and Google-only accounts all fail with the same
      Unauthorized message and comparable timing [C1].

  FederatedIdentity(provider, claims)
      (provider, subject) lookup; first sight of a subject creates a
      password-less account whose level follows the email_verified claim.

Cross-provider policy: accounts are never linked implicitly. An email owned
by a password account cannot be claimed through Google, and an email owned
by a Google account cannot be registered with a password; both raise
Conflict. Linking would let whoever controls either credential take over the
other account.

Emails are compared in their normalized form (trimmed, lower-cased), so
Alice@Example.com and alice@example.com are one account.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Callable

from auth.errors import Conflict, Unauthorized
from auth.models import (
    AuthLevel,
    DefaultIdentity,
    FederatedIdentity,
    Identity,
    IdentityProvider,
    User,
)
from auth.passwords import equalize_timing, hash_password, verify_password
from auth.store import AccountStore
from auth.throttle import LoginThrottle
from auth.tokens import generate_token
from auth.validation import normalize_email

logger = logging.getLogger("keyward.auth.identity")

_BAD_CREDENTIALS = "Incorrect email or password"
_USERNAME_STRIP_RE = re.compile(r"[^A-Za-z0-9._-]")


class IdentityResolver:
    def __init__(self, store: AccountStore, throttle: LoginThrottle, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.throttle = throttle
        self._clock = clock

    # ------------------------------------------------------------------
    # Registration (default provider)
    # ------------------------------------------------------------------

    def register_local(
        self, username: str, email: str, password: str, auth_level: AuthLevel = AuthLevel.unverified
    ) -> User:
        """Create a password account. Input must already be validated.

        Self-registered accounts start unverified; the CLI creates admins.
        """
        email = normalize_email(email)
        logger.info("Checking if username %s or email %s is registered", username, email)
        if self.store.get_by_username(username) is not None:
            raise Conflict("That username is already registered")
        if self.store.get_by_email(email) is not None:
            raise Conflict("That email is already registered")

        user = User(
            username=username,
            email=email,
            hashed_password=hash_password(password),
            auth_level=auth_level,
            email_verified=auth_level is not AuthLevel.unverified,
            provider=IdentityProvider.default,
            registration_ts=int(self._clock()),
        )
        # A concurrent registration that passed the same checks loses here,
        # on the UNIQUE constraint, and the store raises Conflict.
        user.id = self.store.create_user(user)
        logger.info("Registered %s", username)
        return user

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def resolve(self, identity: Identity) -> tuple[User, bool]:
        """Return (user, created) for an authenticated identity.

        created is True only when a federated identity was seen for the first
        time and a new account was made for it.
        """
        if isinstance(identity, DefaultIdentity):
            return self._resolve_default(identity), False
        if isinstance(identity, FederatedIdentity):
            return self._resolve_federated(identity)
        raise TypeError(f"Unsupported identity: {type(identity).__name__}")

    def _resolve_default(self, identity: DefaultIdentity) -> User:
        user = self.store.get_by_email(normalize_email(identity.email))
        if user is None or user.provider is not IdentityProvider.default:
            equalize_timing(identity.password)
            raise Unauthorized(_BAD_CREDENTIALS)

        attempts = self.throttle.reserve(user)
        if not verify_password(user.hashed_password, identity.password):
            self.throttle.record_failure(user, attempts)
            raise Unauthorized(_BAD_CREDENTIALS)

        self.throttle.record_success(user)
        return user

    def _resolve_federated(self, identity: FederatedIdentity) -> tuple[User, bool]:
        claims = identity.claims
        user = self.store.get_by_federation(identity.provider, claims.subject)
        if user is not None:
            return user, False

        email = normalize_email(claims.email)
        if self.store.get_by_email(email) is not None:
            logger.info("Refused %s sign-in: %s already belongs to another account", identity.provider.value, email)
            raise Conflict("That email is already registered; sign in with your password")

        user = User(
            username=self._federated_username(email),
            email=email,
            provider=identity.provider,
            federation_subject=claims.subject,
            auth_level=AuthLevel.verified if claims.email_verified else AuthLevel.unverified,
            email_verified=claims.email_verified,
            registration_ts=int(self._clock()),
        )
        try:
            user.id = self.store.create_user(user)
        except Conflict:
            # Two first logins for the same subject raced; the winner's row is the account.
            existing = self.store.get_by_federation(identity.provider, claims.subject)
            if existing is None:
                raise
            return existing, False

        logger.info("Registered %s via %s", user.username, identity.provider.value)
        return user, True

    def _federated_username(self, email: str) -> str:
        """Derive a free username from the email local part."""
        base = _USERNAME_STRIP_RE.sub("", email.split("@", 1)[0])[:80]
        if len(base) < 3:
            base = "user"
        if self.store.get_by_username(base) is None:
            return base
        return f"{base}-{generate_token(6).lower()}"
