"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The store owns
persistence, the managers own behaviour; these classes only carry shape.

The two registration paths are modelled as a tagged variant --
DefaultIdentity | FederatedIdentity -- which the IdentityResolver dispatches
on, instead of provider checks scattered through the code.

Layer rule: no imports from api/, core/ or mail/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class AuthLevel(str, Enum):
    unverified = "unverified"
    verified = "verified"
    admin = "admin"


class IdentityProvider(str, Enum):
    default = "default"
    google = "google"


class CodeKind(str, Enum):
    email_verification = "EmailVerification"
    password_reset = "PasswordReset"


@dataclass
class User:
    """A registered account.

    hashed_password is None for Google-only accounts; federation_subject is
    None for local password accounts. The store enforces that exactly one of
    the two is set for the account's provider.
    """

    username: str
    email: str
    auth_level: AuthLevel = AuthLevel.unverified
    provider: IdentityProvider = IdentityProvider.default
    hashed_password: str | None = None
    federation_subject: str | None = None
    email_verified: bool = False
    login_attempts: int = 0
    registration_ts: int | None = None
    id: int | None = None


@dataclass
class Session:
    """A stored session. token_digest is HMAC-SHA256 of the cookie value."""

    token_digest: str
    username: str
    expiry: int
    id: int | None = None


@dataclass
class VerificationCode:
    code: str
    email: str
    kind: CodeKind
    created_ts: int
    expiry_ts: int
    used: bool = False
    id: int | None = None


@dataclass(frozen=True)
class IdentityClaims:
    """The verified subset of a federated ID token the resolver relies on."""

    subject: str
    email: str
    email_verified: bool


@dataclass(frozen=True)
class DefaultIdentity:
    email: str
    password: str


@dataclass(frozen=True)
class FederatedIdentity:
    provider: IdentityProvider
    claims: IdentityClaims


Identity = Union[DefaultIdentity, FederatedIdentity]
