"""
auth/errors.py -- Error taxonomy for the credential and session engine.

Every failure the engine surfaces to a caller is an AuthError subclass. Each
class carries a stable machine-readable ``code`` and the HTTP ``status_code``
the API layer should answer with, so api/main.py can render all of them with
one exception handler and the same error envelope.

Layer rule: no imports from api/, core/ or mail/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for engine errors mapped to structured responses."""

    code: str = "auth_error"
    status_code: int = 400

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class InvalidInput(AuthError):
    """Malformed email/username/password or mismatched confirmation fields."""

    code = "invalid_input"
    status_code = 400


class Conflict(AuthError):
    """Username or email already registered (or owned by another provider)."""

    code = "conflict"
    status_code = 409


class Unauthorized(AuthError):
    """Missing, invalid or expired session, or bad credentials."""

    code = "unauthorized"
    status_code = 401


class TooManyAttempts(AuthError):
    """The account's failed-login counter reached the configured maximum."""

    code = "too_many_attempts"
    status_code = 429


class InvalidOrExpiredCode(AuthError):
    code = "invalid_or_expired_code"
    status_code = 400


class UpstreamIdentityError(AuthError):
    """The federated identity token could not be verified."""

    code = "upstream_identity_error"
    status_code = 401


class StorageError(AuthError):
    code = "storage_error"
    status_code = 503


class DeliveryError(AuthError):
    code = "delivery_error"
    status_code = 502
