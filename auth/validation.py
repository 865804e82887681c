"""
auth/validation.py -- Input rules for registration and password changes.

Runs before any store access, so malformed input never costs a query or a
hash. Each check raises InvalidInput with the message shown to the user.
"""

from __future__ import annotations

from auth.errors import InvalidInput

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 100
MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 100
MIN_EMAIL_LENGTH = 3
MAX_EMAIL_LENGTH = 300


def validate_email(email: str) -> None:
    if "@" not in email or not MIN_EMAIL_LENGTH <= len(email) < MAX_EMAIL_LENGTH:
        raise InvalidInput(
            "Email must contain an @, be at least 3 characters and less than 300 characters"
        )


def validate_username(username: str) -> None:
    if not MIN_USERNAME_LENGTH <= len(username) <= MAX_USERNAME_LENGTH:
        raise InvalidInput("Username must be between 3 and 100 characters")


def validate_password(password: str) -> None:
    if not MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH:
        raise InvalidInput("Password must be between 8 and 100 characters")


def validate_new_password(password: str, confirm_password: str) -> None:
    """Length rule plus the confirmation match used by every password-setting flow."""
    validate_password(password)
    if password != confirm_password:
        raise InvalidInput("Your passwords do not match")


def normalize_email(email: str) -> str:
    """Canonical form used for storage and every lookup: trimmed, lower-cased."""
    return email.strip().lower()
