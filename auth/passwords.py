"""
auth/passwords.py -- Password hashing and verification (Argon2id).

Security design decisions:
  Argon2id via argon2-cffi. Memory-hard, salted per call, and the output is a
  self-describing PHC string ($argon2id$v=19$m=...,t=...,p=...$salt$hash), so
  parameters can be raised later without a schema change.

  verify_password() never raises. A None, truncated or foreign-format hash is
  a non-match, so a corrupt row can never turn into a 500 or a bypass.

  The _DUMMY_HASH constant enables timing equalization: callers that have no
  real hash to check (unknown email, Google-only account) still pay for one
  Argon2 verification [C1].

  Both functions are CPU-bound. They are called from plain ``def`` route
  handlers, which FastAPI runs on its bounded worker thread pool, never on the
  event loop.
"""

from __future__ import annotations

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError

_hasher = PasswordHasher()


def hash_password(plain: str) -> str:
    """Return an Argon2id PHC hash of the given plaintext password."""
    return _hasher.hash(plain)


def verify_password(hashed: str | None, plain: str) -> bool:
    """Return True if plain matches hashed. Malformed input is a non-match."""
    if not hashed or not isinstance(plain, str):
        return False
    try:
        return _hasher.verify(hashed, plain)
    except (VerificationError, InvalidHash, ValueError):
        return False


# Computed once at import so the first login is not measurably slower than
# later ones. Always verify against it when no real hash exists [C1].
_DUMMY_HASH: str = hash_password("keyward_timing_dummy")


def equalize_timing(plain: str) -> None:
    """Burn one Argon2 verification to mask an early exit."""
    verify_password(_DUMMY_HASH, plain)
