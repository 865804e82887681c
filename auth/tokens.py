"""
auth/tokens.py -- Random token generation, token digests and the session cookie.

Security design decisions:
  Tokens: drawn with ``secrets.choice`` from the 36-symbol alphabet A-Z0-9.
       Session tokens are 100 symbols (~516 bits of entropy), verification
       codes 8 symbols. The alphabet is case-insensitive-safe for codes that
       users type from an email.

  Digests: sessions are stored as HMAC-SHA256(SECRET_KEY, token). The digest
       is deterministic, so lookup stays a single indexed equality query, and
       an attacker holding a copy of the sessions table cannot replay the rows
       as cookies without also knowing SECRET_KEY.

  Cookie: ``session-key``, httponly, secure, samesite=lax, path=/ and
       max_age equal to the server-side lifetime so the browser never keeps a
       cookie the server has already forgotten, or drops one it still honours.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import string

from starlette.requests import cookie_parser

TOKEN_ALPHABET = string.ascii_uppercase + string.digits
SESSION_TOKEN_LENGTH = 100
CODE_LENGTH = 8
SESSION_COOKIE = "session-key"


def generate_token(length: int) -> str:
    """Return ``length`` symbols from TOKEN_ALPHABET using the OS CSPRNG."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def digest_token(secret_key: str, token: str) -> str:
    """Return HMAC-SHA256(secret_key, token) as a hex string."""
    return hmac.new(secret_key.encode(), token.encode(), hashlib.sha256).hexdigest()


def session_token_from_cookie_header(cookie_header: str | None) -> str | None:
    """Extract the session token from a raw Cookie header, or None."""
    if not cookie_header:
        return None
    return cookie_parser(cookie_header).get(SESSION_COOKIE) or None


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, max_age: int, secure: bool = True) -> None:
    """Write the session token as an httpOnly cookie on the response."""
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        max_age=max_age,
        path="/",
        httponly=True,
        samesite="lax",
        secure=secure,
    )


def clear_session_cookie(response, secure: bool = True) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/", httponly=True, samesite="lax", secure=secure)
