"""
auth/google.py -- Verification of Google-issued OpenID Connect ID tokens.

Only verification is in scope: the browser obtains the ID token from Google
(Sign In With Google) and posts it to us. We check, in order:
  1. the token header names a key (kid) present in Google's JWKS,
  2. the RS256 signature against that key,
  3. aud == our configured client ID,
  4. iss is accounts.google.com (with or without scheme),
  5. exp / iat / nbf,
  6. sub and email are present.
Any failure raises UpstreamIdentityError; the resolver never sees a partially
trusted claim set.

Key cache:
  The JWKS is fetched with requests and held until the max-age advertised in
  its Cache-Control header. A token whose kid is not cached forces one
  refresh (Google rotates keys). This cache holds public keys only; no user
  or session state is ever cached in-process.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Callable

import requests
from jose import JWTError, jwt

from auth.errors import UpstreamIdentityError
from auth.models import IdentityClaims

logger = logging.getLogger("keyward.auth.google")

GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")
_DEFAULT_KEY_TTL = 3600
_MAX_AGE_RE = re.compile(r"max-age=(\d+)")


class GoogleTokenVerifier:
    """Verify Google ID tokens against Google's published signing keys.

    Usage:
        verifier = GoogleTokenVerifier("https://www.googleapis.com/oauth2/v3/certs")
        claims = verifier.verify(id_token, audience=client_id)
    """

    def __init__(
        self,
        certs_url: str,
        timeout: float = 5.0,
        http: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.certs_url = certs_url
        self.timeout = timeout
        self._http = http or requests.Session()
        self._clock = clock
        self._keys: dict[str, dict] = {}
        self._keys_expire_at = 0.0

    # ------------------------------------------------------------------
    # JWKS
    # ------------------------------------------------------------------

    def _refresh_keys(self) -> None:
        try:
            resp = self._http.get(self.certs_url, timeout=self.timeout)
            resp.raise_for_status()
            keys = resp.json()["keys"]
        except (requests.RequestException, ValueError, KeyError, TypeError) as exc:
            logger.warning("Could not fetch Google signing keys: %s", exc.__class__.__name__)
            raise UpstreamIdentityError("Unable to verify identity token.", detail="jwks_unavailable") from exc

        match = _MAX_AGE_RE.search(resp.headers.get("Cache-Control", ""))
        ttl = int(match.group(1)) if match else _DEFAULT_KEY_TTL
        self._keys = {k["kid"]: k for k in keys if "kid" in k}
        self._keys_expire_at = self._clock() + ttl
        logger.info("Loaded %d Google signing key(s), cached for %ds", len(self._keys), ttl)

    def _key_for(self, kid: str) -> dict | None:
        if self._clock() >= self._keys_expire_at or kid not in self._keys:
            self._refresh_keys()
        return self._keys.get(kid)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, token: str, audience: str) -> IdentityClaims:
        """Return the verified (sub, email, email_verified) claims of token."""
        if not audience:
            raise UpstreamIdentityError("Google login is not configured.")
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise UpstreamIdentityError("Invalid JWT", detail="malformed") from exc

        kid = header.get("kid")
        key = self._key_for(kid) if kid else None
        if key is None:
            raise UpstreamIdentityError("Invalid JWT", detail="unknown_key")

        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=["RS256"],
                audience=audience,
                issuer=GOOGLE_ISSUERS,
                options={"verify_at_hash": False},
            )
        except JWTError as exc:
            logger.info("Rejected Google ID token: %s", exc)
            raise UpstreamIdentityError("Invalid JWT", detail=exc.__class__.__name__) from exc

        subject = claims.get("sub")
        email = claims.get("email")
        if not subject or not email:
            raise UpstreamIdentityError("Invalid JWT", detail="missing sub or email claim")

        # Google sends a JSON boolean; some libraries re-serialize it as a string.
        verified = claims.get("email_verified", False)
        if isinstance(verified, str):
            verified = verified.lower() == "true"
        return IdentityClaims(subject=str(subject), email=email, email_verified=bool(verified))
