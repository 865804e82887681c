"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/account.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

The per-IP limit here is a coarse flood guard in front of the per-account
lockout in auth/throttle.py; the two answer 429 with different error codes
(rate_limited vs too_many_attempts).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Limit string for the credential-accepting routes, read lazily from settings."""
    return get_settings().login_rate_limit
