"""
auth/dependencies.py -- FastAPI Depends() helpers for session authentication.

Protected routes depend on get_current_username() (or get_current_user()),
which passes the raw Cookie header to AccountService.authenticate(). A missing,
unknown or expired session raises Unauthorized before the handler runs; the
exception handler in api/main.py renders it as a 401 error envelope.

require_admin() additionally requires auth_level == admin (403 otherwise).

Layer rule: no imports from mail/. auth/dependencies.py may import from
fastapi because it is part of FastAPI's dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.models import AuthLevel, User
from auth.service import AccountService
from auth.tokens import SESSION_COOKIE


def get_account_service(request: Request) -> AccountService:
    return request.app.state.account_service


def get_session_token(request: Request) -> str | None:
    return request.cookies.get(SESSION_COOKIE)


def get_current_username(request: Request) -> str:
    """Require a valid session cookie. Raises Unauthorized otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(username: str = Depends(get_current_username)): ...
    """
    return get_account_service(request).authenticate(request.headers.get("cookie"))


def get_current_user(request: Request, username: str = Depends(get_current_username)) -> User:
    """Require a valid session and load its owner fresh from the store."""
    return get_account_service(request).get_user(username)


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Require admin level. 401 if unauthenticated, 403 if not admin."""
    if user.auth_level is not AuthLevel.admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user
