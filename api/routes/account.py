"""
api/routes/account.py -- Account REST endpoints.

Routes:
  POST   /account/register            -- create a password account; mails a verification code
  POST   /account/login               -- password login; sets the session-key cookie
  POST   /account/login/google        -- Google ID token login; sets the session-key cookie
  POST   /account/logout              -- deletes the session; clears the cookie
  POST   /account/verifyEmail         -- redeem an EmailVerification code (requires session)
  PATCH  /account/changePassword      -- replace the password (requires session)
  POST   /account/resetPassword       -- mail a PasswordReset code
  PATCH  /account/resetPassword       -- redeem a PasswordReset code with a new password
  GET    /account/profile             -- current user (requires session)
  DELETE /account/sessions/{username} -- revoke every session of a user (admin only)

Security:
  [H2] login, Google login and reset initiation are rate-limited per IP.
  [C1] Password login goes through IdentityResolver, which equalizes timing
       for unknown emails. Never look the user up here.
  [M5] Cache-Control: no-store on responses that set a session cookie.

Every handler is a plain def: Argon2 hashing and the store's blocking calls
run in FastAPI's thread pool, never on the event loop. Engine errors are not
caught here; the AuthError handler in api/main.py renders them.
"""

from __future__ import annotations

import secrets

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    ApiResponse,
    ChangePasswordRequest,
    GoogleLoginRequest,
    LoginRequest,
    PasswordResetCompleteRequest,
    PasswordResetInitiateRequest,
    ProfileResponse,
    RegisterRequest,
    ResponseType,
    RevokeSessionsResponse,
    VerifyEmailRequest,
)
from auth.dependencies import (
    get_account_service,
    get_current_user,
    get_current_username,
    get_session_token,
    require_admin,
)
from auth.errors import InvalidInput
from auth.models import User
from auth.service import AccountService
from auth.tokens import clear_session_cookie, set_session_cookie
from core.config import get_settings

# Auth policy:
# - register, login, login/google, logout, resetPassword (POST + PATCH): public
# - verifyEmail, changePassword, profile: valid session (get_current_username / get_current_user)
# - DELETE /account/sessions/{username}: admin session (require_admin)
router = APIRouter()

_GOOGLE_CSRF_COOKIE = "g_csrf_token"


def _ok(response_type: ResponseType, message: str, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse(response_type=response_type, message=message).model_dump(mode="json"),
    )


def _session_response(service: AccountService, token: str, message: str) -> JSONResponse:
    settings = get_settings()
    resp = _ok(ResponseType.LoginSuccess, message)
    set_session_cookie(resp, token, max_age=service.sessions.lifetime_seconds, secure=settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@router.post("/account/register", status_code=201)
def register(body: RegisterRequest, service: AccountService = Depends(get_account_service)) -> JSONResponse:
    """Create an unverified password account and mail it a verification code."""
    user = service.register(body.username, body.email, body.password, body.confirm_password)
    return _ok(
        ResponseType.RegistrationSuccess,
        f"Registered {user.username}; a verification code was sent to {user.email}",
        status_code=201,
    )


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/account/login")
def login(
    request: Request,
    body: LoginRequest,
    service: AccountService = Depends(get_account_service),
) -> JSONResponse:
    """Password login. Wrong email and wrong password get the same 401."""
    user, token, _ = service.login(body.email, body.password)
    return _session_response(service, token, f"Logged in as {user.username}")


@limiter.limit(login_rate_limit)  # [H2]
@router.post("/account/login/google")
def login_google(
    request: Request,
    body: GoogleLoginRequest,
    service: AccountService = Depends(get_account_service),
) -> JSONResponse:
    """Google login with an ID token.

    When the body carries g_csrf_token (Google's JS posted it), the value must
    match the g_csrf_token cookie Google set on the same origin.
    """
    if body.g_csrf_token is not None:
        cookie = request.cookies.get(_GOOGLE_CSRF_COOKIE)
        if not cookie or not secrets.compare_digest(cookie, body.g_csrf_token):
            raise InvalidInput("Failed to verify double submit cookie")

    user, token, _ = service.login_with_identity_token(body.credential)
    return _session_response(service, token, f"Logged in as {user.username}")


@router.post("/account/logout")
def logout(
    request: Request,
    token: str | None = Depends(get_session_token),
    service: AccountService = Depends(get_account_service),
) -> JSONResponse:
    """Delete the caller's session, if any, and clear the cookie."""
    service.logout(token)
    resp = _ok(ResponseType.LogoutSuccess, "Logged out")
    clear_session_cookie(resp, secure=get_settings().secure_cookies)
    return resp


# ---------------------------------------------------------------------------
# Session-scoped endpoints
# ---------------------------------------------------------------------------


@router.post("/account/verifyEmail")
def verify_email(
    body: VerifyEmailRequest,
    username: str = Depends(get_current_username),
    service: AccountService = Depends(get_account_service),
) -> JSONResponse:
    service.verify_email(username, body.code)
    return _ok(ResponseType.EmailVerificationSuccess, "Your email has been verified")


@router.patch("/account/changePassword")
def change_password(
    body: ChangePasswordRequest,
    username: str = Depends(get_current_username),
    token: str | None = Depends(get_session_token),
    service: AccountService = Depends(get_account_service),
) -> JSONResponse:
    """Replace the password. Other sessions are revoked; this one survives."""
    service.change_password(
        username,
        body.old_password,
        body.password,
        body.confirm_password,
        current_token=token,
    )
    return _ok(ResponseType.PasswordChangeSuccess, "Your password has been changed")


@router.get("/account/profile", response_model=ProfileResponse)
def profile(user: User = Depends(get_current_user)) -> ProfileResponse:
    return ProfileResponse(
        username=user.username,
        email=user.email,
        auth_level=user.auth_level.value,
        provider=user.provider.value,
        email_verified=user.email_verified,
        registration_ts=user.registration_ts,
    )


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # [H2] each call sends an email
@router.post("/account/resetPassword")
def initiate_password_reset(
    request: Request,
    body: PasswordResetInitiateRequest,
    service: AccountService = Depends(get_account_service),
) -> JSONResponse:
    service.initiate_password_reset(body.email)
    return _ok(ResponseType.PasswordResetInitiationSuccess, f"A password reset code was sent to {body.email}")


@router.patch("/account/resetPassword")
def complete_password_reset(
    body: PasswordResetCompleteRequest,
    service: AccountService = Depends(get_account_service),
) -> JSONResponse:
    """Set a new password with a PasswordReset code. All sessions are revoked."""
    service.complete_password_reset(body.email, body.code, body.password, body.confirm_password)
    return _ok(ResponseType.PasswordResetSuccess, "Your password has been reset")


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@router.delete("/account/sessions/{username}")
def revoke_sessions(
    username: str,
    admin: User = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
) -> JSONResponse:
    """Delete every session the named user holds (their next request is a 401)."""
    revoked = service.revoke_sessions(username)
    return JSONResponse(
        content=RevokeSessionsResponse(
            response_type=ResponseType.SessionsRevoked,
            message=f"Revoked {revoked} session(s) for {username}",
            revoked=revoked,
        ).model_dump(mode="json")
    )
