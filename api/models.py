"""
API request and response models for the Keyward account endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Request models only check types and cap sizes. Field rules (lengths, '@' in
email, confirmation match) belong to auth/validation.py so they apply to every
caller of AccountService, not only to HTTP clients, and fail with the
engine's invalid_input error rather than a 422.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# Generous upper bound on any free-text field; real limits are enforced in
# auth/validation.py, this only keeps absurd payloads away from Argon2.
_MAX_FIELD = 1024


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ResponseType(str, Enum):
    Error = "Error"
    RegistrationSuccess = "RegistrationSuccess"
    LoginSuccess = "LoginSuccess"
    LogoutSuccess = "LogoutSuccess"
    EmailVerificationSuccess = "EmailVerificationSuccess"
    PasswordChangeSuccess = "PasswordChangeSuccess"
    PasswordResetInitiationSuccess = "PasswordResetInitiationSuccess"
    PasswordResetSuccess = "PasswordResetSuccess"
    SessionsRevoked = "SessionsRevoked"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _EmailNormalized(BaseModel):
    """Mixin: trims and lower-cases the email field only -- never passwords."""

    @field_validator("email", mode="before", check_fields=False)
    @classmethod
    def normalize_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class RegisterRequest(_EmailNormalized):
    """Request body for POST /account/register."""

    username: str = Field(max_length=_MAX_FIELD)
    email: str = Field(max_length=_MAX_FIELD)
    password: str = Field(max_length=_MAX_FIELD)
    confirm_password: str = Field(max_length=_MAX_FIELD)


class LoginRequest(_EmailNormalized):
    """Request body for POST /account/login."""

    email: str = Field(max_length=_MAX_FIELD)
    password: str = Field(max_length=_MAX_FIELD)


class GoogleLoginRequest(BaseModel):
    """Request body for POST /account/login/google.

    ``credential`` is the Google ID token (the SPA client posts it as ``jwt``).
    ``g_csrf_token`` is present when Google's own JS posted the form; it must
    then match the g_csrf_token cookie (double-submit CSRF check).
    """

    credential: str = Field(validation_alias=AliasChoices("credential", "jwt"), max_length=8192)
    g_csrf_token: Optional[str] = Field(default=None, max_length=_MAX_FIELD)


class VerifyEmailRequest(BaseModel):
    """Request body for POST /account/verifyEmail. The email comes from the session."""

    code: str = Field(max_length=64)


class ChangePasswordRequest(BaseModel):
    """Request body for PATCH /account/changePassword."""

    old_password: str = Field(max_length=_MAX_FIELD)
    password: str = Field(max_length=_MAX_FIELD)
    confirm_password: str = Field(max_length=_MAX_FIELD)


class PasswordResetInitiateRequest(_EmailNormalized):
    """Request body for POST /account/resetPassword."""

    email: str = Field(max_length=_MAX_FIELD)


class PasswordResetCompleteRequest(_EmailNormalized):
    """Request body for PATCH /account/resetPassword."""

    email: str = Field(max_length=_MAX_FIELD)
    code: str = Field(max_length=64)
    password: str = Field(max_length=_MAX_FIELD)
    confirm_password: str = Field(max_length=_MAX_FIELD)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ApiResponse(BaseModel):
    """Success envelope shared by every account endpoint."""

    model_config = ConfigDict(frozen=True)

    response_type: ResponseType
    message: str


class RevokeSessionsResponse(ApiResponse):
    revoked: int


class ProfileResponse(BaseModel):
    """Response for GET /account/profile."""

    model_config = ConfigDict(frozen=True)

    username: str
    email: str
    auth_level: str
    provider: str
    email_verified: bool
    registration_ts: Optional[int] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
