"""
API request and response models for FitCoach REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format: the web client sends and expects camelCase keys for token
fields (recaptchaToken, invitationToken, newPassword, refreshToken, isAdmin).
Models declare those as aliases and accept either spelling on input.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import ONBOARDING_FINAL_STEP, User
from auth.tokens import is_admin_email

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
_EMAIL_RE = re.compile(EMAIL_PATTERN)

_Email = Annotated[str, Field(min_length=3, max_length=255)]
_Secret = Annotated[str, Field(min_length=1, max_length=255)]


class RoleEnum(str, Enum):
    CLIENT = "CLIENT"
    COACH = "COACH"
    ADMIN = "ADMIN"


class _EmailBody(BaseModel):
    """Base for request bodies carrying an email address.

    Emails are trimmed and lower-cased before the pattern check so lookups
    are case-insensitive end to end.
    """

    model_config = ConfigDict(populate_by_name=True)

    email: _Email

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
        return value

    @field_validator("email")
    @classmethod
    def check_email_shape(cls, value: str) -> str:
        if not _EMAIL_RE.match(value):
            raise ValueError("must be a valid email address")
        return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_EmailBody):
    """Request body for POST /api/v1/auth/register."""

    password: _Secret
    recaptcha_token: Optional[str] = Field(default=None, alias="recaptchaToken", max_length=4096)
    invitation_token: Optional[str] = Field(default=None, alias="invitationToken", max_length=255)


class LoginRequest(_EmailBody):
    """Request body for POST /api/v1/auth/login."""

    password: _Secret
    recaptcha_token: Optional[str] = Field(default=None, alias="recaptchaToken", max_length=4096)


class ForgotPasswordRequest(_EmailBody):
    """Request body for POST /api/v1/auth/forgot-password."""


class ResetPasswordRequest(_EmailBody):
    token: _Secret
    new_password: _Secret = Field(alias="newPassword")


class RefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: Annotated[str, Field(min_length=1, max_length=4096)] = Field(alias="refreshToken")


class InviteCreate(_EmailBody):
    """Request body for POST /api/v1/coach/invite."""


class RoleUpdate(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{id}."""

    role: RoleEnum


class OnboardingUpdate(BaseModel):
    """Request body for POST /api/v1/onboarding/update-step. At least one field is required."""

    step: Optional[int] = Field(default=None, ge=0, le=ONBOARDING_FINAL_STEP)
    completed: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Public view of a user, embedded in auth responses."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    email: str
    role: str
    is_admin: bool = Field(alias="isAdmin")
    coach_id: Optional[int] = Field(default=None, alias="coachId")

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            is_admin=user.role == RoleEnum.ADMIN.value or is_admin_email(user.email),
            coach_id=user.coach_id,
        )


class AuthResponse(BaseModel):
    """Response for register and login: a token pair plus the user."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message: str
    token: str
    refresh_token: str = Field(alias="refreshToken")
    user: UserOut


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    token: str
    refresh_token: str = Field(alias="refreshToken")


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class MeResponse(UserOut):
    """Response for GET /api/v1/auth/me."""

    onboarding_completed: bool
    onboarding_step: int

    @classmethod
    def from_user(cls, user: User) -> "MeResponse":
        base = UserOut.from_user(user)
        return cls(
            **base.model_dump(),
            onboarding_completed=user.onboarding_completed,
            onboarding_step=user.onboarding_step,
        )


class InviteCreatedResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message: str
    invite_link: str = Field(alias="inviteLink")


class InviteInfoResponse(BaseModel):
    """Response for GET /api/v1/invite/{token}."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message: str
    email: str
    coach_id: int = Field(alias="coachId")
    expires_at: datetime = Field(alias="expiresAt")


class AdminUserRow(BaseModel):
    """One row in GET /api/v1/admin/users."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    email: str
    role: str
    coach_id: Optional[int] = Field(default=None, alias="coachId")
    onboarding_completed: bool
    created_at: str
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "AdminUserRow":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            coach_id=user.coach_id,
            onboarding_completed=user.onboarding_completed,
            created_at=user.created_at or "",
            last_login=user.last_login,
        )


class OnboardingStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    onboarding_completed: bool
    onboarding_step: int


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
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str
    version: str
    components: dict[str, str]
