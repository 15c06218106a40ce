"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, no I/O). The store owns persistence;
routes and auth/tokens.py do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

ROLE_CLIENT = "CLIENT"
ROLE_COACH = "COACH"
ROLE_ADMIN = "ADMIN"

ONBOARDING_FINAL_STEP = 4


@dataclass
class User:
    """A registered account.

    email is always stored lower-cased. reset_password_token holds the HMAC
    digest of the emailed token, never the raw value; it and
    reset_password_expires are both None when no reset is pending.
    """

    email: str
    password_hash: str
    role: str = ROLE_CLIENT
    id: int | None = None
    coach_id: int | None = None
    reset_password_token: str | None = None
    reset_password_expires: datetime | None = None
    onboarding_completed: bool = False
    onboarding_step: int = 0
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class InviteToken:
    """A coach-issued, single-use registration credential.

    token is the HMAC digest of the raw value sent in the invitation link.
    expires_at is naive UTC, matching the store's timestamp convention.
    """

    coach_id: int
    email: str
    token: str
    expires_at: datetime
    id: int | None = None
    used: bool = False
    created_at: str | None = None


@dataclass(frozen=True)
class SessionClaims:
    """Identity carried inside access and refresh JWTs."""

    user_id: int
    email: str
    role: str
    is_admin: bool


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
