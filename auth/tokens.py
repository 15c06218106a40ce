"""
auth/tokens.py -- Password hashing, JWT issuance/verification, and opaque tokens.

Security design decisions:
  JWT: python-jose with HS256. Access tokens are signed with JWT_SECRET,
       refresh tokens with JWT_REFRESH_SECRET (falling back to JWT_SECRET).
       Every token carries a "type" claim so a refresh token can never be used
       as an access token, even when both secrets are the same. Each token
       also gets a random jti, so rotation always yields a new string.
       Decoding returns None on any failure -- the route layer turns that
       into a 401.

  Passwords: bcrypt used directly (no passlib wrapper). The _DUMMY_HASH
       constant enables timing equalization in authenticate_user() so
       response time does not reveal whether an email is registered.

  Opaque tokens (password reset, invitations): secrets.token_hex(32) gives
       256 bits of entropy. Only HMAC-SHA256(JWT_SECRET, raw) is stored, so a
       leaked database does not hand out usable reset links. The hash is
       deterministic, so lookup is a plain indexed equality.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import ROLE_ADMIN, SessionClaims, TokenPair, User
from core.config import get_settings

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("fitcoach.auth")

_settings = get_settings()

_ALGORITHM = "HS256"
_ACCESS = "access"
_REFRESH = "refresh"

# bcrypt only looks at the first 72 bytes of its input.
_BCRYPT_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def _bcrypt_input(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(_bcrypt_input(plain), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(_bcrypt_input(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("fitcoach_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    bcrypt runs whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as a real check)
    - Wrong password: bcrypt runs against the real hash

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


def is_admin_email(email: str | None) -> bool:
    """True if email is on the ADMIN_EMAILS allowlist (case-insensitive)."""
    if not email:
        return False
    return email.strip().lower() in _settings.admin_email_set


def claims_for(user: User) -> SessionClaims:
    """Build JWT claims from the user's current database state."""
    return SessionClaims(
        user_id=user.id,
        email=user.email,
        role=user.role,
        is_admin=user.role == ROLE_ADMIN or is_admin_email(user.email),
    )


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _encode(claims: SessionClaims, token_type: str, secret: str, expire_seconds: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "id": claims.user_id,
        "email": claims.email,
        "role": claims.role,
        "isAdmin": claims.is_admin,
        "type": token_type,
        "jti": secrets.token_hex(8),
        "iat": now,
        "exp": now + timedelta(seconds=expire_seconds),
    }
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def _decode(token: str, secret: str, token_type: str) -> SessionClaims | None:
    try:
        payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except JWTError as e:
        logger.debug("Rejected %s token: %s", token_type, e)
        return None
    if payload.get("type") != token_type:
        return None
    if not isinstance(payload.get("id"), int) or "role" not in payload:
        return None
    return SessionClaims(
        user_id=payload["id"],
        email=payload.get("email", ""),
        role=payload["role"],
        is_admin=bool(payload.get("isAdmin")),
    )


def create_access_token(claims: SessionClaims) -> str:
    """Encode a short-lived access JWT lasting ACCESS_TOKEN_EXPIRE_SECONDS."""
    return _encode(claims, _ACCESS, _settings.jwt_secret, _settings.access_token_expire_seconds)


def create_refresh_token(claims: SessionClaims) -> str:
    """Encode a long-lived refresh JWT lasting REFRESH_TOKEN_EXPIRE_SECONDS."""
    return _encode(claims, _REFRESH, _settings.refresh_secret, _settings.refresh_token_expire_seconds)


def issue_token_pair(user: User) -> TokenPair:
    """Issue a fresh access + refresh token pair for the user."""
    claims = claims_for(user)
    return TokenPair(access_token=create_access_token(claims), refresh_token=create_refresh_token(claims))


def decode_access_token(token: str) -> SessionClaims | None:
    """Verify an access JWT. Returns its claims or None on any failure."""
    return _decode(token, _settings.jwt_secret, _ACCESS)


def decode_refresh_token(token: str) -> SessionClaims | None:
    """Verify a refresh JWT. Returns its claims or None on any failure."""
    return _decode(token, _settings.refresh_secret, _REFRESH)


# ---------------------------------------------------------------------------
# Opaque single-use tokens (password reset, invitations)
# ---------------------------------------------------------------------------


def generate_opaque_token() -> str:
    """Return 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


def hash_opaque_token(raw_token: str) -> str:
    """Return HMAC-SHA256(JWT_SECRET, raw_token) as a hex string."""
    return hmac.new(
        _settings.jwt_secret.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()
