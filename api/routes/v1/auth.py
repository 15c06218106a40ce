"""
api/routes/v1/auth.py -- Registration, login, password reset and token refresh.

Routes:
  POST /api/v1/auth/register         -- create account (optionally via invitation); 201 + token pair
  POST /api/v1/auth/login            -- email/password login; 200 + token pair
  POST /api/v1/auth/forgot-password  -- email a reset link; always the same 200
  POST /api/v1/auth/reset-password   -- redeem a reset token; 200
  POST /api/v1/auth/refresh          -- rotate access + refresh tokens; 200
  GET  /api/v1/auth/me               -- current user (requires auth)

Security:
  register/login are limited by AUTH_RATE_LIMIT and the reset pair by
  PASSWORD_RESET_RATE_LIMIT, per client IP.
  authenticate_user() provides timing equalization -- use it, never inline.
  Unknown email and wrong password produce the same 401 body.
  forgot-password responds identically whether or not the account exists.
  Login responses carry Cache-Control: no-store.
"""

import logging
import smtplib
from datetime import timedelta
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserOut,
)
from auth.dependencies import get_current_user
from auth.models import ROLE_ADMIN, ROLE_CLIENT, User
from auth.passwords import format_password_errors, validate_password_strength
from auth.store import InviteUnavailableError, UserStore, utcnow
from auth.tokens import (
    authenticate_user,
    decode_refresh_token,
    generate_opaque_token,
    hash_opaque_token,
    hash_password,
    is_admin_email,
    issue_token_pair,
)
from core.captcha import verify_recaptcha
from core.config import get_settings
from core.mailer import Mailer

logger = logging.getLogger("fitcoach.auth")

_RESET_REQUESTED_MESSAGE = "If that email is registered, you will receive a link to reset your password."

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


# slowapi evaluates callable limits on every request.
def _auth_limit() -> str:
    return get_settings().auth_rate_limit


def _password_reset_limit() -> str:
    return get_settings().password_reset_rate_limit


def _check_captcha(token: str | None, action: str, email: str) -> None:
    """Run reCAPTCHA verification when a secret key is configured."""
    settings = get_settings()
    if not settings.recaptcha_secret_key:
        return
    result = verify_recaptcha(token, action, settings.recaptcha_min_score)
    if not result.success:
        logger.warning("%s blocked by reCAPTCHA for %s: %s", action, email, result.error)
        raise HTTPException(
            status_code=400,
            detail={"code": "captcha_failed", "message": "Security verification failed. Please try again."},
        )


def _require_strong_password(password: str) -> None:
    errors = validate_password_strength(password)
    if errors:
        raise HTTPException(
            status_code=400,
            detail={"code": "weak_password", "message": format_password_errors(errors)},
        )


def _invalid_invite() -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"code": "invalid_invite", "message": "Invitation token is invalid, already used, or expired."},
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(_auth_limit)
def register(request: Request, body: RegisterRequest) -> AuthResponse:
    """Create a CLIENT account (ADMIN for allowlisted emails) and log it in.

    With an invitationToken, the invite must be live and addressed to the
    same email; the new user is linked to the inviting coach and the invite
    is consumed in the same transaction as the INSERT.
    """
    _check_captcha(body.recaptcha_token, "register", body.email)
    _require_strong_password(body.password)

    user_store: UserStore = request.app.state.user_store
    if user_store.email_exists(body.email):
        logger.warning("Registration attempt with existing email: %s", body.email)
        raise HTTPException(
            status_code=409,
            detail={"code": "email_taken", "message": "Email is already registered."},
        )

    invite = None
    if body.invitation_token:
        invite = user_store.get_active_invite(hash_opaque_token(body.invitation_token))
        if invite is None:
            raise _invalid_invite()
        if invite.email.lower() != body.email:
            raise HTTPException(
                status_code=400,
                detail={"code": "invite_email_mismatch", "message": "Email does not match the invitation."},
            )

    new_user = User(
        email=body.email,
        password_hash=hash_password(body.password),
        role=ROLE_ADMIN if is_admin_email(body.email) else ROLE_CLIENT,
        coach_id=invite.coach_id if invite else None,
    )
    try:
        new_user.id = user_store.create_user(new_user, invite_id=invite.id if invite else None)
    except InviteUnavailableError as exc:
        raise _invalid_invite() from exc
    except IntegrityError as exc:
        # Lost a race with a concurrent registration for the same email.
        raise HTTPException(
            status_code=409,
            detail={"code": "email_taken", "message": "Email is already registered."},
        ) from exc

    pair = issue_token_pair(new_user)
    logger.info("User registered: %s (role=%s, invited=%s)", new_user.email, new_user.role, invite is not None)
    return AuthResponse(
        message="Registration successful.",
        token=pair.access_token,
        refresh_token=pair.refresh_token,
        user=UserOut.from_user(new_user),
    )


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(_auth_limit)
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Authenticate with email and password and issue a fresh token pair.

    Returns the same generic error for unknown email and wrong password
    ("bad_credentials") to avoid leaking account existence.
    """
    _check_captcha(body.recaptcha_token, "login", body.email)

    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        logger.warning("Failed login for %s", body.email)
        raise HTTPException(
            status_code=401,
            detail={"code": "bad_credentials", "message": "Invalid email or password."},
            headers={"Cache-Control": "no-store"},
        )

    user_store.update_last_login(user.id)
    pair = issue_token_pair(user)
    logger.info("User logged in: %s", user.email)
    response.headers["Cache-Control"] = "no-store"
    return AuthResponse(
        message="Login successful.",
        token=pair.access_token,
        refresh_token=pair.refresh_token,
        user=UserOut.from_user(user),
    )


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.limit(_password_reset_limit)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Email a one-hour reset link if the account exists.

    The response is identical either way. Delivery failures are logged and
    never surfaced to the caller.
    """
    settings = get_settings()
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_email(body.email)
    if user is None:
        return MessageResponse(message=_RESET_REQUESTED_MESSAGE)

    raw_token = generate_opaque_token()
    expires_at = utcnow() + timedelta(seconds=settings.reset_token_expire_seconds)
    user_store.set_reset_token(user.id, hash_opaque_token(raw_token), expires_at)

    query = urlencode({"token": raw_token, "email": user.email})
    reset_link = f"{settings.frontend_base_url.rstrip('/')}/reset-password?{query}"
    minutes = settings.reset_token_expire_seconds // 60
    mailer: Mailer = request.app.state.mailer
    try:
        mailer.send(
            user.email,
            "Reset your password",
            "You asked to reset your password.\n\n"
            f"Open the following link (or paste it into your browser):\n\n{reset_link}\n\n"
            f"This link expires in {minutes} minutes.",
        )
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send password reset email to %s: %s", user.email, e)

    return MessageResponse(message=_RESET_REQUESTED_MESSAGE)


@router.post("/auth/reset-password", response_model=MessageResponse)
@limiter.limit(_password_reset_limit)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password using the emailed token. The token works exactly once."""
    _require_strong_password(body.new_password)

    user_store: UserStore = request.app.state.user_store
    changed = user_store.consume_reset_token(
        body.email,
        hash_opaque_token(body.token),
        hash_password(body.new_password),
    )
    if not changed:
        logger.warning("Password reset with invalid or expired token for %s", body.email)
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_reset_token", "message": "Reset token is invalid or expired."},
        )

    logger.info("Password reset for %s", body.email)
    return MessageResponse(message="Password has been reset.")


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request, body: RefreshRequest) -> RefreshResponse:
    """Exchange a refresh token for a new access token AND a new refresh token.

    Claims are rebuilt from the database, so a role change takes effect at
    the next refresh.
    """
    claims = decode_refresh_token(body.refresh_token)
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(claims.user_id) if claims else None
    if user is None:
        logger.warning("Refresh attempt with invalid or expired token")
        raise HTTPException(
            status_code=401,
            detail={"code": "invalid_token", "message": "Invalid or expired token."},
        )

    pair = issue_token_pair(user)
    logger.debug("Tokens refreshed for %s", user.email)
    return RefreshResponse(token=pair.access_token, refresh_token=pair.refresh_token)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity and onboarding state for the current user."""
    return MeResponse.from_user(current_user)
