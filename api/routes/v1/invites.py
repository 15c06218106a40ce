"""
api/routes/v1/invites.py -- Coach invitations.

Routes:
  POST /api/v1/coach/invite     -- COACH/ADMIN; email an invite link; 201
  GET  /api/v1/invite/{token}   -- public; describe a live invite; 404 otherwise

The raw token only ever appears in the emailed link. The database keeps its
HMAC digest, and registration redeems it (see api/routes/v1/auth.py).
"""

from __future__ import annotations

import logging
import smtplib
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import InviteCreate, InviteCreatedResponse, InviteInfoResponse
from auth.dependencies import require_coach
from auth.models import InviteToken, User
from auth.store import UserStore, utcnow
from auth.tokens import generate_opaque_token, hash_opaque_token
from core.config import get_settings
from core.mailer import Mailer

logger = logging.getLogger("fitcoach.auth")

router = APIRouter()


@router.post("/coach/invite", response_model=InviteCreatedResponse, status_code=201)
def create_invite(
    request: Request,
    body: InviteCreate,
    coach: User = Depends(require_coach),
) -> InviteCreatedResponse:
    """Invite a prospective client by email.

    Refuses (409) when the address already has an account. The invite is
    valid for INVITE_EXPIRE_DAYS and can be redeemed once.
    """
    settings = get_settings()
    user_store: UserStore = request.app.state.user_store
    if user_store.email_exists(body.email):
        raise HTTPException(
            status_code=409,
            detail={"code": "email_taken", "message": "A user with this email already exists."},
        )

    raw_token = generate_opaque_token()
    user_store.create_invite(
        InviteToken(
            coach_id=coach.id,
            email=body.email,
            token=hash_opaque_token(raw_token),
            expires_at=utcnow() + timedelta(days=settings.invite_expire_days),
        )
    )
    invite_link = f"{settings.frontend_base_url.rstrip('/')}/invite/{raw_token}"

    mailer: Mailer = request.app.state.mailer
    try:
        mailer.send(
            body.email,
            "You have been invited to FitCoach",
            f"{coach.email} invited you to join FitCoach as their client.\n\n"
            f"Create your account here:\n\n{invite_link}\n\n"
            f"This invitation expires in {settings.invite_expire_days} days.",
        )
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send invitation email to %s: %s", body.email, e)

    logger.info("Coach %s invited %s", coach.email, body.email)
    return InviteCreatedResponse(message="Invitation created.", invite_link=invite_link)


@router.get("/invite/{token}", response_model=InviteInfoResponse)
def get_invite(request: Request, token: str) -> InviteInfoResponse:
    """Return the invited email and coach for a live invitation token."""
    user_store: UserStore = request.app.state.user_store
    invite = user_store.get_active_invite(hash_opaque_token(token))
    if invite is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "invalid_invite", "message": "Invitation is invalid, already used, or expired."},
        )
    return InviteInfoResponse(
        message="Invitation is valid.",
        email=invite.email,
        coach_id=invite.coach_id,
        expires_at=invite.expires_at,
    )
