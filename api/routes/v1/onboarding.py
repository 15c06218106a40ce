"""
api/routes/v1/onboarding.py -- Per-user onboarding progress.

Routes:
  GET  /api/v1/onboarding/status        -- current step and completion flag
  POST /api/v1/onboarding/update-step   -- advance the step or mark complete
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import OnboardingStatus, OnboardingUpdate
from auth.dependencies import get_current_user
from auth.models import ONBOARDING_FINAL_STEP, User
from auth.store import UserStore

router = APIRouter()


@router.get("/onboarding/status", response_model=OnboardingStatus)
def onboarding_status(current_user: User = Depends(get_current_user)) -> OnboardingStatus:
    return OnboardingStatus(
        onboarding_completed=current_user.onboarding_completed,
        onboarding_step=current_user.onboarding_step,
    )


@router.post("/onboarding/update-step", response_model=OnboardingStatus)
def update_step(
    request: Request,
    body: OnboardingUpdate,
    current_user: User = Depends(get_current_user),
) -> OnboardingStatus:
    """Record onboarding progress. completed=true always lands on the final step."""
    if body.step is None and body.completed is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": "Provide step or completed."},
        )

    fields: dict = {}
    if body.step is not None:
        fields["onboarding_step"] = body.step
    if body.completed is not None:
        fields["onboarding_completed"] = body.completed
        if body.completed:
            fields["onboarding_step"] = ONBOARDING_FINAL_STEP

    user_store: UserStore = request.app.state.user_store
    user_store.update_user(current_user.id, **fields)
    return OnboardingStatus(
        onboarding_completed=fields.get("onboarding_completed", current_user.onboarding_completed),
        onboarding_step=fields.get("onboarding_step", current_user.onboarding_step),
    )
