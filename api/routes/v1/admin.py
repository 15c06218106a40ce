"""
api/routes/v1/admin.py -- Admin user management.

Routes:
  GET   /api/v1/admin/users        -- list every account
  PATCH /api/v1/admin/users/{id}   -- change a user's role

Both require require_admin (ADMIN role or an ADMIN_EMAILS address).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import AdminUserRow, RoleUpdate
from auth.dependencies import require_admin
from auth.models import ROLE_ADMIN, User
from auth.store import UserStore

logger = logging.getLogger("fitcoach.auth")

router = APIRouter()


@router.get("/admin/users", response_model=list[AdminUserRow])
def list_users(request: Request, admin: User = Depends(require_admin)) -> list[AdminUserRow]:
    user_store: UserStore = request.app.state.user_store
    return [AdminUserRow.from_user(u) for u in user_store.list_users()]


@router.patch("/admin/users/{user_id}", response_model=AdminUserRow)
def update_role(
    request: Request,
    user_id: int,
    body: RoleUpdate,
    admin: User = Depends(require_admin),
) -> AdminUserRow:
    """Set a user's role. The last remaining ADMIN cannot be demoted."""
    user_store: UserStore = request.app.state.user_store
    target = user_store.get_by_id(user_id)
    if target is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "user_not_found", "message": "User not found."},
        )

    new_role = body.role.value
    if target.role == ROLE_ADMIN and new_role != ROLE_ADMIN:
        if not user_store.demote_admin(user_id, new_role):
            raise HTTPException(
                status_code=400,
                detail={"code": "last_admin", "message": "Cannot demote the last admin."},
            )
    else:
        user_store.update_user(user_id, role=new_role)
    logger.info("Admin %s changed role of %s: %s -> %s", admin.email, target.email, target.role, new_role)
    target.role = new_role
    return AdminUserRow.from_user(target)
