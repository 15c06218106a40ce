"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Clients authenticate with "Authorization: Bearer <access token>". The token's
claims only identify the user; the role used for authorization checks is
always re-read from the database, so a demoted coach loses access
immediately rather than when their token expires.

get_current_user() raises HTTP 401 if unauthenticated.
require_coach() / require_admin() wrap it and raise HTTP 403 on insufficient role.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import ROLE_ADMIN, ROLE_COACH, User
from auth.tokens import decode_access_token, is_admin_email


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_user(request: Request) -> User:
    """Require a valid access token for an existing user.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    token = _bearer_token(request)
    claims = decode_access_token(token) if token else None
    user = request.app.state.user_store.get_by_id(claims.user_id) if claims else None
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_coach(request: Request) -> User:
    """Require the COACH or ADMIN role."""
    user = get_current_user(request)
    if user.role not in (ROLE_COACH, ROLE_ADMIN):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Only coaches can access this resource."},
        )
    return user


def require_admin(request: Request) -> User:
    """Require the ADMIN role or an allowlisted admin email."""
    user = get_current_user(request)
    if user.role != ROLE_ADMIN and not is_admin_email(user.email):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user
