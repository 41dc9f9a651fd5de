"""
api/routes/v1/users.py -- Organization-scoped account management.

Routes:
  GET   /api/v1/organizations/{organization_id}/users            -- list accounts
  POST  /api/v1/organizations/{organization_id}/users            -- create ADMIN/INSTRUCTOR/PARENT
  PATCH /api/v1/organizations/{organization_id}/users/{user_id}  -- change name or role

Auth policy: every route requires require_org_admin -- SUPER_ADMIN, or an
ADMIN whose token carries this organization_id. The check reads the token
claims only; no store lookup is needed to authorize.

A role change takes effect in the target's token only after that user calls
POST /auth/refresh or logs in again.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.models import OrgUserCreate, OrgUserPatch, UserResponse
from api.routes.v1.auth import user_to_response
from auth.dependencies import require_org_admin
from auth.models import SessionPayload, User
from auth.passwords import hash_password
from auth.store import UserStore

logger = logging.getLogger("swimdesk.api.users")

router = APIRouter()


@router.get("/organizations/{organization_id}/users", response_model=list[UserResponse])
async def list_org_users(
    request: Request,
    organization_id: str,
    session: SessionPayload = Depends(require_org_admin),
) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [user_to_response(u) for u in user_store.list_by_organization(organization_id)]


@router.post("/organizations/{organization_id}/users", response_model=UserResponse, status_code=201)
def create_org_user(
    request: Request,
    organization_id: str,
    body: OrgUserCreate,
    session: SessionPayload = Depends(require_org_admin),
) -> UserResponse:
    """Create a staff or parent account inside the organization."""
    user_store: UserStore = request.app.state.user_store
    new_user = User(
        email=body.email,
        name=body.name,
        password=hash_password(body.password),
        role=body.role,
        organization_id=organization_id,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that email already exists."},
        ) from exc

    logger.info(
        "user_id=%s created %s user_id=%s in organization_id=%s",
        session.id,
        body.role.value,
        user_id,
        organization_id,
    )
    return user_to_response(user_store.get_by_id(user_id))


@router.patch("/organizations/{organization_id}/users/{user_id}", response_model=UserResponse)
async def update_org_user(
    request: Request,
    organization_id: str,
    user_id: str,
    body: OrgUserPatch,
    session: SessionPayload = Depends(require_org_admin),
) -> UserResponse:
    """Update a member's name or role. Admins cannot change their own role."""
    user_store: UserStore = request.app.state.user_store

    target = user_store.get_by_id(user_id)
    # A user outside this organization is reported as missing, not forbidden,
    # so admins cannot probe for ids in other organizations.
    if target is None or target.organization_id != organization_id:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )

    updates: dict = {}
    if body.name is not None:
        updates["name"] = body.name
    if body.role is not None and body.role != target.role:
        if target.id == session.id:
            raise HTTPException(
                status_code=400,
                detail={"code": "self_role_change", "message": "You cannot change your own role."},
            )
        updates["role"] = body.role

    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )

    user_store.update_user(user_id, **updates)
    logger.info("user_id=%s updated user_id=%s fields=%s", session.id, user_id, sorted(updates))
    return user_to_response(user_store.get_by_id(user_id))
