"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token transports are checked in priority order:
  1. JWT cookie ("access_token") -- set by the web login flow.
  2. Authorization: Bearer <token> header -- mobile app and API clients.

Both converge on a SessionPayload. Role and organization come from the token
claims, so none of these helpers touch the user store.

try_get_session() is the soft variant (returns None on failure).
get_current_session() wraps it and raises HTTP 401 if unauthenticated.
require_org_admin() adds the HTTP 403 organization check on top.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.models import SessionPayload, UserRole
from auth.tokens import decode_access_token


def try_get_session(request: Request) -> SessionPayload | None:
    """Return the caller's SessionPayload, or None. Never raises."""
    token: str | None = request.cookies.get("access_token")

    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]

    if not token:
        return None
    return decode_access_token(token)


def get_current_session(request: Request) -> SessionPayload:
    """Require authentication. Raises HTTP 401 if the request is not authenticated."""
    session = try_get_session(request)
    if session is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return session


def require_org_admin(
    organization_id: str,
    session: SessionPayload = Depends(get_current_session),
) -> SessionPayload:
    """Admit SUPER_ADMIN, or an ADMIN whose token is scoped to organization_id.

    organization_id is resolved from the route's path parameter of the same name.
    """
    if session.role == UserRole.SUPER_ADMIN:
        return session
    if session.role == UserRole.ADMIN and session.organization_id == organization_id:
        return session
    raise HTTPException(
        status_code=403,
        detail={"code": "forbidden", "message": "Organization admin access required."},
    )
