"""
api/routes/v1/auth.py -- Login, session and password-reset REST endpoints.

Routes:
  POST /api/v1/auth/login            -- email/password login; returns JWT, sets cookie
  POST /api/v1/auth/logout           -- clears cookie
  GET  /api/v1/auth/me               -- claims of the caller's token (no DB hit)
  POST /api/v1/auth/refresh          -- re-derive the token from the current user record
  POST /api/v1/auth/register         -- self-registration of a PARENT account
  POST /api/v1/auth/forgot-password  -- issue a reset token (same answer for unknown emails)
  POST /api/v1/auth/reset-password   -- consume a reset token and set a new password

Security:
  [H2] login, forgot-password and reset-password are rate-limited per IP.
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on responses that carry a token.
  Unknown email, wrong password and a malformed stored hash all produce the
  same 401 "bad_credentials" body.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SessionResponse,
    UserResponse,
)
from auth.dependencies import get_current_session
from auth.models import SessionPayload, User, UserRole
from auth.passwords import hash_password
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    build_session_payload,
    create_access_token,
    generate_reset_token,
    hash_reset_token,
    reset_token_expired,
    reset_token_expiry,
    set_auth_cookie,
)
from core.config import get_settings

logger = logging.getLogger("swimdesk.api.auth")

_settings = get_settings()

_FORGOT_PASSWORD_MESSAGE = "If an account exists, you will receive a password reset email."

router = APIRouter()


def _auth_rate_limit() -> str:
    """Read per request so a changed LOGIN_RATE_LIMIT setting applies without re-import."""
    return _settings.login_rate_limit


def log_reset_link(email: str, link: str) -> None:
    """Default reset-link notifier: write the link to the operator log.

    Deployments with outbound mail replace app.state.reset_notifier.
    """
    logger.info("Password reset link for %s: %s", email, link)


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


def _token_response(session: SessionPayload) -> JSONResponse:
    token = create_access_token(session)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            user=SessionResponse.from_session(session),
        ).model_dump(mode="json"),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_auth_rate_limit)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    The token is returned in the body (mobile clients send it back as a
    Bearer header) and set as an httpOnly cookie (web clients).
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    logger.info("Login user_id=%s role=%s", user.id, UserRole(user.role).value)
    return _token_response(build_session_payload(user))


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> JSONResponse:
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


@router.get("/auth/me", response_model=SessionResponse)
async def me(session: SessionPayload = Depends(get_current_session)) -> SessionResponse:
    """Return the identity claims of the caller's token."""
    return SessionResponse.from_session(session)


@router.post("/auth/refresh", response_model=LoginResponse)
def refresh(request: Request, session: SessionPayload = Depends(get_current_session)) -> JSONResponse:
    """Issue a new token built from the user's current role and organization.

    This is the only way a role or organization change reaches a client that
    already holds a token. A deleted account gets 401.
    """
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(session.id)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return _token_response(build_session_payload(user))


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create a PARENT account attached to an organization.

    Staff accounts (ADMIN, INSTRUCTOR) are created by organization admins;
    see api/routes/v1/users.py.
    """
    if not _settings.self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )

    user_store: UserStore = request.app.state.user_store
    new_user = User(
        email=body.email,
        name=body.name,
        password=hash_password(body.password),
        role=UserRole.PARENT,
        organization_id=body.organization_id,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "User already exists."},
        ) from exc

    logger.info("Registered parent user_id=%s organization_id=%s", user_id, body.organization_id)
    return user_to_response(user_store.get_by_id(user_id))


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.limit(_auth_rate_limit)  # [H2]
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
) -> MessageResponse:
    """Start a password reset. The response never reveals whether the email exists.

    A token is generated and hashed for unknown emails too, and the link is
    handed to the notifier after the response is sent, so both branches do
    the same work before answering.
    """
    user_store: UserStore = request.app.state.user_store
    raw_token = generate_reset_token()
    token_hash = hash_reset_token(raw_token)
    expires_at = reset_token_expiry()

    user = user_store.get_by_email(body.email)
    if user is None:
        return MessageResponse(message=_FORGOT_PASSWORD_MESSAGE)

    user_store.set_reset_token(user.id, token_hash, expires_at)
    link = f"{_settings.app_url.rstrip('/')}/reset-password?token={raw_token}"
    background_tasks.add_task(request.app.state.reset_notifier, user.email, link)
    return MessageResponse(message=_FORGOT_PASSWORD_MESSAGE)


@router.post("/auth/reset-password", response_model=MessageResponse)
@limiter.limit(_auth_rate_limit)  # [H2]
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password using a reset token. Tokens are single-use."""
    user_store: UserStore = request.app.state.user_store
    token_hash = hash_reset_token(body.token)
    user = user_store.get_by_reset_token_hash(token_hash)
    # complete_password_reset() only matches while the token is still stored,
    # so of two concurrent requests with one token at most one succeeds.
    if (
        user is None
        or reset_token_expired(user.reset_token_expires_at)
        or not user_store.complete_password_reset(user.id, token_hash, hash_password(body.password))
    ):
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_reset_token", "message": "Invalid or expired reset token."},
        )

    logger.info("Password reset completed for user_id=%s", user.id)
    return MessageResponse(message="Password reset successful.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def user_to_response(user: User | None) -> UserResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        organization_id=user.organization_id,
        created_at=user.created_at or "",
    )
