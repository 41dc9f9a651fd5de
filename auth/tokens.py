"""
auth/tokens.py -- Session tokens, credential checks, and reset tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry the full SessionPayload (user id
       as `sub`, email, role, organization_id) so authorization checks never
       need a second store lookup. Verification returns None on any failure --
       the route layer turns that into a 401.

  Re-derivation: a token is a snapshot. When a user's role or organization
       changes, the old token keeps its old claims until it expires or the
       client calls POST /auth/refresh, which builds a new payload from the
       current store record. Payloads are never edited in place.

  Login timing: _DUMMY_HASH lets authenticate_user() run bcrypt even when the
       email is unknown, so response time does not reveal account existence [C1].

  Reset tokens: secrets.token_hex(32) gives 256 bits of entropy. Only
       HMAC-SHA256(SECRET_KEY, token) is stored, so a leaked users table does
       not leak usable reset links.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.models import SessionPayload, User, UserRole
from auth.passwords import hash_password, verify_password
from core.config import get_settings

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("swimdesk.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# Timing equalization dummy hash [C1]. Computed once at module load so the
# first failed login is not measurably faster than later ones.
_DUMMY_HASH: str = hash_password("swimdesk_timing_dummy")


# ---------------------------------------------------------------------------
# Session identity
# ---------------------------------------------------------------------------


def build_session_payload(user: User) -> SessionPayload:
    """Project a verified User onto the claims carried by its access token."""
    return SessionPayload(
        id=user.id,
        email=user.email,
        role=UserRole(user.role),
        organization_id=user.organization_id or None,
    )


def create_access_token(session: SessionPayload, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for the given session payload.

    Args:
        session:        Identity projection built by build_session_payload().
        expire_seconds: Token lifetime. If 0 (default), uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    now = datetime.now(timezone.utc)
    claims = {
        "sub": session.id,
        "email": session.email,
        "role": session.role.value,
        "organization_id": session.organization_id,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(claims, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> SessionPayload | None:
    """Verify a JWT and rebuild its SessionPayload. Returns None on any failure.

    Expired tokens, bad signatures, missing claims and unknown roles are all
    treated the same way: unauthenticated.
    """
    try:
        claims = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not claims.get("sub") or "role" not in claims:
        return None
    try:
        role = UserRole(claims["role"])
    except ValueError:
        return None
    return SessionPayload(
        id=claims["sub"],
        email=claims.get("email", ""),
        role=role,
        organization_id=claims.get("organization_id") or None,
    )


# ---------------------------------------------------------------------------
# Credential check (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password login with timing equalization.

    Returns the User on success, None on any failure. Unknown email, wrong
    password, and a malformed stored hash (legacy plaintext) are deliberately
    indistinguishable to the caller.
    """
    user = store.get_by_email(email)
    if user is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password):
        logger.info("Failed login for user_id=%s", user.id)
        return None
    return user


# ---------------------------------------------------------------------------
# Password reset tokens
# ---------------------------------------------------------------------------


def generate_reset_token() -> str:
    return secrets.token_hex(32)


def hash_reset_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string.

    Deterministic, so the store can look the token up by hash directly.
    """
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()


def reset_token_expiry(now: datetime | None = None) -> str:
    """ISO 8601 UTC expiry for a token issued at `now` (default: current time)."""
    issued = now or datetime.now(timezone.utc)
    return (issued + timedelta(seconds=_settings.reset_token_expire_seconds)).isoformat()


def reset_token_expired(expires_at: str | None, now: datetime | None = None) -> bool:
    """True when no expiry is recorded or the recorded expiry has passed."""
    if not expires_at:
        return True
    current = now or datetime.now(timezone.utc)
    return datetime.fromisoformat(expires_at) <= current


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Set the "access_token" cookie read by try_get_session() for web clients.

    The cookie is httpOnly and SameSite=lax, marked Secure when
    SECURE_COOKIES is on, and lives exactly as long as the token it carries.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )
