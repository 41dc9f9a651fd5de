"""
API request and response models for SwimDesk REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.
"""

from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import SessionPayload, UserRole
from auth.passwords import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MIN_PASSWORD_LENGTH = 6


def _check_password_bytes(value: str) -> str:
    """bcrypt reads at most 72 bytes; a 72-character password can exceed that in UTF-8."""
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    return value


# Annotated type shared by every body that sets a new password.
_NewPassword = Annotated[
    str,
    Field(min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_BYTES),
    AfterValidator(_check_password_bytes),
]


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Inner error object. `code` is machine-readable, `message` is for humans."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Envelope used by every error response: {"error": {...}}."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email: EmailStr
    # No minimum here: login must answer "invalid credentials", not a 422
    # that reveals the password policy.
    password: str = Field(min_length=1, max_length=255)


class RegisterRequest(BaseModel):
    """Self-registration body. Always creates a PARENT account."""

    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: _NewPassword
    organization_id: str = Field(min_length=1, max_length=64)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)
    password: _NewPassword


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    """The identity claims carried by the caller's token."""

    id: str
    email: str
    role: UserRole
    organization_id: Optional[str] = None

    @classmethod
    def from_session(cls, session: SessionPayload) -> "SessionResponse":
        return cls(
            id=session.id,
            email=session.email,
            role=session.role,
            organization_id=session.organization_id,
        )


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: SessionResponse


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Organization user management
# ---------------------------------------------------------------------------


class OrgUserCreate(BaseModel):
    """Body for POST /organizations/{id}/users. SUPER_ADMIN is not creatable over HTTP."""

    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: _NewPassword
    role: UserRole = UserRole.INSTRUCTOR

    @field_validator("role")
    @classmethod
    def reject_super_admin(cls, value: UserRole) -> UserRole:
        if value == UserRole.SUPER_ADMIN:
            raise ValueError("SUPER_ADMIN accounts can only be created from the admin CLI.")
        return value


class OrgUserPatch(BaseModel):
    """Partial update. All fields optional; at least one must be present (checked in route)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    role: Optional[UserRole] = None

    @field_validator("role")
    @classmethod
    def reject_super_admin(cls, value: Optional[UserRole]) -> Optional[UserRole]:
        if value == UserRole.SUPER_ADMIN:
            raise ValueError("SUPER_ADMIN cannot be granted over HTTP.")
        return value


class UserResponse(BaseModel):
    """Public view of a user. The password column is never serialized."""

    id: str
    email: str
    name: str
    role: UserRole
    organization_id: Optional[str] = None
    created_at: str
