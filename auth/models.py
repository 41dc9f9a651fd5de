"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store and routes do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class UserRole(str, Enum):
    """Authorization scope of an account.

    SUPER_ADMIN is platform-wide and has no organization. Every other role is
    normally scoped to exactly one organization.
    """

    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    INSTRUCTOR = "INSTRUCTOR"
    PARENT = "PARENT"


@dataclass
class User:
    """A SwimDesk account.

    password holds the bcrypt hash. Legacy instructor imports wrote plaintext
    (sometimes wrapped in quotes or padded with whitespace) into this column;
    auth/repair.py exists to bring those rows back to a hashed state, so code
    reading this field must never assume it is well-formed.

    reset_token_hash is HMAC-SHA256 of the emailed reset token, never the raw
    token. Both reset fields are None when no reset is pending.
    """

    email: str
    role: UserRole
    password: str = ""
    name: str = ""
    id: str | None = None
    organization_id: str | None = None
    reset_token_hash: str | None = None
    reset_token_expires_at: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class SessionPayload:
    """Identity projection carried by every access token.

    Derived from a User at login (see auth.tokens.build_session_payload) and
    re-derived on refresh; never persisted and never mutated in place.
    organization_id is None for SUPER_ADMIN accounts and for users that have
    not been attached to an organization yet.
    """

    id: str
    email: str
    role: UserRole
    organization_id: str | None = None
