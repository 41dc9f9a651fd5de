"""
auth/passwords.py -- Credential hashing and verification.

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x+ rejects.

A stored hash has the form $2b$<cost>$<22 chars salt><31 chars digest>, so the
salt and cost factor travel with the digest and verification needs nothing
else. bcrypt.checkpw compares digests in constant time.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import re

import bcrypt

from core.config import get_settings

# bcrypt only reads the first 72 bytes of its input. Newer bcrypt releases
# raise instead of truncating, so the limit is enforced here with a clear error.
MAX_PASSWORD_BYTES = 72

_BCRYPT_HASH_RE = re.compile(r"^\$2[aby]\$(0[4-9]|[12]\d|3[01])\$[./A-Za-z0-9]{53}$")


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    rounds defaults to Settings.bcrypt_rounds. Raises ValueError when the
    password is longer than MAX_PASSWORD_BYTES once UTF-8 encoded.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    cost = rounds if rounds is not None else get_settings().bcrypt_rounds
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=cost)).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Fails closed: a stored value that is not a bcrypt hash (a legacy plaintext
    row, an empty string, None) returns False instead of raising.
    """
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def is_password_hash(value: str | None) -> bool:
    """Return True if value is a well-formed bcrypt hash string."""
    return bool(value) and _BCRYPT_HASH_RE.match(value) is not None


def normalize_legacy_password(raw: str) -> str:
    """Strip stray double quotes and surrounding whitespace from a legacy value.

    '"secret123"  ' -> 'secret123'
    """
    return raw.replace('"', "").strip()
