"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route, dependency and job code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Resource model:
  A UserStore owns one Engine. Callers that create a store (the API lifespan,
  the admin CLI) are responsible for close(), which disposes the pool. The
  store is never a module-level global; it is passed explicitly to the code
  that needs it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import User, UserRole

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False, server_default=""),
    Column("password", Text, nullable=False),
    Column("role", String(20), nullable=False, index=True),
    Column("organization_id", String(64), index=True),
    Column("reset_token_hash", String(64), unique=True),  # HMAC-SHA256 hex
    Column("reset_token_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///swimdesk.db")
        try:
            user_id = store.create_user(User(email="a@b.c", role=UserRole.PARENT, password=hash_password("x")))
            user = store.get_by_id(user_id)
        finally:
            store.close()

    Construction connects to the database (create_all), so an unreachable
    database raises sqlalchemy.exc.OperationalError here rather than on the
    first query.
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if a trivial query succeeds. Used by GET /health."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email. Emails are stored lowercased, so the lookup lowercases too."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_reset_token_hash(self, token_hash: str) -> User | None:
        """Look up the user holding a pending reset token. Expiry is the caller's check."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.reset_token_hash == token_hash)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_role(self, role: UserRole) -> list[User]:
        """Return every user with the given role, ordered by email.

        An empty list is a normal result, not an error.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where(_users.c.role == UserRole(role).value).order_by(_users.c.email)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def list_by_organization(self, organization_id: str) -> list[User]:
        """Return all users attached to one organization, ordered by email."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where(_users.c.organization_id == organization_id).order_by(_users.c.email)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its id.

        The id is generated here unless the caller supplied one. Raises
        sqlalchemy.exc.IntegrityError if the email already exists.
        """
        user_id = user.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email.strip().lower(),
                    name=user.name,
                    password=user.password,
                    role=UserRole(user.role).value,
                    organization_id=user.organization_id,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return user_id

    def update_user(self, user_id: str, **fields) -> bool:
        """Point update of mutable fields on one user.

        Accepted fields: name, role, organization_id, password,
        reset_token_hash, reset_token_expires_at.

        Returns True if a row was updated, False if user_id was not found.
        """
        if "role" in fields:
            fields["role"] = UserRole(fields["role"]).value
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_password(self, user_id: str, password_hash: str) -> bool:
        """Replace the stored password hash for one user, keyed by id."""
        return self.update_user(user_id, password=password_hash)

    def set_reset_token(self, user_id: str, token_hash: str, expires_at: str) -> bool:
        return self.update_user(user_id, reset_token_hash=token_hash, reset_token_expires_at=expires_at)

    def complete_password_reset(self, user_id: str, token_hash: str, password_hash: str) -> bool:
        """Store the new hash and clear the reset token in one statement.

        The UPDATE matches only while token_hash is still stored on the row,
        so a token is consumed at most once. Returns False when it was already
        used or replaced.
        """
        stmt = (
            _users.update()
            .where(_users.c.id == user_id, _users.c.reset_token_hash == token_hash)
            .values(password=password_hash, reset_token_hash=None, reset_token_expires_at=None)
        )
        with self.engine.connect() as conn:
            result = conn.execute(stmt)
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name or "",
        password=row.password,
        role=UserRole(row.role),
        organization_id=row.organization_id,
        reset_token_hash=row.reset_token_hash,
        reset_token_expires_at=row.reset_token_expires_at,
        created_at=row.created_at,
    )
