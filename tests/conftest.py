"""
tests/conftest.py -- Shared test fixtures for SwimDesk.

This module provides:
  - store: a fresh in-memory UserStore per test
  - make_user: helper that inserts a user with a hashed password
  - api_client: TestClient over the real app with a patched lifespan and
    seeded accounts, one per module

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
TestClient because sync route handlers run in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment must be set before any auth/core import: get_settings() is cached
at first call and auth.tokens reads it at module load.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: set before importing anything from api/, auth/ or core/.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "10")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User, UserRole
from auth.passwords import hash_password
from auth.store import UserStore
from auth.tokens import build_session_payload, create_access_token

# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def add_user(store: UserStore):
    """Bind make_user() to the per-test store."""

    def _add(email: str, role: UserRole, **kwargs) -> User:
        return make_user(store, email, role, **kwargs)

    return _add


def make_user(
    store: UserStore,
    email: str,
    role: UserRole,
    password: str = "swim-pass-1",
    organization_id: str | None = None,
    raw_password: str | None = None,
) -> User:
    """Insert a user and return the stored record.

    raw_password writes the value as-is, bypassing hashing, to simulate the
    legacy plaintext rows.
    """
    stored = raw_password if raw_password is not None else hash_password(password)
    user_id = store.create_user(
        User(
            email=email,
            name=email.split("@")[0],
            password=stored,
            role=role,
            organization_id=organization_id,
        )
    )
    return store.get_by_id(user_id)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    store: UserStore
    users: dict[str, User]
    reset_links: list[tuple[str, str]] = field(default_factory=list)

    def token_for(self, key: str) -> str:
        return create_access_token(build_session_payload(self.users[key]))

    def auth(self, key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token_for(key)}"}


def _patch_lifespan(user_store: UserStore, reset_links: list[tuple[str, str]]):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store into app.state and captures reset links instead of
    logging them.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.reset_notifier = lambda email, link: reset_links.append((email, link))
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext with seeded accounts for API integration tests.

    Accounts (all with password "swim-pass-1"):
      super   -- SUPER_ADMIN, no organization
      admin1  -- ADMIN of org1
      admin2  -- ADMIN of org2
      coach   -- INSTRUCTOR of org1
      parent  -- PARENT of org1
    """
    db_name = request.module.__name__.rsplit(".", 1)[-1]
    user_store = UserStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")

    users = {
        "super": make_user(user_store, "super@demo.com", UserRole.SUPER_ADMIN),
        "admin1": make_user(user_store, "admin1@orgone.com", UserRole.ADMIN, organization_id="org1"),
        "admin2": make_user(user_store, "admin2@orgtwo.com", UserRole.ADMIN, organization_id="org2"),
        "coach": make_user(user_store, "coach@orgone.com", UserRole.INSTRUCTOR, organization_id="org1"),
        "parent": make_user(user_store, "parent@orgone.com", UserRole.PARENT, organization_id="org1"),
    }
    reset_links: list[tuple[str, str]] = []

    app.router.lifespan_context = _patch_lifespan(user_store, reset_links)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, store=user_store, users=users, reset_links=reset_links)

    user_store.close()
