"""
tests/test_auth_routes.py -- Integration tests for /api/v1/auth/*.

Runs through the real ASGI stack with the api_client fixture so the error
envelope, cookie handling and dependency wiring are all exercised.
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from api.limiter import limiter
from api.routes.v1 import auth as auth_routes
from auth.models import SessionPayload, User, UserRole
from auth.passwords import hash_password, verify_password
from auth.tokens import create_access_token, decode_access_token
from core.config import get_settings


def login(client: TestClient, email: str, password: str = "swim-pass-1") -> dict:
    """Log in and return the JSON body. Clears the cookie jar so later requests
    authenticate only with the headers they pass explicitly."""
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    client.cookies.clear()
    return resp.json()


class TestLogin:
    def test_login_returns_session_with_role_and_org(self, api_client) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/login", json={"email": "admin1@orgone.com", "password": "swim-pass-1"}
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["user"] == {
            "id": api_client.users["admin1"].id,
            "email": "admin1@orgone.com",
            "role": "ADMIN",
            "organization_id": "org1",
        }
        session = decode_access_token(body["access_token"])
        assert session.role is UserRole.ADMIN
        assert session.organization_id == "org1"
        assert resp.headers["Cache-Control"] == "no-store"
        assert "access_token" in resp.cookies
        api_client.client.cookies.clear()

    def test_super_admin_session_has_null_organization(self, api_client) -> None:
        body = login(api_client.client, "super@demo.com")
        assert body["user"]["organization_id"] is None

    def test_wrong_password_is_generic_401(self, api_client) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/login", json={"email": "admin1@orgone.com", "password": "wrong-pass"}
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_unknown_email_matches_wrong_password_response(self, api_client) -> None:
        unknown = api_client.client.post(
            "/api/v1/auth/login", json={"email": "ghost@orgone.com", "password": "swim-pass-1"}
        )
        wrong = api_client.client.post(
            "/api/v1/auth/login", json={"email": "admin1@orgone.com", "password": "wrong-pass"}
        )
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()

    def test_plaintext_stored_password_cannot_log_in(self, api_client) -> None:
        api_client.store.create_user(
            User(email="legacy@orgone.com", role=UserRole.INSTRUCTOR, password="legacy-pass", organization_id="org1")
        )
        resp = api_client.client.post(
            "/api/v1/auth/login", json={"email": "legacy@orgone.com", "password": "legacy-pass"}
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_invalid_body_is_422_envelope(self, api_client) -> None:
        resp = api_client.client.post("/api/v1/auth/login", json={"email": "not-an-email", "password": "x"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestSession:
    def test_me_with_bearer_token(self, api_client) -> None:
        resp = api_client.client.get("/api/v1/auth/me", headers=api_client.auth("coach"))
        assert resp.status_code == 200
        assert resp.json()["role"] == "INSTRUCTOR"
        assert resp.json()["organization_id"] == "org1"

    def test_me_with_cookie(self, api_client) -> None:
        resp = api_client.client.get("/api/v1/auth/me", cookies={"access_token": api_client.token_for("parent")})
        assert resp.status_code == 200
        assert resp.json()["role"] == "PARENT"

    def test_me_requires_auth(self, api_client) -> None:
        api_client.client.cookies.clear()
        resp = api_client.client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_rejects_tampered_token(self, api_client) -> None:
        token = api_client.token_for("parent")
        api_client.client.cookies.clear()
        resp = api_client.client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token[:-2]}xx"})
        assert resp.status_code == 401

    def test_logout_clears_cookie(self, api_client) -> None:
        resp = api_client.client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        set_cookie = resp.headers.get("set-cookie", "")
        assert "access_token=" in set_cookie

    def test_refresh_picks_up_role_change(self, api_client) -> None:
        store = api_client.store
        uid = store.create_user(
            User(
                email="promoted@orgone.com",
                role=UserRole.INSTRUCTOR,
                password=hash_password("swim-pass-1"),
                organization_id="org1",
            )
        )
        old = login(api_client.client, "promoted@orgone.com")["access_token"]

        store.update_user(uid, role=UserRole.ADMIN)
        api_client.client.cookies.clear()

        # The old token is a snapshot and still says INSTRUCTOR.
        stale = api_client.client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {old}"})
        assert stale.json()["role"] == "INSTRUCTOR"

        resp = api_client.client.post("/api/v1/auth/refresh", headers={"Authorization": f"Bearer {old}"})
        assert resp.status_code == 200
        assert resp.json()["user"]["role"] == "ADMIN"
        assert decode_access_token(resp.json()["access_token"]).role is UserRole.ADMIN

    def test_refresh_for_deleted_user_is_401(self, api_client) -> None:
        token = create_access_token(SessionPayload(id="deleted", email="x@orgone.com", role=UserRole.PARENT))
        api_client.client.cookies.clear()
        resp = api_client.client.post("/api/v1/auth/refresh", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401


class TestRegister:
    def test_register_creates_parent(self, api_client) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={
                "name": "New Parent",
                "email": "newparent@orgone.com",
                "password": "splash-123",
                "organization_id": "org1",
            },
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["role"] == "PARENT"
        assert body["organization_id"] == "org1"
        assert "password" not in body
        stored = api_client.store.get_by_email("newparent@orgone.com")
        assert verify_password("splash-123", stored.password)

    def test_duplicate_email_is_409(self, api_client) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"name": "Dup", "email": "parent@orgone.com", "password": "splash-123", "organization_id": "org1"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_short_password_is_422(self, api_client) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"name": "Short", "email": "short@orgone.com", "password": "abc", "organization_id": "org1"},
        )
        assert resp.status_code == 422

    def test_password_over_72_bytes_is_422(self, api_client) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"name": "Long", "email": "long@orgone.com", "password": "é" * 40, "organization_id": "org1"},
        )
        assert resp.status_code == 422


class TestPasswordReset:
    def _request_link(self, api_client, email: str) -> str:
        api_client.reset_links.clear()
        resp = api_client.client.post("/api/v1/auth/forgot-password", json={"email": email})
        assert resp.status_code == 200
        assert len(api_client.reset_links) == 1
        sent_to, link = api_client.reset_links[0]
        assert sent_to == email
        return parse_qs(urlparse(link).query)["token"][0]

    def test_unknown_email_gets_same_message_and_no_link(self, api_client) -> None:
        api_client.reset_links.clear()
        unknown = api_client.client.post("/api/v1/auth/forgot-password", json={"email": "ghost@orgone.com"})
        known = api_client.client.post("/api/v1/auth/forgot-password", json={"email": "coach@orgone.com"})

        assert unknown.json() == known.json()
        assert [email for email, _ in api_client.reset_links] == ["coach@orgone.com"]

    def test_token_is_stored_hashed(self, api_client) -> None:
        token = self._request_link(api_client, "coach@orgone.com")
        stored = api_client.store.get_by_email("coach@orgone.com")
        assert stored.reset_token_hash
        assert stored.reset_token_hash != token

    def test_reset_sets_new_password_and_is_single_use(self, api_client) -> None:
        token = self._request_link(api_client, "parent@orgone.com")

        resp = api_client.client.post("/api/v1/auth/reset-password", json={"token": token, "password": "fresh-pass-9"})
        assert resp.status_code == 200

        assert login(api_client.client, "parent@orgone.com", "fresh-pass-9")["user"]["role"] == "PARENT"

        again = api_client.client.post("/api/v1/auth/reset-password", json={"token": token, "password": "other-pass-9"})
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "invalid_reset_token"

    def test_expired_token_is_rejected(self, api_client) -> None:
        token = self._request_link(api_client, "admin2@orgtwo.com")
        user = api_client.store.get_by_email("admin2@orgtwo.com")
        api_client.store.update_user(user.id, reset_token_expires_at="2000-01-01T00:00:00+00:00")

        resp = api_client.client.post("/api/v1/auth/reset-password", json={"token": token, "password": "fresh-pass-9"})
        assert resp.status_code == 400

    def test_unknown_token_is_rejected(self, api_client) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/reset-password", json={"token": "0" * 64, "password": "fresh-pass-9"}
        )
        assert resp.status_code == 400

    def test_token_used_by_a_concurrent_request_is_rejected(self, api_client, monkeypatch) -> None:
        token = self._request_link(api_client, "coach@orgone.com")
        # Both requests read the row while the token was still pending.
        pending = api_client.store.get_by_email("coach@orgone.com")

        first = api_client.client.post("/api/v1/auth/reset-password", json={"token": token, "password": "first-pass-1"})
        assert first.status_code == 200

        monkeypatch.setattr(api_client.store, "get_by_reset_token_hash", lambda token_hash: pending)
        second = api_client.client.post(
            "/api/v1/auth/reset-password", json={"token": token, "password": "second-pass-2"}
        )

        assert second.status_code == 400
        assert second.json()["error"]["code"] == "invalid_reset_token"
        assert verify_password("first-pass-1", api_client.store.get_by_email("coach@orgone.com").password)

    def test_unknown_email_does_the_same_token_work(self, api_client, monkeypatch) -> None:
        calls: list[str] = []
        real_hash = auth_routes.hash_reset_token

        def counting_hash(raw_token: str) -> str:
            calls.append(raw_token)
            return real_hash(raw_token)

        monkeypatch.setattr(auth_routes, "hash_reset_token", counting_hash)

        api_client.client.post("/api/v1/auth/forgot-password", json={"email": "ghost@orgone.com"})
        unknown_calls = len(calls)
        api_client.client.post("/api/v1/auth/forgot-password", json={"email": "admin1@orgone.com"})

        assert unknown_calls == 1
        assert len(calls) == 2


class TestRateLimit:
    def test_login_returns_429_envelope_past_the_limit(self, api_client, monkeypatch) -> None:
        monkeypatch.setattr(get_settings(), "login_rate_limit", "2/minute")
        limiter.reset()
        try:
            statuses = []
            for _ in range(3):
                resp = api_client.client.post(
                    "/api/v1/auth/login", json={"email": "admin1@orgone.com", "password": "wrong-pass"}
                )
                statuses.append(resp.status_code)
        finally:
            limiter.reset()

        assert statuses == [401, 401, 429]
        assert resp.json()["error"]["code"] == "rate_limited"
        assert int(resp.headers["Retry-After"]) > 0

    def test_forgot_password_is_rate_limited(self, api_client, monkeypatch) -> None:
        monkeypatch.setattr(get_settings(), "login_rate_limit", "1/minute")
        limiter.reset()
        try:
            first = api_client.client.post("/api/v1/auth/forgot-password", json={"email": "ghost@orgone.com"})
            second = api_client.client.post("/api/v1/auth/forgot-password", json={"email": "ghost@orgone.com"})
        finally:
            limiter.reset()

        assert first.status_code == 200
        assert second.status_code == 429
