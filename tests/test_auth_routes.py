"""
tests/test_auth_routes.py -- Integration tests for /api/auth registration,
login, logout, /me, password recovery and /config.

These tests exercise the full stack: middleware (session attach) -> route ->
AccountService -> UserStore -> response model serialization, plus the error
envelope produced by the exception handlers.

Fixtures used (from conftest.py):
  - api_client:  (client, store) with mail NOT configured
  - mail_client: (client, store, mailer) with a FakeMailer
  - create_user, login, headers helpers
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest

from api.limiter import limiter
from auth.sessions import SESSION_COOKIE

ALICE = {"email": "alice@example.com", "password": "password123", "firstName": "Alice", "lastName": "Smith"}


class TestRegistration:
    def test_register_without_mail_can_log_in_at_once(self, api_client) -> None:
        client, _store = api_client
        resp = client.post("/api/auth/register", json=ALICE)
        assert resp.status_code == 200, resp.text
        assert resp.json() == {"success": True, "message": "Registration successful! You can now log in."}

        login = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "password123"})
        assert login.status_code == 200

    def test_register_with_mail_asks_for_verification(self, mail_client) -> None:
        client, _store, mailer = mail_client
        resp = client.post("/api/auth/register", json=ALICE)
        assert resp.status_code == 200
        assert "check your email" in resp.json()["message"]
        assert mailer.last_token("verify", "alice@example.com")

    def test_duplicate_registration(self, api_client) -> None:
        client, _store = api_client
        client.post("/api/auth/register", json=ALICE)
        resp = client.post("/api/auth/register", json={**ALICE, "email": "ALICE@example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "duplicate_email"

    def test_short_password_is_a_400_not_a_422(self, api_client) -> None:
        client, _store = api_client
        resp = client.post("/api/auth/register", json={**ALICE, "password": "short"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "weak_password"

    def test_bad_email_shape(self, api_client) -> None:
        client, _store = api_client
        resp = client.post("/api/auth/register", json={**ALICE, "email": "alice"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_email"

    def test_missing_field_is_schema_error(self, api_client) -> None:
        client, _store = api_client
        resp = client.post("/api/auth/register", json={"email": "alice@example.com"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_snake_case_body_is_accepted(self, api_client) -> None:
        client, _store = api_client
        body = {"email": "bob@example.com", "password": "password123", "first_name": "Bob", "last_name": "B"}
        assert client.post("/api/auth/register", json=body).status_code == 200


class TestVerifyEmail:
    def test_verification_link_redirects_and_unlocks_login(self, mail_client) -> None:
        client, _store, mailer = mail_client
        client.post("/api/auth/register", json=ALICE)

        blocked = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "password123"})
        assert blocked.status_code == 401
        assert blocked.json()["error"]["code"] == "email_not_verified"

        token = mailer.last_token("verify", "alice@example.com")
        resp = client.get("/api/auth/verify-email", params={"token": token})
        assert resp.status_code == 302
        assert resp.headers["location"] == "http://localhost:5000/login?verified=true"

        ok = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "password123"})
        assert ok.status_code == 200

    def test_reused_token_redirects_with_error(self, mail_client) -> None:
        client, _store, mailer = mail_client
        client.post("/api/auth/register", json=ALICE)
        token = mailer.last_token("verify", "alice@example.com")
        client.get("/api/auth/verify-email", params={"token": token})

        resp = client.get("/api/auth/verify-email", params={"token": token})
        assert resp.status_code == 302
        query = parse_qs(urlparse(resp.headers["location"]).query)
        assert query["verified"] == ["false"]
        assert "expired" in query["error"][0]

    def test_missing_token_redirects_with_error(self, api_client) -> None:
        client, _store = api_client
        resp = client.get("/api/auth/verify-email")
        assert resp.status_code == 302
        assert "verified=false" in resp.headers["location"]


class TestLoginLogout:
    def test_login_sets_httponly_cookie_and_returns_snapshot(self, api_client, create_user) -> None:
        client, store = api_client
        create_user(store, "alice@example.com", first_name="Alice", last_name="Smith")
        resp = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "correct-horse-9"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["user"]["displayName"] == "Alice Smith"
        assert body["user"]["emailVerified"] is True
        assert "passwordHash" not in body["user"]
        assert resp.headers["cache-control"] == "no-store"
        set_cookie = resp.headers["set-cookie"].lower()
        assert f"{SESSION_COOKIE}=" in set_cookie
        assert "httponly" in set_cookie
        assert "samesite=lax" in set_cookie

    def test_wrong_password_and_unknown_user_look_the_same(self, api_client, create_user) -> None:
        client, store = api_client
        create_user(store, "alice@example.com")
        wrong = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "nope-nope"})
        unknown = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "nope-nope"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "bad_credentials"

    def test_me_requires_session(self, api_client) -> None:
        client, _store = api_client
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"] == {"code": "unauthorized", "message": "Unauthorized"}

    def test_me_with_session(self, api_client, create_user, login, headers) -> None:
        client, store = api_client
        create_user(store, "alice@example.com")
        sid = login(client, "alice@example.com")
        resp = client.get("/api/auth/me", headers=headers(sid))
        assert resp.status_code == 200
        assert resp.json()["email"] == "alice@example.com"

    def test_garbage_cookie_is_anonymous(self, api_client, headers) -> None:
        client, _store = api_client
        assert client.get("/api/auth/me", headers=headers("forged-session-id")).status_code == 401

    def test_logout_revokes_session_server_side(self, api_client, create_user, login, headers) -> None:
        client, store = api_client
        create_user(store, "alice@example.com")
        sid = login(client, "alice@example.com")

        resp = client.post("/api/auth/logout", headers=headers(sid))
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        # Replaying the old cookie must not work: the session is gone, not just the cookie.
        assert client.get("/api/auth/me", headers=headers(sid)).status_code == 401

    def test_logout_without_session_is_ok(self, api_client) -> None:
        client, _store = api_client
        assert client.post("/api/auth/logout").status_code == 200

    def test_relogin_replaces_previous_session(self, api_client, create_user, login, headers) -> None:
        client, store = api_client
        create_user(store, "alice@example.com")
        old = login(client, "alice@example.com")
        resp = client.post(
            "/api/auth/login",
            json={"email": "alice@example.com", "password": "correct-horse-9"},
            headers=headers(old),
        )
        client.cookies.clear()
        new = resp.cookies[SESSION_COOKIE]
        assert new != old
        assert client.get("/api/auth/me", headers=headers(old)).status_code == 401
        assert client.get("/api/auth/me", headers=headers(new)).status_code == 200

    def test_cookie_jar_flow(self, api_client) -> None:
        """Register -> login -> /me -> logout using only the client's cookie jar."""
        client, _store = api_client
        client.post("/api/auth/register", json=ALICE)
        client.post("/api/auth/login", json={"email": "alice@example.com", "password": "password123"})
        me = client.get("/api/auth/me")
        assert me.status_code == 200
        assert me.json()["firstName"] == "Alice"
        client.post("/api/auth/logout")
        assert client.get("/api/auth/me").status_code == 401


class TestPasswordRecovery:
    def test_forgot_password_is_uniform(self, mail_client, create_user) -> None:
        client, store, mailer = mail_client
        create_user(store, "alice@example.com")
        known = client.post("/api/auth/forgot-password", json={"email": "alice@example.com"})
        unknown = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()
        assert [to for kind, to, _ in mailer.sent if kind == "reset"] == ["alice@example.com"]

    def test_forgot_password_without_mail_says_so(self, api_client, create_user) -> None:
        client, store = api_client
        create_user(store, "alice@example.com")
        resp = client.post("/api/auth/forgot-password", json={"email": "alice@example.com"})
        assert resp.status_code == 200
        assert "not configured" in resp.json()["message"]

    def test_forgot_password_bad_email_shape(self, api_client) -> None:
        client, _store = api_client
        resp = client.post("/api/auth/forgot-password", json={"email": "nope"})
        assert resp.status_code == 400

    def test_forgot_password_send_failure_is_500(self, mail_client, create_user) -> None:
        client, store, mailer = mail_client
        create_user(store, "alice@example.com")
        mailer.fail = True
        resp = client.post("/api/auth/forgot-password", json={"email": "alice@example.com"})
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "email_delivery_failed"

    def test_full_reset_flow(self, mail_client, create_user) -> None:
        client, store, mailer = mail_client
        create_user(store, "alice@example.com")
        client.post("/api/auth/forgot-password", json={"email": "alice@example.com"})
        token = mailer.last_token("reset", "alice@example.com")

        check = client.get("/api/auth/reset-password/verify", params={"token": token})
        assert check.json() == {"success": True, "email": "alice@example.com"}

        resp = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "brand-new-pass"})
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        again = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "another-pass1"})
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "invalid_token"

        old = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "correct-horse-9"})
        new = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "brand-new-pass"})
        assert (old.status_code, new.status_code) == (401, 200)

    def test_verify_unknown_token(self, api_client) -> None:
        client, _store = api_client
        resp = client.get("/api/auth/reset-password/verify", params={"token": "f" * 64})
        assert resp.status_code == 400

    def test_reset_with_weak_password(self, mail_client, create_user) -> None:
        client, store, mailer = mail_client
        create_user(store, "alice@example.com")
        client.post("/api/auth/forgot-password", json={"email": "alice@example.com"})
        token = mailer.last_token("reset", "alice@example.com")
        resp = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "short"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "weak_password"


class TestConfig:
    def test_config_without_mail_or_sso(self, api_client) -> None:
        client, _store = api_client
        assert client.get("/api/auth/config").json() == {"emailVerificationRequired": False, "ssoEnabled": False}

    def test_config_with_mail(self, mail_client) -> None:
        client, _store, _mailer = mail_client
        assert client.get("/api/auth/config").json()["emailVerificationRequired"] is True



class TestRateLimit:
    @pytest.fixture
    def limited(self):
        limiter.reset()
        limiter.enabled = True
        yield
        limiter.enabled = False
        limiter.reset()

    @pytest.mark.parametrize(
        "path, payload",
        [
            ("/api/auth/login", {"email": "ghost@example.com", "password": "nope-nope"}),
            ("/api/auth/forgot-password", {"email": "ghost@example.com"}),
        ],
    )
    def test_eleventh_attempt_in_a_minute_is_refused(self, api_client, limited, path: str, payload: dict) -> None:
        client, _store = api_client
        statuses = [client.post(path, json=payload).status_code for _ in range(11)]
        assert 429 not in statuses[:10]
        assert statuses[10] == 429

        resp = client.post(path, json=payload)
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
        assert "retry-after" in resp.headers
