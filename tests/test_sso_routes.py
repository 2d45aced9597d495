"""
tests/test_sso_routes.py -- Integration tests for Microsoft SSO routes and the
allowed-domain admin endpoints.

The authlib client is replaced with a mock on app.state.oauth so no request
ever leaves the process; everything after the code exchange (claim mapping,
provisioning, session issue, redirects) runs for real.

Coverage:
  - 404 on both SSO routes when SSO is not configured
  - /microsoft/login hands the callback URL to authlib
  - /microsoft/callback: new user, linked user, bootstrap admin, refused
    domain, failed exchange, unusable claims
  - /domains list/add/delete, validation, duplicates, admin guard
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from authlib.integrations.starlette_client import OAuthError
from fastapi.responses import RedirectResponse

from auth.schema import users
from auth.sessions import SESSION_COOKIE
from conftest import count_rows

CLAIMS = {"oid": "oid-dana", "email": "dana@contoso.com", "given_name": "Dana", "family_name": "Lee"}


def _mock_provider(client, token=None, exc: Exception | None = None) -> MagicMock:
    """Install a fake Microsoft client on the running app and return it."""
    provider = MagicMock()
    if exc is not None:
        provider.authorize_access_token = AsyncMock(side_effect=exc)
    else:
        provider.authorize_access_token = AsyncMock(return_value=token)
    provider.authorize_redirect = AsyncMock(
        return_value=RedirectResponse("https://login.microsoftonline.com/authorize", status_code=302)
    )
    registry = MagicMock()
    registry.create_client.return_value = provider
    client.app.state.oauth = registry
    return provider


def _callback(client, claims: dict = CLAIMS):
    _mock_provider(client, token={"access_token": "at", "userinfo": claims})
    resp = client.get("/api/auth/microsoft/callback", params={"code": "c", "state": "s"})
    return resp


class TestSsoDisabled:
    @pytest.mark.parametrize("path", ["/api/auth/microsoft/login", "/api/auth/microsoft/callback"])
    def test_404_when_not_configured(self, api_client, path: str) -> None:
        client, _store = api_client
        resp = client.get(path)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "sso_not_configured"


class TestSsoLogin:
    def test_login_redirects_through_authlib(self, sso_client) -> None:
        client, _store = sso_client
        provider = _mock_provider(client)
        resp = client.get("/api/auth/microsoft/login")
        assert resp.status_code == 302
        assert resp.headers["location"].startswith("https://login.microsoftonline.com/")
        redirect_uri = provider.authorize_redirect.await_args.args[1]
        assert redirect_uri == "http://testserver/api/auth/microsoft/callback"


class TestSsoCallback:
    def test_new_user_on_allowed_domain(self, sso_client, headers) -> None:
        client, store = sso_client
        client.app.state.sso.add_domain("contoso.com", added_by=None)

        resp = _callback(client)
        assert resp.status_code == 302
        assert resp.headers["location"] == "http://localhost:5000/"
        sid = resp.cookies[SESSION_COOKIE]
        client.cookies.clear()

        me = client.get("/api/auth/me", headers=headers(sid)).json()
        assert me["email"] == "dana@contoso.com"
        assert me["role"] == "user"
        assert store.get_by_email("dana@contoso.com").microsoft_id == "oid-dana"

    def test_unlisted_domain_redirects_with_error(self, sso_client) -> None:
        client, store = sso_client
        resp = _callback(client)
        assert resp.status_code == 302
        assert resp.headers["location"] == "http://localhost:5000/login?error=domain_not_allowed"
        assert SESSION_COOKIE not in resp.cookies
        assert count_rows(store, users) == 0

    def test_existing_password_user_is_linked(self, sso_client, create_user) -> None:
        client, store = sso_client
        existing = create_user(store, "dana@contoso.com")
        resp = _callback(client)
        assert resp.status_code == 302
        assert resp.headers["location"] == "http://localhost:5000/"
        assert store.get_by_id(existing.id).microsoft_id == "oid-dana"

    def test_bootstrap_admin_is_provisioned_as_admin(self, sso_client) -> None:
        client, store = sso_client
        claims = {"oid": "oid-boss", "preferred_username": "boss@contoso.com", "name": "Big Boss"}
        resp = _callback(client, claims)
        assert resp.status_code == 302
        boss = store.get_by_email("boss@contoso.com")
        assert boss.role == "admin"
        assert boss.display_name == "Big Boss"

    def test_failed_exchange(self, sso_client) -> None:
        client, _store = sso_client
        _mock_provider(client, exc=OAuthError(error="access_denied"))
        resp = client.get("/api/auth/microsoft/callback", params={"error": "access_denied"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "http://localhost:5000/login?error=sso_failed"

    def test_claims_without_identifier(self, sso_client) -> None:
        client, _store = sso_client
        resp = _callback(client, {"email": "dana@contoso.com"})
        assert resp.headers["location"] == "http://localhost:5000/login?error=sso_failed"


class TestDomainAdmin:
    @pytest.fixture
    def admin_sid(self, api_client, create_user, login) -> str:
        client, store = api_client
        create_user(store, "admin@example.com", role="admin")
        return login(client, "admin@example.com")

    def test_crud(self, api_client, admin_sid, headers) -> None:
        client, _store = api_client
        auth = headers(admin_sid)
        assert client.get("/api/auth/domains", headers=auth).json() == []

        created = client.post("/api/auth/domains", json={"domain": "Contoso.com"}, headers=auth)
        assert created.status_code == 201
        body = created.json()
        assert body["domain"] == "contoso.com"
        assert body["addedBy"] is not None

        listed = client.get("/api/auth/domains", headers=auth).json()
        assert [d["domain"] for d in listed] == ["contoso.com"]

        deleted = client.delete(f"/api/auth/domains/{body['id']}", headers=auth)
        assert deleted.status_code == 200
        assert client.delete(f"/api/auth/domains/{body['id']}", headers=auth).status_code == 404

    def test_duplicate(self, api_client, admin_sid, headers) -> None:
        client, _store = api_client
        client.post("/api/auth/domains", json={"domain": "contoso.com"}, headers=headers(admin_sid))
        resp = client.post("/api/auth/domains", json={"domain": "CONTOSO.COM"}, headers=headers(admin_sid))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "duplicate_domain"

    def test_invalid(self, api_client, admin_sid, headers) -> None:
        client, _store = api_client
        resp = client.post("/api/auth/domains", json={"domain": "not a domain"}, headers=headers(admin_sid))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_domain"

    def test_requires_admin(self, api_client, create_user, login, headers) -> None:
        client, store = api_client
        create_user(store, "bob@example.com")
        sid = login(client, "bob@example.com")
        assert client.get("/api/auth/domains", headers=headers(sid)).status_code == 403
        assert client.post("/api/auth/domains", json={"domain": "x.com"}, headers=headers(sid)).status_code == 403
