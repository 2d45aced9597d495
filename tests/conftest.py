"""
tests/conftest.py -- Shared test fixtures for the auth service and API tests.

This module provides:
  - make_settings(): explicit Settings for tests (no .env dependence beyond DEBUG)
  - FakeMailer: records outbound mail instead of talking SMTP
  - store / accounts / sso fixtures for service-level tests
  - api_client / mail_client / sso_client: TestClient against the real app with
    a patched lifespan and isolated stores
  - create_user / login fixtures for route tests
  - count_rows(): direct table counts for assertions the store API does not expose

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
Each fixture instance gets its own uuid-suffixed name, so tests never share
state.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError when
api.main builds its middleware stack.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Table, func, select

from api.limiter import limiter
from api.main import app, init_state
from auth.errors import EmailDeliveryFailedError
from auth.models import User
from auth.service import AccountService
from auth.sessions import SESSION_COOKIE
from auth.sso import SsoProvisioningService
from auth.store import UserStore
from core.config import Settings

# Route tests log in many times; TestRateLimit switches the limiter back on.
limiter.enabled = False

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
PASSWORD = "correct-horse-9"


def make_settings(**overrides) -> Settings:
    values = {"debug": True, "secret_key": TEST_SECRET}
    values.update(overrides)
    return Settings(**values)


def make_store(name: str) -> UserStore:
    return UserStore(f"sqlite:///file:test_{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


def count_rows(store: UserStore, table: Table, **where) -> int:
    """Count rows in table matching the given column equalities."""
    query = select(func.count()).select_from(table)
    for column, value in where.items():
        query = query.where(table.c[column] == value)
    with store.engine.connect() as conn:
        return conn.execute(query).scalar() or 0


class FakeMailer:
    """Stands in for SmtpMailer. Keeps (kind, to, token) tuples in .sent."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str, str]] = []

    def _record(self, kind: str, to: str, token: str) -> None:
        if self.fail:
            raise EmailDeliveryFailedError()
        self.sent.append((kind, to, token))

    def send_verification_email(self, to: str, token: str) -> None:
        self._record("verify", to, token)

    def send_password_reset_email(self, to: str, token: str) -> None:
        self._record("reset", to, token)

    def last_token(self, kind: str, to: str) -> str:
        for sent_kind, sent_to, token in reversed(self.sent):
            if sent_kind == kind and sent_to == to:
                return token
        raise AssertionError(f"no {kind} mail sent to {to}")


# ---------------------------------------------------------------------------
# Service-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    user_store = make_store("svc")
    yield user_store
    user_store.close()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def accounts(store: UserStore, settings: Settings, mailer: FakeMailer) -> AccountService:
    """AccountService with mail configured (verification required)."""
    return AccountService(store, settings, mailer=mailer)


@pytest.fixture
def accounts_no_mail(store: UserStore, settings: Settings) -> AccountService:
    """AccountService in degraded mode: no mailer, accounts created verified."""
    return AccountService(store, settings)


@pytest.fixture
def sso(store: UserStore, settings: Settings) -> SsoProvisioningService:
    return SsoProvisioningService(store, settings)


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, user_store: UserStore, mailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test settings, store and mailer through the same init_state()
    the real lifespan uses. The purge_task is a long-sleeping coroutine so
    shutdown has a real asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, settings, user_store, mailer=mailer)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def _client(settings: Settings, mailer=None) -> Generator[tuple[TestClient, UserStore], None, None]:
    user_store = make_store("api")
    app.router.lifespan_context = _patch_lifespan(settings, user_store, mailer)
    # follow_redirects=False: the verify-email and SSO tests assert on Location.
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, user_store
    user_store.close()


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, UserStore], None, None]:
    """(client, store) with mail NOT configured -- registration auto-verifies."""
    yield from _client(make_settings())


@pytest.fixture
def mail_client(mailer: FakeMailer) -> Generator[tuple[TestClient, UserStore, FakeMailer], None, None]:
    """(client, store, mailer) with mail configured -- verification required."""
    for client, user_store in _client(make_settings(), mailer=mailer):
        yield client, user_store, mailer


@pytest.fixture
def sso_client() -> Generator[tuple[TestClient, UserStore], None, None]:
    """(client, store) with Microsoft SSO configured for a single tenant."""
    settings = make_settings(
        microsoft_client_id="client-id",
        microsoft_client_secret="client-secret",
        microsoft_tenant_id="contoso-tenant",
        bootstrap_admin_email="boss@contoso.com",
    )
    yield from _client(settings)


# ---------------------------------------------------------------------------
# Helpers exposed as fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def create_user() -> Callable[..., User]:
    """Return a function that inserts a verified password user into a store."""

    def _create(
        user_store: UserStore,
        email: str,
        role: str = "user",
        first_name: str = "Test",
        last_name: str = "User",
        password: str = PASSWORD,
    ) -> User:
        service = AccountService(user_store, make_settings())
        return service.create_verified_user(email, password, first_name, last_name, role=role)

    return _create


@pytest.fixture
def login() -> Callable[..., str]:
    """Return a function that logs in and returns the session id.

    The client's cookie jar is cleared afterwards; tests pass the session
    explicitly with session_headers() so several users can share one client.
    """

    def _login(client: TestClient, email: str, password: str = PASSWORD) -> str:
        resp = client.post("/api/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        session_id = resp.cookies[SESSION_COOKIE]
        client.cookies.clear()
        return session_id

    return _login


def session_headers(session_id: str) -> dict[str, str]:
    return {"Cookie": f"{SESSION_COOKIE}={session_id}"}


@pytest.fixture
def headers() -> Callable[[str], dict[str, str]]:
    return session_headers
