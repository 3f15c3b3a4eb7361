"""
tests/conftest.py -- Shared test fixtures for hearthgate.

This module provides:
  - FakeClock / clock: a controllable UTC clock injected into every store
  - key_pair: one throwaway RSA key pair per test session (generation is slow)
  - engine: a migrated SQLite database file under tmp_path
  - services: the full AuthServices graph on that engine and clock
  - make_user: create a user with optional role grants in one call
  - api_client: TestClient over the real app with a patched lifespan

Design: file-backed SQLite under tmp_path rather than :memory:. TestClient runs
sync route handlers in a thread pool and every thread must see the same
schema; a file per test also gives each test a clean database.

Environment variables must be set before any api/auth/core import because
get_settings() is cached on first use and several modules read it at import.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Callable, Generator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: configure Settings before any hearthgate import.
_scratch = tempfile.mkdtemp(prefix="hearthgate-tests-")
os.environ.setdefault("DEBUG", "true")
os.environ["SECURE_COOKIES"] = "false"  # TestClient talks plain http to "testserver"
os.environ["ALLOWED_HOSTS"] = '["*"]'
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["CONFIG_PATH"] = os.path.join(_scratch, "config")
os.environ["DATA_PATH"] = os.path.join(_scratch, "data")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.db import utcnow
from auth.keys import KeyPair, generate_key_pair
from auth.models import ALL_ROLES, Role
from auth.schema import AUTH_MIGRATIONS
from auth.services import AuthServices, build_auth_services
from core.config import get_settings
from core.db import create_db_engine, run_migrations

# Rate limits are exercised by slowapi's own suite; here they only make
# login-heavy tests flaky.
limiter.enabled = False

ADMIN_USERNAME = "testadmin"
ADMIN_PASSWORD = "testpass123"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def key_pair() -> KeyPair:
    return generate_key_pair()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine(tmp_path):
    eng = create_db_engine(f"sqlite:///{tmp_path / 'auth.db'}")
    run_migrations(eng, AUTH_MIGRATIONS)
    yield eng
    eng.dispose()


@pytest.fixture
def services(engine, key_pair, clock) -> AuthServices:
    return build_auth_services(engine, key_pair, get_settings(), clock=clock)


@pytest.fixture
def make_user(services) -> Callable[..., str]:
    """Return a factory: make_user("alice", roles=[...]) -> user_id. Password defaults to "secret123"."""

    def factory(username: str, password: str = "secret123", roles: Iterable[Role] = ()) -> str:
        return services.credentials.create_user(username, password, initial_roles=roles)

    return factory


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(services: AuthServices):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test services into app.state so routes see the isolated
    test database and test key pair instead of the configured ones.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = services
        yield

    return test_lifespan


@pytest.fixture
def api_services(engine, key_pair) -> AuthServices:
    """Services on the real clock, as the running app uses them, with an admin account."""
    svc = build_auth_services(engine, key_pair, get_settings(), clock=utcnow)
    admin_id = svc.credentials.create_user(ADMIN_USERNAME, ADMIN_PASSWORD, initial_roles=ALL_ROLES)
    svc.invites.set_remaining_invites(admin_id, 5)
    return svc


@pytest.fixture
def api_client(api_services) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with the patched lifespan. Not logged in."""
    app.router.lifespan_context = _patch_lifespan(api_services)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def admin_client(api_client) -> TestClient:
    """api_client with the admin's refresh and access cookies in its jar."""
    _login(api_client, ADMIN_USERNAME, ADMIN_PASSWORD)
    return api_client


def _login(client: TestClient, username: str, password: str):
    resp = client.post("/api/v1/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return resp


@pytest.fixture
def login() -> Callable[[TestClient, str, str], object]:
    """Return the login helper: login(client, username, password) -> response (asserts 200)."""
    return _login
