"""
tests/conftest.py -- Shared test fixtures for Authenticator tests.

This module provides:
  - make_settings(): Settings with test-friendly defaults (cheap bcrypt, fixed key)
  - _make_test_stores(): isolated in-memory DBs for users + activity
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - api_client / admin_client: TestClient in hybrid mode with provisioning into an InMemoryDirectory
  - local_client: TestClient in local mode with provisioning off
  - settings_factory: make_settings() for unit tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any core/auth import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# Route tests log in far more often than a real client would.
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from activity.store import ActivityStore
from api.main import app, init_components
from auth.models import ROLE_ADMIN, ROLE_SUPERADMIN, ROLE_USER, User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.config import Settings
from directory.memory import InMemoryDirectory

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"


# ---------------------------------------------------------------------------
# Settings / store helpers
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    """Build a Settings object for tests.

    bcrypt_salt_rounds=4 (bcrypt's floor) keeps hashing fast. _env_file=None
    stops a developer's .env from leaking into the test run.
    """
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "bcrypt_salt_rounds": 4,
        "ad_backend": "memory",
        "ad_timeout_seconds": 1.0,
        "ad_provisioning_timeout_seconds": 1.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings_factory():
    """make_settings() as a fixture, for unit tests that build components directly."""
    return make_settings


def db_url(name: str) -> str:
    return f"sqlite:///file:test_{name}?mode=memory&cache=shared&uri=true"


def _make_test_stores(db_suffix: str) -> tuple[UserStore, ActivityStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so parallel test
                   modules don't share state (e.g. 'api', 'admin').
    """
    user_store = UserStore(db_url=db_url(f"users_{db_suffix}"))
    activity_store = ActivityStore(db_url=db_url(f"activity_{db_suffix}"))
    return user_store, activity_store


def _patch_lifespan(settings: Settings, user_store: UserStore, activity_store: ActivityStore, directory):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores and the given directory into app.state so
    TestClient routes see isolated test DBs and never reach a real server.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.activity_store = activity_store
        init_components(app, settings, directory)
        yield

    return test_lifespan


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    """Everything a route test needs: the client, its backing stores, and one token per role."""

    client: TestClient
    settings: Settings
    user_store: UserStore
    activity_store: ActivityStore
    directory: InMemoryDirectory
    tokens: dict[str, str]
    ids: dict[str, int]

    def headers(self, role: str) -> dict[str, str]:
        return bearer(self.tokens[role])


def _seed_role_accounts(settings: Settings, user_store: UserStore) -> tuple[dict[str, str], dict[str, int]]:
    tokens: dict[str, str] = {}
    ids: dict[str, int] = {}
    for role in (ROLE_SUPERADMIN, ROLE_ADMIN, ROLE_USER):
        email = f"{role}@test.local"
        uid = user_store.create_user(
            User(name=role.title(), email=email, password_hash=hash_password("testpass123", 4), role=role)
        )
        ids[role] = uid
        tokens[role] = create_access_token(settings, uid, email, role, expire_seconds=3600)
    return tokens, ids


def open_api_client(db_suffix: str, **overrides) -> Generator[ApiContext, None, None]:
    """Start a TestClient against the real app with isolated stores and an InMemoryDirectory.

    Seeds one account per role (password "testpass123") and mints a token
    for each before the client starts.
    """
    settings = make_settings(**overrides)
    user_store, activity_store = _make_test_stores(db_suffix)
    directory = InMemoryDirectory()
    tokens, ids = _seed_role_accounts(settings, user_store)

    app.router.lifespan_context = _patch_lifespan(settings, user_store, activity_store, directory)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client, settings, user_store, activity_store, directory, tokens, ids)

    user_store.close()
    activity_store.close()


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Hybrid login, provisioning on: the configuration that exercises every code path."""
    yield from open_api_client("api", auth_method="hybrid", ad_create_users=True)


@pytest.fixture(scope="module")
def local_client() -> Generator[ApiContext, None, None]:
    """Local login only, provisioning off: the out-of-the-box configuration."""
    yield from open_api_client("local", auth_method="local", ad_create_users=False)


@pytest.fixture(scope="module")
def admin_client() -> Generator[ApiContext, None, None]:
    """Same configuration as api_client, on its own databases, for the admin route module."""
    yield from open_api_client("admin", auth_method="hybrid", ad_create_users=True)
