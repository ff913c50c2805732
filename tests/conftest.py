"""
tests/conftest.py -- Shared test fixtures for Gatekeeper.

This module provides:
  - component fixtures (users, refresh_store, codec, registry, auth_engine)
    backed by a fresh file-based SQLite database per test
  - make_user(): inserts an account with a cheap bcrypt cost
  - api_client: TestClient wired to an isolated database via a patched lifespan

Design: file-backed SQLite under tmp_path rather than :memory:. SQLAlchemy
hands each thread its own connection, and a plain :memory: database is
per-connection, so threaded tests (the rotation race, TestClient's worker
pool) would each see an empty schema.

The DEBUG env var must be set before any api/ import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import timedelta

# CRITICAL: Set DEBUG before any core/api import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from auth.credentials import hash_password
from auth.engine import AuthenticationEngine
from auth.models import User
from auth.refresh import RefreshRegistry
from auth.roles import Role
from auth.store import RefreshTokenStore, UserStore, make_engine
from auth.tokens import TokenCodec

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
FAST_ROUNDS = 4


def make_user(store: UserStore, login: str, role: Role = Role.USER, password: str = "Secret123!") -> int:
    """Insert an active account. Uses bcrypt cost 4 to keep the suite fast."""
    return store.create_user(User(login=login, role=role, hashed_password=hash_password(password, rounds=FAST_ROUNDS)))


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'auth.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def users(db_engine) -> UserStore:
    return UserStore(db_engine)


@pytest.fixture
def create_account(users):
    """Return a callable that inserts an account into the test database."""

    def _create(login: str, role: Role = Role.USER, password: str = "Secret123!") -> int:
        return make_user(users, login, role, password)

    return _create


@pytest.fixture
def refresh_store(db_engine) -> RefreshTokenStore:
    return RefreshTokenStore(db_engine)


@pytest.fixture
def secret_key() -> str:
    return TEST_SECRET


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(TEST_SECRET, access_ttl=timedelta(minutes=15), refresh_ttl=timedelta(days=30))


@pytest.fixture
def registry(refresh_store) -> RefreshRegistry:
    return RefreshRegistry(refresh_store)


@pytest.fixture
def auth_engine(users, codec, registry) -> AuthenticationEngine:
    return AuthenticationEngine(users, codec, registry)


# ---------------------------------------------------------------------------
# API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(auth_engine: AuthenticationEngine):
    """Return a lifespan that injects a pre-built engine instead of the real one.

    No purge task is started; tests call purge_expired() directly.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_engine = auth_engine
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, AuthenticationEngine], None, None]:
    """Yield (client, engine) for HTTP integration tests.

    Accounts seeded before the client starts (all with password "Secret123!"):
      admin@test.com    ADMIN
      manager@test.com  MANAGER
      user@test.com     USER
    """
    from api.main import app

    db_path = tmp_path_factory.mktemp("api") / "auth.db"
    db = make_engine(f"sqlite:///{db_path}")
    user_store = UserStore(db)
    engine = AuthenticationEngine(
        user_store,
        TokenCodec(TEST_SECRET),
        RefreshRegistry(RefreshTokenStore(db)),
    )
    make_user(user_store, "admin@test.com", Role.ADMIN)
    make_user(user_store, "manager@test.com", Role.MANAGER)
    make_user(user_store, "user@test.com", Role.USER)

    app.router.lifespan_context = _patch_lifespan(engine)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, engine

    db.dispose()
