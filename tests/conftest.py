"""
tests/conftest.py -- Shared test fixtures for RoleGate.

This module provides:
  - stores: UserStore/RoleStore/PermissionStore on a private in-memory DB,
    with the permission catalog seeded (unit tests)
  - Stores.create_user: inserts a user with a known password (TEST_PASSWORD)
  - api: TestClient on the real app, lifespan patched to isolated stores

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

DEBUG and LOGIN_RATE_LIMIT must be set before any app import: get_settings()
is read at import time by api/ and auth/ modules.
"""

from __future__ import annotations

import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set before any auth/core/api import so get_settings() auto-generates
# both token secrets in dev mode and the login limit does not trip mid-suite.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.store import PermissionStore, RoleStore, UserStore, create_db_engine
from auth.tokens import TokenService, hash_password
from cache.permissions import PermissionCache
from core.config import get_settings
from seed import seed_permissions

_db_counter = itertools.count()

TEST_PASSWORD = "12345678"

# One bcrypt hash for every fixture user keeps the suite fast.
_TEST_HASH = hash_password(TEST_PASSWORD)


@dataclass
class Stores:
    users: UserStore
    roles: RoleStore
    permissions: PermissionStore

    def permission_ids(self, *names: str) -> list[int]:
        return [self.permissions.get_by_name(n).id for n in names]

    def create_user(self, email: str, user_type: str | None = None, **fields) -> User:
        user = User(
            email=email,
            type=user_type or get_settings().default_user_type,
            hashed_password=_TEST_HASH,
            **fields,
        )
        user.id = self.users.create_user(user)
        user.hashed_password = None
        return user


def _make_stores(name: str) -> tuple[Stores, object]:
    """Build an isolated named shared-memory database with the catalog seeded."""
    url = f"sqlite:///file:test_{name}_{next(_db_counter)}?mode=memory&cache=shared&uri=true"
    engine = create_db_engine(url)
    stores = Stores(UserStore(engine), RoleStore(engine), PermissionStore(engine))
    seed_permissions(stores.permissions)
    return stores, engine


@pytest.fixture
def stores() -> Generator[Stores, None, None]:
    s, engine = _make_stores("unit")
    yield s
    engine.dispose()


@pytest.fixture
def token_service(stores: Stores) -> TokenService:
    return TokenService(stores.users, get_settings())


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    stores: Stores
    tokens: TokenService

    def auth_headers(self, user: User) -> dict[str, str]:
        pair = self.tokens.issue(user)
        return {"Authorization": f"Bearer {pair.access_token}"}


def _patch_lifespan(stores: Stores, engine):
    """Return a lifespan that wires pre-built test stores into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.user_store = stores.users
        app.state.role_store = stores.roles
        app.state.permission_store = stores.permissions
        app.state.token_service = TokenService(stores.users, get_settings())
        app.state.permission_cache = PermissionCache(stores.permissions, ttl=300)
        yield

    return test_lifespan


@pytest.fixture
def api() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext: real app, real routes, isolated in-memory stores.

    Function-scoped so every test starts from an empty user table with only
    the permission catalog seeded.
    """
    stores, engine = _make_stores("api")
    app.router.lifespan_context = _patch_lifespan(stores, engine)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, stores=stores, tokens=app.state.token_service)
    engine.dispose()
