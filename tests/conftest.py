"""
tests/conftest.py -- Shared test fixtures for authapi tests.

This module provides:
  - _make_test_store(): creates an isolated in-memory identity DB
  - _patch_lifespan(): wires the test store into app.state, bypassing real startup
  - api_client: TestClient + admin bearer token + the store behind it
  - store: bare IdentityStore for unit tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient because route handlers run in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates JWT_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any auth/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.store import IdentityStore
from auth.tokens import create_token

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Adm1n!pass"


def _make_test_store(db_suffix: str) -> IdentityStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return IdentityStore(db_url=f"sqlite:///file:test_identity_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(identity_store: IdentityStore):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.identity_store = identity_store
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, IdentityStore], None, None]:
    """Yield (client, admin_token, store) for API integration tests.

    An admin user is created directly in the store before the client starts
    and a token carrying the admin role claim is minted for it.
    """
    identity_store = _make_test_store(request.module.__name__.replace(".", "_"))

    admin = User(email=ADMIN_EMAIL, user_name=ADMIN_EMAIL, full_name="Site Admin")
    assert identity_store.create_user(admin, ADMIN_PASSWORD).succeeded
    identity_store.create_role("admin")
    identity_store.add_to_role(admin, "admin")
    token = create_token(admin, ["admin"])

    app.router.lifespan_context = _patch_lifespan(identity_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, identity_store

    identity_store.close()


@pytest.fixture
def store() -> Generator[IdentityStore, None, None]:
    """Fresh in-memory IdentityStore per test."""
    s = IdentityStore("sqlite:///:memory:")
    yield s
    s.close()
