"""
tests/conftest.py -- Shared test fixtures for NoPass integration tests.

This module provides:
  - make_db_url(): a fresh named shared-memory SQLite URI
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: module-scoped TestClient over the real app with isolated stores
  - make_identity / session_client / bearer_headers: helpers for signed-in callers

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process.

Environment must be set before any app import:
  DEBUG=true        -- get_settings() auto-generates SECRET_KEY/ENCRYPTION_KEY
                       and origin checking fails open unless a test swaps the
                       policy in.
  BCRYPT_ROUNDS=4   -- minimum cost; keeps the suite fast.
  *_CLIENT_ID/SECRET -- registers all four OAuth clients so provider routes are
                       enabled. app.state.oauth is replaced by a MagicMock, so
                       nothing ever contacts a provider.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import MagicMock

# CRITICAL: Set env before any api/auth/core import -- settings are read once.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("APP_BASE_URL", "http://testserver")
for _name in ("GOOGLE", "GITHUB", "GOOGLE_MOBILE", "GITHUB_MOBILE"):
    os.environ.setdefault(f"{_name}_CLIENT_ID", f"test-{_name.lower()}-id")
    os.environ.setdefault(f"{_name}_CLIENT_SECRET", f"test-{_name.lower()}-secret")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import Identity
from auth.store import IdentityStore
from auth.tokens import SESSION_COOKIE, hash_password, issue_token
from core.crypto import FieldCipher, generate_key
from core.database import dispose_engine
from vault.service import VaultService
from vault.store import VaultStore

# Rate limits are exercised explicitly in test_rate_limit.py.
limiter.enabled = False

TEST_PASSWORD = "correct-horse-battery"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_db_url(prefix: str = "nopass") -> str:
    """Return a unique named shared-memory SQLite URI."""
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def unique_email(tag: str = "user") -> str:
    """Module-scoped clients share one database, so every test registers its own address."""
    return f"{tag}-{uuid.uuid4().hex[:10]}@example.com"


def make_identity(store: IdentityStore, email: str, password: str | None = TEST_PASSWORD, **kwargs) -> Identity:
    """Create an identity directly in the store and return it as loaded back."""
    identity_id = store.create_identity(
        Identity(
            email=email,
            hashed_password=hash_password(password) if password is not None else None,
            **kwargs,
        )
    )
    return store.get_by_id(identity_id)


def bearer_headers(identity: Identity, ttl: timedelta = timedelta(hours=1)) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token(identity.id, identity.email, ttl)}"}


def session_client(identity: Identity | None = None) -> TestClient:
    """Return a TestClient with its own cookie jar, optionally signed in.

    Not entered as a context manager: it shares app.state with the running
    module client and does not re-run the lifespan.
    """
    client = TestClient(app, follow_redirects=False)
    if identity is not None:
        token = issue_token(identity.id, identity.email, timedelta(hours=1))
        client.cookies.set(SESSION_COOKIE, token)
    return client


def _patch_lifespan(identity_store: IdentityStore, vault_store: VaultStore, cipher: FieldCipher):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs. The mailer and OAuth registry are MagicMocks so no test
    opens an SMTP socket or calls a provider.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.identity_store = identity_store
        app.state.vault_store = vault_store
        app.state.cipher = cipher
        app.state.vault = VaultService(vault_store, cipher)
        app.state.mailer = MagicMock()
        app.state.oauth = MagicMock()
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with isolated in-memory stores.

    One client (and one database) per test module. follow_redirects=False so
    OAuth tests can assert on Location headers.
    """
    db_url = make_db_url("api")
    identity_store = IdentityStore(db_url)
    vault_store = VaultStore(db_url)
    cipher = FieldCipher.from_hex(generate_key())

    app.router.lifespan_context = _patch_lifespan(identity_store, vault_store, cipher)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client

    dispose_engine(db_url)


@pytest.fixture
def identity_store() -> Generator[IdentityStore, None, None]:
    store = IdentityStore(make_db_url("identities"))
    yield store
    store.close()


@pytest.fixture
def vault_store(identity_store: IdentityStore) -> Generator[VaultStore, None, None]:
    """VaultStore on the same database as identity_store."""
    store = VaultStore(identity_store.db_url)
    yield store
    store.close()


@pytest.fixture
def cipher() -> FieldCipher:
    return FieldCipher.from_hex(generate_key())
