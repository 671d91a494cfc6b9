"""
tests/conftest.py -- Shared test fixtures for the Secrets app.

This module provides:
  - make_settings(): Settings with test-safe values (bcrypt cost 4, rate limits off)
  - context: an AppContext on an isolated named shared-memory SQLite DB with
    a mocked authlib registry
  - client: TestClient over the fully assembled app, follow_redirects=False

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
Each test gets its own DB name so state never leaks between tests.

follow_redirects=False is essential: tests assert on redirect Location headers,
which disappear once the client follows the redirect.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock

# Set DEBUG before any core import so a stray get_settings() call cannot raise.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.responses import RedirectResponse
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from api.context import AppContext
from asgi import build_app
from auth.store import UserStore, users
from core.config import Settings

TEST_SECRET_KEY = "test-secret-key-0123456789abcdef0123456789"
PROVIDER_AUTHORIZE_URL = "https://provider.example/authorize"


def memory_db_url() -> str:
    return f"sqlite:///file:test_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET_KEY,
        "database_url": memory_db_url(),
        "allowed_hosts": ["testserver"],
        "bcrypt_rounds": 4,
        "rate_limit_enabled": False,
        "google_client_id": "google-client-id",
        "google_client_secret": "google-client-secret",
        "facebook_app_id": "facebook-app-id",
        "facebook_app_secret": "facebook-app-secret",
    }
    values.update(overrides)
    return Settings(**values)


def count_users(store: UserStore) -> int:
    with store.engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(users)).scalar()


# ---------------------------------------------------------------------------
# OAuth doubles
# ---------------------------------------------------------------------------


@pytest.fixture
def oauth_client() -> MagicMock:
    """A stand-in for authlib's StarletteOAuth2App.

    Defaults: authorize_redirect sends the browser to PROVIDER_AUTHORIZE_URL,
    the Google exchange yields sub "google-sub-1", Facebook's /me yields id "fb-1".
    Tests override attributes to simulate denials and failures.
    """
    client = MagicMock()
    client.authorize_redirect = AsyncMock(
        side_effect=lambda request, redirect_uri: RedirectResponse(
            f"{PROVIDER_AUTHORIZE_URL}?redirect_uri={redirect_uri}", status_code=302
        )
    )
    client.authorize_access_token = AsyncMock(
        return_value={"access_token": "provider-token", "userinfo": {"sub": "google-sub-1"}}
    )
    client.userinfo = AsyncMock(return_value={"sub": "google-sub-userinfo"})
    profile = MagicMock()
    profile.json.return_value = {"id": "fb-1", "name": "Facebook User"}
    profile.raise_for_status.return_value = None
    client.get = AsyncMock(return_value=profile)
    return client


@pytest.fixture
def oauth_registry(oauth_client: MagicMock) -> MagicMock:
    registry = MagicMock()
    registry.create_client.return_value = oauth_client
    return registry


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def context(settings: Settings, oauth_registry: MagicMock) -> Generator[AppContext, None, None]:
    ctx = AppContext.from_settings(settings, oauth_registry=oauth_registry)
    yield ctx
    ctx.close()


@pytest.fixture
def user_store(context: AppContext) -> UserStore:
    return context.user_store


@pytest.fixture
def client(context: AppContext) -> Generator[TestClient, None, None]:
    app = build_app(context=context)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as c:
        yield c


def register(client: TestClient, username: str = "alice", password: str = "pw1"):
    return client.post("/register", data={"username": username, "password": password})
