"""
tests/test_rate_limit.py -- slowapi limits on the credential POST routes.

The limiter is a process-wide singleton (core.limiter), so this module resets
its counters around each test and switches it back off afterwards.
"""

from __future__ import annotations

import pytest
from conftest import make_settings
from fastapi.testclient import TestClient

from api.context import AppContext
from asgi import build_app
from core import limiter as rate_limits


@pytest.fixture
def limited_client(oauth_registry):
    rate_limits.reset()
    settings = make_settings(rate_limit_enabled=True, login_rate_limit="2/minute")
    ctx = AppContext.from_settings(settings, oauth_registry=oauth_registry)
    with TestClient(build_app(context=ctx), follow_redirects=False) as c:
        yield c
    ctx.close()
    rate_limits.reset()
    rate_limits.configure(False, "10/minute")


def test_login_limited_after_threshold(limited_client):
    form = {"username": "alice", "password": "wrong"}
    assert limited_client.post("/login", data=form).status_code == 401
    assert limited_client.post("/login", data=form).status_code == 401

    resp = limited_client.post("/login", data=form)
    assert resp.status_code == 429
    assert int(resp.headers["retry-after"]) > 0
    assert "Too many attempts" in resp.text


def test_register_limited_independently(limited_client):
    assert limited_client.post("/register", data={"username": "a", "password": "pw"}).status_code == 302
    limited_client.get("/logout")
    assert limited_client.post("/register", data={"username": "b", "password": "pw"}).status_code == 302
    limited_client.get("/logout")
    assert limited_client.post("/register", data={"username": "c", "password": "pw"}).status_code == 429


def test_read_routes_are_not_limited(limited_client):
    for _ in range(5):
        assert limited_client.get("/login").status_code == 200
        assert limited_client.get("/secrets").status_code == 200
