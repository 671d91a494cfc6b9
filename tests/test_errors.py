"""
tests/test_errors.py -- HTML error pages registered by web.routes.install().

Error pages show a fixed message per status code and never the exception text.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from asgi import build_app


@pytest.fixture
def lenient_client(context):
    """TestClient that returns 500 pages instead of re-raising."""
    app = build_app(context=context)

    @app.get("/boom")
    def boom():
        raise RuntimeError("internal detail: api key abc123")

    with TestClient(app, follow_redirects=False, raise_server_exceptions=False) as c:
        yield c


def test_unknown_path_renders_404_page(client):
    resp = client.get("/no-such-page")
    assert resp.status_code == 404
    assert "text/html" in resp.headers["content-type"]
    assert "That page does not exist." in resp.text


def test_wrong_method_renders_405_page(client):
    resp = client.delete("/secrets")
    assert resp.status_code == 405
    assert "That action is not allowed here." in resp.text


def test_database_failure_renders_503(client, user_store, monkeypatch):
    def down():
        raise OperationalError("SELECT secret FROM users", {}, Exception("disk I/O error"))

    monkeypatch.setattr(user_store, "list_secrets", down)
    resp = client.get("/secrets")
    assert resp.status_code == 503
    assert "temporarily unavailable" in resp.text
    assert "disk I/O error" not in resp.text
    assert "SELECT" not in resp.text


def test_unexpected_error_renders_generic_500(lenient_client):
    resp = lenient_client.get("/boom")
    assert resp.status_code == 500
    assert "Something went wrong." in resp.text
    assert "abc123" not in resp.text


def test_untrusted_host_rejected(client):
    resp = client.get("/", headers={"host": "evil.example"})
    assert resp.status_code == 400


def test_untrusted_host_rejected_before_session_lookup(client, context, monkeypatch):
    restore = MagicMock(return_value=None)
    monkeypatch.setattr(context.sessions, "restore", restore)
    resp = client.get("/secrets", headers={"host": "evil.example"})
    assert resp.status_code == 400
    restore.assert_not_called()
