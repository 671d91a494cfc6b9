"""
auth/dependencies.py -- Request-scoped principal helper.

The restore_principal middleware (api/main.py) resolves the session cookie
once per request and stores the result on request.state.user. This helper
reads it back so routes and templates never repeat the lookup.
"""

from __future__ import annotations

from starlette.requests import Request

from auth.models import User


def try_get_current_user(request: Request) -> User | None:
    """Return the request's principal, or None for anonymous requests."""
    return getattr(request.state, "user", None)
