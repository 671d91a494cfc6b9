"""
core/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (to mount SlowAPIMiddleware and expose the limiter on
app.state) and by web/routes.py (to apply @limiter.limit() to the credential
POST routes). A single shared instance means every route shares the same
in-memory counter store.

configure() copies LOGIN_RATE_LIMIT and RATE_LIMIT_ENABLED from Settings when
the application is built. The limit is read through credential_limit() at
request time, so a rebuilt app picks up new settings.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

_credential_limit = "10/minute"


def configure(enabled: bool, credential_limit_value: str) -> None:
    global _credential_limit
    limiter.enabled = enabled
    _credential_limit = credential_limit_value


def credential_limit() -> str:
    """Limit string applied to POST /login and POST /register."""
    return _credential_limit


def reset() -> None:
    """Clear all counters (tests)."""
    limiter.reset()
