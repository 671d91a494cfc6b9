"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work.

Layer rule: no imports from api/, web/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass

# Provider tag -> users table column holding that provider's subject id.
PROVIDER_COLUMNS: dict[str, str] = {
    "google": "google_id",
    "facebook": "facebook_id",
}


@dataclass
class User:
    """A registered principal.

    username and hashed_password are None for users created solely through an
    OAuth provider. Each provider owns one nullable id column; a record may
    carry a local credential and several provider ids at the same time.

    secret is the free text the user shares on /secrets. None means the user
    is not listed there.
    """

    id: int | None = None
    username: str | None = None
    hashed_password: str | None = None  # None = OAuth-only user
    google_id: str | None = None
    facebook_id: str | None = None
    secret: str | None = None
    created_at: str | None = None

    def external_id(self, provider: str) -> str | None:
        return getattr(self, PROVIDER_COLUMNS[provider])


@dataclass
class Session:
    """A server-side session row. The client only ever sees `token`."""

    token: str
    data: dict
    created_at: str
    expires_at: str
