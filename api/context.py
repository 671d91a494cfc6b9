"""
api/context.py -- The application context: every long-lived collaborator.

One AppContext is built at startup (lifespan) or handed in by tests, and
stored on app.state.ctx. Route handlers reach collaborators through it
instead of module-level singletons.
"""

from __future__ import annotations

from dataclasses import dataclass

from authlib.integrations.starlette_client import OAuth

from auth.oauth import OAuthBridge
from auth.sessions import SessionManager, SessionStore
from auth.store import UserStore
from core.config import Settings


@dataclass
class AppContext:
    settings: Settings
    user_store: UserStore
    sessions: SessionManager
    oauth: OAuthBridge

    @classmethod
    def from_settings(cls, settings: Settings, oauth_registry: OAuth | None = None) -> AppContext:
        """Wire the stores, session manager and OAuth bridge from settings.

        oauth_registry lets tests substitute a mock for authlib's registry.
        """
        user_store = UserStore(settings.database_url, bcrypt_rounds=settings.bcrypt_rounds)
        sessions = SessionManager(
            user_store,
            SessionStore(user_store.engine),
            cookie_name=settings.session_cookie_name,
            max_age=settings.session_max_age,
            secure=settings.secure_cookies,
        )
        return cls(
            settings=settings,
            user_store=user_store,
            sessions=sessions,
            oauth=OAuthBridge(settings, registry=oauth_registry),
        )

    def close(self) -> None:
        self.user_store.close()
