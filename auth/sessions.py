"""
auth/sessions.py -- Server-side sessions keyed by an opaque cookie token.

Two layers:
  SessionStore   -- rows in the `sessions` table (token -> JSON payload, expiry).
  SessionManager -- passport-style serialize/deserialize plus login/logout
                    against a request/response pair.

The cookie carries only the random token. The payload stores only the user id
(never the password hash or the full record); deserialize() reloads the user
on every request so a changed or deleted record is picked up immediately.

Security:
  login() rotates the token: any session already bound to the request is
  destroyed before a new one is issued (session fixation mitigation).
  Cookie flags: httponly, samesite=lax, secure when SECURE_COOKIES=true.

Layer rule: no imports from api/, web/ or core/.
"""

from __future__ import annotations

import json
import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy.engine import Engine
from starlette.requests import Request
from starlette.responses import Response

from auth.models import Session, User
from auth.store import UserStore, now_iso, sessions

logger = logging.getLogger("secrets_app.auth.sessions")


class SessionStore:
    """Repository for Session rows. Shares the UserStore engine."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, data: dict, max_age: int) -> Session:
        now = datetime.now(timezone.utc)
        session = Session(
            token=secrets.token_urlsafe(32),
            data=data,
            created_at=now.isoformat(),
            expires_at=(now + timedelta(seconds=max_age)).isoformat(),
        )
        with self.engine.connect() as conn:
            conn.execute(
                sessions.insert().values(
                    token=session.token,
                    data=json.dumps(data),
                    created_at=session.created_at,
                    expires_at=session.expires_at,
                )
            )
            conn.commit()
        return session

    def get(self, token: str) -> Session | None:
        """Return the live session for token, or None if missing or expired."""
        with self.engine.connect() as conn:
            row = conn.execute(sessions.select().where(sessions.c.token == token)).fetchone()
        if row is None:
            return None
        # ISO-8601 UTC strings of equal format compare chronologically.
        if row.expires_at <= now_iso():
            return None
        try:
            data = json.loads(row.data)
        except ValueError:
            logger.warning("Discarding session with malformed payload")
            return None
        return Session(token=row.token, data=data, created_at=row.created_at, expires_at=row.expires_at)

    def delete(self, token: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(sessions.delete().where(sessions.c.token == token))
            conn.commit()
        return result.rowcount > 0

    def purge_expired(self) -> int:
        """Delete every expired session. Returns the number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(sessions.delete().where(sessions.c.expires_at <= now_iso()))
            conn.commit()
        return result.rowcount


class SessionManager:
    """Binds principals to requests through the session cookie.

    Usage (inside a route):
        resp = RedirectResponse("/secrets", status_code=302)
        ctx.sessions.login(request, resp, user)
        return resp
    """

    def __init__(
        self,
        user_store: UserStore,
        store: SessionStore,
        cookie_name: str = "secrets_session",
        max_age: int = 7 * 24 * 3600,
        secure: bool = False,
    ) -> None:
        self.user_store = user_store
        self.store = store
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.secure = secure

    # ------------------------------------------------------------------
    # Payload mapping
    # ------------------------------------------------------------------

    @staticmethod
    def serialize(user: User) -> dict:
        return {"user_id": user.id}

    def deserialize(self, payload: dict) -> User | None:
        """Reload the principal named by payload. None means anonymous."""
        user_id = payload.get("user_id") if isinstance(payload, dict) else None
        if not isinstance(user_id, int):
            return None
        user = self.user_store.get_by_id(user_id)
        if user is None:
            logger.info("Session references missing user id=%s; continuing as anonymous", user_id)
        return user

    # ------------------------------------------------------------------
    # Request binding
    # ------------------------------------------------------------------

    def restore(self, request: Request) -> User | None:
        """Return the principal for the request's session cookie, if any."""
        token = request.cookies.get(self.cookie_name)
        if not token:
            return None
        session = self.store.get(token)
        if session is None:
            return None
        return self.deserialize(session.data)

    def login(self, request: Request, response: Response, user: User) -> None:
        """Start a fresh session for user and write its cookie on response."""
        old_token = request.cookies.get(self.cookie_name)
        if old_token:
            self.store.delete(old_token)
        session = self.store.create(self.serialize(user), self.max_age)
        response.set_cookie(
            self.cookie_name,
            value=session.token,
            max_age=self.max_age,
            httponly=True,
            samesite="lax",
            secure=self.secure,
        )
        request.state.user = user
        logger.info("Session started for user id=%s", user.id)

    def logout(self, request: Request, response: Response) -> None:
        """Destroy the request's session (if any) and clear its cookie."""
        token = request.cookies.get(self.cookie_name)
        if token:
            self.store.delete(token)
        response.delete_cookie(self.cookie_name, httponly=True, samesite="lax", secure=self.secure)
        request.state.user = None
