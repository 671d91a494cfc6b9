"""
auth/store.py -- SQLAlchemy Core persistence layer for users and sessions.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and session code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Uniqueness:
  username, google_id and facebook_id each carry a UNIQUE constraint. SQL
  treats NULLs as distinct under UNIQUE, which is exactly what we want here:
  any number of users may lack a Google id, but two users can never share one.
  Concurrent register() / find_or_create() calls rely on these constraints;
  there is no in-process locking.

Layer rule: no imports from api/, web/ or core/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import UsernameTaken, UserNotFound
from auth.models import PROVIDER_COLUMNS, User
from auth.passwords import DEFAULT_ROUNDS, hash_password

logger = logging.getLogger("secrets_app.auth.store")

_DEFAULT_DB_URL = "sqlite:///./secrets.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), unique=True),  # NULL for OAuth-only users
    Column("hashed_password", Text),  # NULL for OAuth-only users
    Column("google_id", String(255), unique=True),
    Column("facebook_id", String(255), unique=True),
    Column("secret", Text),
    Column("created_at", String(32), nullable=False),
)

sessions = Table(
    "sessions",
    metadata,
    Column("token", String(64), primary_key=True),  # opaque, held by the client
    Column("data", Text, nullable=False),  # JSON payload from SessionManager.serialize
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Index("ix_sessions_expires_at", "expires_at"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str = _DEFAULT_DB_URL) -> Engine:
    """Create the engine and make sure every table exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///./secrets.db")
        user = store.register("alice", "pw1")
        store.update_secret(user.id, "hi")
        store.list_secrets()  # ["hi"]
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, bcrypt_rounds: int = DEFAULT_ROUNDS) -> None:
        self.engine: Engine = create_db_engine(db_url)
        self.bcrypt_rounds = bcrypt_rounds

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_external_id(self, provider: str, subject: str) -> User | None:
        """Look up a user by a provider's subject id. Returns None if not linked."""
        column = users.c[_provider_column(provider)]
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(column == subject)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_secrets(self) -> list[str]:
        """Return every shared secret, one per user, oldest account first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(users.c.secret).where(users.c.secret.is_not(None)).order_by(users.c.id)
            ).fetchall()
        return [r.secret for r in rows]

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def register(self, username: str, password: str) -> User:
        """Create a local account and return it.

        Raises UsernameTaken if the username exists, including the case where
        a concurrent request inserts it between our check and our insert (the
        UNIQUE constraint fires). Raises ValidationFailure for a password
        bcrypt cannot hash.
        """
        if self.get_by_username(username) is not None:
            raise UsernameTaken(username)
        hashed = hash_password(password, rounds=self.bcrypt_rounds)
        try:
            user_id = self._insert(username=username, hashed_password=hashed)
        except IntegrityError as exc:
            raise UsernameTaken(username) from exc
        logger.info("Registered local user id=%s", user_id)
        return self.get_by_id(user_id)

    def find_or_create(self, provider: str, subject: str) -> User:
        """Return the user linked to (provider, subject), creating it if absent.

        A new record gets only this provider's column populated; every other
        provider column is written as NULL explicitly so identities from two
        providers never merge by accident. If a concurrent call wins the
        insert, the UNIQUE constraint rejects ours and the winner's row is
        looked up and returned.
        """
        column = _provider_column(provider)
        user = self.get_by_external_id(provider, subject)
        if user is not None:
            return user

        values = {col: None for col in PROVIDER_COLUMNS.values()}
        values[column] = subject
        try:
            user_id = self._insert(**values)
        except IntegrityError:
            user = self.get_by_external_id(provider, subject)
            if user is None:
                raise
            return user
        logger.info("Created user id=%s from %s login", user_id, provider)
        return self.get_by_id(user_id)

    def update_secret(self, user_id: int, secret: str) -> None:
        """Overwrite the user's shared secret. Raises UserNotFound if no such user."""
        with self.engine.connect() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(secret=secret))
            conn.commit()
        if result.rowcount == 0:
            raise UserNotFound(user_id)

    def _insert(self, **values) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(users.insert().values(created_at=now_iso(), **values))
            conn.commit()
            return result.inserted_primary_key[0]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _provider_column(provider: str) -> str:
    try:
        return PROVIDER_COLUMNS[provider]
    except KeyError:
        raise ValueError(f"Unknown OAuth provider: {provider!r}") from None


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        google_id=row.google_id,
        facebook_id=row.facebook_id,
        secret=row.secret,
        created_at=row.created_at,
    )
