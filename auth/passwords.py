"""
auth/passwords.py -- Password hashing and local credential verification.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). Its cost factor makes
       brute force expensive; every hash carries its own random salt.
       bcrypt.checkpw() compares digests in constant time.

  Timing equalization [C1]: verify_credentials() always runs one bcrypt check,
       against a dummy hash of the same cost when the username is unknown or
       the account has no local password. Response time therefore does not
       reveal whether a username exists.

Layer rule: no imports from api/, web/ or core/.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import TYPE_CHECKING

import bcrypt

from auth.errors import AuthFailed, ValidationFailure

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("secrets_app.auth")

DEFAULT_ROUNDS = 12

# bcrypt only looks at the first 72 bytes; bcrypt >= 4.1 refuses longer input.
MAX_PASSWORD_BYTES = 72


def check_password_length(plain: str) -> None:
    """Raise ValidationFailure when the password is empty or too long for bcrypt."""
    if not plain:
        raise ValidationFailure("Password is required.")
    if len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationFailure(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    check_password_length(plain)
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Over-long input or a malformed stored hash.
        return False


@lru_cache(maxsize=None)
def _dummy_hash(rounds: int) -> str:
    # One per cost factor so the dummy check costs the same as a real one.
    return hash_password("secrets_timing_dummy", rounds=rounds)


def verify_credentials(store: UserStore, username: str, password: str, rounds: int = DEFAULT_ROUNDS) -> User:
    """Verify a local username/password pair and return the matching User.

    Raises AuthFailed for an unknown username, an OAuth-only account and a
    wrong password alike. The caller cannot tell the cases apart.
    """
    user = store.get_by_username(username)
    if user is None or user.hashed_password is None:
        # Do NOT return before running bcrypt [C1]
        verify_password(password, _dummy_hash(rounds))
        raise AuthFailed()
    if not verify_password(password, user.hashed_password):
        raise AuthFailed()
    return user
