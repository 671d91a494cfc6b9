"""
auth/errors.py -- Exception taxonomy for the auth layer.

Route handlers catch these at the request boundary and turn them into a
redirect or a re-rendered form. UpstreamFailure (and raw SQLAlchemy errors)
fall through to the application exception handlers, which log and render a
generic page.
"""


class AuthError(Exception):
    """Base class for all auth-layer failures."""


class ValidationFailure(AuthError):
    """User input was rejected (malformed field, duplicate username)."""


class UsernameTaken(ValidationFailure):
    """A local account with this username already exists."""

    def __init__(self, username: str) -> None:
        super().__init__(f"Username {username!r} is already registered")
        self.username = username


class AuthFailed(AuthError):
    """Credentials did not verify.

    Deliberately undifferentiated: the message never says whether the username
    or the password was wrong.
    """

    def __init__(self, message: str = "Invalid username or password.") -> None:
        super().__init__(message)


class OAuthFailed(AuthFailed):
    """An OAuth login was denied or the code exchange failed."""

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"{provider} OAuth failed: {reason}")
        self.provider = provider
        self.reason = reason


class UserNotFound(AuthError):
    """The referenced user record no longer exists."""

    def __init__(self, user_id) -> None:
        super().__init__(f"User {user_id!r} not found")
        self.user_id = user_id


class UpstreamFailure(AuthError):
    """The database or an OAuth provider is unreachable or erroring."""
