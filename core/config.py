"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the Secrets app happen here. No module should
call os.getenv() or os.environ.get() directly. The ASGI entry point and the CLI
call get_settings(); everything else receives the Settings instance through
the AppContext built by api.main.create_app().

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. It signs the
       OAuth state cookie; a short key weakens that signature.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, web/
or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("secrets_app.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Field names map to upper-case env
    vars, e.g. `database_url` reads DATABASE_URL.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the "not configured" sentinel; see validate_secret_key.
    secret_key: str = ""
    database_url: str = "sqlite:///./secrets.db"
    host: str = "127.0.0.1"
    port: int = 3000
    # Base of the fixed OAuth callback URLs registered with each provider.
    public_base_url: str = "http://localhost:3000"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_cookie_name: str = "secrets_session"
    session_max_age: int = Field(default=7 * 24 * 3600, gt=0)
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Passwords and rate limiting
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    login_rate_limit: str = "10/minute"
    rate_limit_enabled: bool = True

    # ------------------------------------------------------------------
    # OAuth providers (empty string means the provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    facebook_app_id: str = ""
    facebook_app_secret: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            In-flight OAuth logins will not survive a restart.

        Production mode: refuse to start without a key.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. OAuth state will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        self.public_base_url = self.public_base_url.rstrip("/")
        return self

    def oauth_callback_url(self, provider: str) -> str:
        """Return the fixed callback URL registered with the given provider."""
        return f"{self.public_base_url}/auth/{provider}/secrets"


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: construct Settings(...) directly and pass it to create_app(), or
    call get_settings.cache_clear() after changing environment variables.
    """
    return Settings()
