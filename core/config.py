"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Whiskey Canon happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a SECRET_KEY with a warning; production
      mode refuses to start without one.

Security notes:
  SECRET_KEY signs the session cookie and derives CSRF tokens. Keys shorter
  than 32 characters are rejected outright.

  secure_cookies=True switches both cookies to Secure + SameSite=strict. Leave
  it off only for plain-HTTP local development.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("whiskeycanon.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'whiskey_canon.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    # Empty string is the sentinel for "not configured". The validator below
    # either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    frontend_url: str = "http://localhost:5173"

    # ------------------------------------------------------------------
    # Sessions and cookies
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie_name: str = "sid"
    # 7 days, refreshed on every request that carries a live session.
    session_max_age_seconds: int = 7 * 24 * 60 * 60
    csrf_cookie_name: str = "__csrf"
    csrf_header_name: str = "X-CSRF-Token"

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    default_role: str = "editor"
    resend_cooldown_seconds: int = 60

    # ------------------------------------------------------------------
    # Breach corpus (k-anonymity range API)
    # ------------------------------------------------------------------

    breach_check_url: str = "https://api.pwnedpasswords.com/range/"
    breach_check_timeout: float = 5.0

    # ------------------------------------------------------------------
    # Email (Resend). Empty API key disables outbound email.
    # ------------------------------------------------------------------

    resend_api_key: str = ""
    resend_api_url: str = "https://api.resend.com/emails"
    resend_from_email: str = "noreply@whiskey-canon.com"
    contact_email: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def cookie_samesite(self) -> str:
        return "strict" if self.secure_cookies else "lax"

    @property
    def contact_recipient(self) -> str:
        return self.contact_email or self.resend_from_email


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
