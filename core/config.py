"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for hearthgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. config_path -> CONFIG_PATH). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Expands "~" in directory paths, derives the
      default database URL from data_path, and rejects token lifetimes that
      would break the refresh/access split.

Paths:
  config_path is long-lived, mostly read-only configuration. The RSA signing
      key lives at <config_path>/keys/auth/private.pem.
  data_path is read-write runtime data. The SQLite database lives there unless
      DB_URL points elsewhere.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("hearthgate.config")

# 6 x 30 days, matching the fixed refresh window. Refresh tokens do not slide.
_SIX_MONTHS_SECONDS = 6 * 30 * 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    consistency rules at startup.
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
    config_path: Path = Path("~/.config/hearthgate")
    data_path: Path = Path("~/.local/share/hearthgate")
    # Empty string is the sentinel for "derive from data_path".
    db_url: str = ""

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    secure_cookies: bool = True
    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = _SIX_MONTHS_SECONDS
    token_issuer: str = "hearthgate"
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Accounts and invites
    # ------------------------------------------------------------------

    admin_username: str = "admin"
    starting_invites: int = 5

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Derived paths
    # ------------------------------------------------------------------

    @property
    def private_key_path(self) -> Path:
        return self.config_path / "keys" / "auth" / "private.pem"

    @property
    def admin_password_path(self) -> Path:
        return self.config_path / "initial-admin-password"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def resolve_paths_and_lifetimes(self) -> "Settings":
        """Normalize paths and reject inconsistent token lifetimes.

        Lifetimes: both must be positive and the access token must be strictly
        shorter-lived than the refresh token. An access token outliving the
        session that minted it would keep authorizing requests after the
        session expired.

        db_url: when unset, points at <data_path>/hearthgate.db.
        """
        self.config_path = self.config_path.expanduser()
        self.data_path = self.data_path.expanduser()
        if not self.db_url:
            self.db_url = f"sqlite:///{self.data_path / 'hearthgate.db'}"

        if self.access_token_expire_seconds <= 0 or self.refresh_token_expire_seconds <= 0:
            raise ValueError("Token lifetimes must be positive.")
        if self.access_token_expire_seconds >= self.refresh_token_expire_seconds:
            raise ValueError("ACCESS_TOKEN_EXPIRE_SECONDS must be shorter than REFRESH_TOKEN_EXPIRE_SECONDS.")
        if self.starting_invites < 0:
            raise ValueError("STARTING_INVITES cannot be negative.")
        if not self.secure_cookies and not self.debug:
            logger.warning("SECURE_COOKIES is disabled outside debug mode. Auth cookies will travel over plain HTTP.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
