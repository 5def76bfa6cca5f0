"""
Application Configuration.

Pydantic Settings model for the financial portal client.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import ClassVar, Optional

from pydantic_settings import BaseSettings
from pydantic import BaseModel, Field, model_validator


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- REST backend ---
    API_URL: str = "http://localhost:3000"
    HTTP_TIMEOUT_S: float = 10.0

    # --- Persisted client state (storage key names) ---
    AUTH_TOKEN_KEY: str = "auth_token"
    REFRESH_TOKEN_KEY: str = "refresh_token"
    USER_DATA_KEY: str = "user_data"
    REMEMBER_ME_KEY: str = "remember_me"

    # --- Session lifecycle ---
    # Refresh fires this many milliseconds before the token expires.
    REFRESH_LEAD_MS: int = 5 * 60 * 1000

    # Auth endpoints that never carry a bearer credential.
    PUBLIC_AUTH_ENDPOINTS: ClassVar[tuple[str, ...]] = (
        "/auth/login",
        "/auth/register",
        "/auth/password-reset-request",
        "/auth/password-reset",
    )

    # --- Navigation ---
    LOGIN_PATH: str = "/login"
    LANDING_PATH: str = "/dashboard"
    MAX_REDIRECTS: int = 10

    # --- Product catalog ---
    FILTER_DEBOUNCE_S: float = Field(default=0.3, ge=0)
    DEFAULT_PAGE_SIZE: int = Field(default=10, gt=0)
    UPCOMING_EXPIRATION_DAYS: int = 30
    LATEST_MOVEMENTS_LIMIT: int = 10

    # --- Local durable storage ---
    LOCAL_DB_PATH: str = "portal_local.db"
    SESSION_SALT_PATH: str = str(Path.home() / ".portal_session_salt")

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "portal.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when the backend address is unusable.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        so operators get a hint that the local mock server is assumed.
        """
        _log = logging.getLogger("portal.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; configuration loaded from "
                "environment variables or defaults."
            )

        if not self.API_URL:
            _log.warning("API_URL is empty; every request will fail.")

        return self

    @property
    def storage_keys(self) -> "StorageKeys":
        """Bundle the persisted-state key names for the session store."""
        return StorageKeys(
            token=self.AUTH_TOKEN_KEY,
            refresh_token=self.REFRESH_TOKEN_KEY,
            user=self.USER_DATA_KEY,
            remember_me=self.REMEMBER_ME_KEY,
        )


class StorageKeys(BaseModel):
    """Key names used in both storage scopes."""

    token: str = "auth_token"
    refresh_token: str = "refresh_token"
    user: str = "user_data"
    remember_me: str = "remember_me"


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    Uses a check-lock-check pattern so the fast path stays lock-free.
    Prefer direct constructor injection of ``AppConfig`` in new code.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
