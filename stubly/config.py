"""
Application Configuration.

Pydantic Settings model for the Stubly client data layer.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Supabase ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")
    REMOTE_TIMEOUT_S: float = 10.0

    # --- Local persistence ---
    AUTH_DB_PATH: str = "stubly_auth.db"
    MIRROR_DB_PATH: str = "stubly.db"
    SECURE_STORE_PATH: str = "stubly_secure.bin"

    # --- Credentials & rate limiting ---
    BCRYPT_ROUNDS: int = Field(default=12, ge=4, le=31)
    MAX_LOGIN_ATTEMPTS: int = Field(default=5, ge=1)
    LOCKOUT_MINUTES: int = Field(default=15, ge=1)

    # --- Sessions ---
    OFFLINE_SESSION_DAYS: int = Field(default=7, ge=1)
    ONLINE_SESSION_SECONDS: int = Field(default=3600, ge=60)

    # --- Anonymous accounts & OAuth ---
    ANONYMOUS_EMAIL_DOMAIN: str = "local.stubly.app"
    OAUTH_NATIVE_REDIRECT: str = "com.stubly.app://login-callback"
    OAUTH_WEB_ORIGIN: str = "http://localhost:5173"

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "stubly.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when the remote backend is not configured.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        so operators get a log line explaining why the app is offline-only.
        """
        _log = logging.getLogger("stubly.config")

        if not Path(".env").exists():
            _log.debug(
                "No .env file found; configuration loaded from "
                "environment variables or defaults."
            )

        if not self.SUPABASE_URL or not self.SUPABASE_ANON_KEY.get_secret_value():
            _log.warning(
                "Supabase credentials are empty; remote identity and sync "
                "are disabled. The app will operate in offline-only mode."
            )

        return self

    @property
    def is_supabase_configured(self) -> bool:
        """``True`` when both the Supabase URL and anon key are set."""
        return bool(self.SUPABASE_URL and self.SUPABASE_ANON_KEY.get_secret_value())


# ---------------------------------------------------------------------------
# Module-level cached factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` instance.

    Uses a check-lock-check pattern so the first construction is
    thread-safe.  Prefer constructor injection of ``AppConfig`` in new
    code; this factory exists for the logger and the entry point.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
