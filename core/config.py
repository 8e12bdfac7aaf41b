"""
core/config.py -- Centralized gate configuration via pydantic-settings.

All environment variable reads for KeyGate happen here. No component
calls os.environ directly -- main.py resolves get_settings() once and
threads the values into KeyStore, SessionGate, and AuditLog constructors.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads KEYGATE_* environment variables and
      an optional .env file automatically. Field names map to env var names
      (e.g. key_dir -> KEYGATE_KEY_DIR). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. The session file and the lockout marker must never share a
      path, otherwise lock() would delete the marker it is meant to keep.

Layer rule: core/ is the kernel. This module may not import from audit/,
keystore/, or gate/.
"""

import logging
import tempfile
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.models import MAX_EXPIRY_DAYS

logger = logging.getLogger("keygate.config")

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_TMP = Path(tempfile.gettempdir())


class Settings(BaseSettings):
    """Gate settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Tests normally pass explicit
    paths under tmp_path instead.
    """

    model_config = SettingsConfigDict(
        env_prefix="KEYGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    key_dir: Path = _PROJECT_ROOT / "keys"
    log_dir: Path = _PROJECT_ROOT / "logs"

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    session_path: Path = _TMP / "dns_key.active"
    lockout_path: Path = _TMP / "dns_tool.lock"
    session_duration_seconds: int = Field(default=8 * 60 * 60, ge=60)
    max_unlock_attempts: int = Field(default=3, ge=1)
    # Advisory by default: the marker is written after a lockout but a later
    # unlock call is not refused unless this is switched on.
    enforce_lockout: bool = False

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    key_expiry_days: int = Field(default=7, ge=1, le=MAX_EXPIRY_DAYS)
    master_key_bytes: int = Field(default=32, ge=32)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_distinct_paths(self) -> "Settings":
        """Reject a configuration where the session and lockout files collide."""
        if self.session_path == self.lockout_path:
            raise ValueError("KEYGATE_SESSION_PATH and KEYGATE_LOCKOUT_PATH must differ.")
        if self.enforce_lockout:
            logger.debug("Lockout enforcement enabled (marker: %s)", self.lockout_path)
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
