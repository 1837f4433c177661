from __future__ import annotations

import os
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field


def _env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name) or default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name) or default).strip())
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    s = v.strip().lower()
    if s in ("1", "true", "yes", "on", "y"):
        return True
    if s in ("0", "false", "no", "off", "n"):
        return False
    return default


class Settings(BaseModel):
    app_name: str = "MFT Console"
    host: str = Field(default_factory=lambda: _env_str("MFT_HOST", "127.0.0.1"))
    port: int = Field(default_factory=lambda: _env_int("MFT_PORT", 8000))
    db_path: Path = Field(default_factory=lambda: Path(_env_str("MFT_DB_PATH", "data/mftconsole.db")))

    # Signs the session cookie. A random key means sessions do not survive restarts.
    secret_key: str = Field(default_factory=lambda: _env_str("MFT_SECRET_KEY") or secrets.token_urlsafe(32))
    session_cookie: str = "mftconsole_session"

    admin_email: str = Field(default_factory=lambda: _env_str("MFT_ADMIN_EMAIL", "admin@example.com"))
    admin_password: str = Field(default_factory=lambda: _env_str("MFT_ADMIN_PASSWORD", "admin"))

    rclone_path: str = Field(
        default_factory=lambda: _env_str("MFT_RCLONE_PATH") or _env_str("RCLONE_PATH", "rclone")
    )
    connection_test_timeout: int = Field(default_factory=lambda: _env_int("MFT_CONNECTION_TEST_TIMEOUT", 30))

    scheduler_url: str = Field(default_factory=lambda: _env_str("MFT_SCHEDULER_URL").rstrip("/"))
    scheduler_token: str = Field(default_factory=lambda: _env_str("MFT_SCHEDULER_TOKEN"))
    scheduler_timeout: float = 10.0

    # Shared secret the transfer engine sends when it reports runs.
    engine_token: str = Field(default_factory=lambda: _env_str("MFT_ENGINE_TOKEN"))

    log_dir: Path = Field(default_factory=lambda: Path(_env_str("MFT_LOG_DIR", "data/logs")))
    log_level: str = Field(default_factory=lambda: _env_str("MFT_LOG_LEVEL", "INFO"))
    log_file_enabled: bool = Field(default_factory=lambda: _env_bool("MFT_LOG_FILE_ENABLE", True))
    log_rotate_max_mb: int = Field(default_factory=lambda: max(1, _env_int("MFT_LOG_ROTATE_MAX_MB", 5)))
    log_rotate_backups: int = Field(default_factory=lambda: max(1, _env_int("MFT_LOG_ROTATE_BACKUPS", 3)))


@lru_cache
def get_settings() -> Settings:
    return Settings()
