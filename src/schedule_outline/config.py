# src/schedule_outline/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- Nothing is required at import time; every value has a default.
- Library classes take their knobs as constructor arguments; only the
  composition root (cli.bootstrap) reads these settings.
- A malformed value falls back to its default with a warning instead of
  stopping the app.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "OUTLINE"

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _raw(suffix: str) -> str | None:
    v = os.getenv(_k(suffix))
    if v is None or v.strip() == "":
        return None
    return v.strip()


def _env_str(suffix: str, default: str) -> str:
    return _raw(suffix) or default


def _env_bool(suffix: str, default: bool) -> bool:
    raw = _raw(suffix)
    if raw is None:
        return default
    low = raw.lower()
    if low in _TRUE:
        return True
    if low in _FALSE:
        return False
    logger.warning("%s=%r is not a boolean; using %s", _k(suffix), raw, default)
    return default


def _env_int(suffix: str, default: int, *, minimum: int) -> int:
    raw = _raw(suffix)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using %d", _k(suffix), raw, default)
        return default
    return max(minimum, value)


def _env_float(suffix: str, default: float, *, minimum: float) -> float:
    raw = _raw(suffix)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("%s=%r is not a number; using %s", _k(suffix), raw, default)
        return default
    return max(minimum, value)


def _env_path(suffix: str, default: Path) -> Path:
    raw = _raw(suffix)
    return Path(raw).expanduser() if raw is not None else default


def _env_log_level(suffix: str, default: str) -> str:
    raw = (_raw(suffix) or default).upper()
    if raw not in _LOG_LEVELS:
        logger.warning("%s=%r is not a log level; using %s", _k(suffix), raw, default)
        return default
    return raw


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Connector flags ----
    console_enabled: bool

    # ---- Outline behaviour ----
    project_id: str
    remap_on_reorder: bool
    undo_limit: int
    submit_retries: int

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path
    sqlite_timeout: float

    @staticmethod
    def from_env() -> "Settings":
        data_dir = _env_path("DATA_DIR", Path(".local/outline"))
        return Settings(
            app_name=_env_str("APP_NAME", "schedule-outline"),
            log_level=_env_log_level("LOG_LEVEL", "INFO"),
            console_enabled=_env_bool("CONSOLE_ENABLED", True),
            project_id=_env_str("PROJECT_ID", "default"),
            # Move/drag leave predecessor references alone unless this is on.
            remap_on_reorder=_env_bool("REMAP_ON_REORDER", False),
            undo_limit=_env_int("UNDO_LIMIT", 20, minimum=1),
            submit_retries=_env_int("SUBMIT_RETRIES", 1, minimum=0),
            data_dir=data_dir,
            tasks_db_path=_env_path("TASKS_DB_PATH", data_dir / "tasks.sqlite3"),
            sqlite_timeout=_env_float("SQLITE_TIMEOUT", 30.0, minimum=0.0),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
