# src/tududi/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time: the seed user is optional.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TUDUDI"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Switches ----
    console_enabled: bool
    scheduler_enabled: bool
    scheduler_interval_seconds: float

    # ---- Local data paths ----
    data_dir: Path
    db_path: Path

    # ---- Auth ----
    user_email: str | None
    user_password: str | None

    @staticmethod
    def from_env() -> Settings:
        data_dir = _env_path(_k("DATA_DIR"), Path(".local/tududi"))

        email = _env(_k("USER_EMAIL")).strip() or None
        password = _env(_k("USER_PASSWORD")) or None

        return Settings(
            app_name=_env(_k("APP_NAME"), "tududi") or "tududi",
            log_level=_env(_k("LOG_LEVEL"), "INFO"),
            console_enabled=_env_bool(_k("CONSOLE_ENABLED"), True),
            scheduler_enabled=_env_bool(_k("SCHEDULER_ENABLED"), True),
            scheduler_interval_seconds=_env_float(_k("SCHEDULER_INTERVAL_SECONDS"), 300.0),
            data_dir=data_dir,
            db_path=_env_path(_k("DB_PATH"), data_dir / "tududi.sqlite3"),
            user_email=email,
            user_password=password,
        )


load_dotenv(override=False)

SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
