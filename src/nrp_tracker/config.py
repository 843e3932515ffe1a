# src/nrp_tracker/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- Nothing is required at import time; every value has a local default.
- Data files live under a gitignored local directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "NRP"

load_dotenv(override=False)


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


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


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

    # ---- Connector flags ----
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    # ---- Task ids ----
    task_id_prefix: str
    task_id_min: int
    task_id_max: int
    task_id_max_attempts: int

    # ---- Timer ----
    timer_tick_seconds: float
    timer_flush_interval_seconds: float
    timer_flush_timeout_seconds: float
    timer_shutdown_budget_seconds: float
    countdown_default_seconds: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "nrp-tracker")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/nrp"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        task_id_prefix = _env(_k("TASK_ID_PREFIX"), "NRP").strip() or "NRP"
        task_id_min = _env_int(_k("TASK_ID_MIN"), 1000)
        task_id_max = _env_int(_k("TASK_ID_MAX"), 9999)
        task_id_max_attempts = _env_int(_k("TASK_ID_MAX_ATTEMPTS"), 10)

        timer_tick_seconds = _env_float(_k("TIMER_TICK_SECONDS"), 1.0)
        timer_flush_interval_seconds = _env_float(_k("TIMER_FLUSH_INTERVAL_SECONDS"), 10.0)
        timer_flush_timeout_seconds = _env_float(_k("TIMER_FLUSH_TIMEOUT_SECONDS"), 5.0)
        timer_shutdown_budget_seconds = _env_float(_k("TIMER_SHUTDOWN_BUDGET_SECONDS"), 5.0)
        # Pomodoro length.
        countdown_default_seconds = _env_int(_k("COUNTDOWN_DEFAULT_SECONDS"), 25 * 60)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            task_id_prefix=task_id_prefix,
            task_id_min=task_id_min,
            task_id_max=max(task_id_min, task_id_max),
            task_id_max_attempts=max(1, task_id_max_attempts),
            timer_tick_seconds=max(0.01, timer_tick_seconds),
            timer_flush_interval_seconds=max(0.0, timer_flush_interval_seconds),
            timer_flush_timeout_seconds=max(0.1, timer_flush_timeout_seconds),
            timer_shutdown_budget_seconds=max(0.1, timer_shutdown_budget_seconds),
            countdown_default_seconds=max(1, countdown_default_seconds),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
