# tests/test_config.py

from __future__ import annotations

from pathlib import Path

from nrp_tracker.config import Settings


def test_from_env_defaults(monkeypatch) -> None:
    for name in (
        "NRP_DATA_DIR",
        "NRP_TASKS_DB_PATH",
        "NRP_TASK_ID_PREFIX",
        "NRP_TIMER_FLUSH_INTERVAL_SECONDS",
        "NRP_COUNTDOWN_DEFAULT_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)

    s = Settings.from_env()
    assert s.data_dir == Path(".local/nrp")
    assert s.tasks_db_path == Path(".local/nrp") / "tasks.sqlite3"
    assert s.task_id_prefix == "NRP"
    assert s.timer_flush_interval_seconds == 10.0
    assert s.countdown_default_seconds == 25 * 60


def test_from_env_overrides_and_clamps(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("NRP_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("NRP_TASKS_DB_PATH", raising=False)
    monkeypatch.setenv("NRP_CONSOLE_ENABLED", "off")
    monkeypatch.setenv("NRP_TASK_ID_MIN", "5000")
    monkeypatch.setenv("NRP_TASK_ID_MAX", "10")
    monkeypatch.setenv("NRP_TASK_ID_MAX_ATTEMPTS", "nope")
    monkeypatch.setenv("NRP_TIMER_TICK_SECONDS", "0")

    s = Settings.from_env()
    assert s.tasks_db_path == tmp_path / "tasks.sqlite3"
    assert s.console_enabled is False
    assert s.task_id_max == 5000
    assert s.task_id_max_attempts == 10
    assert s.timer_tick_seconds == 0.01
