# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio

from nrp_tracker.core.state import AppState
from nrp_tracker.tasks.task_store import TaskStore
from nrp_tracker.timer.coordinator import TimerCoordinator

from .fakes import FakeClock, FakeTimeSink


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="nrp-test",
        log_level="DEBUG",
        console_enabled=False,
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        task_id_prefix="NRP",
        task_id_min=1000,
        task_id_max=9999,
        task_id_max_attempts=10,
        timer_tick_seconds=1.0,
        timer_flush_interval_seconds=10.0,
        timer_flush_timeout_seconds=1.0,
        timer_shutdown_budget_seconds=1.0,
        countdown_default_seconds=5,
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sink() -> FakeTimeSink:
    return FakeTimeSink()


@pytest_asyncio.fixture()
async def timer(sink: FakeTimeSink, clock: FakeClock):
    """
    Opened coordinator with manual ticks (autotick=False) and a fake clock.

    Tests call timer.tick() themselves and `await timer.drain()` to let the
    flush worker catch up.
    """
    t = TimerCoordinator(
        sink,
        tick_interval=1.0,
        flush_interval=10.0,
        flush_timeout=1.0,
        shutdown_budget=1.0,
        countdown_default=5,
        autotick=False,
        clock=clock,
    )
    await t.open()
    yield t
    await t.close()
    t.discard_state()


@pytest.fixture()
def state(settings: SimpleNamespace, store: TaskStore) -> AppState:
    """
    AppState wired with the real SQLite store and a manual-tick timer.

    NOTE: the store is real because its transactional behaviour is part of what
    we want to test; the timer is never opened here, so nothing is flushed.
    """
    return AppState(
        settings=settings,
        task_store=store,
        timer=TimerCoordinator(store, autotick=False, countdown_default=5),
    )
