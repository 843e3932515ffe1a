# src/nrp_tracker/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the task store and the timer coordinator into AppState,
- opens the coordinator on the running loop and closes it (final flush) on shutdown.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.state import AppState
from ..tasks.id_generator import TaskIdGenerator
from ..tasks.task_store import TaskStore
from ..timer.coordinator import TimerCoordinator

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    ids = TaskIdGenerator(
        prefix=settings.task_id_prefix,
        min_number=settings.task_id_min,
        max_number=settings.task_id_max,
        max_attempts=settings.task_id_max_attempts,
    )
    task_store = TaskStore(settings.tasks_db_path, id_generator=ids)

    timer = TimerCoordinator(
        task_store,
        tick_interval=settings.timer_tick_seconds,
        flush_interval=settings.timer_flush_interval_seconds,
        flush_timeout=settings.timer_flush_timeout_seconds,
        shutdown_budget=settings.timer_shutdown_budget_seconds,
        countdown_default=settings.countdown_default_seconds,
    )

    return AppState(settings=settings, task_store=task_store, timer=timer)


async def open_state(state: AppState) -> None:
    """Start background work on the running loop and seed timer counters from storage."""
    await state.timer.open()
    try:
        primed = state.timer.prime(state.task_store.list_tasks())
    except Exception:
        # Counters then start from 0 and the first flush would overwrite stored totals.
        logger.exception("Failed to load stored time totals; closing timer.")
        await state.timer.close()
        raise
    logger.info("Loaded %d task time total(s) into the timer.", primed)


async def close_state(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        await state.timer.close()
    except Exception:
        logger.exception("Timer shutdown failed.")

    # TaskStore uses short-lived sqlite connections per call; close() is a no-op hook.
    try:
        state.task_store.close()
    except Exception:
        logger.debug("TaskStore close failed.", exc_info=True)
