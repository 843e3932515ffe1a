# tests/test_bootstrap.py

from __future__ import annotations

import pytest

from nrp_tracker.cli.bootstrap import close_state, create_initial_state, open_state


@pytest.mark.asyncio
async def test_state_round_trip_keeps_time_across_restarts(settings) -> None:
    state = create_initial_state(settings=settings)
    task = state.task_store.create_task(title="Persist me")
    state.task_store.update_time_spent(task.id, 30)

    await open_state(state)
    assert state.timer.get_time_spent(task.id) == 30

    state.timer.start(task.id)
    state.timer.tick()
    state.timer.tick()
    await close_state(state)

    assert state.task_store.get_task(task.id).time_spent == 32

    restarted = create_initial_state(settings=settings)
    await open_state(restarted)
    try:
        assert restarted.timer.get_time_spent(task.id) == 32
        assert restarted.timer.running is False
    finally:
        await close_state(restarted)


def test_create_initial_state_uses_settings(settings) -> None:
    settings.task_id_prefix = "OPS"
    state = create_initial_state(settings=settings)

    assert settings.tasks_db_path.exists()
    assert state.task_store.create_task().id.startswith("OPS-")
    assert state.timer.tick_interval == settings.timer_tick_seconds
