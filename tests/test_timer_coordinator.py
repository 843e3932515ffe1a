# tests/test_timer_coordinator.py

from __future__ import annotations

import asyncio
from datetime import UTC
from types import SimpleNamespace

import pytest

from nrp_tracker.errors import ValidationError
from nrp_tracker.timer.coordinator import (
    SessionComplete,
    StartOutcome,
    TimerCoordinator,
    TimerMode,
)

from .fakes import FakeTimeSink


@pytest.mark.asyncio
async def test_countup_ticks_and_pause_flushes(timer, sink) -> None:
    res = timer.start("C")
    assert res.started
    assert res.outcome == StartOutcome.STARTED

    for _ in range(3):
        timer.tick()
    assert timer.pause() is True
    await timer.drain()

    assert timer.get_time_spent("C") == 3
    assert sink.calls == [("C", 3)]
    assert sink.stored["C"] == 3
    assert timer.unsaved_task_ids() == set()
    assert timer.last_flush_at("C").tzinfo is UTC


@pytest.mark.asyncio
async def test_pause_when_idle_is_a_noop(timer, sink) -> None:
    assert timer.pause() is False
    await timer.drain()
    assert sink.calls == []


@pytest.mark.asyncio
async def test_flush_is_throttled_per_task(timer, sink, clock) -> None:
    timer.start("C")
    timer.tick()
    await timer.drain()
    assert sink.calls == [("C", 1)]

    clock.advance(1)
    timer.tick()
    await timer.drain()
    assert sink.calls == [("C", 1)]
    assert "C" in timer.unsaved_task_ids()

    clock.advance(10)
    timer.tick()
    await timer.drain()
    assert sink.calls == [("C", 1), ("C", 3)]
    assert timer.unsaved_task_ids() == set()


@pytest.mark.asyncio
async def test_failed_flush_is_retried_in_next_window(timer, sink, clock) -> None:
    sink.fail_next = 1
    timer.start("C")
    timer.tick()
    await timer.drain()

    assert sink.calls == [("C", 1)]
    assert "C" not in sink.stored
    assert "C" in timer.unsaved_task_ids()
    assert timer.last_flush_at("C") is None
    assert timer.running is True

    clock.advance(1)
    timer.tick()
    await timer.drain()
    assert len(sink.calls) == 1

    clock.advance(10)
    timer.tick()
    await timer.drain()
    assert sink.calls[-1] == ("C", 3)
    assert sink.stored["C"] == 3
    assert timer.unsaved_task_ids() == set()
    assert timer.last_flush_at("C") is not None


@pytest.mark.asyncio
async def test_slow_storage_times_out_without_stopping_the_timer(sink, clock) -> None:
    sink.delay = 0.3
    timer = TimerCoordinator(sink, flush_timeout=0.05, autotick=False, clock=clock)
    await timer.open()
    try:
        timer.start("C")
        timer.tick()
        await timer.drain()

        assert timer.running is True
        assert "C" in timer.unsaved_task_ids()
        timer.tick()
        assert timer.get_time_spent("C") == 2
    finally:
        sink.delay = 0.0
        await timer.close()

    assert sink.stored["C"] == 2


@pytest.mark.asyncio
async def test_overdue_write_never_lands_after_a_newer_one(sink, clock) -> None:
    sink.slow_next = 1
    sink.slow_delay = 0.4
    timer = TimerCoordinator(sink, flush_timeout=0.05, autotick=False, clock=clock)
    await timer.open()
    try:
        timer.start("C")
        timer.tick()
        await timer.drain()

        timer.tick()
        timer.tick()
        timer.pause()
        await timer.drain()

        # The first write is still running: no second write may start yet.
        assert sink.calls == [("C", 1)]
        assert "C" in timer.unsaved_task_ids()

        await timer.settle()

        assert sink.calls == [("C", 1), ("C", 3)]
        assert sink.stored["C"] == 3
        assert timer.unsaved_task_ids() == set()
        assert timer.get_time_spent("C") == 3
    finally:
        await timer.close()

    assert sink.stored["C"] == 3


@pytest.mark.asyncio
async def test_close_waits_for_overdue_write_then_saves_newest(sink, clock) -> None:
    sink.slow_next = 1
    sink.slow_delay = 0.3
    timer = TimerCoordinator(sink, flush_timeout=0.05, shutdown_budget=2.0, autotick=False, clock=clock)
    await timer.open()
    timer.start("C")
    timer.tick()
    await timer.drain()
    timer.tick()
    timer.tick()

    await timer.close()

    assert sink.stored["C"] == 3
    assert timer.unsaved_task_ids() == set()


@pytest.mark.asyncio
async def test_overdue_write_does_not_undo_reset_total_time(sink, clock) -> None:
    sink.slow_next = 1
    sink.slow_delay = 0.3
    timer = TimerCoordinator(sink, flush_timeout=0.05, autotick=False, clock=clock)
    timer.prime([SimpleNamespace(id="C", time_spent=500)])
    await timer.open()
    try:
        timer.start("C")
        timer.tick()
        await timer.drain()
        timer.pause()
        timer.reset_total_time("C")
        await timer.drain()
        await timer.settle()

        assert sink.calls == [("C", 501), ("C", 0)]
        assert sink.stored["C"] == 0
        assert timer.get_time_spent("C") == 0
        assert timer.unsaved_task_ids() == set()
    finally:
        await timer.close()


@pytest.mark.asyncio
async def test_start_other_task_requires_confirmation(timer, sink) -> None:
    timer.start("A")
    timer.tick()

    res = timer.start("B")
    assert res.outcome == StartOutcome.CONFIRMATION_REQUIRED
    assert res.active_task_id == "A"
    assert not res.started
    assert timer.is_active_for("A")
    assert not timer.is_active_for("B")

    res = timer.start("B", confirm_switch=True)
    assert res.started
    assert timer.active_task_id == "B"
    assert timer.is_active_for("B")
    assert not timer.is_active_for("A")

    await timer.drain()
    assert sink.stored["A"] == 1
    assert timer.get_time_spent("A") == 1
    assert timer.get_time_spent("B") == 0


@pytest.mark.asyncio
async def test_start_same_task_twice(timer) -> None:
    timer.start("A")
    res = timer.start("A")
    assert res.outcome == StartOutcome.ALREADY_RUNNING
    assert timer.active_task_id == "A"


@pytest.mark.asyncio
async def test_start_rejects_bad_arguments(timer) -> None:
    with pytest.raises(ValidationError):
        timer.start("")
    with pytest.raises(ValidationError):
        timer.start("C", "sideways")
    with pytest.raises(ValidationError):
        timer.start("C", TimerMode.COUNTDOWN, 0)
    assert timer.running is False


@pytest.mark.asyncio
async def test_countdown_completes_exactly_once(timer, sink) -> None:
    events: list[SessionComplete] = []
    timer.on_session_complete(events.append)

    timer.start("C", TimerMode.COUNTDOWN, 5)
    assert timer.countdown_remaining == 5

    for _ in range(5):
        timer.tick()

    assert timer.countdown_remaining == 0
    assert timer.running is False
    assert events == [SessionComplete(task_id="C", elapsed=5, duration=5)]

    timer.tick()
    assert len(events) == 1
    assert timer.get_time_spent("C") == 5

    await timer.drain()
    assert sink.stored["C"] == 5


@pytest.mark.asyncio
async def test_countdown_uses_configured_default(timer) -> None:
    timer.start("C", "countdown")
    assert timer.mode == TimerMode.COUNTDOWN
    assert timer.countdown_remaining == 5


@pytest.mark.asyncio
async def test_countdown_resumes_from_remaining_after_pause(timer) -> None:
    timer.start("C", TimerMode.COUNTDOWN, 5)
    timer.tick()
    timer.tick()
    timer.pause()
    assert timer.countdown_remaining == 3

    timer.start("C", TimerMode.COUNTDOWN)
    assert timer.countdown_remaining == 3

    timer.start("D", TimerMode.COUNTDOWN, confirm_switch=True)
    assert timer.countdown_remaining == 5


@pytest.mark.asyncio
async def test_reset_keeps_total_and_reset_total_time_zeroes_it(timer, sink) -> None:
    timer.start("C", TimerMode.COUNTDOWN, 5)
    timer.tick()
    timer.tick()

    timer.reset()
    await timer.drain()

    assert timer.running is False
    assert timer.countdown_remaining == 5
    assert timer.get_time_spent("C") == 2
    assert sink.stored["C"] == 2

    timer.reset_total_time("C")
    await timer.drain()

    assert timer.get_time_spent("C") == 0
    assert sink.stored["C"] == 0
    assert timer.unsaved_task_ids() == set()


@pytest.mark.asyncio
async def test_reset_with_new_duration(timer) -> None:
    timer.start("C", TimerMode.COUNTDOWN, 5)
    timer.reset(600)
    assert timer.countdown_remaining == 600

    timer.start("C", TimerMode.COUNTDOWN)
    assert timer.countdown_remaining == 600


@pytest.mark.asyncio
async def test_reset_in_countup_mode(timer) -> None:
    timer.start("C")
    timer.tick()
    timer.reset()
    assert timer.running is False
    assert timer.countdown_remaining is None
    assert timer.get_time_spent("C") == 1


@pytest.mark.asyncio
async def test_notifications_are_coalesced_per_frame(timer) -> None:
    snaps = []
    sub = timer.subscribe(snaps.append)

    timer.start("C")
    timer.tick()
    timer.tick()
    assert snaps == []

    await asyncio.sleep(0)
    assert len(snaps) == 1
    snap = snaps[0]
    assert snap.active_task_id == "C"
    assert snap.running is True
    assert snap.mode == TimerMode.COUNTUP
    assert snap.elapsed_by_task == {"C": 2}

    sub.detach()
    assert sub.active is False
    timer.tick()
    await asyncio.sleep(0)
    assert len(snaps) == 1


@pytest.mark.asyncio
async def test_detach_removes_only_that_subscriber(timer) -> None:
    first: list = []
    second: list = []
    sub1 = timer.subscribe(first.append)
    timer.subscribe(second.append)
    # A broken subscriber must not starve the others.
    timer.subscribe(lambda _snap: 1 / 0)

    sub1.detach()
    sub1.detach()
    timer.start("C")
    await asyncio.sleep(0)

    assert first == []
    assert len(second) == 1


@pytest.mark.asyncio
async def test_close_flushes_unsaved_counters(timer, sink) -> None:
    sink.fail_next = 1
    timer.start("C")
    timer.tick()
    await timer.drain()
    assert "C" in timer.unsaved_task_ids()

    timer.tick()
    await timer.close()

    assert timer.running is False
    assert sink.stored["C"] == 2
    assert timer.unsaved_task_ids() == set()


@pytest.mark.asyncio
async def test_flush_for_deleted_task_is_dropped(timer, sink) -> None:
    sink.missing.add("C")
    timer.start("C")
    timer.tick()
    await timer.drain()

    assert sink.calls == [("C", 1)]
    assert timer.unsaved_task_ids() == set()


@pytest.mark.asyncio
async def test_forget_stops_and_drops_counter(timer, sink) -> None:
    timer.start("C")
    timer.tick()
    timer.forget("C")
    await timer.drain()

    assert timer.running is False
    assert timer.active_task_id is None
    assert timer.get_time_spent("C") == 0
    assert sink.calls == []


@pytest.mark.asyncio
async def test_prime_and_set_elapsed(timer) -> None:
    assert timer.prime([SimpleNamespace(id="A", time_spent=100)]) == 1
    timer.start("A")
    timer.tick()
    assert timer.get_time_spent("A") == 101

    # Unsaved progress wins over stored values.
    assert timer.prime([SimpleNamespace(id="A", time_spent=0)]) == 0
    assert timer.get_time_spent("A") == 101

    timer.set_elapsed("B", 50)
    assert timer.get_time_spent("B") == 50
    assert "B" not in timer.unsaved_task_ids()
    with pytest.raises(ValidationError):
        timer.set_elapsed("B", -1)


@pytest.mark.asyncio
async def test_real_ticker_counts_up_and_stops_on_pause(sink) -> None:
    timer = TimerCoordinator(sink, tick_interval=0.02, flush_timeout=1.0, shutdown_budget=1.0)
    await timer.open()
    try:
        timer.start("C")
        await asyncio.sleep(0.2)
        timer.pause()
        n = timer.get_time_spent("C")
        assert 5 <= n <= 12

        await asyncio.sleep(0.06)
        assert timer.get_time_spent("C") == n
    finally:
        await timer.close()
    assert sink.stored["C"] == n


@pytest.mark.asyncio
async def test_real_ticker_countdown_completes(sink) -> None:
    timer = TimerCoordinator(sink, tick_interval=0.01, shutdown_budget=1.0)
    events: list[SessionComplete] = []
    timer.on_session_complete(events.append)
    await timer.open()
    try:
        timer.start("C", TimerMode.COUNTDOWN, 3)
        await asyncio.sleep(0.2)
        assert timer.running is False
        assert timer.countdown_remaining == 0
        assert len(events) == 1
        assert timer.get_time_spent("C") == 3
    finally:
        await timer.close()


@pytest.mark.asyncio
async def test_slow_flush_does_not_block_ticks() -> None:
    sink = FakeTimeSink(delay=0.2)
    timer = TimerCoordinator(sink, tick_interval=0.02, flush_timeout=1.0, shutdown_budget=1.0)
    await timer.open()
    try:
        timer.start("C")
        await asyncio.sleep(0.15)
        assert timer.get_time_spent("C") >= 4
        assert len(sink.calls) == 1
    finally:
        await timer.close()
