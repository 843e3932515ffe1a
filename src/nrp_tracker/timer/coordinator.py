# src/nrp_tracker/timer/coordinator.py

"""
Timer coordinator.

The single authority on which task is being timed. One instance is created by
the composition root (cli/bootstrap.py), opened on the running event loop and
closed on shutdown; collaborators receive it through AppState.

State machine:
- Idle
- Running(task_id, mode)  mode in {countup, countdown}

All methods must be called from the event loop that opened the coordinator.
The ticker is an asyncio task on the same loop, so state needs no locking.
Persistence goes through WriteBehindFlusher and never blocks a tick.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from ..core.ports import TimeSink
from ..errors import ValidationError
from .flusher import WriteBehindFlusher
from .notify import Listeners, NotificationBus, Subscription

logger = logging.getLogger(__name__)


class TimerMode(StrEnum):
    COUNTUP = "countup"
    COUNTDOWN = "countdown"


class StartOutcome(StrEnum):
    STARTED = "started"
    ALREADY_RUNNING = "already_running"
    # Another task is running; call start(..., confirm_switch=True) to switch.
    CONFIRMATION_REQUIRED = "confirmation_required"


@dataclass(slots=True, frozen=True)
class StartResult:
    outcome: StartOutcome
    task_id: str
    active_task_id: str | None

    @property
    def started(self) -> bool:
        return self.outcome == StartOutcome.STARTED


@dataclass(slots=True, frozen=True)
class TimerSnapshot:
    active_task_id: str | None
    running: bool
    elapsed_by_task: dict[str, int]
    mode: TimerMode
    countdown_remaining: int | None


@dataclass(slots=True, frozen=True)
class SessionComplete:
    task_id: str
    elapsed: int
    duration: int


class TimerCoordinator:
    def __init__(
        self,
        sink: TimeSink,
        *,
        tick_interval: float = 1.0,
        flush_interval: float = 10.0,
        flush_timeout: float = 5.0,
        shutdown_budget: float = 5.0,
        countdown_default: int = 25 * 60,
        autotick: bool = True,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.tick_interval = max(0.001, float(tick_interval))
        self.shutdown_budget = float(shutdown_budget)
        self._autotick = autotick

        self._active_task_id: str | None = None
        self._running = False
        self._mode = TimerMode.COUNTUP
        self._elapsed: dict[str, int] = {}
        self._countdown_default = self._check_duration(countdown_default)
        self._countdown_duration = self._countdown_default
        self._countdown_remaining: int | None = None

        self._ticker: asyncio.Task[None] | None = None
        self._flusher = WriteBehindFlusher(
            sink,
            interval=flush_interval,
            timeout=flush_timeout,
            clock=clock,
            wall_clock=wall_clock,
        )
        self._bus: NotificationBus[TimerSnapshot] = NotificationBus(self.snapshot)
        self._complete: Listeners[SessionComplete] = Listeners("session-complete")

    # ---- lifecycle ----

    async def open(self) -> None:
        self._flusher.start()
        logger.info(
            "Timer coordinator open (tick=%.2fs flush_interval=%.1fs)",
            self.tick_interval,
            self._flusher.interval,
        )

    async def close(self) -> None:
        """Stop timing and make one bounded attempt to persist every dirty counter."""
        if self._running:
            self._stop_session()
            self._bus.mark_dirty()
        self._stop_ticker()
        await self._flusher.close(self.shutdown_budget)
        self._bus.cancel()
        logger.info("Timer coordinator closed (unsaved=%s)", sorted(self._flusher.dirty_task_ids()))

    def discard_state(self) -> None:
        """Drop every in-memory counter and subscriber without flushing (test isolation)."""
        self._stop_ticker()
        self._active_task_id = None
        self._running = False
        self._mode = TimerMode.COUNTUP
        self._elapsed.clear()
        self._countdown_duration = self._countdown_default
        self._countdown_remaining = None
        self._flusher.reset()
        self._bus.clear()
        self._complete.clear()

    async def drain(self) -> None:
        """Wait until every queued flush has been attempted."""
        await self._flusher.drain()

    async def settle(self) -> None:
        """Wait until queued flushes and writes still running past their timeout are done."""
        await self._flusher.settle()

    # ---- queries ----

    @property
    def running(self) -> bool:
        return self._running

    @property
    def active_task_id(self) -> str | None:
        return self._active_task_id

    @property
    def mode(self) -> TimerMode:
        return self._mode

    @property
    def countdown_remaining(self) -> int | None:
        return self._countdown_remaining if self._mode == TimerMode.COUNTDOWN else None

    def snapshot(self) -> TimerSnapshot:
        return TimerSnapshot(
            active_task_id=self._active_task_id,
            running=self._running,
            elapsed_by_task=dict(self._elapsed),
            mode=self._mode,
            countdown_remaining=self.countdown_remaining,
        )

    def get_time_spent(self, task_id: str) -> int:
        return self._elapsed.get(task_id, 0)

    def tracks(self, task_id: str) -> bool:
        """True if the timer holds a counter for task_id (possibly 0, possibly unsaved)."""
        return task_id in self._elapsed

    def is_active_for(self, task_id: str) -> bool:
        return self._running and self._active_task_id == task_id

    def last_flush_at(self, task_id: str) -> datetime | None:
        """Wall-clock time of the last successful flush for task_id (None if never)."""
        return self._flusher.last_success(task_id)

    def unsaved_task_ids(self) -> set[str]:
        """Tasks whose in-memory elapsed time has not reached storage yet."""
        return self._flusher.dirty_task_ids()

    # ---- subscriptions ----

    def subscribe(self, callback: Callable[[TimerSnapshot], None]) -> Subscription:
        return self._bus.subscribe(callback)

    def on_session_complete(self, callback: Callable[[SessionComplete], None]) -> Subscription:
        return self._complete.add(callback)

    # ---- commands ----

    def start(
        self,
        task_id: str,
        mode: TimerMode | str = TimerMode.COUNTUP,
        duration: int | None = None,
        *,
        confirm_switch: bool = False,
    ) -> StartResult:
        """
        Start (or resume) timing task_id.

        If another task is running this returns CONFIRMATION_REQUIRED and changes
        nothing; with confirm_switch=True the old session is paused (and flushed)
        first. Countdown starts from `duration` (or the configured default) unless
        a remaining value for this task is still primed from an earlier pause.
        """
        if not task_id:
            raise ValidationError("task_id is required")
        try:
            mode = TimerMode(mode)
        except ValueError:
            raise ValidationError(f"Invalid timer mode: {mode!r}") from None
        if duration is not None:
            duration = self._check_duration(duration)

        if self._running and self._active_task_id != task_id:
            if not confirm_switch:
                logger.info(
                    "Timer start for %s needs confirmation: %s is running",
                    task_id,
                    self._active_task_id,
                )
                return StartResult(StartOutcome.CONFIRMATION_REQUIRED, task_id, self._active_task_id)
            logger.info("Switching timer %s -> %s", self._active_task_id, task_id)
            self._stop_session()

        if self._running:
            return StartResult(StartOutcome.ALREADY_RUNNING, task_id, self._active_task_id)

        if self._active_task_id != task_id:
            # Primed countdown belongs to the previous task.
            self._countdown_remaining = None

        if mode == TimerMode.COUNTDOWN:
            if duration is not None:
                self._countdown_duration = duration
            if not self._countdown_remaining:
                self._countdown_remaining = self._countdown_duration
        else:
            self._countdown_remaining = None

        self._active_task_id = task_id
        self._mode = mode
        self._running = True
        self._elapsed.setdefault(task_id, 0)
        self._start_ticker()
        self._bus.mark_dirty()

        logger.info(
            "Timer started task=%s mode=%s remaining=%s",
            task_id,
            mode.value,
            self._countdown_remaining,
        )
        return StartResult(StartOutcome.STARTED, task_id, task_id)

    def tick(self) -> None:
        """Advance the running session by one unit (called by the ticker)."""
        if not self._running or self._active_task_id is None:
            return

        task_id = self._active_task_id
        elapsed = self._elapsed.get(task_id, 0) + 1
        self._elapsed[task_id] = elapsed
        self._flusher.update(task_id, elapsed)

        if self._mode == TimerMode.COUNTDOWN and self._countdown_remaining is not None:
            self._countdown_remaining = max(0, self._countdown_remaining - 1)
            if self._countdown_remaining == 0:
                self._complete_session(task_id)
                return

        self._flusher.request(task_id)
        self._bus.mark_dirty()

    def pause(self) -> bool:
        """Flush and go Idle. Returns False if nothing was running."""
        if not self._running:
            return False
        self._stop_session()
        self._bus.mark_dirty()
        return True

    def reset(self, duration: int | None = None) -> None:
        """
        Pause (flush + stop) and, in countdown mode, re-prime the remaining time.

        Cumulative elapsed time is never touched here; see reset_total_time().
        """
        if duration is not None:
            self._countdown_duration = self._check_duration(duration)

        if self._running:
            self._stop_session()
        elif self._active_task_id is not None:
            self._flusher.request(self._active_task_id, force=True)

        if self._mode == TimerMode.COUNTDOWN:
            self._countdown_remaining = self._countdown_duration
        self._bus.mark_dirty()
        logger.info("Timer reset task=%s mode=%s", self._active_task_id, self._mode.value)

    def reset_total_time(self, task_id: str) -> None:
        """Zero the cumulative elapsed time for task_id and persist the zero."""
        self._elapsed[task_id] = 0
        self._flusher.update(task_id, 0)
        self._flusher.request(task_id, force=True)
        self._bus.mark_dirty()
        logger.info("Timer total reset task=%s", task_id)

    def set_elapsed(self, task_id: str, seconds: int) -> None:
        """Mirror an absolute value that was already written to storage."""
        if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds < 0:
            raise ValidationError("time spent must be a non-negative integer")
        self._elapsed[task_id] = seconds
        self._flusher.update(task_id, seconds, dirty=False)
        self._bus.mark_dirty()

    def prime(self, tasks: Iterable[Any]) -> int:
        """
        Seed counters from stored tasks (anything with .id and .time_spent).

        Counters with unsaved progress are left alone.
        """
        dirty = self._flusher.dirty_task_ids()
        n = 0
        for task in tasks:
            task_id = str(task.id)
            if task_id in dirty:
                continue
            seconds = max(0, int(getattr(task, "time_spent", 0) or 0))
            self._elapsed[task_id] = seconds
            self._flusher.update(task_id, seconds, dirty=False)
            n += 1
        if n:
            logger.debug("Timer primed %s counter(s) from storage", n)
        return n

    def forget(self, task_id: str) -> None:
        """Drop the counter of a deleted task (stops it first if it is running)."""
        if self._active_task_id == task_id:
            if self._running:
                self._stop_session(flush=False)
            self._active_task_id = None
            self._countdown_remaining = None
        self._elapsed.pop(task_id, None)
        self._flusher.discard(task_id)
        self._bus.mark_dirty()

    # ---- internals ----

    @staticmethod
    def _check_duration(duration: Any) -> int:
        if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
            raise ValidationError(f"countdown duration must be a positive integer, got {duration!r}")
        return duration

    def _stop_session(self, *, flush: bool = True) -> None:
        task_id = self._active_task_id
        self._running = False
        self._stop_ticker()
        if flush and task_id is not None:
            self._flusher.request(task_id, force=True)
        logger.info("Timer stopped task=%s elapsed=%s", task_id, self._elapsed.get(task_id or "", 0))

    def _complete_session(self, task_id: str) -> None:
        self._stop_session()
        self._bus.mark_dirty()
        logger.info("Countdown complete task=%s", task_id)
        self._complete.emit(
            SessionComplete(
                task_id=task_id,
                elapsed=self._elapsed.get(task_id, 0),
                duration=self._countdown_duration,
            )
        )

    def _start_ticker(self) -> None:
        self._stop_ticker()
        if not self._autotick:
            return
        self._ticker = asyncio.get_running_loop().create_task(self._run_ticker(), name="nrp-timer-ticker")

    def _stop_ticker(self) -> None:
        ticker, self._ticker = self._ticker, None
        if ticker is None:
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # The ticker may be stopping itself from inside tick(); it exits on its own.
        if ticker is not current:
            ticker.cancel()

    async def _run_ticker(self) -> None:
        loop = asyncio.get_running_loop()
        me = asyncio.current_task()
        next_at = loop.time() + self.tick_interval
        while self._running and self._ticker is me:
            await asyncio.sleep(max(0.0, next_at - loop.time()))
            if not self._running or self._ticker is not me:
                break
            try:
                self.tick()
            except Exception:
                logger.exception("Timer tick failed")
            next_at += self.tick_interval
