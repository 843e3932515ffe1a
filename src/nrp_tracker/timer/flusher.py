# src/nrp_tracker/timer/flusher.py

"""
Write-behind cache for elapsed seconds.

- update() records the latest absolute value for a task and marks it dirty.
- request() queues a flush, throttled to one attempt per `interval` per task;
  force=True skips the throttle (pause/reset/shutdown).
- A task already waiting in the queue is not queued twice; the worker always
  persists the newest value at the moment it runs.
- Failures (TransientStorageError, anything else) are logged and the task
  stays dirty, so the next eligible request retries it.

The worker is one asyncio task; each persistence call runs in a thread and the
worker waits for it at most `timeout` seconds, so a slow database never blocks
the event loop (and the ticker).

A write that outlives its timeout keeps running in its thread. At most one
write per task is in flight: later flushes for that task wait for it (or leave
the task dirty), and when it finally lands the task is flushed again if its
value moved on. An older value therefore never lands after a newer one.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime

from ..core.ports import TimeSink
from ..errors import TransientStorageError, ValidationError

logger = logging.getLogger(__name__)


class WriteBehindFlusher:
    def __init__(
        self,
        sink: TimeSink,
        *,
        interval: float = 10.0,
        timeout: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._sink = sink
        self.interval = max(0.0, float(interval))
        self.timeout = max(0.01, float(timeout))
        self._clock = clock
        self._wall_clock = wall_clock

        self._values: dict[str, int] = {}
        self._dirty: set[str] = set()
        self._queued: set[str] = set()
        self._last_attempt: dict[str, float] = {}
        self._last_success: dict[str, float] = {}

        # Writes still running in a thread, and the ones that overran `timeout`.
        self._inflight: dict[str, asyncio.Future[object]] = {}
        self._overdue: set[str] = set()

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None

    # ---- cache ----

    def update(self, task_id: str, seconds: int, *, dirty: bool = True) -> None:
        """Record the latest value. dirty=False means storage already holds it."""
        self._values[task_id] = int(seconds)
        if dirty:
            self._dirty.add(task_id)
        else:
            self._dirty.discard(task_id)

    def discard(self, task_id: str) -> None:
        """Forget a task entirely (it was deleted); a queued flush for it becomes a no-op."""
        self._values.pop(task_id, None)
        self._dirty.discard(task_id)
        self._overdue.discard(task_id)
        self._last_attempt.pop(task_id, None)
        self._last_success.pop(task_id, None)

    def dirty_task_ids(self) -> set[str]:
        return set(self._dirty)

    def last_success(self, task_id: str) -> datetime | None:
        ts = self._last_success.get(task_id)
        return datetime.fromtimestamp(ts, UTC) if ts is not None else None

    # ---- scheduling ----

    def request(self, task_id: str, *, force: bool = False) -> bool:
        """Queue a flush if the task is dirty and outside its throttle window."""
        if task_id not in self._dirty:
            return False

        now = self._clock()
        last = self._last_attempt.get(task_id)
        if not force and last is not None and now - last < self.interval:
            return False

        self._last_attempt[task_id] = now
        if task_id in self._queued:
            return True
        self._queued.add(task_id)
        self._queue.put_nowait(task_id)
        return True

    def request_all(self) -> int:
        return sum(1 for task_id in sorted(self._dirty) if self.request(task_id, force=True))

    # ---- worker ----

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.get_running_loop().create_task(
            self._run(), name="nrp-timer-flusher"
        )

    async def drain(self) -> None:
        """Wait until every queued flush has been attempted."""
        await self._queue.join()

    async def settle(self) -> None:
        """Wait until the queue is empty and no write is still running in a thread."""
        while True:
            await self._queue.join()
            running = [f for f in self._inflight.values() if not f.done()]
            if not running:
                return
            # A landing overdue write may queue a newer value; loop to flush it.
            await asyncio.wait(running)

    async def close(self, budget: float) -> None:
        """Force-flush every dirty counter within `budget` seconds, then stop the worker."""
        pending = self.request_all()
        if pending:
            logger.info("Final flush of %s timer counter(s)", pending)
        self.start()
        try:
            await asyncio.wait_for(self.settle(), timeout=max(0.01, budget))
        except TimeoutError:
            logger.warning(
                "Final timer flush exceeded %.1fs budget; unsaved=%s in_flight=%s",
                budget,
                sorted(self._dirty),
                sorted(t for t, f in self._inflight.items() if not f.done()),
            )
        await self.stop()

    async def stop(self) -> None:
        worker, self._worker = self._worker, None
        if worker is None:
            return
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker

    def reset(self) -> None:
        """Forget all cached values and queued work (test isolation)."""
        self._values.clear()
        self._dirty.clear()
        self._queued.clear()
        self._last_attempt.clear()
        self._last_success.clear()
        # Running threads cannot be stopped; their results are ignored.
        self._inflight.clear()
        self._overdue.clear()
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()

    async def _run(self) -> None:
        while True:
            task_id = await self._queue.get()
            try:
                await self._flush_one(task_id)
            except Exception:
                logger.exception("Timer flush crashed task_id=%s", task_id)
            finally:
                self._queue.task_done()

    async def _flush_one(self, task_id: str) -> None:
        self._queued.discard(task_id)
        if task_id not in self._dirty:
            return

        previous = self._inflight.get(task_id)
        if previous is not None and not await self._wait_write(task_id, previous):
            logger.warning(
                "Timer flush deferred task_id=%s: previous write still running",
                task_id,
            )
            return
        if task_id not in self._dirty:
            return

        seconds = self._values[task_id]
        write = asyncio.ensure_future(
            asyncio.to_thread(self._sink.update_time_spent, task_id, seconds)
        )
        self._inflight[task_id] = write
        write.add_done_callback(functools.partial(self._on_written, task_id, seconds))

        if not await self._wait_write(task_id, write):
            logger.warning(
                "Timer flush timed out task_id=%s after %.1fs; will flush again when it lands",
                task_id,
                self.timeout,
            )

    async def _wait_write(self, task_id: str, write: asyncio.Future[object]) -> bool:
        """
        Wait up to `timeout` for a write. False means it is still running; the
        task is then marked overdue and re-flushed by _on_written once it lands.
        """
        # asyncio.wait never cancels the write, unlike wait_for.
        await asyncio.wait({write}, timeout=self.timeout)
        if write.done():
            return True
        self._overdue.add(task_id)
        return False

    def _on_written(self, task_id: str, seconds: int, write: asyncio.Future[object]) -> None:
        if self._inflight.get(task_id) is write:
            del self._inflight[task_id]
        late = task_id in self._overdue
        self._overdue.discard(task_id)

        if write.cancelled() or task_id not in self._values:
            return

        exc = write.exception()
        if isinstance(exc, TransientStorageError):
            logger.warning("Timer flush failed task_id=%s: %s; will retry", task_id, exc)
        elif isinstance(exc, ValidationError):
            logger.error(
                "Timer flush rejected task_id=%s seconds=%s; dropping",
                task_id,
                seconds,
                exc_info=exc,
            )
            self._dirty.discard(task_id)
        elif exc is not None:
            logger.error("Timer flush failed task_id=%s; will retry", task_id, exc_info=exc)
        elif write.result() is None:
            logger.info("Timer flush skipped: task %s no longer exists", task_id)
            self._dirty.discard(task_id)
        else:
            self._last_success[task_id] = self._wall_clock()
            # Ticks that landed while the write was in flight keep the task dirty.
            if self._values.get(task_id) == seconds:
                self._dirty.discard(task_id)
            logger.debug("Timer flushed task_id=%s seconds=%s", task_id, seconds)

        if late and task_id in self._dirty:
            # Nothing else may come along to write the newer value (paused, closing).
            self.request(task_id, force=True)
