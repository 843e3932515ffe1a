# src/nrp_tracker/timer/notify.py

"""
Coalesced observer for timer state.

Mutations call mark_dirty(); the bus schedules at most one delivery per
event-loop frame (loop.call_soon) and sends the snapshot taken at delivery
time to every subscriber. subscribe() returns a Subscription whose detach()
removes only that callback.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    """Detachable handle returned by subscribe(). detach() is idempotent."""

    __slots__ = ("_detach", "_active")

    def __init__(self, detach: Callable[[], None]) -> None:
        self._detach = detach
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def detach(self) -> None:
        if not self._active:
            return
        self._active = False
        self._detach()


class Listeners(Generic[T]):
    """Plain listener list; emit() calls every callback immediately."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._callbacks: list[Callable[[T], None]] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def add(self, callback: Callable[[T], None]) -> Subscription:
        self._callbacks.append(callback)

        def _remove() -> None:
            # Identity match: the same function may be registered twice.
            for i, cb in enumerate(self._callbacks):
                if cb is callback:
                    del self._callbacks[i]
                    return

        return Subscription(_remove)

    def emit(self, payload: T) -> None:
        # Copy: a callback may detach itself (or others) while we iterate.
        for cb in list(self._callbacks):
            try:
                cb(payload)
            except Exception:
                logger.exception("%s listener failed", self._name)

    def clear(self) -> None:
        self._callbacks.clear()


class NotificationBus(Generic[T]):
    def __init__(self, snapshot: Callable[[], T]) -> None:
        self._snapshot = snapshot
        self._listeners: Listeners[T] = Listeners("snapshot")
        self._scheduled: asyncio.Handle | None = None

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        return self._listeners.add(callback)

    def mark_dirty(self) -> None:
        if self._scheduled is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop, no frame to coalesce into.
            self._deliver()
            return
        self._scheduled = loop.call_soon(self._deliver)

    def _deliver(self) -> None:
        self._scheduled = None
        if not len(self._listeners):
            return
        self._listeners.emit(self._snapshot())

    def cancel(self) -> None:
        if self._scheduled is not None:
            self._scheduled.cancel()
            self._scheduled = None

    def clear(self) -> None:
        self.cancel()
        self._listeners.clear()
