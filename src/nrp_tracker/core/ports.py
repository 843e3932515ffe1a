# src/nrp_tracker/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The timer depends on a Protocol instead of the concrete SQLite store.
This keeps storage swappable and makes testing easier.
"""

from typing import Any, Protocol


class TimeSink(Protocol):
    """
    Where the timer flushes elapsed seconds (absolute values, not deltas).

    Returns the updated record, or None if the task no longer exists.
    Retryable failures should raise TransientStorageError.
    """

    def update_time_spent(self, task_id: str, seconds: int) -> Any | None: ...
