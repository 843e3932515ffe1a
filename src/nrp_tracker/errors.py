# src/nrp_tracker/errors.py

"""
Error taxonomy shared by the task store, the task API and the timer.

- ValidationError / NotFoundError / ConflictError surface synchronously to the caller.
- TransientStorageError is retryable (flush/save failures, locked database, timeouts).
- FatalStorageError means a transaction was rolled back; stored state is unchanged.
"""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for all errors raised by nrp_tracker."""


class ValidationError(TrackerError, ValueError):
    """Malformed input, self-link attempt, invalid enum value."""


class NotFoundError(TrackerError, LookupError):
    """A referenced task does not exist."""

    def __init__(self, message: str, *, task_ids: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.task_ids = task_ids


class ConflictError(TrackerError):
    """The requested change collides with existing state (e.g. duplicate link)."""


class StorageError(TrackerError):
    """Persistence failure."""


class TransientStorageError(StorageError):
    """Retryable persistence failure (busy/locked database, timeout, IO hiccup)."""


class FatalStorageError(StorageError):
    """A transactional operation failed and was rolled back."""
