# src/nrp_tracker/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..tasks.task_store import TaskStore
    from ..timer.coordinator import TimerCoordinator


@dataclass
class AppState:
    """
    Everything a connector or command needs, wired once by cli/bootstrap.py.

    The timer coordinator lives here (not in a module global) so tests can build
    their own instance and throw it away.
    """

    # Store Settings on the state for easy access in other modules later.
    settings: Any

    task_store: TaskStore
    timer: TimerCoordinator
