# src/nrp_tracker/tasks/id_generator.py

"""
Human-readable task ids: "<PREFIX>-<4 digits>" (e.g. NRP-4821).

The existence check here is only a fast path. The tasks.id PRIMARY KEY is the real
collision guard; TaskStore.create_task asks for a new id when an insert loses a race.
"""

from __future__ import annotations

import logging
import random
import re
import uuid
from collections.abc import Callable

logger = logging.getLogger(__name__)


class TaskIdGenerator:
    def __init__(
        self,
        *,
        prefix: str = "NRP",
        min_number: int = 1000,
        max_number: int = 9999,
        max_attempts: int = 10,
        rng: random.Random | None = None,
    ) -> None:
        self.prefix = prefix
        self.min_number = int(min_number)
        self.max_number = max(int(min_number), int(max_number))
        self.max_attempts = max(1, int(max_attempts))
        self._rng = rng or random.Random()
        width = len(str(self.max_number))
        self._primary_re = re.compile(rf"^{re.escape(prefix)}-\d{{1,{width}}}$")

    def _candidate(self) -> str:
        return f"{self.prefix}-{self._rng.randint(self.min_number, self.max_number)}"

    def fallback_id(self) -> str:
        # 48 random bits; large enough that no store check is needed.
        return f"{self.prefix}-{uuid.uuid4().hex[:12]}"

    def is_primary_id(self, task_id: str) -> bool:
        return bool(self._primary_re.match(task_id))

    def generate(self, exists: Callable[[str], bool]) -> str:
        """
        Return a short id that `exists` reports as free, or a fallback id once
        max_attempts candidates were all taken.
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = self._candidate()
            if not exists(candidate):
                return candidate
            logger.debug("Task id collision attempt=%s id=%s", attempt, candidate)

        task_id = self.fallback_id()
        logger.warning(
            "Short id space exhausted after %s attempts; using fallback id=%s",
            self.max_attempts,
            task_id,
        )
        return task_id
