# src/nrp_tracker/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any

from ..errors import ValidationError


class TaskStatus(StrEnum):
    """Kanban workflow columns, in board order."""

    BACKLOG = "backlog"
    PLANNED = "planned"
    IN_PROGRESS = "in-progress"
    UNDER_REVIEW = "under-review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.BACKLOG
        try:
            return cls(raw)
        except ValueError:
            return cls.BACKLOG

    @classmethod
    def parse(cls, raw: Any) -> TaskStatus:
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValidationError(f"Invalid task status: {raw!r}") from None


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskPriority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(raw)
        except ValueError:
            return cls.MEDIUM

    @classmethod
    def parse(cls, raw: Any) -> TaskPriority:
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValidationError(f"Invalid task priority: {raw!r}") from None


DEFAULT_TITLE = "New Task"
DEFAULT_DESCRIPTION = "# New Task\n\nTask description here..."


def normalize_due_date(raw: Any) -> str | None:
    """
    Canonical calendar-date form: 'YYYY-MM-DD' or None.

    Accepts date/datetime objects, 'YYYY-MM-DD' strings and full ISO-8601
    timestamps (the time part is dropped).
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    if not isinstance(raw, str):
        raise ValidationError(f"Invalid due date: {raw!r}")

    s = raw.strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10]).isoformat()
    except ValueError:
        raise ValidationError(f"Invalid due date: {raw!r}") from None


@dataclass(slots=True)
class Task:
    id: str
    title: str
    description: str
    assignee: str
    priority: TaskPriority
    due_date: str | None
    status: TaskStatus

    files: list[str]
    allowed_apps: list[str]
    time_spent: int

    created_at: str
    updated_at: str

    linked_tasks: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """camelCase payload used by the task API (same keys as the REST contract)."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "assignee": self.assignee,
            "priority": self.priority.value,
            "dueDate": self.due_date,
            "status": self.status.value,
            "files": list(self.files),
            "allowedApps": list(self.allowed_apps),
            "timeSpent": self.time_spent,
            "linkedTasks": list(self.linked_tasks),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
