# src/nrp_tracker/tasks/task_api.py

"""
Collaborator-facing task operations (the contract a REST/UI layer calls).

Payloads and results are plain dicts with camelCase keys (title, dueDate,
allowedApps, linkedTaskId, timeSpent, ...). Input is validated here; the store
re-checks enums and invariants. Errors are raised from nrp_tracker.errors:
ValidationError / NotFoundError / ConflictError are meant to be shown to the
user as-is.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..core.state import AppState
from ..errors import NotFoundError, ValidationError
from .task_models import TaskPriority, TaskStatus, normalize_due_date
from .task_store import KEEP

logger = logging.getLogger(__name__)

_TEXT_FIELDS = {"title": "title", "description": "description", "assignee": "assignee"}
_LIST_FIELDS = {"files": "files", "allowedApps": "allowed_apps"}


def _require_mapping(payload: Any) -> Mapping[str, Any]:
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be an object")
    return payload


def _str_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(x, str) for x in value):
        raise ValidationError(f"{name} must be a list of strings")
    return list(value)


def _task_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a create/update payload and map it to TaskStore keyword arguments."""
    out: dict[str, Any] = {}

    for key, arg in _TEXT_FIELDS.items():
        if key not in payload or payload[key] is None:
            continue
        value = payload[key]
        if not isinstance(value, str):
            raise ValidationError(f"{key} must be a string")
        out[arg] = value

    if "title" in out and not out["title"].strip():
        raise ValidationError("Task title cannot be empty")

    if payload.get("status") is not None:
        out["status"] = TaskStatus.parse(payload["status"])

    if payload.get("priority") is not None:
        out["priority"] = TaskPriority.parse(payload["priority"])

    if "dueDate" in payload:
        out["due_date"] = normalize_due_date(payload["dueDate"])

    for key, arg in _LIST_FIELDS.items():
        if key in payload and payload[key] is not None:
            out[arg] = _str_list(payload[key], key)

    return out


def _linked_id(payload: Any) -> str:
    body = _require_mapping(payload)
    linked = body.get("linkedTaskId")
    if not isinstance(linked, str) or not linked.strip():
        raise ValidationError("linkedTaskId is required")
    return linked.strip()


def list_tasks(state: AppState) -> list[dict[str, Any]]:
    return [t.to_dict() for t in state.task_store.list_tasks()]


def get_task(state: AppState, task_id: str) -> dict[str, Any]:
    task = state.task_store.get_task(task_id)
    if task is None:
        raise NotFoundError("Task not found", task_ids=(task_id,))
    return task.to_dict()


def create_task(state: AppState, payload: Any) -> dict[str, Any]:
    fields = _task_fields(_require_mapping(payload))
    task = state.task_store.create_task(**fields)
    logger.info("Created task %s (%s)", task.id, task.title)
    return task.to_dict()


def update_task(state: AppState, task_id: str, payload: Any) -> dict[str, Any]:
    """
    Update the fields present in the payload. Absent keys keep their value;
    "dueDate": null clears the due date.
    """
    fields = _task_fields(_require_mapping(payload))
    fields.setdefault("due_date", KEEP)
    task = state.task_store.update_task(task_id, **fields)
    if task is None:
        raise NotFoundError("Task not found", task_ids=(task_id,))
    return task.to_dict()


def delete_task(state: AppState, task_id: str) -> dict[str, Any]:
    task = state.task_store.delete_task(task_id)
    if task is None:
        raise NotFoundError("Task not found", task_ids=(task_id,))

    timer = getattr(state, "timer", None)
    if timer is not None:
        timer.forget(task_id)

    return {
        "message": "Task deleted successfully",
        "deletedTask": {"id": task.id, "title": task.title},
    }


def link_tasks(state: AppState, task_id: str, payload: Any) -> dict[str, Any]:
    linked = _linked_id(payload)
    state.task_store.link_tasks(task_id, linked)
    return {"success": True, "message": "Tasks linked successfully"}


def unlink_tasks(state: AppState, task_id: str, payload: Any) -> dict[str, Any]:
    linked = _linked_id(payload)
    state.task_store.unlink_tasks(task_id, linked)
    return {"success": True, "message": "Tasks unlinked successfully"}


def set_time_spent(state: AppState, task_id: str, payload: Any) -> dict[str, Any]:
    """
    Set the absolute time spent (seconds) and mirror it into the timer, so the
    next flush continues from the new value instead of overwriting it.
    """
    body = _require_mapping(payload)
    seconds = body.get("timeSpent")
    if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds < 0:
        raise ValidationError("timeSpent must be a non-negative integer")

    task = state.task_store.update_time_spent(task_id, seconds)
    if task is None:
        raise NotFoundError("Task not found", task_ids=(task_id,))

    timer = getattr(state, "timer", None)
    if timer is not None:
        timer.set_elapsed(task_id, seconds)
    return task.to_dict()


def get_active_task(state: AppState) -> dict[str, Any] | None:
    """Most recently updated in-progress task (a heuristic, not the running timer)."""
    task = state.task_store.find_active_task()
    return task.to_dict() if task is not None else None
