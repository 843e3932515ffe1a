# src/nrp_tracker/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any, cast

from ..core.state import AppState
from ..errors import TrackerError, ValidationError
from ..tasks import task_api
from ..timer.coordinator import StartOutcome, TimerMode

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /tasks, /start, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        TrackerError from a handler becomes the reply text (it is meant for the user).
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return h3(state, args, emit)

            h2 = cast(CommandHandler2, handler)
            return h2(state, args)
        except TrackerError as e:
            logger.debug("/%s rejected: %s", name, e)
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def format_seconds(seconds: int) -> str:
    hours, rest = divmod(max(0, int(seconds)), 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def _need(args: list[str], n: int, usage: str) -> None:
    if len(args) < n:
        raise ValidationError(f"Usage: {usage}")


def _minutes(raw: str) -> int:
    try:
        minutes = int(raw)
    except ValueError:
        raise ValidationError(f"Not a number of minutes: {raw!r}") from None
    if minutes <= 0:
        raise ValidationError("Minutes must be positive")
    return minutes * 60


def _task_line(state: AppState, t: dict[str, Any]) -> str:
    timer = state.timer
    seconds = timer.get_time_spent(t["id"]) if timer.tracks(t["id"]) else t["timeSpent"]
    marker = " *" if timer.is_active_for(t["id"]) else ""
    links = f"  links: {', '.join(t['linkedTasks'])}" if t["linkedTasks"] else ""
    due = f"  due {t['dueDate']}" if t["dueDate"] else ""
    return (
        f"{t['id']} [{t['status']}] ({t['priority']}) {t['title']}"
        f"  {format_seconds(seconds)}{marker}{due}{links}"
    )


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_tasks(state: AppState, args: list[str]) -> str:
    tasks = task_api.list_tasks(state)
    if not tasks:
        return "No tasks yet. Use /new <title> to create one."
    return "\n".join(_task_line(state, t) for t in tasks)


def cmd_show(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/show <task-id>")
    t = task_api.get_task(state, args[0])
    lines = [
        _task_line(state, t),
        f"  assignee: {t['assignee'] or '-'}",
        f"  files: {', '.join(t['files']) or '-'}",
        f"  allowed apps: {', '.join(t['allowedApps']) or '-'}",
        f"  created {t['createdAt']}  updated {t['updatedAt']}",
    ]
    saved = state.timer.last_flush_at(t["id"])
    if t["id"] in state.timer.unsaved_task_ids():
        lines.append(f"  time not yet saved (last save: {saved.isoformat() if saved else 'never'})")
    lines.append("")
    lines.append(t["description"])
    return "\n".join(lines)


def cmd_new(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/new <title>")
    t = task_api.create_task(state, {"title": " ".join(args)})
    return f"Created {t['id']}: {t['title']}"


def cmd_status(state: AppState, args: list[str]) -> str:
    """
    /status <id> <backlog|planned|in-progress|under-review|completed|cancelled>
    """
    _need(args, 2, "/status <task-id> <status>")
    t = task_api.update_task(state, args[0], {"status": args[1]})
    return f"{t['id']} -> {t['status']}"


def cmd_assign(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/assign <task-id> [name]")
    t = task_api.update_task(state, args[0], {"assignee": " ".join(args[1:])})
    return f"{t['id']} assigned to {t['assignee'] or 'nobody'}"


def cmd_due(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/due <task-id> <YYYY-MM-DD|none>")
    raw = None if args[1].lower() in ("none", "-", "clear") else args[1]
    t = task_api.update_task(state, args[0], {"dueDate": raw})
    return f"{t['id']} due {t['dueDate'] or 'never'}"


def cmd_rm(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/rm <task-id>")
    res = task_api.delete_task(state, args[0])
    return f"Deleted {res['deletedTask']['id']}: {res['deletedTask']['title']}"


def cmd_link(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/link <task-id> <task-id>")
    task_api.link_tasks(state, args[0], {"linkedTaskId": args[1]})
    return f"Linked {args[0]} <-> {args[1]}"


def cmd_unlink(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/unlink <task-id> <task-id>")
    task_api.unlink_tasks(state, args[0], {"linkedTaskId": args[1]})
    return f"Unlinked {args[0]} <-> {args[1]}"


def _start(state: AppState, task_id: str, mode: TimerMode, duration: int | None, confirm: bool) -> str:
    # Only existing tasks can be timed; the flush would be dropped otherwise.
    task_api.get_task(state, task_id)
    res = state.timer.start(task_id, mode, duration, confirm_switch=confirm)

    if res.outcome == StartOutcome.CONFIRMATION_REQUIRED:
        return (
            f"Timer is already running for task {res.active_task_id}. "
            f"Use /switch {task_id} to stop that timer and start {task_id}."
        )
    if res.outcome == StartOutcome.ALREADY_RUNNING:
        return f"Timer is already running for {task_id}."

    if mode == TimerMode.COUNTDOWN:
        left = state.timer.countdown_remaining or 0
        return f"Countdown started for {task_id} ({format_seconds(left)} left)."
    return f"Timer started for {task_id}."


def cmd_start(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/start <task-id>")
    return _start(state, args[0], TimerMode.COUNTUP, None, confirm=False)


def cmd_countdown(state: AppState, args: list[str]) -> str:
    """
    /countdown <id>            -> countdown with the configured default length
    /countdown <id> <minutes>  -> countdown of <minutes>
    """
    _need(args, 1, "/countdown <task-id> [minutes]")
    duration = _minutes(args[1]) if len(args) > 1 else None
    return _start(state, args[0], TimerMode.COUNTDOWN, duration, confirm=False)


def cmd_switch(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /switch <id>                      -> stop the running timer, count up on <id>
    /switch <id> countdown [minutes]  -> stop the running timer, count down on <id>
    """
    _need(args, 1, "/switch <task-id> [countdown [minutes]]")
    previous = state.timer.active_task_id
    if emit and state.timer.running and previous != args[0]:
        emit(f"Stopping timer for {previous} ({format_seconds(state.timer.get_time_spent(previous or ''))})...")
    if len(args) > 1 and args[1].lower() == TimerMode.COUNTDOWN.value:
        duration = _minutes(args[2]) if len(args) > 2 else None
        return _start(state, args[0], TimerMode.COUNTDOWN, duration, confirm=True)
    return _start(state, args[0], TimerMode.COUNTUP, None, confirm=True)


def cmd_pause(state: AppState, args: list[str]) -> str:
    task_id = state.timer.active_task_id
    if not state.timer.pause():
        return "Timer is not running."
    return f"Timer paused for {task_id} ({format_seconds(state.timer.get_time_spent(task_id or ''))})."


def cmd_reset(state: AppState, args: list[str]) -> str:
    duration = _minutes(args[0]) if args else None
    state.timer.reset(duration)
    left = state.timer.countdown_remaining
    if left is not None:
        return f"Timer reset ({format_seconds(left)} on the countdown)."
    return "Timer reset."


def cmd_resettotal(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/resettotal <task-id>")
    task_api.get_task(state, args[0])
    state.timer.reset_total_time(args[0])
    return f"Total time for {args[0]} reset to 00:00:00."


def cmd_settime(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/settime <task-id> <seconds>")
    try:
        seconds = int(args[1])
    except ValueError:
        raise ValidationError(f"Not a number of seconds: {args[1]!r}") from None
    t = task_api.set_time_spent(state, args[0], {"timeSpent": seconds})
    return f"{t['id']} time spent set to {format_seconds(t['timeSpent'])}."


def cmd_timer(state: AppState, args: list[str]) -> str:
    snap = state.timer.snapshot()
    if snap.active_task_id is None:
        return "Timer idle."
    lines = [
        f"Task: {snap.active_task_id}",
        f"  Running: {'yes' if snap.running else 'no'} ({snap.mode.value})",
        f"  Elapsed: {format_seconds(snap.elapsed_by_task.get(snap.active_task_id, 0))}",
    ]
    if snap.countdown_remaining is not None:
        lines.append(f"  Remaining: {format_seconds(snap.countdown_remaining)}")
    unsaved = sorted(state.timer.unsaved_task_ids())
    if unsaved:
        lines.append(f"  Not yet saved: {', '.join(unsaved)}")
    return "\n".join(lines)


def cmd_active(state: AppState, args: list[str]) -> str:
    t = task_api.get_active_task(state)
    if t is None:
        return "No task is in progress."
    return _task_line(state, t)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("tasks", cmd_tasks, help_text="List all tasks (newest first).", aliases=["ls"])
registry.register("show", cmd_show, help_text="Show one task: /show <id>.")
registry.register("new", cmd_new, help_text="Create a task: /new <title>.")
registry.register("status", cmd_status, help_text="Move a task: /status <id> <status>.", aliases=["mv"])
registry.register("assign", cmd_assign, help_text="Set assignee: /assign <id> [name].")
registry.register("due", cmd_due, help_text="Set due date: /due <id> <YYYY-MM-DD|none>.")
registry.register("rm", cmd_rm, help_text="Delete a task and its links: /rm <id>.")
registry.register("link", cmd_link, help_text="Link two tasks: /link <id> <id>.")
registry.register("unlink", cmd_unlink, help_text="Unlink two tasks: /unlink <id> <id>.")
registry.register("start", cmd_start, help_text="Count up on a task: /start <id>.")
registry.register(
    "countdown", cmd_countdown, help_text="Pomodoro countdown: /countdown <id> [minutes].", aliases=["pomodoro"]
)
registry.register("switch", cmd_switch, help_text="Stop the running timer and start another: /switch <id>.")
registry.register("pause", cmd_pause, help_text="Pause the timer (saves elapsed time).", aliases=["stop"])
registry.register("reset", cmd_reset, help_text="Stop the timer; re-arm the countdown: /reset [minutes].")
registry.register("resettotal", cmd_resettotal, help_text="Zero a task's total time: /resettotal <id>.")
registry.register("settime", cmd_settime, help_text="Set total time: /settime <id> <seconds>.")
registry.register("timer", cmd_timer, help_text="Show timer state.")
registry.register("active", cmd_active, help_text="Most recently updated in-progress task.")
