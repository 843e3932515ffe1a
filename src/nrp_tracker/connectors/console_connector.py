# src/nrp_tracker/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..timer.coordinator import SessionComplete

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    if sys.stdout.isatty():
        sys.stdout.write("\033[1A\033[2K\r")
        sys.stdout.write(line + "\n")
        sys.stdout.flush()
    else:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class _LineReader:
    """
    stdin reader on a daemon thread.

    The thread only prompts after readline() asks for the next line, so replies
    print before the next prompt. A daemon thread (not asyncio.to_thread) keeps a
    blocked input() from holding up interpreter shutdown.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, prompt: str = ">>> ") -> None:
        self._loop = loop
        self._prompt = prompt
        self._lines: asyncio.Queue[str | None] = asyncio.Queue()
        self._want = threading.Event()
        self._thread = threading.Thread(target=self._run, name="nrp-console-input", daemon=True)
        self._thread.start()

    def _push(self, line: str | None) -> bool:
        try:
            self._loop.call_soon_threadsafe(self._lines.put_nowait, line)
        except RuntimeError:
            # Loop already closed.
            return False
        return True

    def _run(self) -> None:
        while True:
            self._want.wait()
            self._want.clear()
            try:
                line = input(self._prompt)
            except (EOFError, KeyboardInterrupt):
                self._push(None)
                return
            if not self._push(line):
                return

    async def readline(self) -> str | None:
        """Next line, or None on EOF."""
        self._want.set()
        return await self._lines.get()


async def run_console_loop(state: AppState) -> None:
    """
    Read commands from stdin until /exit or EOF.

    Lines are read on a background thread; every command is handled on the event
    loop, so all timer calls happen on the loop that owns the coordinator.
    """
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Type /help for commands. Use /exit to quit.\n")

    def on_complete(ev: SessionComplete) -> None:
        _print_ts(
            f"[TIMER] Pomodoro complete for {ev.task_id}! "
            "Time for a break. Don't forget to document your progress."
        )

    completion = state.timer.on_session_complete(on_complete)
    reader = _LineReader(asyncio.get_running_loop())

    try:
        while True:
            line = await reader.readline()
            if line is None:
                logger.info("Console EOF received, exiting.")
                print()
                break
            user_input = line.strip()

            _rewrite_prev_line(f"[{_ts_local()}] >>> {user_input}")

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            try:
                reply = command_registry.handle(state, user_input, emit=_print_ts)
            except Exception:
                logger.exception("Command handler crashed.")
                reply = "Internal error while handling a command."

            if reply is None:
                reply = "Commands start with '/'. Use /help to list them."
            _print_ts(reply)
    finally:
        completion.detach()
        logger.info("Console connector finished.")
