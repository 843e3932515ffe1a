# src/nrp_tracker/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, opens the timer on an asyncio loop, then
runs the console REPL (optional). On exit the timer is closed, which makes one
bounded attempt to save every unsaved time counter.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import close_state, create_initial_state, open_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _run(settings) -> None:
    state = create_initial_state(settings=settings)
    await open_state(state)

    stop_main = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows event loops).
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _handle_signal, sig)

    try:
        if settings.console_enabled:
            console = asyncio.create_task(run_console_loop(state), name="nrp-console")
            stopper = asyncio.create_task(stop_main.wait(), name="nrp-stop")
            await asyncio.wait({console, stopper}, return_when=asyncio.FIRST_COMPLETED)
            # input() in the console thread cannot be interrupted; don't wait for it.
            console.cancel()
            stopper.cancel()
        else:
            logger.info("Console disabled. Timer running headless. Press Ctrl+C to stop.")
            await stop_main.wait()
    finally:
        await close_state(state)


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    # choose log dir (prefer settings.data_dir if it exists)
    log_dir = getattr(settings, "data_dir", ".local/nrp")
    log_file = setup_logging(log_dir=log_dir, console_level=console_level)

    logger.info("Starting %s (log file: %s)...", getattr(settings, "app_name", "nrp-tracker"), log_file)

    try:
        asyncio.run(_run(settings))
    except KeyboardInterrupt:
        pass
    logger.info("Bye.")


if __name__ == "__main__":
    main()
