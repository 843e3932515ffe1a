# src/nrp_tracker/logging_setup.py

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

LOG_FILE_NAME = "tracker.log"

# Console floor for our own chatty loggers. The flusher logs every save window
# and the id generator every collision; both stay complete in the file log.
CONSOLE_MIN_LEVELS: dict[str, int] = {
    "nrp_tracker.timer.flusher": logging.WARNING,
    "nrp_tracker.tasks.id_generator": logging.WARNING,
}


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the REPL readable: our logs pass (except the loggers listed in
    CONSOLE_MIN_LEVELS below their floor); third-party and py.warnings
    records only at ERROR+.
    """

    def __init__(self, min_levels: dict[str, int] | None = None) -> None:
        super().__init__()
        self._min_levels = dict(CONSOLE_MIN_LEVELS if min_levels is None else min_levels)

    def filter(self, record: logging.LogRecord) -> bool:
        floor = self._min_levels.get(record.name)
        if floor is not None:
            return record.levelno >= floor
        if record.name == "nrp_tracker" or record.name.startswith("nrp_tracker."):
            return True
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/nrp",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    max_bytes: int = 2_000_000,
    backup_count: int = 3,
) -> Path:
    """
    Install a filtered stderr handler and a rotating file handler on the root logger.

    Call once at startup; handlers installed earlier are replaced. Returns the
    log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())

    # The timer runs for hours; keep the file log bounded.
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(fmt)

    root.addHandler(console)
    root.addHandler(file_handler)

    logging.captureWarnings(True)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    return log_file
