# tests/test_logging_setup.py

from __future__ import annotations

import logging

import pytest

from nrp_tracker.logging_setup import _ConsoleNoiseFilter, setup_logging


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


@pytest.mark.parametrize(
    ("name", "level", "shown"),
    [
        ("nrp_tracker.tasks.task_store", logging.INFO, True),
        ("nrp_tracker.timer.coordinator", logging.INFO, True),
        ("nrp_tracker.timer.flusher", logging.DEBUG, False),
        ("nrp_tracker.timer.flusher", logging.WARNING, True),
        ("nrp_tracker.tasks.id_generator", logging.DEBUG, False),
        ("nrp_tracker_other", logging.INFO, False),
        ("asyncio", logging.WARNING, False),
        ("py.warnings", logging.ERROR, True),
    ],
)
def test_console_filter(name: str, level: int, shown: bool) -> None:
    assert _ConsoleNoiseFilter().filter(_record(name, level)) is shown


def test_setup_logging_writes_everything_to_file(tmp_path) -> None:
    root = logging.getLogger()
    saved = list(root.handlers), root.level
    try:
        log_file = setup_logging(log_dir=tmp_path / "logs")
        logging.getLogger("nrp_tracker.timer.flusher").debug("flushed quietly")
        for h in root.handlers:
            h.flush()

        assert log_file == tmp_path / "logs" / "tracker.log"
        assert "flushed quietly" in log_file.read_text(encoding="utf-8")
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            if h not in saved[0]:
                h.close()
        for h in saved[0]:
            root.addHandler(h)
        root.setLevel(saved[1])
        logging.captureWarnings(False)
