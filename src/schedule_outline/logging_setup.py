# src/schedule_outline/logging_setup.py

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Pure engines log every computed batch at DEBUG; that belongs in the file only.
_ENGINE_LOGGERS = (
    "schedule_outline.outline.hierarchy",
    "schedule_outline.outline.renumber",
    "schedule_outline.outline.predecessors",
    "schedule_outline.outline.rollup",
)


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable while the REPL is prompting:
    - engine chatter only at INFO+
    - other schedule_outline logs as configured
    - captured warnings and third-party records only at ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith(_ENGINE_LOGGERS):
            return record.levelno >= logging.INFO

        if name.startswith("schedule_outline."):
            return True

        return record.levelno >= logging.ERROR


class _ProjectFilter(logging.Filter):
    """Stamp every record with the project being edited (file format uses it)."""

    def __init__(self, project_id: str) -> None:
        super().__init__()
        self.project_id = project_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.project = self.project_id
        return True


def setup_logging(
    *,
    log_dir: str | Path = ".local/outline",
    project_id: str = "-",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    max_bytes: int = 2_000_000,
    backup_count: int = 3,
) -> Path:
    """
    Configure the root logger once, before the first record is emitted.

    Console: stderr, filtered for interactive use.
    File: <log_dir>/outline.log, rotated, everything at file_level, each line
    tagged with the project id.

    Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "outline.log"

    root = logging.getLogger()
    root.setLevel(min(console_level, file_level))
    for h in list(root.handlers):
        root.removeHandler(h)

    datefmt = "%Y-%m-%d %H:%M:%S"

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt))
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(
        logging.Formatter(
            "%(asctime)s.%(msecs)03d %(levelname)s [%(project)s] %(name)s: %(message)s", datefmt
        )
    )
    fh.addFilter(_ProjectFilter(project_id))
    root.addHandler(fh)

    logging.captureWarnings(True)
    return log_file
