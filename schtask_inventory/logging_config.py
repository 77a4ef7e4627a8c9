"""Diagnostic log setup.

Lines look like ``[2024-05-01 10:00:00.123][INFO] message``. The file is rolled
over when a run starts and it is already past the size limit, keeping a fixed
number of numbered backups.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

PACKAGE_LOGGER = "schtask_inventory"

LEVEL_NAMES = {logging.WARNING: "WARN"}


class DiagnosticFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("[%(asctime)s.%(msecs)03d][%(level)s] %(message)s", "%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        record.level = LEVEL_NAMES.get(record.levelno, record.levelname)
        return super().format(record)


class StartupRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler that also rolls an oversized file over on open."""

    def __init__(self, filename: str | os.PathLike, max_bytes: int, backup_count: int) -> None:
        super().__init__(
            filename,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        if os.path.exists(self.baseFilename) and os.path.getsize(self.baseFilename) > max_bytes:
            self.doRollover()


def setup_logging(
    log_path: str | os.PathLike,
    *,
    max_bytes: int = 100 * 1024,
    backup_count: int = 5,
    level: int = logging.DEBUG,
    console: bool = True,
) -> logging.Logger:
    """Attach file (and console) handlers to the package logger.

    Calling it again replaces the handlers from the previous call.
    """
    Path(log_path).parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(level)
    logger.propagate = False

    formatter = DiagnosticFormatter()
    file_handler = StartupRotatingFileHandler(log_path, max_bytes, backup_count)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(logging.INFO)
        logger.addHandler(stream_handler)

    return logger
