"""Idempotent logging setup for the configflow daemon and tools."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

_CONFIGURED = False

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# watchfiles reports every batch of filesystem events at INFO
_QUIET_LOGGERS = ("watchfiles",)


def setup_logging(level: int = logging.INFO, log_file: Path | str | None = None) -> None:
    """Send configflow logs to stderr and optionally to ``log_file``.

    Repeated calls only adjust the level and add the file handler if it is
    not attached yet.
    """
    global _CONFIGURED  # noqa: PLW0603
    logger = logging.getLogger("configflow")
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    if not _CONFIGURED:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.propagate = False
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
        _CONFIGURED = True

    if log_file is not None:
        path = Path(log_file).resolve()
        attached = {
            Path(h.baseFilename) for h in logger.handlers if isinstance(h, logging.FileHandler)
        }
        if path not in attached:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS, encoding="utf-8"
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
