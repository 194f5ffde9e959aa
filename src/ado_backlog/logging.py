"""Structured JSON logging for ado-backlog.

Writes JSONL to .ado-backlog/ado-backlog.log with rotation (5MB, 3 backups).
"""

from __future__ import annotations

import json
import logging
import os
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

_LOG_FILENAME = "ado-backlog.log"
_setup_lock = threading.Lock()
_MAX_BYTES = 5 * 1024 * 1024  # 5MB
_BACKUP_COUNT = 3
_EXTRA_FIELDS = ("backlog", "work_item", "duration_ms", "error")


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                entry[name] = getattr(record, name)
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, default=str)


def setup_logging(state_dir: Path, debug: bool = False) -> logging.Logger:
    """Set up structured JSON logging to .ado-backlog/ado-backlog.log.

    Returns the package logger. Calling it again for the same directory only
    adjusts the level.
    """
    logger = logging.getLogger("ado_backlog")
    log_path = state_dir / _LOG_FILENAME
    target_filename = os.path.abspath(str(log_path))
    level = logging.DEBUG if debug else logging.INFO

    with _setup_lock:
        for h in logger.handlers[:]:
            if not isinstance(h, RotatingFileHandler):
                continue
            if h.baseFilename == target_filename:
                logger.setLevel(level)
                return logger
            # Different path: drop the stale handler
            logger.removeHandler(h)
            h.close()

        state_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            str(log_path),
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setFormatter(_JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(level)
    return logger
