"""Structured JSON logging for trellis.

Writes JSONL to .trellis/trellis.log with rotation (5MB, 3 backups). Each line
carries the migration context passed via ``extra=`` (tenant, job, item, mode,
timing, error). Exceptions are logged by type and message; full tracebacks
are added only when the project runs at DEBUG (``"log_level": "DEBUG"`` in
config.json).
"""

from __future__ import annotations

import json
import logging
import os
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

_LOG_FILENAME = "trellis.log"
_setup_lock = threading.Lock()
_MAX_BYTES = 5 * 1024 * 1024  # 5MB
_BACKUP_COUNT = 3
_EXTRA_KEYS = ("tenant_id", "job_id", "item_id", "mode", "duration_ms", "error")
DEFAULT_LOG_LEVEL = "INFO"


class _JsonFormatter(logging.Formatter):
    """One JSON object per record, keeping only the known context keys."""

    def __init__(self, *, with_traceback: bool = False) -> None:
        super().__init__()
        self.with_traceback = with_traceback

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update({key: getattr(record, key) for key in _EXTRA_KEYS if hasattr(record, key)})
        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            entry["exception"] = str(exc)
            entry["exc_type"] = type(exc).__name__
            if self.with_traceback:
                entry["traceback"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _resolve_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(level.strip().upper(), logging.INFO)


def setup_logging(trellis_dir: Path, *, level: str | int = DEFAULT_LOG_LEVEL) -> logging.Logger:
    """Attach the JSONL file handler to the ``trellis`` logger.

    Calling again with the same directory only updates the level; a
    different directory replaces the previous file handler. Unknown level
    names fall back to INFO.
    """
    logger = logging.getLogger("trellis")
    log_path = trellis_dir / _LOG_FILENAME
    target_filename = os.path.abspath(str(log_path))
    resolved = _resolve_level(level)
    formatter = _JsonFormatter(with_traceback=resolved <= logging.DEBUG)

    with _setup_lock:
        logger.setLevel(resolved)
        for h in logger.handlers[:]:
            if not isinstance(h, RotatingFileHandler):
                continue
            if h.baseFilename == target_filename:
                h.setFormatter(formatter)
                return logger
            logger.removeHandler(h)
            h.close()

        handler = RotatingFileHandler(
            str(log_path),
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger
