"""Structured logging utilities with rotating file handlers."""
from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_LOG_FILE = DEFAULT_LOG_DIR / "tradepipe.log"

_RESERVED_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Format log records as one JSON object per line.

    Fields passed through ``extra=`` are merged into the object so that
    events such as ``order_submitted`` carry their symbol, side and size.
    A process trading a single venue can pass ``venue`` to stamp it on
    every line; an explicit ``venue`` extra still wins.
    """

    def __init__(self, venue: Optional[str] = None) -> None:
        super().__init__()
        self.venue = venue

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited docstring
        log_record: Dict[str, Any] = {
            "level": record.levelname,
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "name": record.name,
            "message": record.getMessage(),
        }
        if self.venue is not None:
            log_record["venue"] = self.venue
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        log_record.update(extras)
        return json.dumps(log_record, default=str)


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = DEFAULT_LOG_FILE,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
    venue: Optional[str] = None,
) -> None:
    """Configure application-wide logging with JSON formatting and rotation.

    Passing ``log_file=None`` skips the file handler entirely.
    """

    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers to prevent duplicate logs during reloads/tests.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    formatter = JsonFormatter(venue)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a module-level logger."""

    return logging.getLogger(name)


__all__ = ["setup_logging", "get_logger", "JsonFormatter"]
