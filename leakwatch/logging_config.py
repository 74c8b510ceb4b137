"""
Logging configuration for detection events.

Scans, fix validations and snapshot operations emit structured events on
the ``leakwatch.events`` logger. This module renders those events as JSON
lines and wires up the handlers.
"""

import json
import logging
from logging.handlers import TimedRotatingFileHandler
from typing import Any

EVENT_LOGGER_NAME = "leakwatch.events"

# Structured fields copied from ``extra`` into the JSON entry
_EVENT_FIELDS = (
    "file",
    "language",
    "leak_count",
    "files_scanned",
    "duration_ms",
    "cached",
    "snapshot_id",
    "baseline_id",
    "fix_id",
    "code",
    "severity",
    "leak_type",
    "memory_delta",
)


class DetectionEventFormatter(logging.Formatter):
    """Formats detection events as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "event"):
            log_entry["event"] = record.event

        for field in _EVENT_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if hasattr(record, "error"):
            log_entry["error"] = str(record.error)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_detection_logging(
    log_file: str | None = None,
    log_level: str = "INFO",
    enable_console: bool = False,
) -> logging.Logger:
    """
    Configure the detection event logger.

    Args:
        log_file: Path to a log file, rotated daily (optional)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_console: Whether to also log to stderr

    Returns:
        The configured event logger
    """
    logger = logging.getLogger(EVENT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = DetectionEventFormatter()

    if log_file:
        file_handler = TimedRotatingFileHandler(
            log_file,
            when="D",
            interval=1,
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if enable_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def get_event_logger() -> logging.Logger:
    """Get the detection event logger."""
    return logging.getLogger(EVENT_LOGGER_NAME)
