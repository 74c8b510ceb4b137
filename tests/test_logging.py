"""Tests for structured detection event logging."""

import json
import logging

import pytest

from leakwatch.logging_config import (
    EVENT_LOGGER_NAME,
    DetectionEventFormatter,
    configure_detection_logging,
    get_event_logger,
)


def make_record(**extra):
    record = logging.LogRecord(
        name=EVENT_LOGGER_NAME,
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="File scanned",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestDetectionEventFormatter:
    def test_event_fields(self):
        line = DetectionEventFormatter().format(
            make_record(event="file_scanned", file="src/App.tsx", leak_count=2, duration_ms=1.5)
        )
        entry = json.loads(line)

        assert entry["event"] == "file_scanned"
        assert entry["file"] == "src/App.tsx"
        assert entry["leak_count"] == 2
        assert entry["level"] == "INFO"
        assert entry["message"] == "File scanned"

    def test_unknown_extra_fields_are_dropped(self):
        entry = json.loads(DetectionEventFormatter().format(make_record(secret="x")))
        assert "secret" not in entry

    def test_error_is_stringified(self):
        entry = json.loads(
            DetectionEventFormatter().format(make_record(error=ValueError("bad input")))
        )
        assert entry["error"] == "bad input"


class TestConfigureDetectionLogging:
    @pytest.fixture(autouse=True)
    def reset_logger(self):
        yield
        logger = get_event_logger()
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = True

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "events.log"
        logger = configure_detection_logging(str(log_file), log_level="debug")

        logger.info("Snapshot created", extra={"event": "snapshot_created", "snapshot_id": "s1"})
        for handler in logger.handlers:
            handler.flush()

        entry = json.loads(log_file.read_text(encoding="utf-8").strip())
        assert entry["event"] == "snapshot_created"
        assert entry["snapshot_id"] == "s1"
        assert logger.level == logging.DEBUG

    def test_reconfigure_replaces_handlers(self):
        configure_detection_logging(enable_console=True)
        logger = configure_detection_logging(enable_console=True)

        assert len(logger.handlers) == 1
        assert logger.propagate is False
