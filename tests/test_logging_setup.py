# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for logging setup."""

import json
import logging
import sys
from pathlib import Path

import pytest

from acl_context.logging_setup import StructuredFormatter, get_log_file, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Put the root logger back the way pytest configured it."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def test_setup_logging_creates_directory_and_file(tmp_path: Path):
    """setup_logging creates the log directory and returns the daily log file."""
    log_dir = tmp_path / ".acl" / "logs"
    assert not log_dir.exists()

    log_file = setup_logging(log_dir=log_dir, console_output=False)

    assert log_dir.is_dir()
    assert log_file == get_log_file(log_dir)
    assert log_file.name.startswith("acl_context_")
    assert log_file.exists()


def test_logging_produces_json(tmp_path: Path):
    """Every line of the log file is a JSON object with the standard keys."""
    log_file = setup_logging(log_dir=tmp_path, log_level=logging.INFO, console_output=False)

    logging.getLogger("acl_test").info("Test message")

    lines = [line for line in log_file.read_text().splitlines() if line]
    assert len(lines) >= 2
    entries = [json.loads(line) for line in lines]
    for entry in entries:
        assert {"timestamp", "level", "logger", "message"} <= set(entry)
    assert entries[-1]["message"] == "Test message"
    assert entries[-1]["logger"] == "acl_test"


def test_logging_levels(tmp_path: Path):
    """Messages below the configured level are dropped."""
    log_file = setup_logging(log_dir=tmp_path, log_level=logging.WARNING, console_output=False)

    logger = logging.getLogger("acl_test")
    logger.info("Info message")
    logger.warning("Warning message")

    messages = [json.loads(line)["message"] for line in log_file.read_text().splitlines() if line]
    assert "Warning message" in messages
    assert "Info message" not in messages


def test_structured_formatter_with_exception_and_extra_fields():
    formatter = StructuredFormatter()
    try:
        raise ValueError("Test exception")
    except ValueError:
        record = logging.LogRecord(
            name="test",
            level=logging.ERROR,
            pathname="test.py",
            lineno=1,
            msg="An error occurred",
            args=(),
            exc_info=sys.exc_info(),
        )
    record.extra_fields = {"file_path": "/ws/a.ts"}

    entry = json.loads(formatter.format(record))

    assert entry["level"] == "ERROR"
    assert "ValueError: Test exception" in entry["exception"]
    assert entry["file_path"] == "/ws/a.ts"


def test_setup_logging_replaces_handlers(tmp_path: Path):
    """Calling setup twice does not double the handlers."""
    setup_logging(log_dir=tmp_path, console_output=True)
    assert len(logging.getLogger().handlers) == 2

    setup_logging(log_dir=tmp_path, console_output=False)
    assert len(logging.getLogger().handlers) == 1


def test_console_handler_writes_to_stderr(tmp_path: Path):
    """stdout is reserved for the stdio transport."""
    setup_logging(log_dir=tmp_path, console_output=True)
    stream_handlers = [
        h
        for h in logging.getLogger().handlers
        if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
    ]
    assert len(stream_handlers) == 1
    assert stream_handlers[0].stream is sys.stderr
