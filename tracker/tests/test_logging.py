from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from core.config import LoggingConfig
from core.logging import JsonFormatter, configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_json_formatter_includes_context_fields() -> None:
    record = logging.LogRecord(
        "services.ticket_service",
        logging.WARNING,
        __file__,
        1,
        "Ticket escalated. id=%s",
        ("INC-1",),
        None,
    )
    record.ticket_id = "INC-1"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "services.ticket_service"
    assert payload["message"] == "Ticket escalated. id=INC-1"
    assert payload["ticket_id"] == "INC-1"
    assert "notification_id" not in payload


def test_configure_logging_without_file(restore_root_logger) -> None:
    configure_logging(LoggingConfig(level="debug", file_enabled=False, json_console=True))

    root = restore_root_logger
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JsonFormatter)
    assert logging.getLogger("aiosqlite").level == logging.WARNING


def test_configure_logging_with_rotating_file(tmp_path: Path, restore_root_logger) -> None:
    configure_logging(LoggingConfig(directory=str(tmp_path / "logs"), file_name="t.log"))

    file_handlers = [h for h in restore_root_logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert (tmp_path / "logs").is_dir()
