"""
Tests for log formatting and root logger setup.

CHANGELOG:
- 2026-02-28: Initial creation (STORY-103)

TODO:
- None
"""

import json
import logging
import sys
from collections.abc import Generator

import pytest

from powerstats.logging_config import JsonFormatter, configure_logging


@pytest.fixture()
def _restore_root_logger() -> Generator[None, None, None]:
    """Restore root handlers and level after a test reconfigures logging."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(msg: str, *args: object, exc_info: object = None) -> logging.LogRecord:
    return logging.LogRecord(
        name="powerstats.test",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


class TestJsonFormatter:
    """Tests for the one-object-per-line JSON formatter."""

    def test_fields(self) -> None:
        entry = json.loads(JsonFormatter().format(_record("fold %s ok", "VT")))
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "powerstats.test"
        assert entry["msg"] == "fold VT ok"
        assert "ts" in entry
        assert "exception" not in entry

    def test_exception_included(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record("failed", exc_info=sys.exc_info())
        entry = json.loads(JsonFormatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]


@pytest.mark.usefixtures("_restore_root_logger")
class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_installs_json_handler(self) -> None:
        configure_logging("DEBUG", "json")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h.formatter, JsonFormatter) for h in root.handlers)

    def test_reconfigure_replaces_own_handler_only(self) -> None:
        root = logging.getLogger()
        foreign = logging.NullHandler()
        root.addHandler(foreign)

        configure_logging("INFO", "json")
        configure_logging("INFO", "console")

        ours = [h for h in root.handlers if getattr(h, "_powerstats_handler", False)]
        assert foreign in root.handlers
        assert len(ours) == 1
        assert not isinstance(ours[0].formatter, JsonFormatter)

    def test_unknown_level_falls_back_to_info(self) -> None:
        configure_logging("CHATTY", "json")
        assert logging.getLogger().level == logging.INFO
