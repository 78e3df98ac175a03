"""
tests/unit/test_logger.py — Structured Logger Tests
"""

import json
import logging
from unittest.mock import patch

import pytest
import structlog

from streamgate.observability.logger import (
    bind_session,
    clear_session,
    get_logger,
    setup_logging,
)


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


class TestSessionBinding:
    def test_bind_session(self):
        with patch("structlog.contextvars.bind_contextvars") as mock_bind:
            bind_session("sess-1")
        mock_bind.assert_called_once_with(session_id="sess-1")

    def test_clear_session(self):
        with patch("structlog.contextvars.unbind_contextvars") as mock_unbind:
            clear_session()
        mock_unbind.assert_called_once_with("session_id")


class TestSetupLogging:
    def test_file_output_is_json(self, tmp_path, restore_logging):
        setup_logging(level="DEBUG", log_dir=tmp_path, console_output=False)
        bind_session("sess-42")
        try:
            get_logger("streamgate.test").info("gateway.stream_opened", path="/mcp")
        finally:
            clear_session()

        for handler in logging.getLogger().handlers:
            handler.flush()
        lines = (tmp_path / "streamgate.log").read_text(encoding="utf-8").splitlines()
        record = json.loads(lines[-1])
        assert record["event"] == "gateway.stream_opened"
        assert record["session_id"] == "sess-42"
        assert record["path"] == "/mcp"
        assert record["level"] == "info"
        assert record["logger"] == "streamgate.test"

    def test_noisy_loggers_quieted(self, tmp_path, restore_logging):
        setup_logging(log_dir=tmp_path, console_output=False)
        assert logging.getLogger("aiohttp.access").level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_level_filters_file(self, tmp_path, restore_logging):
        setup_logging(level="WARNING", log_dir=tmp_path, console_output=False)
        get_logger("streamgate.test").info("gateway.quiet")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "gateway.quiet" not in (tmp_path / "streamgate.log").read_text(encoding="utf-8")
