"""Tests for logging setup."""

import json
import logging

import pytest
import structlog

from snsync.utils.logging import get_logger, log_async_execution_time, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    for name in ("watchfiles", "aiohttp.access"):
        logging.getLogger(name).setLevel(logging.NOTSET)
    structlog.reset_defaults()


class TestSetupLogging:

    def test_events_written_to_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "snsync.log"
        setup_logging(log_level="INFO", log_format="json", log_file=str(log_file))

        get_logger("PushEngine").info("Saved to instance", table="incident", field="script")
        get_logger("PushEngine").debug("Not a mapped field file, skipping")
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 1
        event = json.loads(lines[0])
        assert event["event"] == "Saved to instance"
        assert event["table"] == "incident"
        assert event["level"] == "info"
        assert event["logger"] == "PushEngine"

    def test_file_event_chatter_quieted(self):
        setup_logging(log_level="DEBUG")

        assert logging.getLogger("watchfiles").getEffectiveLevel() == logging.WARNING
        assert logging.getLogger("aiohttp.access").getEffectiveLevel() == logging.WARNING

    def test_handlers_replaced_on_reconfigure(self):
        setup_logging(log_level="INFO")
        setup_logging(log_level="ERROR")

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.ERROR


class TestExecutionTime:

    @pytest.mark.asyncio
    async def test_result_passed_through(self):
        @log_async_execution_time
        async def pull():
            return 3

        assert await pull() == 3

    @pytest.mark.asyncio
    async def test_failure_reraised(self):
        @log_async_execution_time
        async def push():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await push()
