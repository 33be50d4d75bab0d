"""
Unit tests for structured JSON logging setup
"""

import json
import logging

import pytest

from simcoin.core.logging_config import CustomJsonFormatter, get_logger, setup_logging


@pytest.fixture
def clean_logger():
    names = []

    def _make(name):
        names.append(name)
        return name

    yield _make
    for name in names:
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()


class TestCustomJsonFormatter:
    """Test the JSON formatter"""

    def test_record_contains_structured_fields(self):
        formatter = CustomJsonFormatter(environment="test", service_name="simcoin")
        record = logging.LogRecord(
            name="simcoin.core.blockchain",
            level=logging.INFO,
            pathname=__file__,
            lineno=10,
            msg="Block appended",
            args=(),
            exc_info=None,
        )
        record.event = "chain.block_appended"
        record.height = 3

        payload = json.loads(formatter.format(record))
        assert payload["message"] == "Block appended"
        assert payload["event"] == "chain.block_appended"
        assert payload["height"] == 3
        assert payload["level"] == "info"
        assert payload["environment"] == "test"
        assert payload["service"] == "simcoin"
        assert payload["source"]["line"] == 10
        assert "timestamp" in payload


class TestSetupLogging:
    """Test setup_logging and get_logger"""

    def test_console_handler_and_level(self, clean_logger):
        logger = setup_logging(name=clean_logger("simcoin.test.console"), level="DEBUG")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, CustomJsonFormatter)

    def test_repeated_setup_does_not_duplicate_handlers(self, clean_logger):
        name = clean_logger("simcoin.test.repeat")
        setup_logging(name=name)
        logger = setup_logging(name=name)
        assert len(logger.handlers) == 1

    def test_file_handler_writes_json(self, tmp_path, clean_logger):
        log_file = tmp_path / "logs" / "simcoin.log"
        logger = setup_logging(
            name=clean_logger("simcoin.test.file"),
            log_file=str(log_file),
            enable_console=False,
        )
        logger.info("Wallet registered", extra={"event": "registry.wallet_added", "wallet_id": 4})
        for handler in logger.handlers:
            handler.flush()

        line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["event"] == "registry.wallet_added"
        assert payload["wallet_id"] == 4

    def test_unknown_level_defaults_to_info(self, clean_logger):
        logger = setup_logging(name=clean_logger("simcoin.test.level"), level="chatty")
        assert logger.level == logging.INFO

    def test_get_logger_configures_once(self, clean_logger):
        name = clean_logger("simcoin.test.get")
        first = get_logger(name)
        second = get_logger(name)
        assert first is second
        assert len(second.handlers) == 1
