"""Unit tests for core.logger module.

Tests the structlog configuration:
- configure_logging() installs a single stderr handler on the root logger
- LOG_LEVEL is honoured
- LOG_FORMAT=json renders one JSON object per line
- Noisy third-party loggers are quieted
"""

import json
import logging

import pytest
import structlog

from core.logger import configure_logging, get_logger


@pytest.fixture(autouse=True)
def _clean_root_logger():
    """Save and restore root logger state around each test."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)
    structlog.reset_defaults()


@pytest.mark.unit
class TestConfigureLogging:
    def test_installs_single_handler(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_respects_log_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        configure_logging()
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_defaults_to_info(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "CHATTY")
        configure_logging()
        assert logging.getLogger().level == logging.INFO

    def test_quiets_third_party_loggers(self):
        configure_logging()
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("weasyprint").level == logging.ERROR

    def test_json_format_renders_key_values(self, monkeypatch, capsys):
        monkeypatch.setenv("LOG_FORMAT", "json")
        configure_logging()

        get_logger("tests.logger").info("certificate.pdf_saved", path="/tmp/a.pdf")

        line = capsys.readouterr().err.strip().splitlines()[-1]
        parsed = json.loads(line)
        assert parsed["event"] == "certificate.pdf_saved"
        assert parsed["path"] == "/tmp/a.pdf"
        assert parsed["level"] == "info"
        assert parsed["logger"] == "tests.logger"
