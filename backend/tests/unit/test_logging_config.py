"""
Unit tests for logging configuration.
"""

import json
import logging

import pytest

from backend.src.config.settings import AppSettings
from backend.src.utils.logging_config import (
    JSONFormatter,
    configure_logging,
    get_logger,
)


@pytest.fixture
def restore_logging():
    """Put the development configuration back after a test reconfigures."""
    yield
    configure_logging(AppSettings(_env_file=None))


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_extra_context_becomes_top_level_keys(self):
        record = logging.LogRecord(
            "event_series.services", logging.WARNING, __file__, 10, "Template %s missing", ("evt_x",), None
        )
        record.series_guid = "ser_01hgw2bbg00000000000000001"

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Template evt_x missing"
        assert data["level"] == "WARNING"
        assert data["series_guid"] == "ser_01hgw2bbg00000000000000001"
        assert data["timestamp"].endswith("Z")
        assert "args" not in data


class TestConfigureLogging:
    """Tests for configure_logging and get_logger."""

    def test_development_logs_to_console(self, restore_logging):
        loggers = configure_logging(AppSettings(_env_file=None, EVSERIES_LOG_LEVEL="debug"))

        handlers = loggers["services"].handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)
        assert loggers["services"].level == logging.DEBUG
        assert loggers["services"].propagate is False

    def test_production_writes_json_files(self, tmp_path, restore_logging):
        settings = AppSettings(_env_file=None, EVSERIES_ENV="production", EVSERIES_LOG_DIR=str(tmp_path))
        loggers = configure_logging(settings)

        loggers["api"].info("Series created", extra={"path": "/api/series"})
        for handler in loggers["api"].handlers:
            handler.flush()

        line = (tmp_path / "api.log").read_text(encoding="utf-8").strip()
        assert json.loads(line)["path"] == "/api/series"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["api.log", "db.log", "services.log"]

    def test_reconfigure_replaces_handlers(self, restore_logging):
        configure_logging(AppSettings(_env_file=None))
        loggers = configure_logging(AppSettings(_env_file=None))

        assert len(loggers["db"].handlers) == 1

    def test_unknown_logger_name(self):
        with pytest.raises(ValueError) as exc_info:
            get_logger("tools")

        assert "Valid names" in str(exc_info.value)

    def test_unknown_log_level(self):
        with pytest.raises(ValueError):
            AppSettings(_env_file=None, EVSERIES_LOG_LEVEL="chatty")
