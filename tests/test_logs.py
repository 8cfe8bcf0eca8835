"""Tests for logging setup."""

import json
import logging

from stepflow.config import Settings
from stepflow.logs import JSONFormatter, TextFormatter, configure_logging


def _record(**extra):
    record = logging.LogRecord("stepflow.automation.runner", logging.INFO, __file__, 1, "Executing step %d", (1,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_json_includes_run_context(self):
        data = json.loads(JSONFormatter().format(_record(automation_id=3, step_id="a")))

        assert data["message"] == "Executing step 1"
        assert data["level"] == "INFO"
        assert data["automation_id"] == 3
        assert data["step_id"] == "a"
        assert "duration_ms" not in data

    def test_text_format(self):
        line = TextFormatter().format(_record())
        assert "stepflow.automation.runner - INFO - Executing step 1" in line


class TestConfigureLogging:
    def test_replaces_handler_on_repeat_calls(self):
        configure_logging("DEBUG", "json")
        logger = configure_logging("WARNING", "text")

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, TextFormatter)
        assert logger.level == logging.WARNING


class TestSettings:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CONTROL_ENDPOINT", "wss://browser.internal:9333/")
        monkeypatch.setenv("NAVIGATION_TIMEOUT_MS", "5000")
        monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test")
        monkeypatch.setenv("DATABASE_PATH", "/tmp/stepflow.db")
        monkeypatch.setenv("LOG_FORMAT", "JSON")

        settings = Settings.from_env()

        assert settings.navigation_timeout_ms == 5000
        assert settings.cors_origins == ["http://a.test", "http://b.test"]
        assert settings.database_path == "/tmp/stepflow.db"
        assert settings.log_format == "json"
        assert settings.probe_url == "https://browser.internal:9333"

    def test_relative_database_path_is_anchored(self, monkeypatch):
        monkeypatch.setenv("DATABASE_PATH", "data/test.db")
        assert Settings.from_env().database_path.endswith("data/test.db")
