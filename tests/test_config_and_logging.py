"""Tests for environment validation and logging setup"""

import json
import logging

import pytest
from flask import Flask

from config.base import _coerce_bool
from config.validation import validate_and_exit, validate_environment
from dedupe_app.utils.logging_config import JsonFormatter, setup_logging


@pytest.fixture
def production_env(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "a" * 64)
    monkeypatch.setenv("AIRTABLE_API_KEY", "key123")
    monkeypatch.setenv("AIRTABLE_BASE_ID", "appBASE")
    monkeypatch.delenv("DEDUPE_ENABLED", raising=False)
    monkeypatch.delenv("DEDUPE_MATCHING_PROFILE_PATH", raising=False)
    return monkeypatch


class TestEnvironmentValidation:
    """Startup validation of required settings"""

    def test_non_production_is_not_validated(self, monkeypatch):
        monkeypatch.delenv("SECRET_KEY", raising=False)
        assert validate_environment("development") == (True, [])

    def test_complete_production_environment(self, production_env):
        assert validate_environment("production") == (True, [])

    def test_default_secret_key_is_rejected(self, production_env):
        production_env.setenv("SECRET_KEY", "your-secret-key")

        is_valid, errors = validate_environment("production")

        assert is_valid is False
        assert "SECRET_KEY" in errors[0]

    def test_airtable_credentials_required_when_enabled(self, production_env):
        production_env.delenv("AIRTABLE_API_KEY")
        production_env.delenv("AIRTABLE_BASE_ID")

        is_valid, errors = validate_environment("production")

        assert is_valid is False
        assert len(errors) == 2

    def test_airtable_credentials_optional_when_disabled(self, production_env):
        production_env.delenv("AIRTABLE_API_KEY")
        production_env.setenv("DEDUPE_ENABLED", "false")

        assert validate_environment("production") == (True, [])

    def test_missing_profile_file(self, production_env, tmp_path):
        production_env.setenv("DEDUPE_MATCHING_PROFILE_PATH", str(tmp_path / "missing.yaml"))

        is_valid, errors = validate_environment("production")

        assert is_valid is False
        assert "missing.yaml" in errors[0]

    def test_validate_and_exit(self, production_env, capsys):
        production_env.delenv("AIRTABLE_BASE_ID")

        with pytest.raises(SystemExit) as excinfo:
            validate_and_exit("production")

        assert excinfo.value.code == 1
        assert "AIRTABLE_BASE_ID" in capsys.readouterr().err


@pytest.mark.parametrize(
    "value,expected",
    [("true", True), ("Yes", True), ("0", False), ("off", False), (None, True), ("maybe", True)],
)
def test_coerce_bool(value, expected):
    assert _coerce_bool(value, default=True) is expected


class TestLoggingSetup:
    """Handler wiring and JSON output"""

    def _app(self, **config):
        app = Flask("logging_test")
        app.config.update(
            {
                "LOG_LEVEL": "INFO",
                "LOG_FORMAT": "json",
                "ENABLE_CONSOLE_LOGGING": False,
                "ENABLE_FILE_LOGGING": False,
                "APP_NAME": "Record Dedupe",
                "APP_VERSION": "1.0.0",
            }
        )
        app.config.update(config)
        return app

    def test_json_formatter_includes_extra_fields(self):
        formatter = JsonFormatter("Record Dedupe", "1.0.0")
        record = logging.LogRecord("dedupe_app.test", logging.INFO, __file__, 10, "Merged %s", ("rec1",), None)
        record.merge_id = "mrg_1"

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "Merged rec1"
        assert payload["level"] == "INFO"
        assert payload["app"] == "Record Dedupe"
        assert payload["merge_id"] == "mrg_1"
        assert "args" not in payload

    def test_file_handler_writes_json(self, tmp_path):
        app = self._app(ENABLE_FILE_LOGGING=True, LOG_DIR=str(tmp_path), LOG_FILE_NAME="test.log")

        handlers = setup_logging(app)
        try:
            logging.getLogger("dedupe_app.services").info("Scan finished", extra={"candidates": 3})
            for handler in handlers:
                handler.flush()

            lines = (tmp_path / "test.log").read_text(encoding="utf-8").strip().splitlines()
            payload = json.loads(lines[-1])
            assert payload["message"] == "Scan finished"
            assert payload["candidates"] == 3
        finally:
            for logger in (app.logger, logging.getLogger("dedupe_app")):
                for handler in handlers:
                    logger.removeHandler(handler)
                    handler.close()

    def test_repeated_setup_does_not_duplicate_handlers(self):
        app = self._app(ENABLE_CONSOLE_LOGGING=True, LOG_FORMAT="text")

        setup_logging(app)
        handlers = setup_logging(app)
        try:
            managed = [handler for handler in app.logger.handlers if getattr(handler, "_dedupe_managed", False)]
            assert managed == handlers
            assert not isinstance(handlers[0].formatter, JsonFormatter)
        finally:
            for logger in (app.logger, logging.getLogger("dedupe_app")):
                for handler in handlers:
                    logger.removeHandler(handler)
                    handler.close()
