"""
Tests for the logging helpers.
"""

import json
import logging
import sys

import pytest

from vireo import Request, Vireo
from vireo.logger import (
    EnvironmentLoggerAdapter,
    JSONFormatter,
    Logger,
    TextFormatter,
    configure_logging,
    request_extra,
)
from vireo.testing import TestClient

from conftest import build_scope


def make_record(message="hello", level=logging.INFO, **extra):
    record = logging.LogRecord("vireo.test", level, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_vireo_logger():
    logger = logging.getLogger("vireo")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


class TestFormatters:
    def test_json_formatter(self):
        formatter = JSONFormatter(default_context={"service": "api"})
        record = make_record(method="GET", url="/users", environment="test")

        data = json.loads(formatter.format(record))
        assert data["logger"] == "vireo.test"
        assert data["level"] == "INFO"
        assert data["message"] == "hello"
        assert data["timestamp"].endswith("Z")
        assert data["context"] == {"service": "api", "method": "GET", "url": "/users", "environment": "test"}

    def test_json_formatter_without_environment(self):
        formatter = JSONFormatter(show_environment=False)
        data = json.loads(formatter.format(make_record(environment="test")))
        assert "context" not in data

    def test_json_formatter_exception(self):
        formatter = JSONFormatter()
        try:
            raise ValueError("broken")
        except ValueError:
            record = logging.LogRecord("vireo.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        data = json.loads(formatter.format(record))
        assert "ValueError: broken" in data["exception"]

    def test_text_formatter_plain(self):
        formatter = TextFormatter(colored=False)
        output = formatter.format(make_record(method="POST", url="/items"))
        assert "INFO [vireo.test] hello" in output
        assert output.endswith("method=POST url=/items")

    def test_text_formatter_restores_levelname(self):
        formatter = TextFormatter(colored=True)
        record = make_record(level=logging.WARNING)

        output = formatter.format(record)
        assert "\033[33m" in output
        assert record.levelname == "WARNING"


class TestAdapters:
    def test_environment_is_injected(self, caplog):
        adapter = EnvironmentLoggerAdapter(logging.getLogger("vireo.tests.adapter"), "staging")
        with caplog.at_level(logging.INFO, logger="vireo.tests.adapter"):
            adapter.info("ready", extra={"method": "GET"})

        record = caplog.records[-1]
        assert record.environment == "staging"
        assert record.method == "GET"

    def test_request_extra(self):
        request = Request(build_scope("DELETE", "/items/1", query=b"force=1"))
        assert request_extra(request) == {"method": "DELETE", "url": "/items/1?force=1"}

    def test_logger_factory(self, tmp_path):
        log_file = tmp_path / "logs" / "app.log"
        log = Logger("vireo.tests.factory", log_file=str(log_file), to_console=False, environment="dev")

        assert isinstance(log, EnvironmentLoggerAdapter)
        log.info("written")
        for handler in log.logger.handlers:
            handler.flush()

        line = json.loads(log_file.read_text().strip())
        assert line["message"] == "written"

    def test_factory_does_not_duplicate_handlers(self):
        Logger("vireo.tests.dupes", to_console=True)
        log = Logger("vireo.tests.dupes", to_console=True)
        assert len(log.logger.handlers) == 1


class TestConfigureLogging:
    def test_configures_package_logger(self, restore_vireo_logger):
        logger = configure_logging(level=logging.DEBUG, json_logs=True)
        assert logger is restore_vireo_logger
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_application_logs_unhandled_errors(self, caplog):
        app = Vireo()
        app.set("env", "development")

        def boom(req, res, next):
            raise RuntimeError("exploded")

        app.get("/fail", boom)

        with caplog.at_level(logging.ERROR, logger="vireo"):
            response = TestClient(app).get("/fail")

        assert response.status_code == 500
        record = next(r for r in caplog.records if "unhandled error" in r.getMessage())
        assert record.method == "GET"
        assert record.url == "/fail"
        assert record.environment == "development"

    def test_custom_application_logger(self, caplog):
        adapter = EnvironmentLoggerAdapter(logging.getLogger("vireo.tests.custom"), "production")
        app = Vireo(logger=adapter)
        app.set("env", "production")

        def boom(req, res, next):
            raise RuntimeError("exploded")

        app.get("/", boom)

        with caplog.at_level(logging.ERROR, logger="vireo.tests.custom"):
            TestClient(app).get("/")

        assert any(r.name == "vireo.tests.custom" for r in caplog.records)
