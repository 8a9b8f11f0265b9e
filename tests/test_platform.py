"""
Platform plumbing tests - health checks, request timing headers,
content-type guard, config classes and log formatting.
"""
import json
import logging
import sys

import pytest

from onboarding_desk.config import ProductionConfig, config
from onboarding_desk.middleware.logging_config import JSONFormatter, ReadableFormatter, configure_logging


class TestHealth:
    def test_live(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json()["database"] == "ok"


class TestRequestPlumbing:
    def test_timing_headers(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})
        assert res.headers["X-Request-ID"] == "req-123"
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0

    def test_non_json_body_returns_415(self, client):
        res = client.post("/api/v1/onboarding", data="registrationId=1", content_type="text/plain")
        assert res.status_code == 415

    def test_unknown_route_returns_json_404(self, client):
        res = client.get("/api/v1/nope")
        assert res.status_code == 404
        assert res.get_json()["path"] == "/api/v1/nope"

    def test_wrong_method_returns_405(self, client):
        assert client.delete("/api/v1/onboarding").status_code == 405


class TestConfig:
    def test_config_mapping(self):
        assert set(config) == {"development", "testing", "production", "default"}

    def test_testing_config(self, app):
        assert app.config["TESTING"] is True
        assert app.config["API_AUTH_ENABLED"] == "false"
        assert app.config["DEFAULT_PAGE_LIMIT"] == 10

    def test_production_requires_database_url(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
        with pytest.raises(RuntimeError):
            ProductionConfig()

    def test_production_requires_secret_key(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", "postgresql://db/onboarding")
        monkeypatch.delenv("SECRET_KEY", raising=False)
        with pytest.raises(RuntimeError):
            ProductionConfig()


class TestJSONFormatter:
    def test_context_fields_are_emitted(self):
        record = logging.LogRecord(
            "onboarding_desk.services", logging.INFO, __file__, 10,
            "Onboarding decision recorded id=%s", (5,), None,
        )
        record.onboarding_id = 5
        record.reviewer_id = "sup-1"
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "Onboarding decision recorded id=5"
        assert entry["level"] == "INFO"
        assert entry["onboarding_id"] == 5
        assert entry["reviewer_id"] == "sup-1"
        assert "account_id" not in entry

    def test_traceback_is_attached(self):
        try:
            raise RuntimeError("store down")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: store down" in entry["exception"]


class TestLogSetup:
    def test_readable_line_carries_duration(self):
        record = logging.LogRecord("onboarding_desk.http", logging.INFO, __file__, 1, "GET /x 200", (), None)
        record.duration_ms = 12.4
        line = ReadableFormatter().format(record)
        assert "onboarding_desk.http: GET /x 200 [12ms]" in line

    @pytest.mark.parametrize("log_format, formatter", [
        ("json", JSONFormatter),
        ("READABLE", ReadableFormatter),
    ])
    def test_log_format_override(self, app, log_format, formatter):
        app.config["LOG_FORMAT"] = log_format
        try:
            configure_logging(app)
            assert isinstance(logging.getLogger().handlers[0].formatter, formatter)
        finally:
            app.config["LOG_FORMAT"] = None
            configure_logging(app)

    def test_testing_app_logs_readable(self, app):
        app.config["LOG_FORMAT"] = None
        configure_logging(app)
        assert isinstance(logging.getLogger().handlers[0].formatter, ReadableFormatter)
