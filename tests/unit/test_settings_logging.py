"""Tests for environment settings and structured logging helpers."""

from __future__ import annotations

import logging

import pytest
import structlog

from docqueue.api.app import create_app
from docqueue.logging import (
    bind_queue_context,
    configure_logging,
    correlation_id_var,
    new_correlation_id,
)
from docqueue.settings import Settings


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for var in ("DOCQUEUE_PG_DSN", "DOCQUEUE_REDIS_URL", "DOCQUEUE_TIMEZONE"):
            monkeypatch.delenv(var, raising=False)
        settings = Settings()
        assert settings.pg_dsn == ""
        assert settings.timezone == "Asia/Kolkata"
        assert settings.default_recall_interval == 5
        assert settings.cursor_max_retries == 3

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DOCQUEUE_CURSOR_MAX_RETRIES", "7")
        monkeypatch.setenv("DOCQUEUE_LOG_JSON", "false")
        settings = Settings()
        assert settings.cursor_max_retries == 7
        assert settings.log_json is False


class TestLogging:
    def setup_method(self) -> None:
        root = logging.getLogger()
        self._saved = (root.handlers[:], root.level)

    def teardown_method(self) -> None:
        root = logging.getLogger()
        root.handlers, level = self._saved
        root.setLevel(level)
        structlog.contextvars.clear_contextvars()
        structlog.reset_defaults()

    def test_correlation_id_reuses_incoming(self) -> None:
        assert new_correlation_id("abc") == "abc"
        assert correlation_id_var.get() == "abc"

    def test_correlation_id_generated(self) -> None:
        cid = new_correlation_id()
        assert len(cid) == 36

    def test_bind_queue_context_is_scoped(self) -> None:
        with bind_queue_context(doctor_id="DOC-1", session_id=None):
            ctx = structlog.contextvars.get_contextvars()
            assert ctx["doctor_id"] == "DOC-1"
            assert "session_id" not in ctx
        assert structlog.contextvars.get_contextvars() == {}

    def test_configure_logging_routes_stdlib(self) -> None:
        configure_logging(json_output=True, level="DEBUG")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        [handler] = root.handlers
        assert isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter)

    @pytest.mark.parametrize("level", ["info", "WARNING", "error"])
    def test_configure_logging_filters_by_level(self, level: str) -> None:
        configure_logging(json_output=False, level=level)

        with structlog.testing.capture_logs() as logs:
            log = structlog.get_logger()
            log.debug("hidden")
            log.error("shown")

        assert [e["event"] for e in logs] == ["shown"]
        assert logging.getLogger().level == logging.getLevelNamesMapping()[level.upper()]

    @pytest.mark.anyio
    async def test_app_lifespan_starts(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DOCQUEUE_PG_DSN", "")
        monkeypatch.setenv("DOCQUEUE_REDIS_URL", "")
        monkeypatch.setenv("DOCQUEUE_LOG_LEVEL", "info")
        app = create_app()

        async with app.router.lifespan_context(app):
            assert app.state.service is not None
