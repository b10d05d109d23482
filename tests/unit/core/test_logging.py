from __future__ import annotations

import logging
from unittest.mock import patch

import pytest
import structlog
from fastapi import FastAPI
from fastapi.testclient import TestClient

import studyprep.core.logging
from studyprep.core.logging import RequestLoggingMiddleware, configure_logging


@pytest.fixture(autouse=True)
def reset_logging_state(monkeypatch: pytest.MonkeyPatch):
    """Ensure logging configuration state is reset before and after each test."""
    monkeypatch.setattr(studyprep.core.logging, "_LOGGING_CONFIGURED", False)
    structlog.reset_defaults()
    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    root_logger.handlers.clear()

    yield

    structlog.reset_defaults()
    root_logger.handlers.clear()
    for handler in original_handlers:
        root_logger.addHandler(handler)


def test_configure_logging_idempotency() -> None:
    """configure_logging only configures once per process."""
    with (
        patch("studyprep.core.logging._configure_stdlib_logging") as mock_stdlib_config,
        patch("structlog.configure") as mock_structlog_config,
    ):
        configure_logging(debug=True)
        assert studyprep.core.logging._LOGGING_CONFIGURED is True
        mock_stdlib_config.assert_called_once_with(logging.DEBUG)
        mock_structlog_config.assert_called_once()

        mock_stdlib_config.reset_mock()
        mock_structlog_config.reset_mock()

        configure_logging(debug=False)
        mock_stdlib_config.assert_not_called()
        mock_structlog_config.assert_not_called()


@pytest.mark.parametrize("debug, level", [(True, logging.DEBUG), (False, logging.INFO)])
def test_configure_logging_sets_level(debug: bool, level: int) -> None:
    with (
        patch("studyprep.core.logging._configure_stdlib_logging") as mock_stdlib_config,
        patch("structlog.make_filtering_bound_logger") as mock_make_filtering_logger,
        patch("structlog.configure") as mock_structlog_config,
    ):
        configure_logging(debug=debug)

        mock_stdlib_config.assert_called_once_with(level)
        mock_make_filtering_logger.assert_called_once_with(level)
        assert (
            mock_structlog_config.call_args[1]["wrapper_class"]
            == mock_make_filtering_logger.return_value
        )


def test_stdlib_logging_quiets_pdfminer() -> None:
    studyprep.core.logging._configure_stdlib_logging(logging.DEBUG)

    assert len(logging.getLogger().handlers) == 1
    assert logging.getLogger("pdfminer").level == logging.WARNING


def test_request_logging_middleware_echoes_request_id() -> None:
    app = FastAPI()
    app.add_middleware(RequestLoggingMiddleware)

    @app.get("/ping")
    async def ping() -> dict[str, str]:
        return {"pong": "ok"}

    client = TestClient(app)

    response = client.get("/ping", headers={"x-request-id": "req-123"})
    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-123"

    generated = client.get("/ping").headers["X-Request-ID"]
    assert len(generated) == 32


def test_stdlib_logging_keeps_extraction_libraries_quiet() -> None:
    studyprep.core.logging._configure_stdlib_logging(logging.INFO)

    for name in ("PIL", "httpx", "openai"):
        assert logging.getLogger(name).level == logging.WARNING


def test_request_context_names_the_session_and_is_cleared() -> None:
    app = FastAPI()
    app.add_middleware(RequestLoggingMiddleware)

    @app.get("/v1/sessions/{session_id}")
    async def read(session_id: str) -> dict:
        return dict(structlog.contextvars.get_contextvars())

    @app.get("/v1/health")
    async def health() -> dict:
        return dict(structlog.contextvars.get_contextvars())

    client = TestClient(app)

    bound = client.get("/v1/sessions/sess-9", headers={"x-request-id": "req-1"}).json()
    assert bound["session_id"] == "sess-9"
    assert bound["request_id"] == "req-1"
    assert bound["method"] == "GET"

    assert "session_id" not in client.get("/v1/health").json()
    assert structlog.contextvars.get_contextvars() == {}
