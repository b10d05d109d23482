"""
Structured logging for the ingestion service.

Every record is one JSON line on *stderr*.  Two kinds of code emit them:

* the HTTP layer, where :class:`RequestLoggingMiddleware` binds a request id
  (and the session id when the path names one) for the lifetime of a request;
* background session runs, which inherit that context when scheduled and
  bind ``session_id`` themselves inside the orchestrator.

Records therefore always carry ``request_id`` and ``session_id`` keys (``None``
when unknown), so a single session can be followed from the ``POST`` that
started it through download, extraction, OCR retries and the terminal write.

Libraries used by the extraction stack log through the standard library;
their records are routed to the same stream and the chattiest ones are held
at ``WARNING``.
"""

from __future__ import annotations

import logging
import re
import sys
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from structlog.types import EventDict, Processor

__all__: list[str] = [
    "configure_logging",
    "RequestLoggingMiddleware",
]

# Third-party loggers and the minimum level they are allowed to emit at.
_QUIET_LOGGERS: Dict[str, int] = {
    "pdfminer": logging.WARNING,
    "PIL": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "openai": logging.WARNING,
}

_SESSION_PATH = re.compile(r"^/v1/sessions/(?P<session_id>[^/]+)")


def _add_run_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Fill ``request_id`` and ``session_id`` when nothing bound them."""
    event_dict.setdefault("request_id", None)
    event_dict.setdefault("session_id", None)
    return event_dict


_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    _add_run_context,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.format_exc_info,
    structlog.processors.JSONRenderer(),
]


def _configure_stdlib_logging(level: int) -> None:
    """Send stdlib records (uvicorn, httpx, aiohttp, pdfminer, openai) to *stderr*."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(name)s %(levelname)s %(message)s"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name, floor in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, floor))


_LOGGING_CONFIGURED: bool = False


def configure_logging(debug: bool = False) -> None:
    """Configure structlog and the stdlib root logger once per process.

    ``debug`` lowers the level to ``DEBUG``, which also surfaces per-file
    chunking and per-attempt OCR events.  Later calls are ignored.
    """
    global _LOGGING_CONFIGURED

    if _LOGGING_CONFIGURED:
        return

    level = logging.DEBUG if debug else logging.INFO
    _configure_stdlib_logging(level)
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        processors=_PROCESSORS,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    _LOGGING_CONFIGURED = True


def _session_from_path(path: str) -> Optional[str]:
    match = _SESSION_PATH.match(path)
    return match.group("session_id") if match else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind request context and log one ``request_completed`` event per request.

    The request id comes from ``X-Request-ID`` or is generated, and is echoed
    back on the response.  Runs scheduled by the request are created inside
    this context, so their events share the same ``request_id``.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        started = time.perf_counter()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id

        context: Dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
        }
        session_id = _session_from_path(request.url.path)
        if session_id is not None:
            context["session_id"] = session_id

        response: Optional[Response] = None
        with structlog.contextvars.bound_contextvars(**context):
            try:
                response = await call_next(request)
            finally:
                structlog.get_logger("studyprep.http").info(
                    "request_completed",
                    status_code=response.status_code if response is not None else 500,
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                    user=getattr(request.state, "user_id", None),
                )

        response.headers["X-Request-ID"] = request_id
        return response
