"""StudyPrep ─ FastAPI application
================================

This module hosts the **production ASGI application**.

Usage
-----
Run locally with::

    uvicorn studyprep.api.app:app --reload

The FastAPI instance is exposed as ``app``.  The startup hook builds the
:class:`~studyprep.services.processing_service.ProcessingService` (unless one
was attached beforehand) and the shutdown hook drains it.
"""

from __future__ import annotations

# third-party
import structlog
from fastapi import APIRouter, FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

# local imports
from studyprep import __version__
from studyprep.api.errors import add_exception_handlers
from studyprep.api.routes import admin as admin_router_module
from studyprep.api.routes import sessions as sessions_router_module
from studyprep.core.config import get_settings
from studyprep.core.logging import RequestLoggingMiddleware, configure_logging
from studyprep.services.processing_service import ProcessingService

__all__: list[str] = ["app"]

# ---------------------------------------------------------------------------
# Initialise *process-wide* logging before any logger instantiation.
# ---------------------------------------------------------------------------
settings = get_settings()
configure_logging(settings.debug)
logger = structlog.get_logger(__name__)


def _register_routes(app_instance: FastAPI) -> None:
    """Include all API routers into the FastAPI application."""
    routers: list[APIRouter] = [
        sessions_router_module.router,
        admin_router_module.router,
    ]
    for router in routers:
        app_instance.include_router(router)


def _create_fastapi_app() -> FastAPI:  # noqa: D401 – factory
    """Build and configure the FastAPI application."""

    app_instance = FastAPI(
        title="StudyPrep Session Ingestion",
        version=__version__,
        docs_url="/docs",
        redoc_url=None,
        openapi_url="/openapi.json",
    )

    # ------------------------------------------------------------------
    # Middleware – logging comes first so later handlers inherit context vars.
    # ------------------------------------------------------------------
    app_instance.add_middleware(RequestLoggingMiddleware)

    # ------------------------------------------------------------------
    # Lifespan events
    # ------------------------------------------------------------------
    @app_instance.on_event("startup")
    async def _on_startup() -> None:
        if getattr(app_instance.state, "processing_service", None) is None:
            app_instance.state.processing_service = ProcessingService.from_settings(settings)
        logger.info("fastapi_startup", commit_sha=settings.commit_sha)

    @app_instance.on_event("shutdown")
    async def _on_shutdown() -> None:
        service = getattr(app_instance.state, "processing_service", None)
        if service is not None:
            await service.shutdown()
        logger.info("fastapi_shutdown")

    @app_instance.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:  # noqa: D401
        return {"message": "StudyPrep Session Ingestion – FastAPI layer"}

    _register_routes(app_instance)
    add_exception_handlers(app_instance)

    # ------------------------------------------------------------------
    # Prometheus metrics – gated behind PROMETHEUS_ENABLED.  Exposed under
    # **/metrics**, excluded from the OpenAPI schema.
    # ------------------------------------------------------------------
    if settings.prometheus_enabled:
        Instrumentator().instrument(app_instance).expose(
            app_instance,
            endpoint="/metrics",
            include_in_schema=False,
        )
        logger.info("prometheus_instrumentation_enabled")

    return app_instance


# Instantiate once at import time.
app: FastAPI = _create_fastapi_app()
