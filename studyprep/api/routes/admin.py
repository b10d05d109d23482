from __future__ import annotations

from typing import Dict

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from studyprep.core.config import Settings, get_settings

__all__: list[str] = [
    "router",
]

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["Admin"])

SETTINGS_DEP: Settings = Depends(get_settings)


@router.get("/health", response_model=Dict[str, str])
async def health(
    request: Request,
    settings: Settings = SETTINGS_DEP,
) -> Dict[str, str]:
    """Return service health status."""
    service = getattr(request.app.state, "processing_service", None)
    return {
        "status": "ok" if service is not None else "starting",
        "commit_sha": settings.commit_sha or "unknown",
    }


@router.get("/version", summary="Application version information")
async def version(
    request: Request,
    settings: Settings = SETTINGS_DEP,
) -> JSONResponse:
    """Return the application version, pipeline version and git commit SHA."""

    return JSONResponse(
        {
            "version": request.app.version,
            "pipeline_version": settings.pipeline_version,
            "commit_sha": settings.commit_sha,
        }
    )
