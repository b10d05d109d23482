from __future__ import annotations

from typing import Optional

import structlog
from fastapi import Header, HTTPException, Request, status

from studyprep.services.processing_service import ProcessingService

__all__: list[str] = ["get_processing_service", "require_user_id"]

logger = structlog.get_logger(__name__)


def get_processing_service(request: Request) -> ProcessingService:
    """Return the service created by the application's startup hook."""
    service: Optional[ProcessingService] = getattr(
        request.app.state, "processing_service", None
    )
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Processing service is not available.",
        )
    return service


async def require_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None),
) -> str:
    """Return the requester identity forwarded by the upstream gateway.

    Token verification happens before requests reach this service; only the
    resulting ``X-User-Id`` header is trusted here.

    Raises:
        HTTPException (401): If the header is missing or blank.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        logger.warning("auth_failed", path=request.url.path, has_header=x_user_id is not None)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    request.state.user_id = user_id
    return user_id
