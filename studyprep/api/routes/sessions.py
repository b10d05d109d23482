from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, status

from studyprep.api.dependencies import get_processing_service, require_user_id
from studyprep.api.schemas import ProcessAccepted, SessionResultSchema
from studyprep.core.exceptions import UnauthorizedError
from studyprep.services.processing_service import ProcessingService

__all__: list[str] = ["router"]

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1/sessions", tags=["sessions"])

SERVICE_DEP: ProcessingService = Depends(get_processing_service)
USER_DEP: str = Depends(require_user_id)


@router.post(
    "/{session_id}/process",
    response_model=ProcessAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start processing every file of a session.",
)
async def process_session(
    session_id: str,
    user_id: str = USER_DEP,
    service: ProcessingService = SERVICE_DEP,
) -> ProcessAccepted:
    """Validate ownership and state, then schedule the run in the background.

    The outcome is persisted on the session; poll ``GET /v1/sessions/{id}``.
    """
    new_status = await service.start(session_id, user_id)
    logger.info("session_process_accepted", session_id=session_id, user=user_id)
    return ProcessAccepted(session_id=session_id, status=new_status)


@router.get(
    "/{session_id}",
    response_model=SessionResultSchema,
    summary="Return the persisted status and results of a session.",
)
async def get_session(
    session_id: str,
    user_id: str = USER_DEP,
    service: ProcessingService = SERVICE_DEP,
) -> SessionResultSchema:
    session = await service.get_session(session_id)
    if session.user_id != user_id:
        raise UnauthorizedError("Unauthorized access to this session.", session_id=session_id)
    return SessionResultSchema.from_session(session)
