"""studyprep/api/schemas.py
###############################################################################
Public Pydantic models **exposed by the API layer**.
###############################################################################
Keeping the IO-facing contracts apart from the persisted
:class:`~studyprep.pipeline.types.Session` lets the store record evolve
without breaking clients.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from studyprep.pipeline.types import Flashcard, Session, SessionStatus

__all__: list[str] = ["ProcessAccepted", "SessionResultSchema"]


class ProcessAccepted(BaseModel):
    session_id: str
    status: SessionStatus = Field(
        default=SessionStatus.processing,
        description="Status the session moves to once the background run starts.",
    )

    model_config = ConfigDict(frozen=True)


class SessionResultSchema(BaseModel):
    """Persisted status and results of one session."""

    session_id: str
    status: SessionStatus
    summary: Optional[str] = None
    flashcards: Optional[List[Flashcard]] = None
    study_guide: Optional[str] = None
    total_text_length: Optional[int] = None
    total_chunks: Optional[int] = None
    successful_files: Optional[List[str]] = None
    processing_errors: Optional[List[str]] = None
    error_message: Optional[str] = None
    processed_at: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_session(cls, session: Session) -> "SessionResultSchema":
        return cls(
            session_id=session.id,
            status=session.status,
            summary=session.summary,
            flashcards=session.flashcards,
            study_guide=session.study_guide,
            total_text_length=session.total_text_length,
            total_chunks=session.total_chunks,
            successful_files=session.successful_files,
            processing_errors=session.processing_errors,
            error_message=session.error_message,
            processed_at=session.processed_at,
        )
