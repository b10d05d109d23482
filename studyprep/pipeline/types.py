from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

__all__: list[str] = [
    "SessionStatus",
    "TERMINAL_STATUSES",
    "FileRef",
    "ProcessingPreferences",
    "Flashcard",
    "Session",
    "ExtractedText",
    "ProcessingError",
    "ExtractionOutcome",
    "ChunkRecord",
    "StudyMaterials",
    "SessionRunResult",
]


class SessionStatus(str, Enum):
    """Lifecycle of a processing session.

    ``pending → processing → {completed, completed_with_errors, failed}``.
    Terminal statuses are never left again.
    """

    pending = "pending"
    processing = "processing"
    completed = "completed"
    completed_with_errors = "completed_with_errors"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "SessionStatus") -> bool:
        """Return *True* when moving from this status to *target* is allowed.

        Re-asserting ``processing`` is accepted so the write is idempotent.
        ``pending`` and ``processing`` may fail directly.
        """
        if self.is_terminal:
            return False
        if self is SessionStatus.pending:
            return target in (SessionStatus.processing, SessionStatus.failed)
        return target is SessionStatus.processing or target.is_terminal


TERMINAL_STATUSES: frozenset[SessionStatus] = frozenset(
    {
        SessionStatus.completed,
        SessionStatus.completed_with_errors,
        SessionStatus.failed,
    }
)


class FileRef(BaseModel):
    """Reference to one uploaded file of a session, as persisted by the uploader."""

    file_name: str = Field(alias="fileName")
    source_url: Optional[str] = Field(default=None, alias="cloudStorageUrl")
    storage_id: Optional[str] = Field(default=None, alias="publicId")
    media_type: str = Field(default="application/octet-stream", alias="mimeType")
    size: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ProcessingPreferences(BaseModel):
    generate_summary: bool = Field(default=True, alias="generateSummary")
    generate_flashcards: bool = Field(default=True, alias="generateFlashcards")
    generate_study_guide: bool = Field(default=True, alias="generateStudyGuide")

    model_config = ConfigDict(populate_by_name=True)


class Flashcard(BaseModel):
    question: str
    answer: str


class Session(BaseModel):
    """Persisted processing session (store record)."""

    id: str
    user_id: str
    files: List[FileRef] = Field(default_factory=list)
    preferences: ProcessingPreferences = Field(default_factory=ProcessingPreferences)
    status: SessionStatus = SessionStatus.pending

    summary: Optional[str] = None
    flashcards: Optional[List[Flashcard]] = None
    study_guide: Optional[str] = None
    total_text_length: Optional[int] = None
    total_chunks: Optional[int] = None
    successful_files: Optional[List[str]] = None
    processing_errors: Optional[List[str]] = None
    error_message: Optional[str] = None
    processed_at: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Run-time (in-memory) outcomes
# ---------------------------------------------------------------------------


@dataclass
class ExtractedText:
    """Text recovered from one file together with the method that produced it."""

    text: str
    method: str
    confidence: Optional[float] = None
    low_confidence: bool = False


@dataclass(frozen=True)
class ProcessingError:
    """A per-file failure, collected by the orchestrator and never raised."""

    file_name: str
    message: str
    stage: str = "ingestion"

    def __str__(self) -> str:
        return f"Failed to process {self.file_name}: {self.message}"


@dataclass
class ExtractionOutcome:
    """Exactly one per file: either *text* (with *source*) or *error*."""

    file_name: str
    text: Optional[str] = None
    source: Optional[str] = None
    error: Optional[ProcessingError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.text)


@dataclass(frozen=True)
class ChunkRecord:
    """One bounded piece of a file's text.

    ``start_index`` is the character offset of the chunk within the file's
    text so that the overlap with the previous chunk can be recomputed.
    """

    text: str
    source: str
    media_type: str
    index: int
    start_index: int


@dataclass
class StudyMaterials:
    summary: Optional[str] = None
    flashcards: List[Flashcard] = field(default_factory=list)
    study_guide: Optional[str] = None


@dataclass
class SessionRunResult:
    """Outcome of one orchestrated run, mirrored in the persisted session."""

    session_id: str
    status: SessionStatus
    successful_files: List[str] = field(default_factory=list)
    errors: List[ProcessingError] = field(default_factory=list)
    total_text_length: int = 0
    total_chunks: int = 0
    chunks: List[ChunkRecord] = field(default_factory=list)
    materials: StudyMaterials = field(default_factory=StudyMaterials)

    def dict(self) -> Dict[str, Any]:
        """Return a serialisable summary (chunks omitted)."""
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "successful_files": list(self.successful_files),
            "processing_errors": [str(error) for error in self.errors] or None,
            "total_text_length": self.total_text_length,
            "total_chunks": self.total_chunks,
        }
