"""
Core Custom Exceptions

This module defines the closed error taxonomy of the ingestion pipeline. Every
error carries structured context (file name, pipeline stage, underlying
cause) rather than a free-text concatenation, so callers can branch on the
type and logs can surface the context as separate keys.

Two families exist:

- `IngestionError` – *per-file* failures (`DownloadError`, `ExtractionError`,
  `OCRError`, `UnsupportedFormatError`).  The session orchestrator recovers
  from these at its per-file boundary and folds them into the session's error
  list; they never abort a batch.
- `PipelineError` – *fatal* failures (`AggregateExtractionError`,
  `UnauthorizedError`, `NotFoundError`, `PersistenceError`,
  `SessionStateError`).  They abort the run, are recorded as the session's
  terminal ``failed`` state where possible, and are re-raised to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from studyprep.pipeline.types import ProcessingError

__all__: list[str] = [
    "StrategyFailure",
    "ExtractionAttempt",
    "IngestionError",
    "DownloadError",
    "UnsupportedFormatError",
    "ExtractionError",
    "OCRError",
    "PipelineError",
    "AggregateExtractionError",
    "UnauthorizedError",
    "NotFoundError",
    "PersistenceError",
    "SessionStateError",
]


@dataclass(frozen=True)
class StrategyFailure:
    """One failed transport strategy of a download."""

    strategy: str
    reason: str


@dataclass(frozen=True)
class ExtractionAttempt:
    """One failed extraction method, in the order it was attempted."""

    method: str
    reason: str

    def __str__(self) -> str:
        return f"{self.method}: {self.reason}"


# ---------------------------------------------------------------------------
# Per-file (recoverable) errors
# ---------------------------------------------------------------------------


class IngestionError(Exception):
    """Base class for errors confined to a single file of a session."""

    stage: str = "ingestion"

    def __init__(
        self,
        message: str,
        *,
        file_name: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.file_name = file_name
        self.cause = cause


class DownloadError(IngestionError):
    """Raised when every transport strategy failed (or the URL is unusable)."""

    stage = "download"

    def __init__(
        self,
        message: str,
        *,
        file_name: Optional[str] = None,
        cause: Optional[BaseException] = None,
        failures: Sequence[StrategyFailure] = (),
    ) -> None:
        super().__init__(message, file_name=file_name, cause=cause)
        self.failures: tuple[StrategyFailure, ...] = tuple(failures)


class UnsupportedFormatError(IngestionError):
    """Raised when no viable extraction path exists for a media type."""

    stage = "extraction"

    def __init__(
        self,
        message: str,
        *,
        file_name: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> None:
        super().__init__(message, file_name=file_name)
        self.media_type = media_type


class ExtractionError(IngestionError):
    """Raised when the primary method and any fallback failed or yielded no text."""

    stage = "extraction"

    def __init__(
        self,
        message: str,
        *,
        file_name: Optional[str] = None,
        cause: Optional[BaseException] = None,
        attempts: Sequence[ExtractionAttempt] = (),
    ) -> None:
        super().__init__(message, file_name=file_name, cause=cause)
        self.attempts: tuple[ExtractionAttempt, ...] = tuple(attempts)


class OCRError(IngestionError):
    """Raised when every OCR attempt raised and no output was ever produced."""

    stage = "ocr"

    def __init__(
        self,
        message: str,
        *,
        file_name: Optional[str] = None,
        cause: Optional[BaseException] = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message, file_name=file_name, cause=cause)
        self.attempts = attempts


# ---------------------------------------------------------------------------
# Fatal errors
# ---------------------------------------------------------------------------


class PipelineError(Exception):
    """Base class for errors that abort a whole session run."""

    def __init__(
        self,
        message: str,
        *,
        session_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.session_id = session_id
        self.cause = cause


class AggregateExtractionError(PipelineError):
    """Raised when no file of the session yielded any text."""

    def __init__(
        self,
        errors: Sequence["ProcessingError"],
        *,
        session_id: Optional[str] = None,
    ) -> None:
        self.errors: tuple["ProcessingError", ...] = tuple(errors)
        details = "; ".join(str(error) for error in self.errors) or "no files"
        super().__init__(
            "No text content could be extracted from any of the uploaded files. "
            f"Errors: {details}",
            session_id=session_id,
        )


class UnauthorizedError(PipelineError):
    """Raised when the requester does not own the session."""


class NotFoundError(PipelineError):
    """Raised when the session does not exist in the store."""


class PersistenceError(PipelineError):
    """Raised when the session store is unreachable or rejects an update."""


class SessionStateError(PipelineError):
    """Raised when a session is already terminal and cannot be reprocessed."""
