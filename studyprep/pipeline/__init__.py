"""Session pipeline: data model, chunking, study material and orchestration."""

from __future__ import annotations

from .types import (  # noqa: F401
    ChunkRecord,
    ExtractedText,
    FileRef,
    ProcessingError,
    Session,
    SessionRunResult,
    SessionStatus,
)

__all__: list[str] = [
    "ChunkRecord",
    "ExtractedText",
    "FileRef",
    "ProcessingError",
    "Session",
    "SessionRunResult",
    "SessionStatus",
]
