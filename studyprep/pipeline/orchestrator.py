"""
Session Pipeline Orchestrator

Drives one processing run of a session:

1. load the session and check ownership and state;
2. mark it ``processing``;
3. for every file, in order: resolve URL → download → extract → chunk.  Any
   per-file failure is recorded and the batch continues;
4. fail the run when no file produced text;
5. generate study material from the combined text, per preferences;
6. persist the terminal status and all results in a single update, unless a
   concurrent run already finished the session.

Anything escaping steps 1–6 is persisted as ``failed`` (unless the record is
already terminal or missing) and re-raised to the caller.

Dependencies:
- `studyprep.ingestion`: URL resolution and multi-strategy download.
- `studyprep.parsing.dispatcher`: per-media-type extraction and OCR fallback.
- `studyprep.pipeline.chunker`: overlap-preserving text windows.
- `studyprep.pipeline.content`: study material generation.
- `studyprep.storage.sessions`: the session store boundary.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from studyprep.core.exceptions import (
    AggregateExtractionError,
    IngestionError,
    NotFoundError,
    PipelineError,
    SessionStateError,
    UnauthorizedError,
)
from studyprep.ingestion.download import DownloadManager
from studyprep.ingestion.validators import UrlSigner, resolve_download_url
from studyprep.parsing.dispatcher import ExtractionDispatcher
from studyprep.storage.sessions import SessionStore

from .chunker import TextChunker
from .content import StudyMaterialGenerator
from .types import (
    ChunkRecord,
    ExtractionOutcome,
    FileRef,
    ProcessingError,
    Session,
    SessionRunResult,
    SessionStatus,
    StudyMaterials,
)

__all__: list[str] = ["SessionPipeline", "utc_now"]

logger = structlog.get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _error_text(exc: BaseException) -> str:
    if isinstance(exc, (IngestionError, PipelineError)):
        return exc.message
    return str(exc) or exc.__class__.__name__


class SessionPipeline:
    def __init__(
        self,
        store: SessionStore,
        downloader: DownloadManager,
        dispatcher: ExtractionDispatcher,
        chunker: TextChunker,
        materials: Optional[StudyMaterialGenerator] = None,
        *,
        signer: Optional[UrlSigner] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._downloader = downloader
        self._dispatcher = dispatcher
        self._chunker = chunker
        self._materials = materials
        self._signer = signer
        self._clock = clock

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_runnable(self, session_id: str, requesting_user_id: str) -> Session:
        """Return the session if *requesting_user_id* may (re)process it.

        Raises
        ------
        NotFoundError
            The session does not exist.
        UnauthorizedError
            The requester is not the owner.
        SessionStateError
            The session already reached a terminal status.
        """
        session = await self._store.get(session_id)
        if session.user_id != requesting_user_id:
            raise UnauthorizedError(
                "Unauthorized access to this session.", session_id=session_id
            )
        if not session.status.can_transition_to(SessionStatus.processing):
            raise SessionStateError(
                f"Session is already {session.status.value}.", session_id=session_id
            )
        return session

    # ------------------------------------------------------------------
    # Per-file work
    # ------------------------------------------------------------------

    async def _process_file(self, file_ref: FileRef) -> Tuple[ExtractionOutcome, List[ChunkRecord]]:
        name = file_ref.file_name
        try:
            url = resolve_download_url(file_ref, self._signer)
            data = await self._downloader.fetch(url, name)
            extracted = await self._dispatcher.extract(data, name, file_ref.media_type)
            chunks = self._chunker.chunk(extracted.text, name, file_ref.media_type)
        except IngestionError as exc:
            error = ProcessingError(file_name=name, message=exc.message, stage=exc.stage)
            logger.warning("file_processing_failed", file_name=name, stage=exc.stage, error=exc.message)
            return ExtractionOutcome(file_name=name, error=error), []
        except Exception as exc:  # noqa: BLE001 – one bad file must not abort the batch
            error = ProcessingError(file_name=name, message=_error_text(exc), stage="unexpected")
            logger.error("file_processing_crashed", file_name=name, error=str(exc), exc_info=True)
            return ExtractionOutcome(file_name=name, error=error), []

        logger.info(
            "file_processed",
            file_name=name,
            method=extracted.method,
            chars=len(extracted.text),
            chunks=len(chunks),
            low_confidence=extracted.low_confidence,
        )
        return ExtractionOutcome(file_name=name, text=extracted.text, source=extracted.method), chunks

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def _execute(self, session: Session) -> SessionRunResult:
        await self._store.update(
            session.id, {"status": SessionStatus.processing, "error_message": None}
        )
        logger.info("session_processing_started", files=len(session.files))

        texts: List[str] = []
        successful: List[str] = []
        errors: List[ProcessingError] = []
        chunks: List[ChunkRecord] = []

        for file_ref in session.files:
            outcome, file_chunks = await self._process_file(file_ref)
            if outcome.ok:
                successful.append(outcome.file_name)
                texts.append(outcome.text or "")
                chunks.extend(file_chunks)
            elif outcome.error is not None:
                errors.append(outcome.error)

        full_text = "\n\n".join(texts)
        if not full_text.strip():
            raise AggregateExtractionError(errors, session_id=session.id)

        materials = StudyMaterials()
        if self._materials is not None:
            materials = await self._materials.generate(full_text, session.preferences)

        status = SessionStatus.completed_with_errors if errors else SessionStatus.completed
        result = SessionRunResult(
            session_id=session.id,
            status=status,
            successful_files=successful,
            errors=errors,
            total_text_length=len(full_text),
            total_chunks=len(chunks),
            chunks=chunks,
            materials=materials,
        )

        current = await self._store.get(session.id)
        if current.status.is_terminal:
            logger.warning("session_already_terminal", status=current.status.value)
            raise SessionStateError(
                f"Session is already {current.status.value}.", session_id=session.id
            )
        await self._store.update(session.id, self._terminal_fields(result))
        return result

    def _terminal_fields(self, result: SessionRunResult) -> Dict[str, Any]:
        return {
            "status": result.status,
            "summary": result.materials.summary,
            "flashcards": result.materials.flashcards,
            "study_guide": result.materials.study_guide,
            "total_text_length": result.total_text_length,
            "total_chunks": result.total_chunks,
            "successful_files": result.successful_files,
            "processing_errors": [str(error) for error in result.errors] or None,
            "error_message": None,
            "processed_at": self._clock().isoformat(),
        }

    async def _mark_failed(self, session_id: str, exc: BaseException) -> None:
        """Persist ``failed`` unless another run already finished the session."""
        try:
            current = await self._store.get(session_id)
            if current.status.is_terminal:
                logger.warning(
                    "session_failure_skipped",
                    error=_error_text(exc),
                    status=current.status.value,
                )
                return
            await self._store.update(
                session_id,
                {
                    "status": SessionStatus.failed,
                    "error_message": _error_text(exc),
                    "processed_at": self._clock().isoformat(),
                },
            )
        except Exception as persist_exc:  # noqa: BLE001
            logger.error(
                "session_failure_not_persisted",
                error=_error_text(exc),
                persist_error=str(persist_exc),
                exc_info=True,
            )
        else:
            logger.info("session_marked_failed", error=_error_text(exc))

    async def run(self, session_id: str, requesting_user_id: str) -> SessionRunResult:
        """Process every file of *session_id* and persist one terminal outcome."""
        start = time.perf_counter()
        with structlog.contextvars.bound_contextvars(session_id=session_id):
            try:
                session = await self.load_runnable(session_id, requesting_user_id)
                result = await self._execute(session)
            except (NotFoundError, SessionStateError) as exc:
                logger.warning("session_not_runnable", error=exc.message)
                raise
            except Exception as exc:
                logger.error("session_processing_failed", error=_error_text(exc), exc_info=True)
                await self._mark_failed(session_id, exc)
                raise

            logger.info(
                "session_processing_completed",
                status=result.status.value,
                successful_files=len(result.successful_files),
                failed_files=len(result.errors),
                total_chunks=result.total_chunks,
                processing_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            return result
