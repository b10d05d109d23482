"""
Service layer for session processing.

:class:`ProcessingService` wires settings into the concrete collaborators
(session store, download manager, OCR pool and controller, dispatcher,
chunker, study material generator) and owns the background tasks running
:class:`~studyprep.pipeline.orchestrator.SessionPipeline`.

The hosting application calls :meth:`ProcessingService.shutdown` on exit so
in-flight runs finish and the OCR pool and Redis client are released.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Set

import structlog

from studyprep.core.config import Settings, get_settings
from studyprep.core.exceptions import PipelineError, SessionStateError
from studyprep.ingestion.download import DownloadManager
from studyprep.ingestion.validators import UrlSigner
from studyprep.llm.openai_client import OpenAIContentGenerator
from studyprep.ocr.engine import OcrEngine
from studyprep.ocr.retry import OcrRetryController
from studyprep.ocr.worker import OcrWorkerPool
from studyprep.parsing.dispatcher import ExtractionDispatcher
from studyprep.pipeline.chunker import TextChunker
from studyprep.pipeline.content import ContentGenerator, StudyMaterialGenerator
from studyprep.pipeline.orchestrator import SessionPipeline
from studyprep.pipeline.types import Session, SessionRunResult, SessionStatus
from studyprep.storage.sessions import RedisSessionStore, SessionStore

__all__: list[str] = ["ProcessingService"]

logger = structlog.get_logger(__name__)


class ProcessingService:
    def __init__(
        self,
        store: SessionStore,
        pipeline: SessionPipeline,
        ocr_pool: Optional[OcrWorkerPool] = None,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self._ocr_pool = ocr_pool
        self._tasks: Set["asyncio.Task[Any]"] = set()
        self._active: Set[str] = set()
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        store: Optional[SessionStore] = None,
        ocr_engine: Optional[OcrEngine] = None,
        content_generator: Optional[ContentGenerator] = None,
        downloader: Optional[DownloadManager] = None,
        signer: Optional[UrlSigner] = None,
    ) -> "ProcessingService":
        settings = settings or get_settings()
        store = store or RedisSessionStore.from_settings(settings)
        pool = OcrWorkerPool.from_settings(settings, engine=ocr_engine)
        controller = OcrRetryController.from_settings(pool, settings)
        generator = content_generator or OpenAIContentGenerator.from_settings(settings)
        pipeline = SessionPipeline(
            store,
            downloader or DownloadManager.from_settings(settings),
            ExtractionDispatcher.from_settings(settings, ocr=controller),
            TextChunker.from_settings(settings),
            StudyMaterialGenerator.from_settings(generator, settings),
            signer=signer,
        )
        logger.info(
            "processing_service_ready",
            download_strategies=settings.download_strategies,
            ocr_pool_size=pool.size,
            llm_model=settings.llm_model,
        )
        return cls(store, pipeline, ocr_pool=pool)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def get_session(self, session_id: str) -> Session:
        return await self.store.get(session_id)

    async def start(self, session_id: str, user_id: str) -> SessionStatus:
        """Validate the request synchronously, then run the session in the background.

        Ownership and state errors surface to the caller immediately; the run
        itself reports through the persisted session.
        """
        if self._closed:
            raise RuntimeError("Processing service is shutting down")
        # Claimed before the first await so concurrent starts cannot both pass.
        if session_id in self._active:
            raise SessionStateError(
                f"Session {session_id} is already being processed.", session_id=session_id
            )
        self._active.add(session_id)
        try:
            await self.pipeline.load_runnable(session_id, user_id)
        except BaseException:
            self._active.discard(session_id)
            raise

        task = asyncio.create_task(self._run(session_id, user_id), name=f"session:{session_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(lambda _task: self._active.discard(session_id))
        logger.info("session_processing_scheduled", session_id=session_id)
        return SessionStatus.processing

    async def _run(self, session_id: str, user_id: str) -> Optional[SessionRunResult]:
        try:
            result = await self.pipeline.run(session_id, user_id)
        except PipelineError as exc:
            logger.warning("background_run_failed", session_id=session_id, error=exc.message)
        except Exception as exc:  # noqa: BLE001 – background task boundary
            logger.error(
                "background_run_crashed", session_id=session_id, error=str(exc), exc_info=True
            )
        else:
            logger.info("background_run_finished", **result.dict())
            return result
        return None

    async def shutdown(self) -> None:
        """Await in-flight runs, then release the OCR pool and the store client."""
        if self._closed:
            return
        self._closed = True
        if self._tasks:
            logger.info("processing_service_draining", in_flight=len(self._tasks))
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._ocr_pool is not None:
            await self._ocr_pool.shutdown()
        close = getattr(self.store, "close", None)
        if close is not None:
            await close()
        logger.info("processing_service_shutdown")
