from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, List, Optional

import structlog

from studyprep.core.config import Settings, get_settings

from .engine import OcrConfig, OcrEngine, Recognition, TesseractEngine

__all__: list[str] = ["WorkerState", "OcrWorker", "OcrWorkerPool"]

logger = structlog.get_logger(__name__)


class WorkerState(str, Enum):
    uninitialized = "uninitialized"
    initializing = "initializing"
    ready = "ready"


class OcrWorker:
    """One engine handle plus its lifecycle.

    ``uninitialized → initializing → ready``; ``ready → uninitialized`` on
    :meth:`terminate`.  At most one initialisation is in flight: concurrent
    callers of :meth:`ensure_ready` await the same shared future.
    """

    def __init__(
        self,
        engine: OcrEngine,
        config: OcrConfig,
        *,
        init_timeout: float = 30.0,
        worker_id: int = 0,
    ) -> None:
        self._engine = engine
        self._config = config
        self._init_timeout = init_timeout
        self.worker_id = worker_id
        self._state = WorkerState.uninitialized
        self._handle: Any = None
        self._init_future: Optional[asyncio.Future[Any]] = None

    @property
    def state(self) -> WorkerState:
        return self._state

    async def ensure_ready(self) -> Any:
        """Return the engine handle, initialising the engine if needed."""
        if self._state is WorkerState.ready:
            return self._handle

        if self._init_future is None:
            self._state = WorkerState.initializing
            self._init_future = asyncio.ensure_future(self._initialize())

        # Shielded so one cancelled waiter does not abort the shared init.
        return await asyncio.shield(self._init_future)

    async def _initialize(self) -> Any:
        try:
            handle = await asyncio.wait_for(
                self._engine.initialize(self._config), timeout=self._init_timeout
            )
        except BaseException:
            self._state = WorkerState.uninitialized
            logger.warning("ocr_worker_init_failed", worker_id=self.worker_id, exc_info=True)
            raise
        else:
            self._handle = handle
            self._state = WorkerState.ready
            logger.debug("ocr_worker_ready", worker_id=self.worker_id)
            return handle
        finally:
            self._init_future = None

    async def recognize(self, data: bytes, media_type: str, *, timeout: float) -> Recognition:
        handle = await self.ensure_ready()
        return await asyncio.wait_for(
            self._engine.recognize(handle, data, media_type), timeout=timeout
        )

    async def terminate(self) -> None:
        """Release the engine handle; errors while releasing are logged only."""
        handle, self._handle = self._handle, None
        self._state = WorkerState.uninitialized
        if handle is None:
            return
        try:
            await self._engine.terminate(handle)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "ocr_worker_terminate_failed",
                worker_id=self.worker_id,
                error=str(exc),
            )
        else:
            logger.debug("ocr_worker_terminated", worker_id=self.worker_id)


class OcrWorkerPool:
    """Fixed-size pool of :class:`OcrWorker` instances.

    Workers are borrowed with ``async with pool.acquire() as worker`` and are
    returned on every exit path.  :meth:`shutdown` terminates all workers.
    """

    def __init__(
        self,
        engine: OcrEngine,
        config: Optional[OcrConfig] = None,
        *,
        size: int = 1,
        init_timeout: float = 30.0,
    ) -> None:
        if size < 1:
            raise ValueError("OCR pool size must be at least 1")
        config = config or OcrConfig()
        self._workers: List[OcrWorker] = [
            OcrWorker(engine, config, init_timeout=init_timeout, worker_id=i)
            for i in range(size)
        ]
        self._idle: asyncio.Queue[OcrWorker] = asyncio.Queue()
        for worker in self._workers:
            self._idle.put_nowait(worker)
        self._closed = False

    @classmethod
    def from_settings(
        cls, settings: Optional[Settings] = None, engine: Optional[OcrEngine] = None
    ) -> "OcrWorkerPool":
        settings = settings or get_settings()
        return cls(
            engine or TesseractEngine(),
            OcrConfig(
                language=settings.ocr_language,
                page_segmentation_mode=settings.ocr_page_segmentation_mode,
                pdf_dpi=settings.ocr_pdf_dpi,
            ),
            size=settings.ocr_pool_size,
            init_timeout=settings.ocr_init_timeout_seconds,
        )

    @property
    def size(self) -> int:
        return len(self._workers)

    @property
    def closed(self) -> bool:
        return self._closed

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[OcrWorker]:
        if self._closed:
            raise RuntimeError("OCR worker pool has been shut down")
        worker = await self._idle.get()
        try:
            yield worker
        finally:
            self._idle.put_nowait(worker)

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        for worker in self._workers:
            await worker.terminate()
        logger.info("ocr_pool_shutdown", size=len(self._workers))
