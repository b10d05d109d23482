"""OCR engine boundary, worker lifecycle and the retry controller."""

from __future__ import annotations

from .engine import OcrConfig, OcrEngine, Recognition, TesseractEngine  # noqa: F401
from .retry import OcrResult, OcrRetryController  # noqa: F401
from .worker import OcrWorker, OcrWorkerPool, WorkerState  # noqa: F401

__all__: list[str] = [
    "OcrConfig",
    "OcrEngine",
    "Recognition",
    "TesseractEngine",
    "OcrResult",
    "OcrRetryController",
    "OcrWorker",
    "OcrWorkerPool",
    "WorkerState",
]
