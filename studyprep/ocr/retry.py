"""studyprep/ocr/retry.py
###############################################################################
Confidence-driven OCR retries
###############################################################################
OCR output quality varies between runs, especially on freshly initialised
engines.  :class:`OcrRetryController` therefore treats a recognition as
*accepted* only when its confidence reaches the policy threshold (70 by
default) and its text is non-empty.  Anything else is retried on a fresh
worker, keeping the best result seen so far:

* accepted result → returned immediately;
* attempts exhausted → best non-empty result, flagged ``low_confidence``;
* every attempt recognised blank text → a blank low-confidence result;
* every attempt raised → :class:`~studyprep.core.exceptions.OCRError`.

Errors that point at a broken worker terminate it straight away so the next
attempt re-initialises the engine.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Final, Optional

import structlog

from studyprep.core.config import Settings, get_settings
from studyprep.core.exceptions import OCRError

from .worker import OcrWorkerPool

__all__: list[str] = ["OcrResult", "OcrRetryController", "is_worker_corruption"]

logger = structlog.get_logger(__name__)

_CORRUPTION_MARKERS: Final[tuple[str, ...]] = ("worker", "tesseract")


@dataclass(frozen=True)
class OcrResult:
    """Recognised text with its confidence on a 0..100 scale."""

    text: str
    confidence: float
    attempts: int
    low_confidence: bool = False


def is_worker_corruption(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _CORRUPTION_MARKERS)


class OcrRetryController:
    def __init__(
        self,
        pool: OcrWorkerPool,
        *,
        acceptance_confidence: float = 70.0,
        retry_delay_seconds: float = 1.0,
        attempt_timeout_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._pool = pool
        self._threshold = acceptance_confidence
        self._retry_delay = retry_delay_seconds
        self._timeout = attempt_timeout_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls, pool: OcrWorkerPool, settings: Optional[Settings] = None
    ) -> "OcrRetryController":
        settings = settings or get_settings()
        return cls(
            pool,
            acceptance_confidence=settings.ocr_acceptance_confidence,
            retry_delay_seconds=settings.ocr_retry_delay_seconds,
            attempt_timeout_seconds=settings.ocr_timeout_seconds,
        )

    @property
    def acceptance_confidence(self) -> float:
        return self._threshold

    async def recognize_with_retry(
        self,
        data: bytes,
        media_type: str,
        max_attempts: int,
        *,
        file_name: Optional[str] = None,
    ) -> OcrResult:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        best: Optional[OcrResult] = None
        blank_seen = False
        last_exc: Optional[BaseException] = None

        async with self._pool.acquire() as worker:
            for attempt in range(1, max_attempts + 1):
                try:
                    recognition = await worker.recognize(data, media_type, timeout=self._timeout)
                except Exception as exc:  # noqa: BLE001
                    last_exc = exc
                    timed_out = isinstance(exc, asyncio.TimeoutError)
                    logger.warning(
                        "ocr_attempt_failed",
                        file_name=file_name,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        error="timed out" if timed_out else str(exc),
                    )
                    if is_worker_corruption(exc):
                        await worker.terminate()
                else:
                    text = recognition.text.strip()
                    confidence = round(recognition.confidence * 100, 2)

                    if text and confidence >= self._threshold:
                        logger.info(
                            "ocr_accepted",
                            file_name=file_name,
                            attempt=attempt,
                            confidence=confidence,
                        )
                        return OcrResult(text=text, confidence=confidence, attempts=attempt)

                    if text:
                        if best is None or confidence > best.confidence:
                            best = OcrResult(
                                text=text,
                                confidence=confidence,
                                attempts=attempt,
                                low_confidence=True,
                            )
                    else:
                        blank_seen = True

                    logger.info(
                        "ocr_below_threshold",
                        file_name=file_name,
                        attempt=attempt,
                        confidence=confidence,
                        threshold=self._threshold,
                        blank=not text,
                    )

                if attempt < max_attempts:
                    await worker.terminate()
                    await self._sleep(self._retry_delay)

        if best is not None:
            logger.warning(
                "ocr_low_confidence_accepted",
                file_name=file_name,
                confidence=best.confidence,
                attempt=best.attempts,
                max_attempts=max_attempts,
            )
            return OcrResult(
                text=best.text,
                confidence=best.confidence,
                attempts=max_attempts,
                low_confidence=True,
            )

        if blank_seen:
            logger.warning("ocr_blank_output", file_name=file_name, max_attempts=max_attempts)
            return OcrResult(text="", confidence=0.0, attempts=max_attempts, low_confidence=True)

        reason = (
            "timed out"
            if isinstance(last_exc, asyncio.TimeoutError)
            else (str(last_exc) or last_exc.__class__.__name__)
        )
        raise OCRError(
            f"OCR failed after {max_attempts} attempts: {reason}",
            file_name=file_name,
            cause=last_exc,
            attempts=max_attempts,
        )
