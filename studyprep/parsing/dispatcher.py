from __future__ import annotations

from typing import List, Optional, Sequence

import structlog

from studyprep.core.config import Settings, get_settings
from studyprep.core.exceptions import (
    ExtractionAttempt,
    ExtractionError,
    OCRError,
    UnsupportedFormatError,
)
from studyprep.ocr.retry import OcrRetryController
from studyprep.pipeline.types import ExtractedText

from .registry import ExtractionRoute, build_routes, normalize_media_type

__all__: list[str] = ["ExtractionDispatcher", "NO_TEXT_CONTENT"]

logger = structlog.get_logger(__name__)

NO_TEXT_CONTENT = "no text content"


def _reason(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _chain(attempts: Sequence[ExtractionAttempt]) -> str:
    return " -> ".join(str(attempt) for attempt in attempts)


class ExtractionDispatcher:
    """Select an extraction path per media type and run its fallback chain.

    The returned text is always trimmed and non-empty; every failure lists the
    methods attempted, in order, with their reasons.
    """

    def __init__(
        self,
        routes: Sequence[ExtractionRoute],
        ocr: Optional[OcrRetryController] = None,
    ) -> None:
        self._routes = list(routes)
        self._ocr = ocr

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        ocr: Optional[OcrRetryController] = None,
    ) -> "ExtractionDispatcher":
        return cls(build_routes(settings or get_settings()), ocr=ocr)

    def route_for(self, media_type: str) -> Optional[ExtractionRoute]:
        normalized = normalize_media_type(media_type)
        for route in self._routes:
            if route.matches(normalized):
                return route
        return None

    async def extract(self, data: bytes, file_name: str, media_type: str) -> ExtractedText:
        normalized = normalize_media_type(media_type)
        route = self.route_for(normalized)
        if route is None:
            raise UnsupportedFormatError(
                f"Unsupported file type: {media_type or '<unknown>'}",
                file_name=file_name,
                media_type=media_type,
            )

        log = logger.bind(file_name=file_name, media_type=normalized, route=route.name)
        attempts: List[ExtractionAttempt] = []
        last_exc: Optional[BaseException] = None

        if route.native is not None:
            method = route.method or route.name
            try:
                text = await route.native(data)
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                attempts.append(ExtractionAttempt(method, _reason(exc)))
                log.warning("native_extraction_failed", method=method, error=_reason(exc))
            else:
                stripped = text.strip()
                if stripped:
                    log.info("text_extracted", method=method, chars=len(stripped))
                    return ExtractedText(text=stripped, method=method)
                attempts.append(ExtractionAttempt(method, NO_TEXT_CONTENT))
                log.info("native_extraction_empty", method=method)

            if not route.use_ocr:
                raise ExtractionError(
                    _chain(attempts), file_name=file_name, cause=last_exc, attempts=attempts
                )

        if self._ocr is None:
            attempts.append(ExtractionAttempt("ocr", "no OCR engine configured"))
            raise UnsupportedFormatError(
                _chain(attempts), file_name=file_name, media_type=media_type
            )

        try:
            result = await self._ocr.recognize_with_retry(
                data, normalized, route.ocr_attempts, file_name=file_name
            )
        except OCRError as exc:
            if route.ocr_is_primary:
                raise
            attempts.append(ExtractionAttempt("ocr", exc.message))
            raise ExtractionError(
                _chain(attempts), file_name=file_name, cause=exc, attempts=attempts
            ) from exc

        if not result.text.strip():
            attempts.append(ExtractionAttempt("ocr", NO_TEXT_CONTENT))
            raise ExtractionError(_chain(attempts), file_name=file_name, attempts=attempts)

        log.info(
            "text_extracted",
            method="ocr",
            chars=len(result.text),
            confidence=result.confidence,
            low_confidence=result.low_confidence,
        )
        return ExtractedText(
            text=result.text.strip(),
            method="ocr",
            confidence=result.confidence,
            low_confidence=result.low_confidence,
        )
