"""
Extraction Route Registry

This module centralizes the mapping between media types and the way their
text is recovered.  The dispatcher walks :func:`build_routes` in order and the
first matching route wins.

Each route names:
- a *native* extractor (coroutine taking raw bytes) and its method label, or
  none when the format goes straight to OCR;
- whether OCR is used, either as the primary path or as the fallback after
  the native extractor raised or returned blank text;
- the number of OCR attempts for that route.

Word documents deliberately have no OCR fallback: a failing DOCX is reported
as-is while a failing PDF is retried through OCR.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Final, FrozenSet, List, Optional

from studyprep.core.config import Settings

from .docx import extract_text_from_docx
from .pdf import extract_text_from_pdf
from .txt import decode_strict, decode_text

__all__: list[str] = [
    "NativeExtractor",
    "ExtractionRoute",
    "PDF_TYPES",
    "WORD_TYPES",
    "PRESENTATION_TYPES",
    "normalize_media_type",
    "build_routes",
]

NativeExtractor = Callable[[bytes], Awaitable[str]]

PDF_TYPES: Final[FrozenSet[str]] = frozenset({"application/pdf"})
WORD_TYPES: Final[FrozenSet[str]] = frozenset(
    {
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/msword",
    }
)
PRESENTATION_TYPES: Final[FrozenSet[str]] = frozenset(
    {
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/vnd.ms-powerpoint",
    }
)


def normalize_media_type(media_type: Optional[str]) -> str:
    """Lower-case *media_type* and drop parameters such as ``; charset=utf-8``."""
    return (media_type or "").split(";", 1)[0].strip().lower()


async def _decode_lenient(data: bytes) -> str:
    return decode_text(data)


async def _decode_strict(data: bytes) -> str:
    text = decode_strict(data)
    if text is None:
        raise ValueError("payload is not usable UTF-8 text")
    return text


@dataclass(frozen=True)
class ExtractionRoute:
    name: str
    matches: Callable[[str], bool]
    native: Optional[NativeExtractor] = None
    method: Optional[str] = None
    use_ocr: bool = False
    ocr_attempts: int = 0

    @property
    def ocr_is_primary(self) -> bool:
        return self.native is None and self.use_ocr


def build_routes(settings: Settings) -> List[ExtractionRoute]:
    """Return the ordered dispatch table for the configured OCR attempt limits."""
    return [
        ExtractionRoute(
            name="image",
            matches=lambda mt: mt.startswith("image/"),
            use_ocr=True,
            ocr_attempts=settings.ocr_image_attempts,
        ),
        ExtractionRoute(
            name="pdf",
            matches=lambda mt: mt in PDF_TYPES,
            native=extract_text_from_pdf,
            method="pdf-native",
            use_ocr=True,
            ocr_attempts=settings.ocr_fallback_attempts,
        ),
        ExtractionRoute(
            name="word",
            matches=lambda mt: mt in WORD_TYPES,
            native=extract_text_from_docx,
            method="docx-native",
        ),
        ExtractionRoute(
            name="presentation",
            matches=lambda mt: mt in PRESENTATION_TYPES,
            use_ocr=True,
            ocr_attempts=settings.ocr_fallback_attempts,
        ),
        ExtractionRoute(
            name="text",
            matches=lambda mt: mt.startswith("text/"),
            native=_decode_lenient,
            method="utf8",
        ),
        ExtractionRoute(
            name="fallback",
            matches=lambda mt: True,
            native=_decode_strict,
            method="utf8",
            use_ocr=True,
            ocr_attempts=settings.ocr_fallback_attempts,
        ),
    ]
