"""studyprep/ocr/engine.py
###############################################################################
OCR engine boundary and the Tesseract adapter
###############################################################################
The retry controller and worker only ever talk to an :class:`OcrEngine`:

* ``initialize(config) -> handle`` – prepare a recogniser (may be slow).
* ``recognize(handle, data, media_type) -> Recognition`` – text plus a
  confidence *ratio* in ``0..1``.
* ``terminate(handle)`` – release whatever ``initialize`` acquired.

:class:`TesseractEngine` implements the boundary with pytesseract.  Pillow
decodes raster images; PDFs are first rendered page by page with PyMuPDF.
Tesseract is CPU-bound, so every call is off-loaded via
``asyncio.to_thread()`` to keep the event loop responsive.

Assumptions / Limitations
-------------------------
• The Tesseract binary is **not** a Python dependency; the runtime image must
  provide it (e.g. ``apt-get install tesseract-ocr``).
• Presentation archives (``.pptx``) are not rasterised; Pillow rejects them and
  the attempt fails like any other recognition error.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, List, Protocol, Tuple

import fitz  # PyMuPDF
import pytesseract
import structlog
from PIL import Image

__all__: list[str] = [
    "OcrConfig",
    "Recognition",
    "OcrEngine",
    "TesseractEngine",
]

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OcrConfig:
    language: str = "eng"
    page_segmentation_mode: int = 3
    pdf_dpi: int = 200


@dataclass(frozen=True)
class Recognition:
    """Raw engine output; *confidence* is a ratio between 0 and 1."""

    text: str
    confidence: float


class OcrEngine(Protocol):
    async def initialize(self, config: OcrConfig) -> Any:  # pragma: no cover
        ...

    async def recognize(
        self, handle: Any, data: bytes, media_type: str
    ) -> Recognition:  # pragma: no cover
        ...

    async def terminate(self, handle: Any) -> None:  # pragma: no cover
        ...


@dataclass(frozen=True)
class _TesseractHandle:
    language: str
    config: str
    pdf_dpi: int


def _render_pdf_pages(data: bytes, dpi: int) -> List[Image.Image]:
    images: List[Image.Image] = []
    with fitz.open(stream=data, filetype="pdf") as doc:
        for page in doc:
            pix = page.get_pixmap(dpi=dpi, alpha=False)
            images.append(Image.frombytes("RGB", (pix.width, pix.height), pix.samples))
    return images


def _load_images(data: bytes, media_type: str, dpi: int) -> List[Image.Image]:
    if media_type == "application/pdf":
        return _render_pdf_pages(data, dpi)
    with Image.open(BytesIO(data)) as img:
        return [img.convert("RGB")]


def _recognize_image(image: Image.Image, handle: _TesseractHandle) -> Tuple[str, List[float]]:
    """Rebuild line-structured text from word boxes and collect word confidences."""
    result: Dict[str, List[Any]] = pytesseract.image_to_data(
        image,
        lang=handle.language,
        config=handle.config,
        output_type=pytesseract.Output.DICT,
    )

    lines: Dict[Tuple[int, int, int], List[str]] = {}
    confidences: List[float] = []
    for idx, word in enumerate(result.get("text", [])):
        word = (word or "").strip()
        conf = float(result["conf"][idx])
        if not word or conf < 0:
            continue
        key = (
            int(result["block_num"][idx]),
            int(result["par_num"][idx]),
            int(result["line_num"][idx]),
        )
        lines.setdefault(key, []).append(word)
        confidences.append(conf)

    text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
    return text, confidences


class TesseractEngine:
    """pytesseract backed :class:`OcrEngine`."""

    async def initialize(self, config: OcrConfig) -> _TesseractHandle:
        # Fails fast with TesseractNotFoundError when the binary is missing.
        version = await asyncio.to_thread(pytesseract.get_tesseract_version)
        logger.info(
            "tesseract_initialized",
            version=str(version),
            language=config.language,
            psm=config.page_segmentation_mode,
        )
        return _TesseractHandle(
            language=config.language,
            config=f"--oem 3 --psm {config.page_segmentation_mode}",
            pdf_dpi=config.pdf_dpi,
        )

    async def recognize(
        self, handle: _TesseractHandle, data: bytes, media_type: str
    ) -> Recognition:
        def _worker() -> Recognition:
            pages: List[str] = []
            confidences: List[float] = []
            for image in _load_images(data, media_type, handle.pdf_dpi):
                text, confs = _recognize_image(image, handle)
                if text.strip():
                    pages.append(text)
                confidences.extend(confs)
            ratio = (sum(confidences) / len(confidences) / 100.0) if confidences else 0.0
            return Recognition(text="\n\n".join(pages), confidence=ratio)

        return await asyncio.to_thread(_worker)

    async def terminate(self, handle: _TesseractHandle) -> None:
        # pytesseract spawns a fresh process per call; nothing is held open.
        logger.debug("tesseract_terminated", language=handle.language)
