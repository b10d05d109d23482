"""studyprep/parsing/__init__.py
###############################################################################
Parsing Package Root
###############################################################################
Native text extractors and the per-media-type dispatcher.

Each native extractor takes raw bytes and either returns text or raises a
type-specific exception; CPU-bound work is off-loaded via
``asyncio.to_thread()``.  Fallback chains and OCR live in
:py:mod:`studyprep.parsing.dispatcher`, driven by the route table in
:py:mod:`studyprep.parsing.registry`.
"""

from __future__ import annotations

from .dispatcher import ExtractionDispatcher
from .docx import extract_text_from_docx
from .pdf import extract_text_from_pdf

__all__: list[str] = [
    "ExtractionDispatcher",
    "extract_text_from_pdf",
    "extract_text_from_docx",
]
