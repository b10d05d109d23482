from __future__ import annotations

import asyncio
from io import BytesIO

import structlog
from pdfminer.high_level import extract_text

__all__: list[str] = ["extract_text_from_pdf", "PDFException"]

logger = structlog.get_logger(__name__)


class PDFException(Exception):
    """Custom exception for PDF parsing errors within the parsing layer."""


async def extract_text_from_pdf(data: bytes) -> str:
    """
    Extract the embedded text layer of a PDF using pdfminer.six.

    Args:
        data: Raw PDF bytes

    Returns:
        Extracted text, possibly empty for scanned (image-only) documents.

    Raises:
        PDFException: If pdfminer cannot parse the document.
    """

    def _worker(pdf_content: bytes) -> str:
        try:
            return extract_text(BytesIO(pdf_content)) or ""
        except Exception as exc:
            raise PDFException(f"Unable to parse PDF: {exc}") from exc

    text = await asyncio.to_thread(_worker, data)
    logger.debug("pdf_text_extracted", chars=len(text))
    return text
