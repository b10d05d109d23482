"""studyprep/parsing/docx.py
###############################################################################
DOCX text extraction using docx2txt
###############################################################################
"""

from __future__ import annotations

import asyncio
import tempfile

import docx2txt

__all__: list[str] = ["extract_text_from_docx", "DocxException"]


class DocxException(Exception):
    """Raised when a Word document cannot be read."""


async def extract_text_from_docx(data: bytes) -> str:
    """
    Extract text content from a DOCX file using docx2txt.

    Args:
        data: Raw DOCX bytes

    Returns:
        Extracted text content as a string

    Raises:
        DocxException: If the archive is not a readable Word document.
    """

    def _worker(docx_content: bytes) -> str:
        # docx2txt needs a path on disk
        with tempfile.NamedTemporaryFile(suffix=".docx", delete=True) as temp_file:
            temp_file.write(docx_content)
            temp_file.flush()

            try:
                return docx2txt.process(temp_file.name) or ""
            except Exception as exc:
                raise DocxException(f"Unable to read DOCX: {exc}") from exc

    return await asyncio.to_thread(_worker, data)
