"""
Text Chunker

Splits a file's extracted text into bounded, overlapping windows for
downstream consumption (prompting, indexing) with LangChain's
``RecursiveCharacterTextSplitter``.

Each window is at most ``chunk_size`` characters and ends at the strongest
natural boundary available inside that size:

  1. paragraph break  ``\\n\\n``
  2. line break       ``\\n``
  3. sentence end     ``. ``
  4. word boundary    `` ``
  5. hard character cut (only when none of the above exists)

Separators stay attached to the end of the piece they close and whitespace is
never stripped, so every window is an exact slice of the input.  The splitter
records each window's offset (``start_index``); overlap is made of whole
trailing pieces of the previous window, at most ``chunk_overlap`` characters.
"""

from __future__ import annotations

from typing import Final, List, Optional, Sequence

import structlog
from langchain_text_splitters import RecursiveCharacterTextSplitter

from studyprep.core.config import Settings, get_settings

from .types import ChunkRecord

__all__: list[str] = ["TextChunker", "reconstruct", "SEPARATORS"]

logger = structlog.get_logger(__name__)

SEPARATORS: Final[List[str]] = ["\n\n", "\n", ". ", " ", ""]


def reconstruct(chunks: Sequence[ChunkRecord]) -> str:
    """Concatenate *chunks* of one file, dropping each chunk's leading overlap."""
    parts: List[str] = []
    covered = 0
    for chunk in chunks:
        skip = max(covered - chunk.start_index, 0)
        parts.append(chunk.text[skip:])
        covered = chunk.start_index + len(chunk.text)
    return "".join(parts)


class TextChunker:
    """Pure, configuration-driven splitter producing :class:`ChunkRecord` lists."""

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be greater than 0")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError("chunk_overlap must be within [0, chunk_size)")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=SEPARATORS,
            keep_separator="end",
            strip_whitespace=False,
            add_start_index=True,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "TextChunker":
        settings = settings or get_settings()
        return cls(settings.chunk_size, settings.chunk_overlap)

    def chunk(self, text: str, file_name: str, media_type: str) -> List[ChunkRecord]:
        if not text.strip():
            return []

        documents = self._splitter.create_documents([text])
        chunks = [
            ChunkRecord(
                text=document.page_content,
                source=file_name,
                media_type=media_type,
                index=index,
                start_index=int(document.metadata["start_index"]),
            )
            for index, document in enumerate(documents)
        ]
        logger.debug("text_chunked", file_name=file_name, chunks=len(chunks), chars=len(text))
        return chunks
