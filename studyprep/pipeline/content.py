from __future__ import annotations

import asyncio
import json
import re
from typing import Any, List, Optional, Protocol

import structlog

from studyprep.core.config import Settings, get_settings

from .types import Flashcard, ProcessingPreferences, StudyMaterials

__all__: list[str] = [
    "ContentGenerator",
    "StudyMaterialGenerator",
    "SUMMARY_ERROR",
    "STUDY_GUIDE_ERROR",
    "FLASHCARDS_ERROR",
    "FLASHCARDS_PARSE_ERROR",
    "parse_flashcards",
]

logger = structlog.get_logger(__name__)

SUMMARY_ERROR = "Error generating summary."
STUDY_GUIDE_ERROR = "Error generating study guide."
FLASHCARDS_ERROR = Flashcard(question="Error generating flashcards.", answer="Please try again.")
FLASHCARDS_PARSE_ERROR = "Failed to parse flashcards."

_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?```$", re.DOTALL)

_SUMMARY_PROMPT = (
    "Please summarize the following lecture content:\n\n{text}\n\n"
    "Provide a concise summary."
)
_FLASHCARDS_PROMPT = (
    "From the following lecture content, generate 5-10 question-answer flashcards. "
    "Return them as a JSON array of objects, each with 'question' and 'answer' keys.\n"
    "Example:\n"
    "[\n"
    '  {{"question": "What is A?", "answer": "B"}},\n'
    '  {{"question": "How does C work?", "answer": "D"}}\n'
    "]\n\n"
    "Content:\n\n{text}"
)
_STUDY_GUIDE_PROMPT = (
    "Create a detailed study guide from the following lecture content. "
    "Include key concepts, important terms, and potential discussion points:\n\n"
    "{text}\n\nProvide a comprehensive study guide."
)


class ContentGenerator(Protocol):
    async def generate(self, prompt: str) -> str:  # pragma: no cover - protocol
        ...


def parse_flashcards(raw: str) -> List[Flashcard]:
    """Parse a JSON array of ``{question, answer}`` objects.

    A surrounding Markdown code fence is tolerated.  Raises ``ValueError`` when
    the payload is not a list of well-formed cards.
    """
    payload = raw.strip()
    fenced = _CODE_FENCE.match(payload)
    if fenced:
        payload = fenced.group(1).strip()

    data: Any = json.loads(payload)
    if not isinstance(data, list):
        raise ValueError("flashcards payload is not a JSON array")

    cards: List[Flashcard] = []
    for item in data:
        if not isinstance(item, dict) or "question" not in item or "answer" not in item:
            raise ValueError("flashcard entries need 'question' and 'answer'")
        cards.append(Flashcard(question=str(item["question"]), answer=str(item["answer"])))
    return cards


class StudyMaterialGenerator:
    """Produce summary, flashcards and study guide from a session's full text.

    Each call is independent: a failure degrades only its own field to a
    placeholder.  Fields whose preference is off stay empty.
    """

    def __init__(self, generator: ContentGenerator, *, timeout_seconds: float = 120.0) -> None:
        self._generator = generator
        self._timeout = timeout_seconds

    @classmethod
    def from_settings(
        cls, generator: ContentGenerator, settings: Optional[Settings] = None
    ) -> "StudyMaterialGenerator":
        settings = settings or get_settings()
        return cls(generator, timeout_seconds=settings.llm_timeout_seconds)

    async def _call(self, prompt: str) -> str:
        return await asyncio.wait_for(self._generator.generate(prompt), timeout=self._timeout)

    async def _summary(self, text: str) -> str:
        try:
            return await self._call(_SUMMARY_PROMPT.format(text=text))
        except Exception:  # noqa: BLE001
            logger.error("summary_generation_failed", exc_info=True)
            return SUMMARY_ERROR

    async def _flashcards(self, text: str) -> List[Flashcard]:
        try:
            raw = await self._call(_FLASHCARDS_PROMPT.format(text=text))
        except Exception:  # noqa: BLE001
            logger.error("flashcards_generation_failed", exc_info=True)
            return [FLASHCARDS_ERROR]

        try:
            cards = parse_flashcards(raw)
        except ValueError:
            logger.warning("flashcards_parse_failed", raw_chars=len(raw))
            return [Flashcard(question=FLASHCARDS_PARSE_ERROR, answer=raw)]
        logger.info("flashcards_generated", count=len(cards))
        return cards

    async def _study_guide(self, text: str) -> str:
        try:
            return await self._call(_STUDY_GUIDE_PROMPT.format(text=text))
        except Exception:  # noqa: BLE001
            logger.error("study_guide_generation_failed", exc_info=True)
            return STUDY_GUIDE_ERROR

    async def generate(self, text: str, preferences: ProcessingPreferences) -> StudyMaterials:
        materials = StudyMaterials()
        if preferences.generate_summary:
            materials.summary = await self._summary(text)
        if preferences.generate_flashcards:
            materials.flashcards = await self._flashcards(text)
        if preferences.generate_study_guide:
            materials.study_guide = await self._study_guide(text)
        return materials
