"""
OpenAI chat-completions content generator.

Implements the ``ContentGenerator`` boundary (``generate(prompt) -> str``)
used for study material.  Requires ``OPENAI_API_KEY``.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog
from openai import AsyncOpenAI

from studyprep.core.config import Settings, get_settings

__all__: list[str] = ["LLMError", "OpenAIContentGenerator"]

logger = structlog.get_logger(__name__)


class LLMError(Exception):
    """Raised when the model call fails or returns no content."""


class OpenAIContentGenerator:
    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        temperature: float = 0.7,
        client: Optional[Any] = None,
    ) -> None:
        self._api_key = api_key
        self._model_name = model
        self._temperature = temperature
        self._client = client

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "OpenAIContentGenerator":
        settings = settings or get_settings()
        return cls(
            api_key=settings.openai_api_key,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
        )

    @property
    def client(self) -> Any:
        """Lazily build the SDK client so a missing key only fails at call time."""
        if self._client is None:
            if not self._api_key:
                raise LLMError("OPENAI_API_KEY not set.")
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    @property
    def model_name(self) -> str:
        return self._model_name

    async def generate(self, prompt: str) -> str:
        """Send *prompt* as a single user message and return the reply text."""
        client = self.client
        try:
            response = await client.chat.completions.create(
                model=self._model_name,
                messages=[{"role": "user", "content": prompt}],
                temperature=self._temperature,
            )
        except Exception as exc:
            raise LLMError(f"OpenAI generation failed: {exc}") from exc

        if response.choices and response.choices[0].message.content:
            if response.usage:
                logger.debug(
                    "llm_usage",
                    model=self._model_name,
                    prompt_tokens=response.usage.prompt_tokens,
                    completion_tokens=response.usage.completion_tokens,
                )
            return response.choices[0].message.content.strip()
        raise LLMError("Empty response from OpenAI")
