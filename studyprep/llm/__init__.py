from __future__ import annotations

from .openai_client import LLMError, OpenAIContentGenerator  # noqa: F401

__all__: list[str] = ["LLMError", "OpenAIContentGenerator"]
