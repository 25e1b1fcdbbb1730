"""LLM provider implementations."""

from navigator.core.llm.providers.gemini import GeminiProvider
from navigator.core.llm.providers.mock import MockProvider

__all__ = ["GeminiProvider", "MockProvider"]
