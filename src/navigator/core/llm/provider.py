"""LLM provider protocol — abstract interface for structured-output model calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass
class ProviderResponse:
    """Response from an LLM provider: the text of the first candidate."""

    content: str
    input_tokens: int
    output_tokens: int
    model: str
    latency_ms: float


class ProviderError(Exception):
    """The model call failed or produced no usable candidate."""


@runtime_checkable
class LLMProvider(Protocol):
    """Abstract interface for the model behind the recommendation proxy."""

    @property
    def name(self) -> str: ...

    async def generate(
        self,
        prompt: str,
        generation_config: dict[str, Any],
    ) -> ProviderResponse: ...


def create_provider(
    provider_name: str,
    api_key: str = "",
    model: str = "",
) -> LLMProvider:
    """Factory function to create an LLM provider by name.

    Args:
        provider_name: "gemini" or "mock"
        api_key: API key for the provider.
        model: Model identifier override.

    Returns:
        An LLMProvider instance.
    """
    if provider_name == "gemini":
        from navigator.core.llm.providers.gemini import GeminiProvider

        return GeminiProvider(api_key=api_key, model=model or "gemini-2.0-flash")
    elif provider_name == "mock":
        from navigator.core.llm.providers.mock import MockProvider

        return MockProvider()
    else:
        raise ValueError(f"Unknown LLM provider: {provider_name}")
