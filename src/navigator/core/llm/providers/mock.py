"""Mock LLM provider for testing and key-less local runs."""

from __future__ import annotations

import json
from typing import Any

from navigator.core.llm.provider import ProviderResponse

DEFAULT_MOCK_RESULT: dict[str, str] = {
    "dietaryRecommendations": "Mock dietary recommendations.",
    "exerciseRecommendations": "Mock exercise recommendations.",
    "stressManagementTechniques": "Mock stress management techniques.",
    "healthAlerts": "None identified.",
}


class MockProvider:
    """Mock provider — returns a canned JSON document, or raises a configured error."""

    def __init__(
        self,
        response_content: str | None = None,
        error: Exception | None = None,
    ) -> None:
        self.response_content = (
            response_content if response_content is not None else json.dumps(DEFAULT_MOCK_RESULT)
        )
        self.error = error
        self.last_prompt: str = ""
        self.last_generation_config: dict[str, Any] = {}
        self.call_count: int = 0

    @property
    def name(self) -> str:
        return "mock"

    async def generate(
        self,
        prompt: str,
        generation_config: dict[str, Any],
    ) -> ProviderResponse:
        self.last_prompt = prompt
        self.last_generation_config = generation_config
        self.call_count += 1
        if self.error is not None:
            raise self.error
        return ProviderResponse(
            content=self.response_content,
            input_tokens=len(prompt.split()),
            output_tokens=len(self.response_content.split()),
            model="mock",
            latency_ms=0.0,
        )
