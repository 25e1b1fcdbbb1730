"""Google Gemini provider."""

from __future__ import annotations

import re
import time
from typing import Any

from navigator.core.llm.provider import ProviderError, ProviderResponse

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL.sub("_", key).lower()


def _sdk_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Rename schema keywords to the SDK's field names; property names are kept."""
    converted: dict[str, Any] = {}
    for key, value in schema.items():
        if key == "properties" and isinstance(value, dict):
            converted["properties"] = {
                name: _sdk_schema(sub) if isinstance(sub, dict) else sub
                for name, sub in value.items()
            }
        elif key == "items" and isinstance(value, dict):
            converted["items"] = _sdk_schema(value)
        else:
            converted[_snake(key)] = value
    return converted


def to_sdk_config(generation_config: dict[str, Any]) -> dict[str, Any]:
    """Translate a wire-format ``generationConfig`` into ``GenerateContentConfig`` kwargs.

    ``{"responseMimeType": ..., "responseSchema": {..., "propertyOrdering": [...]}}``
    becomes ``{"response_mime_type": ..., "response_schema": {..., "property_ordering": [...]}}``.
    """
    config: dict[str, Any] = {}
    for key, value in generation_config.items():
        name = _snake(key)
        if name == "response_schema" and isinstance(value, dict):
            config[name] = _sdk_schema(value)
        else:
            config[name] = value
    return config


class GeminiProvider:
    """Gemini provider using the google-genai SDK."""

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash") -> None:
        from google import genai

        self.client = genai.Client(api_key=api_key)
        self.model = model

    @property
    def name(self) -> str:
        return "gemini"

    async def generate(
        self,
        prompt: str,
        generation_config: dict[str, Any],
    ) -> ProviderResponse:
        start = time.monotonic()
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=[{"role": "user", "parts": [{"text": prompt}]}],
            config=to_sdk_config(generation_config),
        )
        elapsed_ms = (time.monotonic() - start) * 1000

        candidates = response.candidates or []
        if not candidates:
            raise ProviderError("Model response contained no candidates")
        content = candidates[0].content
        parts = content.parts if content is not None else None
        if not parts or parts[0].text is None:
            raise ProviderError("First candidate contained no text part")

        usage = response.usage_metadata
        return ProviderResponse(
            content=parts[0].text,
            input_tokens=(usage.prompt_token_count or 0) if usage else 0,
            output_tokens=(usage.candidates_token_count or 0) if usage else 0,
            model=self.model,
            latency_ms=elapsed_ms,
        )
