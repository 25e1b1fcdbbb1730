"""Tests for the LLM provider factory, Gemini config translation and mock provider."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import pytest

from navigator.core.llm.provider import LLMProvider, ProviderError, create_provider
from navigator.core.llm.providers import GeminiProvider, MockProvider
from navigator.core.llm.providers.gemini import to_sdk_config
from navigator.domains.health.recommendations.prompt import build_generation_config


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class _FakeModels:
    def __init__(self, response):
        self.response = response
        self.calls = []

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        return self.response


def _gemini_with(response) -> tuple[GeminiProvider, _FakeModels]:
    provider = GeminiProvider(api_key="test-key")
    models = _FakeModels(response)
    provider.client = SimpleNamespace(aio=SimpleNamespace(models=models))
    return provider, models


def _response(text, *, prompt_tokens=12, output_tokens=34):
    part = SimpleNamespace(text=text)
    candidate = SimpleNamespace(content=SimpleNamespace(parts=[part]))
    usage = SimpleNamespace(
        prompt_token_count=prompt_tokens, candidates_token_count=output_tokens
    )
    return SimpleNamespace(candidates=[candidate], usage_metadata=usage)


class TestCreateProvider:
    def test_mock(self):
        provider = create_provider("mock")
        assert isinstance(provider, MockProvider)
        assert isinstance(provider, LLMProvider)

    def test_gemini_default_model(self):
        provider = create_provider("gemini", api_key="test-key")
        assert isinstance(provider, GeminiProvider)
        assert provider.name == "gemini"
        assert provider.model == "gemini-2.0-flash"

    def test_gemini_model_override(self):
        provider = create_provider("gemini", api_key="test-key", model="gemini-2.5-flash")
        assert provider.model == "gemini-2.5-flash"

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            create_provider("anthropic")


class TestToSdkConfig:
    def test_keywords_become_snake_case(self):
        config = to_sdk_config(build_generation_config())
        assert config["response_mime_type"] == "application/json"
        schema = config["response_schema"]
        assert schema["type"] == "OBJECT"
        assert schema["property_ordering"] == [
            "dietaryRecommendations",
            "exerciseRecommendations",
            "stressManagementTechniques",
            "healthAlerts",
        ]

    def test_property_names_are_kept(self):
        schema = to_sdk_config(build_generation_config())["response_schema"]
        assert "healthAlerts" in schema["properties"]
        assert schema["properties"]["healthAlerts"] == {"type": "STRING"}

    def test_nested_items_converted(self):
        config = to_sdk_config({
            "responseSchema": {"type": "ARRAY", "items": {"type": "STRING", "maxLength": 5}}
        })
        assert config["response_schema"]["items"] == {"type": "STRING", "max_length": 5}


class TestGeminiProvider:
    def test_generate_returns_first_candidate_text(self):
        provider, models = _gemini_with(_response('{"a": "b"}'))
        result = _run(provider.generate("hello", build_generation_config()))

        assert result.content == '{"a": "b"}'
        assert result.input_tokens == 12
        assert result.output_tokens == 34
        assert result.model == "gemini-2.0-flash"

        call = models.calls[0]
        assert call["model"] == "gemini-2.0-flash"
        assert call["contents"] == [{"role": "user", "parts": [{"text": "hello"}]}]
        assert call["config"]["response_mime_type"] == "application/json"

    def test_no_candidates_raises(self):
        provider, _ = _gemini_with(SimpleNamespace(candidates=[], usage_metadata=None))
        with pytest.raises(ProviderError, match="no candidates"):
            _run(provider.generate("hello", build_generation_config()))

    def test_no_text_part_raises(self):
        provider, _ = _gemini_with(_response(None))
        with pytest.raises(ProviderError, match="no text part"):
            _run(provider.generate("hello", build_generation_config()))


class TestMockProvider:
    def test_default_result_is_valid_json(self):
        provider = MockProvider()
        result = _run(provider.generate("prompt text", {"responseMimeType": "application/json"}))
        data = json.loads(result.content)
        assert data["healthAlerts"] == "None identified."
        assert provider.call_count == 1
        assert provider.last_prompt == "prompt text"

    def test_configured_error_raised(self):
        provider = MockProvider(error=RuntimeError("quota exceeded"))
        with pytest.raises(RuntimeError, match="quota exceeded"):
            _run(provider.generate("p", {}))
        assert provider.call_count == 1
