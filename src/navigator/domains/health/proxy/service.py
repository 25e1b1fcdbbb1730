"""Recommendation proxy — the stateless boundary that holds the model credential.

Accepts a pre-built prompt and generation config from an authenticated
caller, forwards them to the model, and returns the model's structured
output once it has passed strict validation. Every failure is classified:

* ``unauthenticated``  — caller has no verified identity (checked first).
* ``invalid-argument`` — ``prompt`` or ``generationConfig`` missing/empty.
* ``internal``         — model call failed, or its output did not parse or
  did not match the four-field shape.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from navigator.core.llm.provider import LLMProvider
from navigator.domains.health.recommendations.models import parse_recommendation

logger = logging.getLogger(__name__)

# MCP tool name the proxy is served under
TOOL_NAME = "generate_health_recommendations"


# ------------------------------------------------------------------
# Exceptions
# ------------------------------------------------------------------

class ProxyError(Exception):
    """Base class for classified proxy errors.

    ``message`` is safe to show to end users; ``details`` carries the
    underlying diagnostic text.
    """

    code = "internal"

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class UnauthenticatedError(ProxyError):
    code = "unauthenticated"


class InvalidArgumentError(ProxyError):
    code = "invalid-argument"


class InternalError(ProxyError):
    code = "internal"


_ERRORS_BY_CODE: dict[str, type[ProxyError]] = {
    cls.code: cls for cls in (UnauthenticatedError, InvalidArgumentError, InternalError)
}


def error_from_dict(error: Any) -> ProxyError:
    """Rebuild a classified error from its wire form; unknown codes become ``internal``."""
    if not isinstance(error, dict):
        return InternalError(str(error) if error else "Unknown error")
    cls = _ERRORS_BY_CODE.get(error.get("code", ""), InternalError)
    message = error.get("message") or "Unknown error"
    details = error.get("details")
    return cls(str(message), None if details is None else str(details))


# ------------------------------------------------------------------
# Proxy
# ------------------------------------------------------------------

_USER_FACING_INTERNAL = (
    "Failed to generate recommendations due to an internal server error. Please try again."
)


class RecommendationProxy:
    """Validates a request, calls the model, and strictly parses its output.

    Holds no per-request state; every call is independent and retry-safe.

    Usage::

        proxy = RecommendationProxy(create_provider("gemini", api_key=key))
        result = await proxy.generate(
            {"prompt": prompt, "generationConfig": config},
            caller_authenticated=True,
        )
    """

    def __init__(self, provider: LLMProvider) -> None:
        self.provider = provider

    async def generate(self, data: Any, *, caller_authenticated: bool) -> dict[str, str]:
        """Run one proxied generation.

        Raises:
            UnauthenticatedError: ``caller_authenticated`` is false.
            InvalidArgumentError: ``prompt`` or ``generationConfig`` missing or empty.
            InternalError: The model call, JSON parse, or shape validation failed.
        """
        if not caller_authenticated:
            raise UnauthenticatedError("The function must be called while authenticated.")

        prompt = data.get("prompt") if isinstance(data, dict) else None
        generation_config = data.get("generationConfig") if isinstance(data, dict) else None
        if (
            not isinstance(prompt, str)
            or not prompt.strip()
            or not isinstance(generation_config, dict)
            or not generation_config
        ):
            raise InvalidArgumentError(
                'The function must be called with a "prompt" and "generationConfig".'
            )

        try:
            response = await self.provider.generate(prompt, generation_config)
        except Exception as exc:
            logger.exception("Error calling the %s model from the proxy", self.provider.name)
            raise InternalError(_USER_FACING_INTERNAL, str(exc)) from exc

        logger.info(
            "Proxy model call: model=%s, tokens=%d+%d, latency=%.0fms",
            response.model,
            response.input_tokens,
            response.output_tokens,
            response.latency_ms,
        )

        try:
            result = parse_recommendation(json.loads(response.content))
        except (json.JSONDecodeError, TypeError) as exc:
            logger.error("Model output was not valid JSON: %s", exc)
            raise InternalError(_USER_FACING_INTERNAL, f"Invalid JSON from model: {exc}") from exc
        except ValidationError as exc:
            logger.error("Model output did not match the recommendation shape: %s", exc)
            raise InternalError(
                _USER_FACING_INTERNAL,
                f"Model output did not match the recommendation shape: {exc}",
            ) from exc

        return result.to_dict()
