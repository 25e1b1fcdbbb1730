"""Client for the recommendation proxy, called over MCP via fastmcp.Client."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from navigator.domains.health.proxy.service import (
    TOOL_NAME,
    InternalError,
    ProxyError,
    error_from_dict,
)
from navigator.domains.health.recommendations.models import (
    RecommendationResult,
    parse_recommendation,
)

logger = logging.getLogger(__name__)


class ProxyConnectionError(ProxyError):
    """Could not reach the recommendation proxy."""

    code = "unavailable"


class RecommendationProxyClient:
    """Calls the ``generate_health_recommendations`` tool and decodes its envelope.

    Usage::

        from fastmcp import Client
        proxy = RecommendationProxyClient(Client("http://127.0.0.1:8001/mcp"))

        result = await proxy.generate(prompt, generation_config, id_token=identity.token)
    """

    def __init__(self, mcp_client: Any) -> None:
        """Initialise with a fastmcp.Client (or compatible)."""
        self._client = mcp_client

    async def generate(
        self,
        prompt: str,
        generation_config: dict[str, Any],
        *,
        id_token: str,
    ) -> RecommendationResult:
        """Request one generation.

        Raises:
            ProxyConnectionError: The proxy could not be reached.
            UnauthenticatedError, InvalidArgumentError, InternalError:
                Classified failure reported by the proxy, or (``internal``)
                a response this client could not decode.
        """
        arguments = {
            "data": {"prompt": prompt, "generationConfig": generation_config},
            "id_token": id_token,
        }
        try:
            async with self._client:
                raw = await self._client.call_tool(TOOL_NAME, arguments)
        except Exception as exc:
            logger.exception("Failed to call recommendation proxy tool %s", TOOL_NAME)
            raise ProxyConnectionError(
                "Could not reach the recommendation service. Please try again.", str(exc)
            ) from exc

        envelope = _decode_envelope(raw)
        if envelope.get("status") == "error":
            raise error_from_dict(envelope.get("error"))
        if envelope.get("status") != "ok":
            raise InternalError(
                "Unexpected response from the recommendation service.",
                f"status={envelope.get('status')!r}",
            )

        try:
            return parse_recommendation(envelope.get("result"))
        except ValidationError as exc:
            raise InternalError(
                "Malformed recommendations from the recommendation service.", str(exc)
            ) from exc


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _decode_envelope(raw: Any) -> dict[str, Any]:
    payload = _extract_payload(raw)
    if payload is None:
        raise InternalError("Empty response from the recommendation service.")

    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise InternalError(
                "Unreadable response from the recommendation service.", str(exc)
            ) from exc

    if not isinstance(payload, dict):
        raise InternalError(
            "Unexpected response from the recommendation service.",
            f"expected JSON object, got {type(payload).__name__}",
        )
    return payload


def _extract_payload(result: Any) -> Any | None:
    """Pull the tool's return value out of a fastmcp call result.

    Accepts a ``CallToolResult`` (``.data``), a list of content blocks
    (``.text``), a single block, a raw string, or an already-parsed dict.
    """
    if result is None:
        return None
    if isinstance(result, (str, dict)):
        return result

    data = getattr(result, "data", None)
    if data is not None:
        return data

    content = getattr(result, "content", None)
    if content is not None and not isinstance(result, list):
        result = content

    if isinstance(result, list):
        for block in result:
            text = block.get("text") if isinstance(block, dict) else getattr(block, "text", None)
            if text is not None:
                return text
        return None

    return getattr(result, "text", None)
