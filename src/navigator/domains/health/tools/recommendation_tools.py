"""MCP tool exposing the recommendation proxy.

The tool never raises for classified failures; it answers with an envelope
so the client can rebuild the exact error kind:

* ``{"status": "ok", "result": {...four fields...}}``
* ``{"status": "error", "error": {"code": ..., "message": ..., "details": ...}}``
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from navigator.core.identity.session import InvalidIdentityTokenError
from navigator.domains.health.proxy.service import TOOL_NAME, ProxyError

if TYPE_CHECKING:
    from navigator.core.identity.session import IdentityTokenSigner
    from navigator.domains.health.proxy.service import RecommendationProxy

logger = logging.getLogger(__name__)


def register_recommendation_tools(
    mcp: FastMCP,
    proxy: RecommendationProxy,
    signer: IdentityTokenSigner,
) -> None:
    """Register the recommendation proxy tool on the MCP server."""

    def _is_authenticated(id_token: str) -> bool:
        try:
            signer.verify(id_token)
        except InvalidIdentityTokenError:
            return False
        return True

    @mcp.tool(name=TOOL_NAME)
    async def generate_health_recommendations(
        ctx: Context,
        data: Any = None,
        id_token: str = "",
    ) -> str:
        """Generate wellness recommendations and health alerts from a pre-built prompt.

        Args:
            data: ``{"prompt": str, "generationConfig": {...}}`` built by the client.
                Left untyped so its shape is checked after authentication.
            id_token: Identity token of the calling session.
        """
        start_time = time.monotonic()
        try:
            result = await proxy.generate(
                data, caller_authenticated=_is_authenticated(id_token)
            )
        except ProxyError as exc:
            logger.warning("Recommendation request rejected: %s (%s)", exc.code, exc.message)
            return json.dumps({"status": "error", "error": exc.to_dict()})

        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.info("Recommendation generated in %.0fms", elapsed_ms)
        return json.dumps({"status": "ok", "result": result})
