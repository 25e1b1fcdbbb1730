"""Health Navigator recommendation proxy — application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery (fastmcp.json points here)
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from navigator.core.config.settings import get_settings
from navigator.core.identity.session import IdentityError, IdentityTokenSigner
from navigator.core.llm.provider import LLMProvider, create_provider
from navigator.domains.health.proxy.service import RecommendationProxy
from navigator.domains.health.tools.recommendation_tools import (
    register_recommendation_tools,
)

logger = logging.getLogger(__name__)


def create_app(
    *,
    provider_override: LLMProvider | None = None,
    signer_override: IdentityTokenSigner | None = None,
) -> FastMCP:
    """Create and configure the recommendation proxy MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Creates the model provider (Gemini, or mock without a key)
    3. Creates the identity token verifier
    4. Registers the health check and the recommendation tool
    """
    settings = get_settings()

    # --- Server instance ---
    server = FastMCP(
        "Health Navigator Proxy",
        instructions=(
            "Health & Wellness Navigator recommendation proxy. "
            "Forwards a pre-built prompt to the generative model for an "
            "authenticated caller and returns structured wellness "
            "recommendations and health alerts."
        ),
    )

    # --- Initialize model provider ---
    if provider_override is not None:
        provider = provider_override
    else:
        if settings.llm_provider == "mock":
            provider_name = "mock"
        elif settings.llm_provider == "gemini":
            provider_name = "gemini" if settings.gemini_api_key else "mock"
        else:  # pragma: no cover
            raise ValueError(f"Unknown LLM provider: {settings.llm_provider!r}")

        if provider_name == "mock" and settings.llm_provider != "mock":
            logger.warning(
                "No API key configured for provider '%s'; falling back to mock provider",
                settings.llm_provider,
            )

        provider = create_provider(
            provider_name=provider_name,
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
        )
    proxy = RecommendationProxy(provider)
    logger.info("Recommendation proxy using provider '%s'", provider.name)

    # --- Initialize identity token verifier ---
    if signer_override is not None:
        signer = signer_override
    else:
        try:
            signer = IdentityTokenSigner(settings.session_secret)
        except IdentityError as exc:
            logger.warning(
                "No usable SESSION_SECRET (%s); every caller will be rejected as "
                "unauthenticated",
                exc,
            )
            signer = IdentityTokenSigner(IdentityTokenSigner.generate_secret())

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": "Health Navigator Proxy",
            "version": "0.1.0",
            "llm_provider": provider.name,
            "app_id": settings.app_id,
        }

    register_recommendation_tools(server, proxy, signer)
    logger.info("Recommendation tools registered")

    return server


# Module-level instance for FastMCP discovery (fastmcp.json: "server": "...app.py:mcp").
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
