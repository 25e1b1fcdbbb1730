"""Proxy server entry point — ``python -m navigator.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from navigator.core.config.settings import get_settings
from navigator.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host in {"localhost"}:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the recommendation proxy with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.navigator_log_level.upper(), logging.INFO))

    logger = logging.getLogger(__name__)
    if not settings.navigator_allow_insecure_bind and not _is_loopback_host(settings.navigator_host):
        raise RuntimeError(
            "Refusing to bind the recommendation proxy to a non-loopback host without "
            "TLS in front of it. Set NAVIGATOR_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting Health Navigator proxy on %s:%d",
        settings.navigator_host,
        settings.navigator_port,
    )

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.navigator_host,
        port=settings.navigator_port,
    )


if __name__ == "__main__":
    run()
