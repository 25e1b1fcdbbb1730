"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Health Navigator configuration (client store + recommendation proxy)."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Proxy server
    # Loopback by default; the proxy holds the model credential.
    navigator_host: str = "127.0.0.1"
    navigator_port: int = 8001
    navigator_log_level: str = "info"
    navigator_allow_insecure_bind: bool = False

    # Document store namespace
    app_id: str = "health-navigator-app-v1"

    # Storage (document store)
    db_path: str = "~/.navigator/health.db"
    encryption_key: str = ""

    # Anonymous session identity
    session_path: str = "~/.navigator/session.json"
    session_secret: str = ""

    # Generative model (proxy side only)
    llm_provider: Literal["gemini", "mock"] = "gemini"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"

    # Where the client reaches the recommendation proxy
    proxy_url: str = "http://127.0.0.1:8001/mcp"


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
