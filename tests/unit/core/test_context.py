"""Tests for build_context — client-side wiring from settings."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from navigator.core.config.settings import Settings
from navigator.core.context import build_context
from navigator.core.identity.session import IdentityTokenSigner
from navigator.core.storage.encryption import DocumentEncryptor
from navigator.core.storage.models import LogEntry


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        db_path=str(tmp_path / "health.db"),
        encryption_key=DocumentEncryptor.generate_key(),
        session_path=str(tmp_path / "session.json"),
        session_secret=IdentityTokenSigner.generate_secret(),
    )


class TestBuildContext:
    def test_file_store_used_with_key(self, settings, mock_mcp_client, tmp_path):
        ctx = build_context(settings, mcp_client=mock_mcp_client)
        try:
            assert ctx.database.path == settings.db_path
            assert (tmp_path / "health.db").exists()
        finally:
            ctx.close()

    def test_missing_key_falls_back_to_memory(self, settings, mock_mcp_client):
        settings.encryption_key = ""
        ctx = build_context(settings, mcp_client=mock_mcp_client)
        try:
            assert ctx.database.path == ":memory:"
        finally:
            ctx.close()

    def test_end_to_end_session(self, settings, mock_mcp_client):
        ctx = build_context(settings, mcp_client=mock_mcp_client)
        try:
            ctx.navigator.start()
            identity = ctx.sessions.sign_in_anonymously()
            ctx.navigator.save_profile({"goals": "lose weight"})
            ctx.navigator.add_log(LogEntry(date=date(2024, 3, 1), heart_rate=72))

            result = _run(ctx.navigator.generate_recommendations())

            assert result.health_alerts
            assert ctx.audit_logger.count_disclosures() == 1
            assert ctx.repository.get_profile(identity).goals == "lose weight"
        finally:
            ctx.close()

    def test_data_survives_restart(self, settings, mock_mcp_client):
        ctx = build_context(settings, mcp_client=mock_mcp_client)
        identity = ctx.sessions.sign_in_anonymously()
        ctx.repository.append_log(identity, LogEntry(date=date(2024, 3, 1)))
        ctx.close()

        ctx = build_context(settings, mcp_client=mock_mcp_client)
        try:
            resumed = ctx.sessions.sign_in_anonymously()
            assert resumed.uid == identity.uid
            assert len(ctx.repository.get_logs(resumed)) == 1
        finally:
            ctx.close()

    def test_data_survives_restart_without_session_secret(self, settings, mock_mcp_client):
        settings.session_secret = ""
        ctx = build_context(settings, mcp_client=mock_mcp_client)
        identity = ctx.sessions.sign_in_anonymously()
        ctx.repository.append_log(identity, LogEntry(date=date(2024, 3, 1)))
        ctx.close()

        ctx = build_context(settings, mcp_client=mock_mcp_client)
        try:
            resumed = ctx.sessions.sign_in_anonymously()
            assert resumed.uid == identity.uid
            assert resumed.token != identity.token
            assert len(ctx.repository.get_logs(resumed)) == 1
        finally:
            ctx.close()

    def test_signer_override_used(self, settings, mock_mcp_client, signer):
        ctx = build_context(settings, mcp_client=mock_mcp_client, signer_override=signer)
        try:
            identity = ctx.sessions.sign_in_anonymously()
            assert signer.verify(identity.token) == identity.uid
        finally:
            ctx.close()
