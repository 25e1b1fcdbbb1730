"""Shared test fixtures for Health Navigator tests."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "mock")
    monkeypatch.setenv("GEMINI_API_KEY", "")
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("SESSION_SECRET", "")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from navigator.core.identity.session import IdentityTokenSigner  # noqa: E402

TEST_APP_ID = "health-navigator-test"

VALID_RESULT: dict[str, str] = {
    "dietaryRecommendations": "Add leafy greens to lunch.",
    "exerciseRecommendations": "Walk 30 minutes daily.",
    "stressManagementTechniques": "Try box breathing before bed.",
    "healthAlerts": "None identified.",
}


# ---------------------------------------------------------------------------
# Mock MCP client for the recommendation proxy
# ---------------------------------------------------------------------------

class _TextBlock:
    """Mimics fastmcp content block structure."""

    def __init__(self, text: str) -> None:
        self.type = "text"
        self.text = text


class MockMCPClient:
    """Mock fastmcp.Client that answers the proxy tool with a canned envelope.

    Pass ``envelope`` for a fixed reply, or ``error`` to simulate a transport
    failure. Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        envelope: dict[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.envelope = envelope if envelope is not None else {"status": "ok", "result": VALID_RESULT}
        self.error = error
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> list[Any]:
        self.calls.append((tool_name, arguments))
        if self.error is not None:
            raise self.error
        return [_TextBlock(json.dumps(self.envelope))]

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


@pytest.fixture
def make_mcp_client():
    """Factory for MockMCPClient instances with a custom envelope or error."""
    return MockMCPClient


@pytest.fixture
def mock_mcp_client() -> MockMCPClient:
    return MockMCPClient()


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def navigator_db():
    """Create an in-memory NavigatorDatabase for testing."""
    from navigator.core.storage.database import NavigatorDatabase

    db = NavigatorDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def document_encryptor():
    """Create a DocumentEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from navigator.core.storage.encryption import DocumentEncryptor

    return DocumentEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def document_store(navigator_db, document_encryptor):
    """Create a DocumentStore backed by in-memory SQLite."""
    from navigator.core.storage.document_store import DocumentStore

    return DocumentStore(navigator_db, document_encryptor)


@pytest.fixture
def audit_logger(navigator_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from navigator.core.audit.logger import AuditLogger

    return AuditLogger(navigator_db)


@pytest.fixture
def repository(document_store, audit_logger):
    """Create a ProfileLogRepository over the in-memory store."""
    from navigator.core.storage.repository import ProfileLogRepository

    return ProfileLogRepository(document_store, app_id=TEST_APP_ID, audit_logger=audit_logger)


# ---------------------------------------------------------------------------
# Identity fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def signer() -> IdentityTokenSigner:
    return IdentityTokenSigner(IdentityTokenSigner.generate_secret())


@pytest.fixture
def identity(signer):
    """A signed-in identity whose token verifies with ``signer``."""
    from navigator.core.identity.session import Identity

    return Identity(uid="user-1", token=signer.issue("user-1"))
