"""Client-side wiring — builds every collaborator once from settings.

The proxy server is wired separately in :mod:`navigator.core.server.app`;
the client never sees the model credential.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from navigator.core.audit.logger import AuditLogger
from navigator.core.config.settings import Settings, get_settings
from navigator.core.identity.session import AnonymousSessionProvider, IdentityTokenSigner
from navigator.core.storage.database import NavigatorDatabase
from navigator.core.storage.document_store import DocumentStore
from navigator.core.storage.encryption import EncryptionError, DocumentEncryptor
from navigator.core.storage.repository import ProfileLogRepository
from navigator.domains.health.navigator import HealthNavigator
from navigator.domains.health.proxy.client import RecommendationProxyClient
from navigator.domains.health.recommendations.orchestrator import (
    RecommendationOrchestrator,
)

logger = logging.getLogger(__name__)


@dataclass
class NavigatorContext:
    """Everything one client session needs, passed around explicitly."""

    settings: Settings
    database: NavigatorDatabase
    store: DocumentStore
    sessions: AnonymousSessionProvider
    repository: ProfileLogRepository
    audit_logger: AuditLogger
    proxy_client: RecommendationProxyClient
    orchestrator: RecommendationOrchestrator
    navigator: HealthNavigator

    def close(self) -> None:
        self.navigator.close()
        self.database.close()


def build_context(
    settings: Settings | None = None,
    *,
    mcp_client: Any | None = None,
    signer_override: IdentityTokenSigner | None = None,
) -> NavigatorContext:
    """Create the store, identity provider, repository and orchestrator.

    Args:
        settings: Defaults to :func:`get_settings`.
        mcp_client: A ``fastmcp.Client`` (or compatible) for the proxy.
            Defaults to ``Client(settings.proxy_url)``.
        signer_override: Identity token signer; defaults to one keyed by
            ``SESSION_SECRET``.
    """
    settings = settings or get_settings()

    # --- Storage (document store) ---
    db_path = settings.db_path
    key = settings.encryption_key
    try:
        encryptor = DocumentEncryptor(key)
    except EncryptionError as exc:
        logger.warning(
            "No usable ENCRYPTION_KEY (%s); using an ephemeral in-memory store. "
            "Data will not survive this process.",
            exc,
        )
        db_path = ":memory:"
        encryptor = DocumentEncryptor(DocumentEncryptor.generate_key())

    database = NavigatorDatabase(db_path)
    database.initialize()
    logger.info("Document store ready: %s (schema v%d)", db_path, database.get_schema_version())

    store = DocumentStore(database, encryptor)
    audit_logger = AuditLogger(database)
    repository = ProfileLogRepository(store, app_id=settings.app_id, audit_logger=audit_logger)

    # --- Identity ---
    if signer_override is not None:
        signer = signer_override
    elif settings.session_secret:
        signer = IdentityTokenSigner(settings.session_secret)
    else:
        logger.warning(
            "No SESSION_SECRET configured; identity tokens will not verify at the proxy"
        )
        signer = IdentityTokenSigner(IdentityTokenSigner.generate_secret())
    sessions = AnonymousSessionProvider(signer, settings.session_path)

    # --- Recommendation proxy client ---
    if mcp_client is None:
        from fastmcp import Client as MCPClient

        mcp_client = MCPClient(settings.proxy_url)
        logger.info("Recommendation proxy configured at %s", settings.proxy_url)
    proxy_client = RecommendationProxyClient(mcp_client)

    orchestrator = RecommendationOrchestrator(
        proxy_client,
        audit_logger=audit_logger,
        provider_label=settings.llm_provider,
    )
    navigator = HealthNavigator(sessions, repository, orchestrator)

    return NavigatorContext(
        settings=settings,
        database=database,
        store=store,
        sessions=sessions,
        repository=repository,
        audit_logger=audit_logger,
        proxy_client=proxy_client,
        orchestrator=orchestrator,
        navigator=navigator,
    )
