"""Audit logger — PHI-free trail of writes and model disclosures.

Records every profile/log write and every recommendation request in the
``audit_log`` table:

* ``input_hash``    — SHA-256 of canonical JSON (no raw health data in logs).
* ``identity_hash`` — SHA-256 of the identity, so events can be grouped
  per user without storing the identity itself.
* ``llm_disclosed`` — whether health data left the device for the model.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from navigator.core.storage.database import DatabaseError, NavigatorDatabase

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON, or empty string when not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return ""
    return hashlib.sha256(canonical.encode()).hexdigest()


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'profile_update' | 'log_append' | 'recommendation_request'
    identity_hash: str = ""
    input_hash: str = ""
    llm_provider: str | None = None
    llm_disclosed: bool = False          # True if health data was sent to the model
    document_path: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    Writes are committed immediately. A failed audit write is logged and
    never interrupts the operation being audited.

    Usage::

        audit = AuditLogger(db)
        audit.log_recommendation_request(
            identity="u1", prompt=prompt, llm_provider="gemini", status="success",
        )
        audit.count_disclosures()
    """

    def __init__(self, database: NavigatorDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID (empty string if lost)."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()

        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"))
            if event.metadata
            else None
        )

        try:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO audit_log
                   (id, timestamp, action, identity_hash, input_hash,
                    llm_provider, llm_disclosed, document_path,
                    duration_ms, status, error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.action,
                    event.identity_hash or None,
                    event.input_hash or None,
                    event.llm_provider,
                    1 if event.llm_disclosed else 0,
                    event.document_path,
                    event.duration_ms,
                    event.status,
                    event.error_type,
                    metadata_json,
                ),
            )
            conn.commit()
        except (sqlite3.Error, DatabaseError):
            logger.exception("Failed to write audit event — event lost")
            return ""

        return event_id

    def log_write(
        self,
        action: str,
        *,
        identity: str,
        payload: Any = None,
        document_path: str | None = None,
        status: str = "success",
        error_type: str | None = None,
    ) -> str:
        """Log a profile or log write (payload hashed, never stored raw)."""
        return self.log_event(AuditEvent(
            action=action,
            identity_hash=_hash_input(identity),
            input_hash=_hash_input(payload) if payload else "",
            document_path=document_path,
            status=status,
            error_type=error_type,
        ))

    def log_recommendation_request(
        self,
        *,
        identity: str,
        prompt: str,
        llm_provider: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log a prompt sent through the recommendation proxy.

        Always counts as a disclosure: the prompt embeds profile and log data.
        """
        return self.log_event(AuditEvent(
            action="recommendation_request",
            identity_hash=_hash_input(identity),
            input_hash=_hash_input(prompt),
            llm_provider=llm_provider,
            llm_disclosed=True,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events, newest first."""
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, since: str | None = None) -> int:
        """Count total audit events, optionally since a timestamp."""
        if since:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE timestamp >= ?", (since,)
            ).fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log"
            ).fetchone()
        return row[0]

    def count_disclosures(self, *, since: str | None = None) -> int:
        """How many times health data was sent to the model."""
        if since:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE llm_disclosed = 1 AND timestamp >= ?",
                (since,),
            ).fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE llm_disclosed = 1"
            ).fetchone()
        return row[0]
