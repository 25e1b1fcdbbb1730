"""Realtime document store over the encrypted SQLite database.

Documents are addressed by slash-separated paths with alternating
collection/document segments (``artifacts/{app}/users/{uid}/healthLogs/{id}``).
A path with an even number of segments names a document, an odd number
names a collection.

Listeners registered with :meth:`DocumentStore.on_document_snapshot` and
:meth:`DocumentStore.on_collection_snapshot` receive the current state once
on registration and again after every committed write that touches them,
in commit order. Delivery is synchronous on the writer's call stack.
"""

from __future__ import annotations

import itertools
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from navigator.core.storage.database import DatabaseError, NavigatorDatabase
from navigator.core.storage.encryption import EncryptionError, DocumentEncryptor
from navigator.core.storage.subscription import Subscription

logger = logging.getLogger(__name__)

_READ_ERRORS = (sqlite3.Error, DatabaseError, EncryptionError)


class DocumentStoreError(Exception):
    """Raised when a document store operation fails."""


class StoreUnavailableError(DocumentStoreError):
    """A read could not be served (database closed, corrupt row, wrong key)."""


class InvalidPathError(DocumentStoreError):
    """A path does not address a document or collection as required."""


@dataclass
class DocumentSnapshot:
    """Contents of one document at a point in time."""

    id: str
    path: str
    data: dict[str, Any] | None = None
    create_time: str = ""
    update_time: str = ""

    @property
    def exists(self) -> bool:
        return self.data is not None

    def to_dict(self) -> dict[str, Any]:
        """Document fields, or an empty dict when the document is absent."""
        return dict(self.data) if self.data is not None else {}


@dataclass
class CollectionSnapshot:
    """Every document of a collection at a point in time, in store order."""

    path: str
    docs: list[DocumentSnapshot] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.docs)

    @property
    def empty(self) -> bool:
        return not self.docs


SnapshotCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]


@dataclass
class _Listener:
    key: int
    target: str
    kind: str  # 'document' | 'collection'
    on_next: SnapshotCallback
    on_error: ErrorCallback | None = None


def _segments(path: str) -> list[str]:
    parts = [p for p in path.strip("/").split("/") if p]
    if not parts:
        raise InvalidPathError("Path must not be empty")
    return parts


def _document_path(path: str) -> tuple[str, str, str]:
    """Validate a document path. Returns (normalized path, parent, doc_id)."""
    parts = _segments(path)
    if len(parts) % 2:
        raise InvalidPathError(f"Not a document path: {path!r}")
    return "/".join(parts), "/".join(parts[:-1]), parts[-1]


def _collection_path(path: str) -> str:
    parts = _segments(path)
    if not len(parts) % 2:
        raise InvalidPathError(f"Not a collection path: {path!r}")
    return "/".join(parts)


def _merge(existing: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    """Merge ``update`` into ``existing``; nested maps merge recursively."""
    merged = dict(existing)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class DocumentStore:
    """Multi-tenant document store with live snapshot listeners.

    Usage::

        db = NavigatorDatabase(":memory:")
        db.initialize()
        store = DocumentStore(db, DocumentEncryptor(DocumentEncryptor.generate_key()))

        store.set("artifacts/app/users/u1/userProfile/current", {"goals": "run"}, merge=True)
        sub = store.on_collection_snapshot("artifacts/app/users/u1/healthLogs", print)
        store.add("artifacts/app/users/u1/healthLogs", {"heartRate": 72})
        sub.cancel()
    """

    def __init__(self, database: NavigatorDatabase, encryptor: DocumentEncryptor) -> None:
        self._db = database
        self._enc = encryptor
        self._listeners: dict[int, _Listener] = {}
        self._keys = itertools.count(1)

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex[:20]

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, path: str) -> DocumentSnapshot:
        """Point lookup of a single document.

        Raises:
            StoreUnavailableError: If the document cannot be read.
        """
        doc_path, _, doc_id = _document_path(path)
        try:
            row = self._db.connection.execute(
                "SELECT * FROM documents WHERE path = ?", (doc_path,)
            ).fetchone()
            if row is None:
                return DocumentSnapshot(id=doc_id, path=doc_path)
            return self._row_to_snapshot(row)
        except _READ_ERRORS as exc:
            raise StoreUnavailableError(f"Failed to read {doc_path}: {exc}") from exc

    def list_documents(self, collection_path: str) -> CollectionSnapshot:
        """Every document directly under ``collection_path``, ordered by id.

        Raises:
            StoreUnavailableError: If the collection cannot be read.
        """
        parent = _collection_path(collection_path)
        try:
            rows = self._db.connection.execute(
                "SELECT * FROM documents WHERE parent = ? ORDER BY doc_id",
                (parent,),
            ).fetchall()
            return CollectionSnapshot(
                path=parent, docs=[self._row_to_snapshot(row) for row in rows]
            )
        except _READ_ERRORS as exc:
            raise StoreUnavailableError(f"Failed to read {parent}: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, path: str, data: dict[str, Any], *, merge: bool = False) -> None:
        """Write a whole document, or merge fields into it when ``merge`` is set.

        With ``merge=True`` fields absent from ``data`` keep their stored
        value and the document is created if it does not exist.

        Raises:
            DocumentStoreError: If the write fails.
        """
        doc_path, parent, doc_id = _document_path(path)
        now = self._now_iso()
        conn = None
        try:
            conn = self._db.connection
            row = conn.execute(
                "SELECT data_enc, create_time FROM documents WHERE path = ?", (doc_path,)
            ).fetchone()
            if row is not None and merge:
                payload = _merge(self._enc.decrypt_document(doc_path, row["data_enc"]), data)
            else:
                payload = dict(data)
            create_time = row["create_time"] if row is not None else now

            conn.execute(
                """INSERT INTO documents (path, parent, doc_id, data_enc, create_time, update_time)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(path) DO UPDATE SET
                       data_enc = excluded.data_enc,
                       update_time = excluded.update_time""",
                (
                    doc_path, parent, doc_id,
                    self._enc.encrypt_document(doc_path, payload), create_time, now,
                ),
            )
            conn.commit()
        except _READ_ERRORS as exc:
            if conn is not None:
                _rollback(conn)
            raise DocumentStoreError(f"Failed to write {doc_path}: {exc}") from exc

        logger.debug("Wrote document %s (merge=%s)", doc_path, merge)
        self._notify(doc_path, parent)

    def add(self, collection_path: str, data: dict[str, Any]) -> str:
        """Append a new document with a store-generated id.

        Returns:
            The new document id.

        Raises:
            DocumentStoreError: If the write fails.
        """
        parent = _collection_path(collection_path)
        doc_id = self._new_id()
        doc_path = f"{parent}/{doc_id}"
        now = self._now_iso()
        conn = None
        try:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO documents (path, parent, doc_id, data_enc, create_time, update_time)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (doc_path, parent, doc_id, self._enc.encrypt_document(doc_path, data), now, now),
            )
            conn.commit()
        except _READ_ERRORS as exc:
            if conn is not None:
                _rollback(conn)
            raise DocumentStoreError(f"Failed to append to {parent}: {exc}") from exc

        logger.debug("Appended document %s", doc_path)
        self._notify(doc_path, parent)
        return doc_id

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on_document_snapshot(
        self,
        path: str,
        on_next: Callable[[DocumentSnapshot], None],
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Listen to one document. ``on_next`` fires immediately and after every write."""
        doc_path, _, _ = _document_path(path)
        return self._register(doc_path, "document", on_next, on_error)

    def on_collection_snapshot(
        self,
        collection_path: str,
        on_next: Callable[[CollectionSnapshot], None],
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Listen to a whole collection. ``on_next`` receives the full snapshot each time."""
        parent = _collection_path(collection_path)
        return self._register(parent, "collection", on_next, on_error)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _register(
        self,
        target: str,
        kind: str,
        on_next: SnapshotCallback,
        on_error: ErrorCallback | None,
    ) -> Subscription:
        key = next(self._keys)
        listener = _Listener(key=key, target=target, kind=kind, on_next=on_next, on_error=on_error)
        self._listeners[key] = listener
        subscription = Subscription(
            lambda: self._listeners.pop(key, None), name=f"{kind}:{target}"
        )
        self._deliver(listener)
        return subscription

    def _notify(self, doc_path: str, parent: str) -> None:
        """Deliver fresh snapshots to listeners affected by a write, in registration order."""
        affected = [
            listener
            for listener in list(self._listeners.values())
            if (listener.kind == "document" and listener.target == doc_path)
            or (listener.kind == "collection" and listener.target == parent)
        ]
        for listener in affected:
            # A callback earlier in this loop may have cancelled a later listener.
            if listener.key in self._listeners:
                self._deliver(listener)

    def _deliver(self, listener: _Listener) -> None:
        try:
            if listener.kind == "document":
                snapshot: Any = self.get(listener.target)
            else:
                snapshot = self.list_documents(listener.target)
        except StoreUnavailableError as exc:
            if listener.on_error is not None:
                listener.on_error(exc)
            else:
                logger.error("Listener on %s lost a snapshot: %s", listener.target, exc)
            return

        try:
            listener.on_next(snapshot)
        except Exception:
            logger.exception("Snapshot listener on %s raised", listener.target)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _row_to_snapshot(self, row: Any) -> DocumentSnapshot:
        data = self._enc.decrypt_document(row["path"], row["data_enc"])
        return DocumentSnapshot(
            id=row["doc_id"],
            path=row["path"],
            data=data,
            create_time=row["create_time"],
            update_time=row["update_time"],
        )


def _rollback(conn: sqlite3.Connection) -> None:
    try:
        conn.rollback()
    except sqlite3.Error:
        logger.exception("Rollback failed")
