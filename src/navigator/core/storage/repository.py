"""Profile & log repository — the data-access layer over the document store.

Reads favour availability: subscription and one-shot read failures are
logged and degrade to an empty profile / empty log list. Writes favour
correctness: every failure reaches the caller as :class:`WriteFailedError`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Mapping

from navigator.core.storage.document_store import (
    CollectionSnapshot,
    DocumentSnapshot,
    DocumentStore,
    DocumentStoreError,
    StoreUnavailableError,
)
from navigator.core.storage.models import LogEntry, Profile, coerce_date
from navigator.core.storage.subscription import Subscription

if TYPE_CHECKING:
    from navigator.core.audit.logger import AuditLogger
    from navigator.core.identity.session import Identity

logger = logging.getLogger(__name__)

# Storage layout (shared with other clients of the same store)
PROFILE_COLLECTION = "userProfile"
PROFILE_DOCUMENT = "current"
LOGS_COLLECTION = "healthLogs"


class RepositoryError(Exception):
    """Raised when repository operations fail."""


class WriteFailedError(RepositoryError):
    """A profile or log write did not reach the store."""


def _uid(identity: Identity | str | None) -> str:
    if identity is None:
        return ""
    if isinstance(identity, str):
        return identity
    return identity.uid or ""


def sort_logs(entries: list[LogEntry]) -> list[LogEntry]:
    """Newest date first; entries without a date go last, ties broken by id."""
    dated = sorted(
        (e for e in entries if e.date is not None),
        key=lambda e: (e.date, e.id),
        reverse=True,
    )
    undated = sorted((e for e in entries if e.date is None), key=lambda e: e.id)
    return dated + undated


class ProfileLogRepository:
    """Subscriptions and writes for the two per-identity entities.

    Usage::

        repo = ProfileLogRepository(store, app_id="health-navigator-app-v1")

        sub = repo.subscribe_logs(identity, lambda logs: print(len(logs)))
        repo.append_log(identity, LogEntry(date=date(2024, 3, 1), heart_rate=72))
        repo.update_profile(identity, {"goals": "lose weight"})
        sub.cancel()
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        app_id: str,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._store = store
        self._app_id = app_id
        self._audit = audit_logger

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def user_root(self, uid: str) -> str:
        return f"artifacts/{self._app_id}/users/{uid}"

    def profile_path(self, uid: str) -> str:
        return f"{self.user_root(uid)}/{PROFILE_COLLECTION}/{PROFILE_DOCUMENT}"

    def logs_path(self, uid: str) -> str:
        return f"{self.user_root(uid)}/{LOGS_COLLECTION}"

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def subscribe_profile(
        self, identity: Identity | str | None, callback: Callable[[Profile], None]
    ) -> Subscription:
        """Live profile updates for ``identity``.

        ``callback`` receives the stored profile, or an empty one when the
        document does not exist or cannot be read.
        """
        uid = _uid(identity)
        if not uid:
            logger.warning("Document store or identity not available for subscribe_profile")
            return Subscription.inactive("profile:<no identity>")

        def _on_next(snapshot: DocumentSnapshot) -> None:
            callback(Profile.from_document(snapshot.data) if snapshot.exists else Profile())

        def _on_error(exc: Exception) -> None:
            logger.error("Error fetching user profile: %s", exc)
            callback(Profile())

        return self._store.on_document_snapshot(self.profile_path(uid), _on_next, _on_error)

    def get_profile(self, identity: Identity | str | None) -> Profile:
        """One-shot profile read; empty on missing identity or read failure."""
        uid = _uid(identity)
        if not uid:
            return Profile()
        try:
            snapshot = self._store.get(self.profile_path(uid))
        except StoreUnavailableError as exc:
            logger.error("Error fetching user profile: %s", exc)
            return Profile()
        return Profile.from_document(snapshot.data)

    def update_profile(
        self, identity: Identity | str | None, partial: Profile | Mapping[str, Any]
    ) -> None:
        """Merge-write ``partial`` into the stored profile.

        Only fields present in ``partial`` (not ``None`` on a Profile, or
        present as keys in a mapping) are written; everything else keeps its
        stored value.

        Raises:
            WriteFailedError: If there is no identity or the write fails.
            ValueError: If a mapping names an unknown profile field.
        """
        uid = _uid(identity)
        if not uid:
            logger.error("Document store or identity not available for update_profile")
            raise WriteFailedError("Document store not ready.")

        if not isinstance(partial, Profile):
            partial = Profile.from_mapping(dict(partial))
        fields = partial.to_document()

        path = self.profile_path(uid)
        try:
            self._store.set(path, fields, merge=True)
        except DocumentStoreError as exc:
            logger.error("Error updating user profile: %s", exc)
            self._record("profile_update", uid, fields, path, status="failure", error=exc)
            raise WriteFailedError(f"Failed to update profile: {exc}") from exc

        self._record("profile_update", uid, fields, path)
        logger.info("User profile updated (%d fields)", len(fields))

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def subscribe_logs(
        self, identity: Identity | str | None, callback: Callable[[list[LogEntry]], None]
    ) -> Subscription:
        """Live log updates for ``identity``.

        Each tick re-reads the whole collection (no store-side filter or
        order) and hands ``callback`` the entries sorted newest date first.
        """
        uid = _uid(identity)
        if not uid:
            logger.warning("Document store or identity not available for subscribe_logs")
            return Subscription.inactive("logs:<no identity>")

        def _on_next(snapshot: CollectionSnapshot) -> None:
            callback(self._materialize(snapshot))

        def _on_error(exc: Exception) -> None:
            logger.error("Error fetching health logs: %s", exc)
            callback([])

        return self._store.on_collection_snapshot(self.logs_path(uid), _on_next, _on_error)

    def get_logs(self, identity: Identity | str | None) -> list[LogEntry]:
        """One-shot read of every log, sorted like :meth:`subscribe_logs`."""
        uid = _uid(identity)
        if not uid:
            return []
        try:
            snapshot = self._store.list_documents(self.logs_path(uid))
        except StoreUnavailableError as exc:
            logger.error("Error fetching health logs: %s", exc)
            return []
        return self._materialize(snapshot)

    def append_log(self, identity: Identity | str | None, entry: LogEntry) -> str:
        """Append a log entry and return its store-assigned id.

        The date is normalized to the canonical stored instant; a creation
        timestamp is assigned when the entry carries none.

        Raises:
            WriteFailedError: If there is no identity, the entry has no
                valid date, or the write fails.
        """
        uid = _uid(identity)
        if not uid:
            logger.error("Document store or identity not available for append_log")
            raise WriteFailedError("Document store not ready.")

        entry_date = coerce_date(entry.date)
        if entry_date is None:
            raise WriteFailedError(f"Log entry needs a valid date, got {entry.date!r}")

        doc = LogEntry(
            date=entry_date,
            heart_rate=entry.heart_rate,
            sleep_hours=entry.sleep_hours,
            activity_minutes=entry.activity_minutes,
            mood=entry.mood,
            symptoms=entry.symptoms,
            timestamp=entry.timestamp or datetime.now(timezone.utc),
        ).to_document()

        path = self.logs_path(uid)
        try:
            doc_id = self._store.add(path, doc)
        except DocumentStoreError as exc:
            logger.error("Error adding health log: %s", exc)
            self._record("log_append", uid, doc, path, status="failure", error=exc)
            raise WriteFailedError(f"Failed to add health log: {exc}") from exc

        self._record("log_append", uid, doc, f"{path}/{doc_id}")
        logger.info("Health log added: %s", doc_id)
        return doc_id

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _materialize(snapshot: CollectionSnapshot) -> list[LogEntry]:
        return sort_logs([LogEntry.from_document(doc.id, doc.data) for doc in snapshot.docs])

    def _record(
        self,
        action: str,
        uid: str,
        payload: dict[str, Any],
        path: str,
        *,
        status: str = "success",
        error: Exception | None = None,
    ) -> None:
        if self._audit is None:
            return
        self._audit.log_write(
            action,
            identity=uid,
            payload=payload,
            document_path=path,
            status=status,
            error_type=type(error).__name__ if error is not None else None,
        )
