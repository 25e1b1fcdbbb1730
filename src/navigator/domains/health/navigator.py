"""Session controller — ties identity, live data and recommendations together.

Identity change → cancel the previous identity's subscriptions → open new
ones → mirror profile and logs → generate on demand. When the identity goes
away, everything mirrored is cleared.
"""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING, Any, Callable, Mapping

from navigator.core.storage.models import LogEntry, Profile
from navigator.core.storage.subscription import Subscription

if TYPE_CHECKING:
    from navigator.core.identity.session import AnonymousSessionProvider, Identity
    from navigator.core.storage.repository import ProfileLogRepository
    from navigator.domains.health.recommendations.models import RecommendationResult
    from navigator.domains.health.recommendations.orchestrator import (
        RecommendationOrchestrator,
    )

logger = logging.getLogger(__name__)

ChangeListener = Callable[["HealthNavigator"], None]


class HealthNavigator:
    """Mirrors the signed-in identity's profile and logs.

    Usage::

        app = HealthNavigator(sessions, repository, orchestrator)
        app.start()
        sessions.sign_in_anonymously()

        app.add_log(LogEntry(date=date.today(), heart_rate=72))
        result = await app.generate_recommendations()
        app.close()
    """

    def __init__(
        self,
        sessions: AnonymousSessionProvider,
        repository: ProfileLogRepository,
        orchestrator: RecommendationOrchestrator,
    ) -> None:
        self._sessions = sessions
        self._repository = repository
        self._orchestrator = orchestrator

        self._identity: Identity | None = None
        self._profile = Profile()
        self._logs: list[LogEntry] = []

        self._identity_sub: Subscription | None = None
        self._data_subs: list[Subscription] = []
        self._listeners: dict[int, ChangeListener] = {}
        self._keys = itertools.count(1)

    # ------------------------------------------------------------------
    # Mirrored state
    # ------------------------------------------------------------------

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def profile(self) -> Profile:
        return self._profile

    @property
    def logs(self) -> list[LogEntry]:
        return list(self._logs)

    @property
    def orchestrator(self) -> RecommendationOrchestrator:
        return self._orchestrator

    def subscribe(self, listener: ChangeListener) -> Subscription:
        """Call ``listener`` whenever the identity, profile or logs change."""
        key = next(self._keys)
        self._listeners[key] = listener
        return Subscription(lambda: self._listeners.pop(key, None), name="navigator")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin following identity changes. Safe to call more than once."""
        if self._identity_sub is not None and self._identity_sub.active:
            return
        self._identity_sub = self._sessions.on_identity_changed(self._on_identity_changed)

    def close(self) -> None:
        """Cancel every subscription this controller owns."""
        if self._identity_sub is not None:
            self._identity_sub.cancel()
            self._identity_sub = None
        self._cancel_data_subscriptions()

    def __enter__(self) -> HealthNavigator:
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def save_profile(self, partial: Profile | Mapping[str, Any]) -> None:
        """Merge-write profile fields for the current identity.

        Raises:
            WriteFailedError: If there is no identity or the write fails.
        """
        self._repository.update_profile(self._identity, partial)

    def add_log(self, entry: LogEntry) -> str:
        """Append a log for the current identity and return its id.

        Raises:
            WriteFailedError: If there is no identity, no date, or the write fails.
        """
        return self._repository.append_log(self._identity, entry)

    async def generate_recommendations(self) -> RecommendationResult:
        """Generate from the currently mirrored profile and logs.

        Raises:
            NotAuthenticatedError: No identity yet.
            InsufficientDataError: Nothing to base recommendations on.
        """
        return await self._orchestrator.generate(self._identity, self._profile, self._logs)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _on_identity_changed(self, identity: Identity | None) -> None:
        self._cancel_data_subscriptions()
        self._identity = identity

        if identity is None:
            logger.info("Identity cleared; dropping mirrored profile and logs")
            self._profile = Profile()
            self._logs = []
            self._orchestrator.reset()
            self._changed()
            return

        self._changed()
        self._data_subs = [
            self._repository.subscribe_profile(identity, self._on_profile),
            self._repository.subscribe_logs(identity, self._on_logs),
        ]

    def _on_profile(self, profile: Profile) -> None:
        self._profile = profile
        self._changed()

    def _on_logs(self, logs: list[LogEntry]) -> None:
        self._logs = logs
        self._changed()

    def _cancel_data_subscriptions(self) -> None:
        for sub in self._data_subs:
            sub.cancel()
        self._data_subs = []

    def _changed(self) -> None:
        for listener in list(self._listeners.values()):
            try:
                listener(self)
            except Exception:
                logger.exception("Navigator listener raised")
