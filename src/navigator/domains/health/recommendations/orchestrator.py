"""Recommendation orchestrator — gates, builds and reconciles one generation.

State is observable: listeners registered with
:meth:`RecommendationOrchestrator.subscribe` receive a copy of
:class:`RecommendationState` after every change.

Overlapping calls: each call takes a sequence number on entry, and only the
latest call may write its outcome into the state. An older call that
finishes late still returns its result to its own caller, but the state
keeps the newer outcome.
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Callable, Protocol, Sequence

from navigator.core.storage.models import LogEntry, Profile
from navigator.core.storage.subscription import Subscription
from navigator.domains.health.proxy.service import ProxyError
from navigator.domains.health.recommendations.models import RecommendationResult
from navigator.domains.health.recommendations.prompt import (
    build_generation_config,
    build_prompt,
)

if TYPE_CHECKING:
    from navigator.core.audit.logger import AuditLogger
    from navigator.core.identity.session import Identity

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED_MESSAGE = (
    "User not authenticated to generate recommendations. Please wait for authentication."
)
INSUFFICIENT_DATA_MESSAGE = (
    "Please log some health data and fill out your profile before generating recommendations."
)
GENERATION_FAILED_MESSAGE = "Failed to generate recommendations. Please try again."


class RecommendationError(Exception):
    """Raised when a generation cannot start."""


class NotAuthenticatedError(RecommendationError):
    """No ready identity; nothing was sent."""


class InsufficientDataError(RecommendationError):
    """Profile and logs are both empty; nothing was sent."""


class RecommendationBackend(Protocol):
    """What the orchestrator needs from the proxy client."""

    async def generate(
        self,
        prompt: str,
        generation_config: dict[str, Any],
        *,
        id_token: str,
    ) -> RecommendationResult: ...


@dataclass
class RecommendationState:
    """Transient result state. ``None`` fields mean "not requested yet"."""

    recommendations: dict[str, str] | None = None
    health_alerts: str | None = None
    is_loading: bool = False
    error: str | None = None


StateListener = Callable[[RecommendationState], None]


class RecommendationOrchestrator:
    """Runs recommendation requests and keeps their outcome observable.

    The orchestrator does not refuse overlapping calls; callers should use
    ``state.is_loading`` to disable re-invocation.

    Usage::

        orchestrator = RecommendationOrchestrator(RecommendationProxyClient(client))
        sub = orchestrator.subscribe(render)
        result = await orchestrator.generate(identity, profile, logs)
    """

    def __init__(
        self,
        backend: RecommendationBackend,
        *,
        audit_logger: AuditLogger | None = None,
        provider_label: str | None = None,
    ) -> None:
        self._backend = backend
        self._audit = audit_logger
        self._provider_label = provider_label
        self._state = RecommendationState()
        self._listeners: dict[int, StateListener] = {}
        self._keys = itertools.count(1)
        self._sequence = 0

    @property
    def state(self) -> RecommendationState:
        return replace(self._state)

    def subscribe(self, listener: StateListener) -> Subscription:
        """Register ``listener`` for state changes; it receives the current state now."""
        key = next(self._keys)
        self._listeners[key] = listener
        listener(self.state)
        return Subscription(lambda: self._listeners.pop(key, None), name="recommendations")

    def reset(self) -> None:
        """Forget any result (e.g. after the identity went away)."""
        self._sequence += 1
        self._update(RecommendationState())

    async def generate(
        self,
        identity: Identity | None,
        profile: Profile | None,
        logs: Sequence[LogEntry],
    ) -> RecommendationResult:
        """Request recommendations for ``identity`` from its profile and logs.

        ``logs`` must be ordered newest first, as the repository emits them.

        Returns:
            The model's result, or the fallback result if the request failed.

        Raises:
            NotAuthenticatedError: No identity; no request is made.
            InsufficientDataError: Empty profile and no logs; no request is made.
        """
        if identity is None or not identity.uid:
            self._update(replace(self._state, error=NOT_AUTHENTICATED_MESSAGE))
            raise NotAuthenticatedError(NOT_AUTHENTICATED_MESSAGE)

        profile = profile or Profile()
        if profile.is_empty() and not logs:
            self._update(replace(self._state, error=INSUFFICIENT_DATA_MESSAGE))
            raise InsufficientDataError(INSUFFICIENT_DATA_MESSAGE)

        self._sequence += 1
        sequence = self._sequence
        self._update(RecommendationState(is_loading=True))

        prompt = build_prompt(profile, logs)
        generation_config = build_generation_config()

        start_time = time.monotonic()
        try:
            try:
                result = await self._backend.generate(
                    prompt, generation_config, id_token=identity.token
                )
            except Exception as exc:
                elapsed_ms = (time.monotonic() - start_time) * 1000
                if isinstance(exc, ProxyError):
                    error_type, message = exc.code, exc.message
                    logger.error("Failed to generate recommendations: %s (%s)", error_type, message)
                else:
                    error_type, message = "internal", str(exc) or type(exc).__name__
                    logger.exception("Recommendation backend raised unexpectedly")
                self._audit_request(identity, prompt, elapsed_ms, error_type=error_type)
                fallback = RecommendationResult.fallback(message)
                self._apply(
                    sequence,
                    RecommendationState(
                        recommendations=fallback.advice(),
                        health_alerts=fallback.health_alerts,
                        error=GENERATION_FAILED_MESSAGE,
                    ),
                )
                return fallback

            elapsed_ms = (time.monotonic() - start_time) * 1000
            self._audit_request(identity, prompt, elapsed_ms)
            self._apply(
                sequence,
                RecommendationState(
                    recommendations=result.advice(),
                    health_alerts=result.health_alerts,
                ),
            )
            return result
        finally:
            # Covers cancellation, which skips both branches above.
            if sequence == self._sequence and self._state.is_loading:
                self._update(replace(self._state, is_loading=False))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _apply(self, sequence: int, state: RecommendationState) -> None:
        if sequence != self._sequence:
            logger.info(
                "Discarding stale recommendation response (request %d, latest %d)",
                sequence,
                self._sequence,
            )
            return
        self._update(state)

    def _update(self, state: RecommendationState) -> None:
        self._state = state
        for listener in list(self._listeners.values()):
            try:
                listener(self.state)
            except Exception:
                logger.exception("Recommendation state listener raised")

    def _audit_request(
        self,
        identity: Identity,
        prompt: str,
        elapsed_ms: float,
        *,
        error_type: str | None = None,
    ) -> None:
        if self._audit is None:
            return
        self._audit.log_recommendation_request(
            identity=identity.uid,
            prompt=prompt,
            llm_provider=self._provider_label,
            duration_ms=round(elapsed_ms, 1),
            status="failure" if error_type is not None else "success",
            error_type=error_type,
        )
