"""Tests for RecommendationOrchestrator — gating, state, fallback and stale responses."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from navigator.core.identity.session import Identity
from navigator.core.storage.models import LogEntry, Profile
from navigator.domains.health.proxy.client import RecommendationProxyClient
from navigator.domains.health.recommendations.models import RecommendationResult
from navigator.domains.health.recommendations.orchestrator import (
    GENERATION_FAILED_MESSAGE,
    INSUFFICIENT_DATA_MESSAGE,
    NOT_AUTHENTICATED_MESSAGE,
    InsufficientDataError,
    NotAuthenticatedError,
    RecommendationOrchestrator,
    RecommendationState,
)


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _result(tag: str) -> RecommendationResult:
    return RecommendationResult(
        dietary_recommendations=f"diet {tag}",
        exercise_recommendations=f"exercise {tag}",
        stress_management_techniques=f"stress {tag}",
        health_alerts="None identified.",
    )


class _GatedBackend:
    """Backend whose calls finish only when the test opens their gate."""

    def __init__(self) -> None:
        self.gates: list[asyncio.Event] = []

    async def generate(self, prompt, generation_config, *, id_token):
        gate = asyncio.Event()
        self.gates.append(gate)
        call_number = len(self.gates)
        await gate.wait()
        return _result(str(call_number))


class _FailingBackend:
    async def generate(self, prompt, generation_config, *, id_token):
        raise ValueError("bad response shape")


PROFILE = Profile(goals="lose weight")
LOGS = [LogEntry(id="l1", date=date(2024, 3, 1), heart_rate=80)]


@pytest.fixture
def orchestrator(mock_mcp_client, audit_logger):
    return RecommendationOrchestrator(
        RecommendationProxyClient(mock_mcp_client),
        audit_logger=audit_logger,
        provider_label="mock",
    )


class TestPreconditions:
    def test_no_identity(self, orchestrator, mock_mcp_client):
        with pytest.raises(NotAuthenticatedError):
            _run(orchestrator.generate(None, PROFILE, LOGS))
        assert mock_mcp_client.calls == []
        assert orchestrator.state.error == NOT_AUTHENTICATED_MESSAGE
        assert not orchestrator.state.is_loading

    def test_empty_uid(self, orchestrator, mock_mcp_client):
        with pytest.raises(NotAuthenticatedError):
            _run(orchestrator.generate(Identity(uid=""), PROFILE, LOGS))
        assert mock_mcp_client.calls == []

    def test_no_profile_and_no_logs(self, orchestrator, identity, mock_mcp_client, audit_logger):
        with pytest.raises(InsufficientDataError):
            _run(orchestrator.generate(identity, Profile(), []))
        assert mock_mcp_client.calls == []
        assert orchestrator.state.error == INSUFFICIENT_DATA_MESSAGE
        assert audit_logger.count_disclosures() == 0

    def test_logs_alone_are_enough(self, orchestrator, identity, mock_mcp_client):
        _run(orchestrator.generate(identity, Profile(), LOGS))
        assert len(mock_mcp_client.calls) == 1

    def test_profile_alone_is_enough(self, orchestrator, identity, mock_mcp_client):
        _run(orchestrator.generate(identity, PROFILE, []))
        assert len(mock_mcp_client.calls) == 1


class TestSuccess:
    def test_state_holds_advice_and_alerts_separately(self, orchestrator, identity):
        result = _run(orchestrator.generate(identity, PROFILE, LOGS))

        state = orchestrator.state
        assert state.recommendations == result.advice()
        assert "healthAlerts" not in state.recommendations
        assert state.health_alerts == "None identified."
        assert state.error is None
        assert not state.is_loading

    def test_prompt_sent_with_token(self, orchestrator, identity, mock_mcp_client):
        _run(orchestrator.generate(identity, PROFILE, LOGS))
        _, arguments = mock_mcp_client.calls[0]
        assert arguments["id_token"] == identity.token
        assert "lose weight" in arguments["data"]["prompt"]
        assert "80" in arguments["data"]["prompt"]

    def test_disclosure_audited(self, orchestrator, identity, audit_logger):
        _run(orchestrator.generate(identity, PROFILE, LOGS))
        events = audit_logger.get_events(action="recommendation_request")
        assert len(events) == 1
        assert events[0]["llm_disclosed"] == 1
        assert events[0]["llm_provider"] == "mock"
        assert events[0]["status"] == "success"

    def test_previous_error_cleared(self, orchestrator, identity):
        with pytest.raises(InsufficientDataError):
            _run(orchestrator.generate(identity, Profile(), []))
        _run(orchestrator.generate(identity, PROFILE, LOGS))
        assert orchestrator.state.error is None


class TestFailure:
    def test_proxy_error_yields_fallback(self, make_mcp_client, identity, audit_logger):
        client = make_mcp_client(envelope={
            "status": "error",
            "error": {"code": "internal", "message": "Model unavailable", "details": None},
        })
        orchestrator = RecommendationOrchestrator(
            RecommendationProxyClient(client), audit_logger=audit_logger
        )

        result = _run(orchestrator.generate(identity, PROFILE, LOGS))

        assert result == RecommendationResult.fallback("Model unavailable")
        assert all(result.advice().values())
        state = orchestrator.state
        assert state.error == GENERATION_FAILED_MESSAGE
        assert state.health_alerts == "Error checking for alerts: Model unavailable"
        assert not state.is_loading
        assert audit_logger.get_events()[0]["error_type"] == "internal"

    def test_transport_error_yields_fallback(self, make_mcp_client, identity):
        client = make_mcp_client(error=ConnectionError("refused"))
        orchestrator = RecommendationOrchestrator(RecommendationProxyClient(client))

        result = _run(orchestrator.generate(identity, PROFILE, LOGS))

        assert result.health_alerts.startswith("Error checking for alerts:")
        assert orchestrator.state.error == GENERATION_FAILED_MESSAGE

    def test_unexpected_backend_error_yields_fallback(self, identity, audit_logger):
        orchestrator = RecommendationOrchestrator(_FailingBackend(), audit_logger=audit_logger)

        result = _run(orchestrator.generate(identity, PROFILE, LOGS))

        assert result == RecommendationResult.fallback("bad response shape")
        state = orchestrator.state
        assert not state.is_loading
        assert state.error == GENERATION_FAILED_MESSAGE
        assert audit_logger.get_events()[0]["error_type"] == "internal"

    def test_cancelled_request_clears_loading(self, identity):
        backend = _GatedBackend()
        orchestrator = RecommendationOrchestrator(backend)

        async def _scenario():
            pending = asyncio.ensure_future(orchestrator.generate(identity, PROFILE, LOGS))
            while not backend.gates:
                await asyncio.sleep(0)
            assert orchestrator.state.is_loading
            pending.cancel()
            with pytest.raises(asyncio.CancelledError):
                await pending

        _run(_scenario())
        assert not orchestrator.state.is_loading


class TestObservableState:
    def test_listener_sees_loading_then_result(self, orchestrator, identity):
        states: list[RecommendationState] = []
        sub = orchestrator.subscribe(states.append)
        _run(orchestrator.generate(identity, PROFILE, LOGS))
        sub.cancel()

        assert states[0] == RecommendationState()
        assert states[1].is_loading
        assert states[1].recommendations is None
        assert not states[-1].is_loading
        assert states[-1].recommendations is not None

    def test_cancelled_listener_not_called(self, orchestrator, identity):
        states: list[RecommendationState] = []
        orchestrator.subscribe(states.append).cancel()
        _run(orchestrator.generate(identity, PROFILE, LOGS))
        assert len(states) == 1

    def test_state_is_a_copy(self, orchestrator):
        orchestrator.state.error = "mutated"
        assert orchestrator.state.error is None

    def test_reset(self, orchestrator, identity):
        _run(orchestrator.generate(identity, PROFILE, LOGS))
        orchestrator.reset()
        assert orchestrator.state == RecommendationState()


class TestStaleResponses:
    def test_older_response_does_not_overwrite_newer(self, identity):
        backend = _GatedBackend()
        orchestrator = RecommendationOrchestrator(backend)

        async def _scenario():
            first = asyncio.ensure_future(orchestrator.generate(identity, PROFILE, LOGS))
            second = asyncio.ensure_future(orchestrator.generate(identity, PROFILE, LOGS))
            while len(backend.gates) < 2:
                await asyncio.sleep(0)

            backend.gates[1].set()
            second_result = await second
            backend.gates[0].set()
            first_result = await first
            return first_result, second_result

        first_result, second_result = _run(_scenario())

        assert first_result.dietary_recommendations == "diet 1"
        assert second_result.dietary_recommendations == "diet 2"
        assert orchestrator.state.recommendations == second_result.advice()
        assert not orchestrator.state.is_loading

    def test_reset_discards_in_flight_response(self, identity):
        backend = _GatedBackend()
        orchestrator = RecommendationOrchestrator(backend)

        async def _scenario():
            pending = asyncio.ensure_future(orchestrator.generate(identity, PROFILE, LOGS))
            while not backend.gates:
                await asyncio.sleep(0)
            orchestrator.reset()
            backend.gates[0].set()
            return await pending

        result = _run(_scenario())
        assert result.dietary_recommendations == "diet 1"
        assert orchestrator.state == RecommendationState()
