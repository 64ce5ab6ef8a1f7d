"""
Tests for API layer.

Tests:
- EngineService session lifecycle
- Driving a session through advance / inject / inputs
- Snapshot and restore through the service
- Error handling
"""

import pytest

from ..api.schemas import (
    CreateSessionRequest,
    ErrorCode,
    ErrorResponse,
    InjectEventRequest,
    ProvideInputRequest,
    RestoreSessionRequest,
    SessionResponse,
    SessionStatus,
    StepResponse,
)
from ..api.service import EngineService
from ..spec_schema.effect_dsl import move, request_input
from .conftest import mini_document


def choosing_document(**input_params):
    """Mini game where a 'choose' event asks seat 0 for a deck card."""
    return mini_document(rules=[{
        "id": "choose",
        "trigger": "on.choose",
        "effect": [
            request_input(0, "$.zones.deck", "pick", prompt="Take a card", **input_params),
            move("ref:pick", "$.players[0].zones.hand", count=None),
        ],
    }])


class TestEngineService:
    """Tests for EngineService."""

    @pytest.fixture
    def service(self):
        """Create a fresh engine service."""
        return EngineService()

    @pytest.fixture
    def war(self, service):
        response = service.create_session(CreateSessionRequest(game_type="war", seed=5))
        assert isinstance(response, SessionResponse)
        return response

    @pytest.fixture
    def custom(self, service):
        response = service.create_session(
            CreateSessionRequest(definition=choosing_document(), num_players=2, seed=1)
        )
        assert isinstance(response, SessionResponse)
        return response

    def test_create_war_session(self, war):
        """Creating a session runs setup and reports the first stop."""
        assert war.status == SessionStatus.ACTIVE
        assert war.game_name == "war"
        assert war.num_players == 2
        assert war.seed == 5
        assert war.deterministic is True
        assert war.step.flow_state == "playing"
        assert war.step.phase == "flip"
        assert "phase.enter" in [e.tag for e in war.step.events]

    def test_get_session(self, service, war):
        response = service.get_session(war.session_id)
        assert response.session_id == war.session_id
        assert response.step is None

    def test_unknown_game(self, service):
        response = service.create_session(CreateSessionRequest(game_type="chess"))
        assert isinstance(response, ErrorResponse)
        assert response.error_code == ErrorCode.UNKNOWN_GAME
        assert response.details["available"] == ["war"]

    def test_invalid_definition(self, service):
        document = mini_document()
        document["flow"]["initial_state"] = "nowhere"
        response = service.create_session(CreateSessionRequest(definition=document))

        assert isinstance(response, ErrorResponse)
        assert response.error_code == ErrorCode.INVALID_DEFINITION
        assert response.details["errors"]

    def test_session_not_found(self, service):
        for response in (
            service.get_session("missing"),
            service.advance("missing"),
            service.get_snapshot("missing"),
            service.get_trace("missing"),
        ):
            assert isinstance(response, ErrorResponse)
            assert response.error_code == ErrorCode.SESSION_NOT_FOUND

    def test_advance(self, service, war):
        response = service.advance(war.session_id)

        assert isinstance(response, StepResponse)
        assert response.phase == "compare"
        assert [e.tag for e in response.events][:2] == ["phase.exit", "phase.enter"]
        assert response.failures == []

    def test_checkpoint(self, service, war):
        response = service.checkpoint(war.session_id)
        assert isinstance(response, StepResponse)
        assert response.phase == "flip"

    def test_pending_input_round_trip(self, service, custom):
        step = service.inject_event(custom.session_id, InjectEventRequest(tag="on.choose"))

        assert step.status == SessionStatus.WAITING_INPUT
        pending = step.pending_inputs[0]
        assert pending.prompt == "Take a card"
        assert pending.rule_id == "choose"
        assert [o.value for o in pending.options][:2] == ["main-1", "main-2"]
        assert pending.options[1].index == 1

        answered = service.provide_input(
            custom.session_id, ProvideInputRequest(input_id=pending.input_id, indexes=[1])
        )
        assert answered.status == SessionStatus.ACTIVE
        assert "move" in [e.tag for e in answered.events]

    def test_invalid_input(self, service, custom):
        pending = service.inject_event(custom.session_id, InjectEventRequest(tag="choose")).pending_inputs[0]
        response = service.provide_input(
            custom.session_id, ProvideInputRequest(input_id=pending.input_id, value="main-99")
        )

        assert isinstance(response, ErrorResponse)
        assert response.error_code == ErrorCode.INVALID_INPUT
        assert response.details["error_type"] == "InputError"

    def test_advance_while_waiting(self, service, custom):
        service.inject_event(custom.session_id, InjectEventRequest(tag="choose"))
        response = service.advance(custom.session_id)
        assert response.error_code == ErrorCode.INVALID_INPUT

    def test_cancel_input(self, service, custom):
        pending = service.inject_event(custom.session_id, InjectEventRequest(tag="choose")).pending_inputs[0]
        response = service.cancel_input(custom.session_id, pending.input_id)

        assert response.status == SessionStatus.ACTIVE
        assert response.failures[0].rule_id == "choose"
        assert response.failures[0].policy == "abort"

    def test_expire_inputs(self, service):
        created = service.create_session(
            CreateSessionRequest(definition=choosing_document(timeout=30), num_players=2, seed=1)
        )
        service.session_manager.get_session(created.session_id).executor.clock = lambda: 0.0
        step = service.inject_event(created.session_id, InjectEventRequest(tag="choose"))
        assert step.pending_inputs[0].timeout == 30

        assert service.expire_inputs(created.session_id, now=10).status == SessionStatus.WAITING_INPUT
        assert service.expire_inputs(created.session_id, now=30).status == SessionStatus.ACTIVE

    def test_snapshot_and_restore(self, service, war):
        service.advance(war.session_id)
        snapshot = service.get_snapshot(war.session_id)
        assert snapshot.settled

        service.end_session(war.session_id)
        restored = service.restore_session(RestoreSessionRequest(game_type="war", snapshot=snapshot))

        assert isinstance(restored, SessionResponse)
        assert restored.session_id == war.session_id
        assert service.advance(restored.session_id).phase == "flip"

    def test_restore_redacted_snapshot(self, service, war):
        snapshot = service.get_snapshot(war.session_id, viewer=0)
        response = service.restore_session(RestoreSessionRequest(game_type="war", snapshot=snapshot))

        assert isinstance(response, ErrorResponse)
        assert response.error_code == ErrorCode.INVALID_INPUT

    def test_trace(self, service, war):
        trace = service.get_trace(war.session_id)
        assert [e.sequence for e in trace] == list(range(len(trace)))
        assert trace[0].tag == "state.enter"

    def test_list_and_end_sessions(self, service, war):
        assert service.list_sessions().sessions == [war.session_id]

        ended = service.end_session(war.session_id)
        assert ended.success
        assert service.list_sessions().count == 0
        assert not service.end_session(war.session_id).success
