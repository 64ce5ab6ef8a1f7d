"""
Tests for pending inputs.

Tests:
- Suspending an effect on REQUEST_INPUT and resuming it
- Answer validation (values, indexes, multiselect bounds)
- Cancellation and timeouts
- Simultaneous loops holding several inputs open at once
"""

import pytest

from ..engine_core.errors import InputError
from ..session import Session, SessionState
from ..spec_schema import GameDefinition
from ..spec_schema.effect_dsl import for_each_player, move, request_input
from .conftest import mini_document

HAND0 = "$.players[0].zones.hand"


def session_with(*effect, rule_on_failure="abort"):
    rules = [{"id": "choose", "trigger": "on.ping", "effect": list(effect), "on_failure": rule_on_failure}]
    definition = GameDefinition.from_dict(mini_document(rules=rules))
    session = Session(definition, 2, seed=7)
    session.start()
    return session


def hand(session, seat):
    return [card.card_id for card in session.state.players[seat].zones["hand"].cards]


class TestSequentialInput:
    """Tests for a single pending input."""

    @pytest.fixture
    def session(self):
        return session_with(
            request_input(0, "$.zones.deck", "pick", prompt="Pick a card"),
            move("ref:pick", HAND0, count=None),
        )

    def test_effect_waits_for_the_answer(self, session):
        outcome = session.inject_event("ping")

        assert outcome.status == SessionState.WAITING_INPUT
        assert len(outcome.pending_inputs) == 1
        pending = outcome.pending_inputs[0]
        assert pending.player == 0
        assert pending.prompt == "Pick a card"
        assert pending.rule_id == "choose"
        assert [c.card_id for c in pending.options] == [f"main-{i}" for i in range(1, 7)]
        assert hand(session, 0) == []

    def test_answer_by_identifier(self, session):
        pending = session.inject_event("ping").pending_inputs[0]
        outcome = session.provide_input(pending.input_id, "main-3")

        assert outcome.status == SessionState.ACTIVE
        assert hand(session, 0) == ["main-3"]

    def test_answer_by_index(self, session):
        pending = session.inject_event("ping").pending_inputs[0]
        session.provide_input(pending.input_id, indexes=[1])
        assert hand(session, 0) == ["main-2"]

    def test_invalid_answers_keep_the_input_open(self, session):
        pending = session.inject_event("ping").pending_inputs[0]

        with pytest.raises(InputError):
            session.provide_input(pending.input_id, "main-99")
        with pytest.raises(InputError):
            session.provide_input(pending.input_id, indexes=[6])
        with pytest.raises(InputError):
            session.provide_input(pending.input_id)

        assert session.pending_inputs == [pending]
        session.provide_input(pending.input_id, "main-1")
        assert hand(session, 0) == ["main-1"]

    def test_unknown_input_id(self, session):
        session.inject_event("ping")
        with pytest.raises(InputError):
            session.provide_input("input-42", "main-1")

    def test_driver_calls_blocked_while_waiting(self, session):
        session.inject_event("ping")
        with pytest.raises(InputError):
            session.advance()
        with pytest.raises(InputError):
            session.inject_event("ping")

    def test_cancel_fails_the_action(self, session):
        pending = session.inject_event("ping").pending_inputs[0]
        outcome = session.cancel_input(pending.input_id)

        assert outcome.status == SessionState.ACTIVE
        assert hand(session, 0) == []
        assert "cancelled" in outcome.failures[0].reason
        with pytest.raises(InputError):
            session.cancel_input(pending.input_id)


class TestInputOptions:
    """Tests for option shapes and selection bounds."""

    def test_multiselect_bounds(self):
        session = session_with(
            request_input(0, "$.zones.deck", "picks", multiselect=True, min=2, max=2),
            move("ref:picks", HAND0, count=None),
        )
        pending = session.inject_event("ping").pending_inputs[0]

        with pytest.raises(InputError):
            session.provide_input(pending.input_id, ["main-1"])
        with pytest.raises(InputError):
            session.provide_input(pending.input_id, ["main-1", "main-1"])
        session.provide_input(pending.input_id, ["main-2", "main-4"])

        assert sorted(hand(session, 0)) == ["main-2", "main-4"]

    def test_optional_input_accepts_no_choice(self):
        session = session_with(
            request_input(0, "$.zones.deck", "pick", optional=True),
        )
        pending = session.inject_event("ping").pending_inputs[0]
        outcome = session.provide_input(pending.input_id)

        assert outcome.status == SessionState.ACTIVE
        assert outcome.failures == []
        assert hand(session, 0) == []

    def test_literal_options(self):
        session = session_with(
            request_input(1, {"list": ["keep", "discard"]}, "choice"),
            {"action": "IF", "condition": {"isEqual": ["ref:choice", "discard"]},
             "then": [move("$.zones.deck", "$.zones.discard")]},
        )
        pending = session.inject_event("ping").pending_inputs[0]
        assert pending.player == 1
        assert pending.options == ["keep", "discard"]

        session.provide_input(pending.input_id, "discard")
        assert session.state.zones["discard"].count == 1

    def test_filtered_options(self):
        session = session_with(
            request_input(0, "$.zones.deck", "pick", filter={"isEqual": ["ref:item.suit", "spades"]}),
        )
        pending = session.inject_event("ping").pending_inputs[0]
        assert [c.card_id for c in pending.options] == ["main-2", "main-5"]

    def test_no_options_fails(self):
        session = session_with(request_input(0, "$.zones.discard", "pick"))
        outcome = session.inject_event("ping")

        assert outcome.pending_inputs == []
        assert outcome.failures[0].reason == "REQUEST_INPUT has no options"


class TestTimeouts:
    """Tests for input expiry."""

    def test_expired_input_is_cancelled(self):
        session = session_with(
            request_input(0, "$.zones.deck", "pick", timeout=5),
            move("ref:pick", HAND0, count=None),
        )
        session.executor.clock = lambda: 100.0
        pending = session.inject_event("ping").pending_inputs[0]
        assert pending.timeout == 5

        assert session.expire_inputs(now=104.0).status == SessionState.WAITING_INPUT
        outcome = session.expire_inputs(now=105.0)

        assert outcome.status == SessionState.ACTIVE
        assert outcome.failures[0].rule_id == "choose"
        assert hand(session, 0) == []

    def test_no_timeout_never_expires(self):
        session = session_with(request_input(0, "$.zones.deck", "pick"))
        session.inject_event("ping")
        assert session.expire_inputs(now=10 ** 9).status == SessionState.WAITING_INPUT


class TestSimultaneousInput:
    """Tests for inputs opened inside a simultaneous loop."""

    @pytest.fixture
    def session(self):
        return session_with(for_each_player([
            request_input("$player", "$.zones.deck", "pick"),
            move("ref:pick", "$player.zones.hand", count=None),
        ], order="simultaneous"), rule_on_failure="continue")

    def test_every_seat_is_asked_at_once(self, session):
        outcome = session.inject_event("ping")
        assert sorted(p.player for p in outcome.pending_inputs) == [0, 1]

    def test_answers_in_any_order(self, session):
        pending = {p.player: p for p in session.inject_event("ping").pending_inputs}

        outcome = session.provide_input(pending[1].input_id, "main-5")
        assert outcome.status == SessionState.WAITING_INPUT
        session.provide_input(pending[0].input_id, "main-2")

        assert hand(session, 0) == ["main-2"]
        assert hand(session, 1) == ["main-5"]
        assert session.pending_inputs == []

    def test_cancelled_seat_does_not_block_the_other(self, session):
        pending = {p.player: p for p in session.inject_event("ping").pending_inputs}

        session.cancel_input(pending[0].input_id)
        outcome = session.provide_input(pending[1].input_id, "main-4")

        assert outcome.status == SessionState.ACTIVE
        assert hand(session, 0) == []
        assert hand(session, 1) == ["main-4"]
        assert any("cancelled" in f.reason for f in outcome.failures)
