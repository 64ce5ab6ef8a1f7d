"""
Tests for sessions, snapshots and the game loop.

Tests:
- Reproducibility from (definition, seed, answers)
- Snapshot / restore continuation
- Redacted viewer snapshots
- Halting on invariant violations
- SessionManager lifecycle
- GameLoop outcomes with input policies
"""

import pytest

from ..bots import FirstOptionPolicy, ScriptedPolicy
from ..config import EngineConfig
from ..engine_core.errors import InputError, InvariantViolation
from ..session import (
    GameLoop,
    GameSnapshot,
    LoopState,
    Session,
    SessionManager,
    SessionState,
)
from ..spec_schema import GameDefinition
from ..spec_schema.effect_dsl import increment, move, request_input, set_variable, shuffle
from .conftest import mini_document

CURRENT = "$.players[current]"


def race_document(**meta_rng):
    """Draw one card, then discard a card of your choice for a point; two points win."""
    document = mini_document(
        setup=[shuffle("$.zones.deck")],
        flow={
            "initial_state": "main",
            "states": {"main": {"phases": ["draw", "play"], "loop": True}},
            "win_condition": {
                "evaluator": {"filter": ["$.players", {"isGreaterThan": ["ref:item.variables.score", 1]}]},
                "reason": "race",
            },
        },
        rules=[
            {
                "id": "draw_card",
                "trigger": {"on": "on.phase.enter", "phase": "draw"},
                "effect": [{"action": "DRAW", "from": "$.zones.deck"}],
            },
            {
                "id": "discard_for_point",
                "trigger": {"on": "on.phase.enter", "phase": "play"},
                "effect": [
                    request_input(CURRENT, f"{CURRENT}.zones.hand", "card", prompt="Discard a card"),
                    move("ref:card", "$.zones.discard", count=None),
                    increment("score"),
                ],
            },
            {"id": "noop", "trigger": "on.ping", "effect": [set_variable("round", 1)]},
        ],
    )
    if meta_rng:
        document["meta"]["rng"] = meta_rng
    return document


@pytest.fixture
def race():
    return GameDefinition.from_dict(race_document())


def played(definition, seed=11, session_id="race", policy=None):
    session = Session(definition, 2, seed=seed, session_id=session_id)
    session.start()
    loop = GameLoop(session, policy=policy)
    return session, loop.run(max_steps=50)


def tags_and_fields(trace):
    return [(event["tag"], event["fields"]) for event in trace]


class TestDeterminism:
    """Tests for reproducible runs."""

    def test_same_seed_same_game(self, race):
        first, first_result = played(race)
        second, second_result = played(race)

        assert first_result.loop_state == LoopState.GAME_OVER
        assert first.trace == second.trace
        assert first.snapshot().model_dump() == second.snapshot().model_dump()
        assert first_result.result == second_result.result

    def test_answers_change_the_game(self, race):
        first, _ = played(race, policy=ScriptedPolicy([[0]]))
        second, _ = played(race, policy=ScriptedPolicy([{"value": None, "cancel": True}]))

        assert first.trace != second.trace

    def test_pinned_seed_overrides_argument(self):
        definition = GameDefinition.from_dict(race_document(deterministic=True, seed=99))
        session = Session(definition, 2, seed=1)
        session.start()
        assert session.state.seed == 99
        assert session.state.deterministic

    def test_seed_is_drawn_when_missing(self, race):
        session = Session(race, 2)
        session.start()
        assert isinstance(session.state.seed, int)


class TestSnapshots:
    """Tests for snapshot / restore."""

    def settled_session(self, race):
        session = Session(race, 2, seed=11, session_id="race")
        session.start()
        pending = session.advance().pending_inputs[0]
        session.provide_input(pending.input_id, indexes=[0])
        return session

    def test_restore_continues_identically(self, race):
        original = self.settled_session(race)
        snapshot = original.snapshot()
        mark = len(original.trace)

        restored = Session.restore(race, GameSnapshot.model_validate_json(snapshot.model_dump_json()))
        assert restored.status == SessionState.ACTIVE
        assert restored.session_id == "race"

        GameLoop(original).run(max_steps=50)
        GameLoop(restored).run(max_steps=50)

        assert tags_and_fields(restored.trace) == tags_and_fields(original.trace[mark:])
        assert restored.snapshot().model_dump() == original.snapshot().model_dump()

    def test_snapshot_while_waiting_is_unsettled(self, race):
        session = Session(race, 2, seed=11)
        session.start()
        session.advance()
        snapshot = session.snapshot()

        assert not snapshot.settled
        with pytest.raises(InputError):
            Session.restore(race, snapshot)

    def test_viewer_snapshot_is_redacted(self, race):
        session = self.settled_session(race)
        snapshot = session.snapshot(viewer=1)

        assert snapshot.redacted
        assert snapshot.rng_state is None
        deck = snapshot.zones["deck"]
        assert deck.count == session.state.zones["deck"].count
        assert all(card.hidden for card in deck.cards)
        with pytest.raises(InputError):
            Session.restore(race, snapshot)

    def test_own_hand_is_visible_to_its_owner(self, race):
        session = Session(race, 2, seed=11)
        session.start()
        hand = session.state.players[0].zones["hand"]
        assert hand.count == 1

        mine = session.snapshot(viewer=0).players[0].zones["hand"].cards
        theirs = session.snapshot(viewer=1).players[0].zones["hand"].cards

        assert mine[0].card_id == hand.cards[0].card_id
        assert theirs[0].hidden

    def test_restore_checks_the_definition(self, race):
        snapshot = self.settled_session(race).snapshot()
        other = GameDefinition.from_dict(mini_document(meta={**mini_document()["meta"], "name": "other"}))
        with pytest.raises(InputError):
            Session.restore(other, snapshot)


class TestHalting:
    """Tests for invariant violations."""

    def test_corrupted_state_halts_the_session(self, race):
        session = Session(race, 2, seed=11)
        session.start()
        card_id = session.state.zones["deck"].cards[0].card_id
        session.state.locations[card_id] = "zones.discard"

        with pytest.raises(InvariantViolation):
            session.inject_event("ping")
        assert session.halted
        assert session.status == SessionState.HALTED
        with pytest.raises(InvariantViolation):
            session.advance()

    def test_lenient_config_skips_the_check(self, race):
        session = Session(race, 2, seed=11, config=EngineConfig(strict_invariants=False))
        session.start()
        card_id = session.state.zones["deck"].cards[0].card_id
        session.state.locations[card_id] = "zones.discard"

        outcome = session.inject_event("ping")
        assert outcome.status == SessionState.ACTIVE


class TestSessionLifecycle:
    """Tests for session state and the manager."""

    def test_calls_before_start_are_rejected(self, race):
        session = Session(race, 2, seed=1)
        assert session.status == SessionState.CREATED
        with pytest.raises(InputError):
            session.advance()
        with pytest.raises(InputError):
            session.snapshot()

    def test_double_start(self, race):
        session = Session(race, 2, seed=1)
        session.start()
        with pytest.raises(InputError):
            session.start()

    def test_outcome_reports_waiting_inputs(self, race):
        session = Session(race, 2, seed=1)
        session.start()
        outcome = session.advance()

        assert outcome.status == SessionState.WAITING_INPUT
        assert outcome.pending_inputs[0].prompt == "Discard a card"
        assert session.status == SessionState.WAITING_INPUT

    def test_manager_create_get_end(self, race):
        manager = SessionManager()
        session = manager.create_session(race, 2, seed=3)

        assert session.status == SessionState.ACTIVE
        assert manager.get_session(session.session_id) is session
        assert manager.list_active_sessions() == [session.session_id]

        assert manager.end_session(session.session_id)
        assert session.status == SessionState.ENDED
        assert manager.get_session(session.session_id) is None
        assert not manager.end_session(session.session_id)

    def test_manager_create_without_start(self, race):
        manager = SessionManager()
        session = manager.create_session(race, 2, seed=3, start=False)
        assert session.status == SessionState.CREATED
        assert session.state is None

    def test_cleanup_drops_old_finished_sessions(self, race):
        manager = SessionManager()
        finished = manager.create_session(race, 2, seed=3)
        GameLoop(finished).run(max_steps=50)
        running = manager.create_session(race, 2, seed=3)

        stale = manager.cleanup_stale_sessions(max_age_seconds=60, now=finished.created_at + 120)

        assert stale == [finished.session_id]
        assert manager.get_session(running.session_id) is running


class TestGameLoop:
    """Tests for automated play."""

    def test_plays_to_a_result(self, race):
        session, result = played(race)

        assert result.finished
        assert result.result.reason == "race"
        assert result.result.winners == [0]
        assert result.inputs_answered == 3
        assert session.status == SessionState.GAME_OVER

    def test_step_limit(self, race):
        session = Session(race, 2, seed=11)
        session.start()
        result = GameLoop(session).run(max_steps=1)

        assert result.loop_state == LoopState.STEP_LIMIT
        assert result.steps == 1
        assert not session.is_over

    def test_stall_when_the_flow_halts(self):
        definition = GameDefinition.from_dict(mini_document(flow={
            "initial_state": "main",
            "states": {"main": {"phases": ["only"], "loop": False}},
        }))
        session = Session(definition, 2, seed=1)
        session.start()
        result = GameLoop(session).run(max_steps=10)

        assert result.loop_state == LoopState.STALLED
        assert result.steps == 1

    def test_per_seat_policies(self, race):
        session = Session(race, 2, seed=11)
        session.start()
        script = ScriptedPolicy([{"cancel": True}, {"cancel": True}])
        result = GameLoop(session, policies={0: script}, policy=FirstOptionPolicy()).run(max_steps=50)

        assert script.exhausted
        assert result.result.winners == [1]
        assert any("cancelled" in f.reason for f in result.failures)

    def test_invalid_scripted_answer_is_cancelled(self, race):
        session = Session(race, 2, seed=11)
        session.start()
        result = GameLoop(session, policy=ScriptedPolicy([[5]])).run(max_steps=50)

        assert result.failures[0].rule_id == "discard_for_point"
        assert result.finished
