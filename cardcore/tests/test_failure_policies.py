"""
Tests for failure policies.

An effect [A, B, C] where B fails:
- abort keeps A and skips C
- continue keeps A and runs C
- rollback restores the state from before A
"""

from ..config import EngineConfig
from ..engine_core.executor import ActionExecutor
from ..session import Session, snapshot_state
from ..spec_schema import GameDefinition, OnFailure
from ..spec_schema.effect_dsl import increment, move, parallel, set_variable
from .conftest import mini_document

DECK = "$.zones.deck"
DISCARD = "$.zones.discard"

A_OK = move(DECK, DISCARD)
B_FAILS = move(DECK, "$.zones.vault", count=9, exact=True)
C_OK = set_variable("round", 5)


class TestAbort:
    """Tests for the default abort policy."""

    def test_abort_keeps_earlier_effects(self, executor, run_effect, mini_state):
        run_effect(executor, [A_OK, B_FAILS, C_OK])

        assert mini_state.zones["discard"].count == 1
        assert mini_state.zones["vault"].count == 0
        assert mini_state.variables["round"] == 0

    def test_failure_report(self, executor, run_effect):
        run_effect(executor, [A_OK, B_FAILS, C_OK])

        assert len(executor.failures) == 1
        report = executor.failures[0]
        assert report.rule_id == "test"
        assert report.action_index == 1
        assert report.action == "MOVE"
        assert report.policy == OnFailure.ABORT
        assert not report.degraded
        assert report.to_dict()["policy"] == "abort"

    def test_events_of_completed_actions_still_dispatch(self, executor, run_effect):
        run_effect(executor, [A_OK, B_FAILS, C_OK])
        assert [event.tag for event in executor.trace] == ["move"]

    def test_failed_effect_does_not_store_result(self, executor, run_effect, mini_state):
        run_effect(executor, [A_OK, B_FAILS], store_as="outcome")
        assert "outcome" not in mini_state.results


class TestContinue:
    """Tests for the continue policy."""

    def test_continue_runs_remaining_actions(self, executor, run_effect, mini_state):
        run_effect(executor, [A_OK, B_FAILS, C_OK], on_failure="continue")

        assert mini_state.zones["discard"].count == 1
        assert mini_state.variables["round"] == 5
        assert executor.failures[0].policy == OnFailure.CONTINUE

    def test_action_policy_overrides_effect_policy(self, executor, run_effect, mini_state):
        lenient = dict(B_FAILS, on_failure="continue")
        run_effect(executor, [A_OK, lenient, C_OK])

        assert mini_state.variables["round"] == 5
        assert executor.failures[0].policy == OnFailure.CONTINUE


class TestRollback:
    """Tests for the rollback policy."""

    def test_rollback_restores_pre_effect_state(self, executor, run_effect, mini_state):
        before = snapshot_state(mini_state)

        run_effect(executor, [A_OK, B_FAILS, C_OK], on_failure="rollback")

        assert snapshot_state(executor.state) == before
        assert executor.state.zones["discard"].count == 0
        assert executor.failures[0].policy == OnFailure.ROLLBACK

    def test_rollback_drops_pending_events(self, executor, run_effect):
        run_effect(executor, [A_OK, B_FAILS], on_failure="rollback")
        assert executor.trace == []

    def test_rollback_discards_events_of_nested_effects(self):
        flow = {
            "initial_state": "main",
            "states": {"main": {"phases": ["draw", {"name": "play", "actions": [A_OK]}]}},
        }
        rules = [
            {"id": "jump", "trigger": "on.ping", "on_failure": "rollback",
             "effect": [{"action": "SET_PHASE", "phase": "play"}, B_FAILS]},
            {"id": "count_moves", "trigger": "on.move", "effect": [increment("round")]},
        ]
        session = Session(GameDefinition.from_dict(mini_document(flow=flow, rules=rules)), 2, seed=7)
        session.start()
        before = snapshot_state(session.state)

        outcome = session.inject_event("ping")

        assert snapshot_state(session.state) == before
        assert session.state.variables["round"] == 0
        assert session.state.flow.phase == "draw"
        assert "move" not in [event.tag for event in outcome.events]
        assert [(f.rule_id, f.policy) for f in outcome.failures] == [("jump", OnFailure.ROLLBACK)]

    def test_rollback_without_support_degrades_to_abort(self, mini_definition, mini_state, run_effect):
        executor = ActionExecutor(mini_definition, EngineConfig(rollback_supported=False))
        executor.load(mini_state)

        run_effect(executor, [A_OK, B_FAILS, C_OK], on_failure="rollback")

        report = executor.failures[0]
        assert report.degraded
        assert report.policy == OnFailure.ABORT
        assert mini_state.zones["discard"].count == 1
        assert mini_state.variables["round"] == 0

    def test_parallel_block_rolls_back_as_a_unit(self, executor, run_effect):
        run_effect(executor, [
            parallel([[A_OK], [move(DISCARD, "$.zones.vault", count=3, exact=True)]], on_failure="rollback"),
            C_OK,
        ], on_failure="continue")

        state = executor.state
        assert state.zones["discard"].count == 0
        assert state.zones["deck"].count == 6
        assert state.variables["round"] == 5
        assert [f.policy for f in executor.failures] == [OnFailure.ROLLBACK, OnFailure.CONTINUE]
        assert [event.tag for event in executor.trace] == ["variable.set"]

    def test_parallel_success_keeps_every_branch(self, executor, run_effect):
        run_effect(executor, [
            parallel([[A_OK], [move(DECK, "$.zones.vault")]], on_failure="rollback"),
        ])

        state = executor.state
        assert state.zones["discard"].count == 1
        assert state.zones["vault"].count == 1
        assert executor.failures == []
