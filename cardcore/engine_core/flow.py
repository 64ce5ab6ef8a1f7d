"""
Flow Controller - State/phase machine, turn order and win detection.

The controller never mutates state directly from the outside: it returns
lists of FlowSteps which the executor runs in order. A step either raises
an event (dispatched synchronously, so rules see the flow exactly where
the step left it) or applies a small state update that may return more
steps.

Checkpoint order: win condition first, then transitions, then the next
phase (or the next turn when the phase list is exhausted).
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable
import logging

from ..spec_schema.game_definition import GameDefinition, TransitionDefinition
from .context import EvalContext, Environment
from .dispatcher import GateFailure
from .errors import EngineError, StateLookupError
from .events import Event, EventTag
from .expression import ExpressionEvaluator
from .state import GameResult, GameState, PlayerState

logger = logging.getLogger(__name__)


@dataclass
class FlowStep:
    """One flow step: an event to dispatch or an update to apply."""
    label: str
    event: Event | None = None
    apply: Callable[[GameState], list[FlowStep] | None] | None = None


class FlowController:
    """Builds flow steps for one game definition."""

    def __init__(self, definition: GameDefinition, evaluator: ExpressionEvaluator):
        self.definition = definition
        self.evaluator = evaluator
        self.gate_failures: list[GateFailure] = []

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def start_steps(self, state: GameState) -> list[FlowStep]:
        """Initialise the flow position and enter the initial state."""
        flow_def = self.definition.flow
        if flow_def is None:
            return []
        flow = state.flow
        order = flow_def.player_order
        flow.current_player = order.first % max(state.num_players, 1)
        flow.direction = -1 if order.direction == "counterclockwise" else 1
        flow.order_mode = order.mode
        flow.live_phases = {
            name: [phase.name for phase in body.phases]
            for name, body in flow_def.states.items()
        }
        return self.enter_state_steps(flow_def.initial_state)

    def advance_steps(self, state: GameState, end_turn: bool = False) -> list[FlowStep]:
        """End the current phase (or turn) and move the flow on."""
        if state.game_over:
            return []
        flow = state.flow
        serial = flow.phase_serial
        steps = []
        if flow.phase is not None:
            steps.append(self._event_step(state, EventTag.PHASE_EXIT, phase=flow.phase))
        steps.append(FlowStep(
            label="progress",
            apply=lambda s: self._progress(s, serial, end_turn),
        ))
        return steps

    def checkpoint_steps(self, state: GameState) -> list[FlowStep]:
        """Evaluate win condition and transitions without ending the phase."""
        return [FlowStep(label="checkpoint", apply=lambda s: self._checkpoint(s) or [])]

    # ------------------------------------------------------------------
    # Flow actions
    # ------------------------------------------------------------------

    def set_state_steps(self, state: GameState, name: str, exit_phase: bool = True) -> list[FlowStep]:
        if self.definition.state(name) is None:
            raise StateLookupError(f"Unknown flow state '{name}'")
        steps = []
        if exit_phase and state.flow.phase is not None:
            steps.append(self._event_step(state, EventTag.PHASE_EXIT, phase=state.flow.phase))
        if state.flow.state is not None:
            steps.append(self._event_step(state, EventTag.STATE_EXIT, state=state.flow.state))
        steps.extend(self.enter_state_steps(name))
        return steps

    def set_phase_steps(self, state: GameState, name: str) -> list[FlowStep]:
        phases = state.flow.live_phases.get(state.flow.state, [])
        if name not in phases:
            raise StateLookupError(f"Phase '{name}' is not live in state '{state.flow.state}'")
        steps = []
        if state.flow.phase is not None:
            steps.append(self._event_step(state, EventTag.PHASE_EXIT, phase=state.flow.phase))
        steps.extend(self.enter_phase_steps(state, phases.index(name), begin_turn=False))
        return steps

    def end_game_steps(self, result: GameResult) -> list[FlowStep]:
        def finish(state: GameState):
            if state.game_over:
                return []
            state.result = result
            logger.info("Game over: winners=%s reason=%s", result.winners, result.reason)
            return [FlowStep(
                label="game.end",
                event=Event.create(EventTag.GAME_END, source="flow", winners=list(result.winners),
                                   ranking=list(result.ranking), reason=result.reason),
            )]
        return [FlowStep(label="end_game", apply=finish)]

    def skip_turn(self, state: GameState, seat: int, count: int = 1):
        state.player(seat)
        credits = state.flow.skip_credits
        credits[seat] = credits.get(seat, 0) + count

    def extra_turn(self, state: GameState, seat: int):
        state.player(seat)
        state.flow.extra_turns.append(seat)

    def reverse_order(self, state: GameState):
        state.flow.direction = -state.flow.direction

    def insert_phase(self, state: GameState, phase: str, state_name: str | None = None,
                     after: str | None = None, before: str | None = None, index: int | None = None):
        flow = state.flow
        target = state_name or flow.state
        phases = flow.live_phases.get(target)
        if phases is None:
            raise StateLookupError(f"Unknown flow state '{target}'")
        if after is not None:
            if after not in phases:
                raise StateLookupError(f"Phase '{after}' is not live in state '{target}'")
            position = phases.index(after) + 1
        elif before is not None:
            if before not in phases:
                raise StateLookupError(f"Phase '{before}' is not live in state '{target}'")
            position = phases.index(before)
        elif index is not None:
            position = max(0, min(int(index), len(phases)))
        else:
            position = len(phases)
        phases.insert(position, phase)
        if target == flow.state and flow.phase is not None and position <= flow.phase_index:
            flow.phase_index += 1

    def remove_phase(self, state: GameState, phase: str, state_name: str | None = None):
        flow = state.flow
        target = state_name or flow.state
        phases = flow.live_phases.get(target, [])
        if phase not in phases:
            raise StateLookupError(f"Phase '{phase}' is not live in state '{target}'")
        position = phases.index(phase)
        phases.pop(position)
        if target == flow.state and flow.phase is not None and position <= flow.phase_index:
            flow.phase_index -= 1

    def next_player(self, state: GameState):
        """Pass the turn: extra turns first, then direction with skip credits."""
        flow = state.flow
        flow.turn_index += 1
        if flow.extra_turns:
            flow.current_player = flow.extra_turns.pop(0)
            return
        count = state.num_players
        seat = flow.current_player
        budget = count * (1 + sum(flow.skip_credits.values()))
        for _ in range(budget):
            seat = (seat + flow.direction) % count
            credits = flow.skip_credits.get(seat, 0)
            if credits > 0:
                if credits == 1:
                    del flow.skip_credits[seat]
                else:
                    flow.skip_credits[seat] = credits - 1
                continue
            break
        flow.current_player = seat

    # ------------------------------------------------------------------
    # Step builders
    # ------------------------------------------------------------------

    def enter_state_steps(self, name: str) -> list[FlowStep]:
        body = self.definition.state(name)
        if body is None:
            raise StateLookupError(f"Unknown flow state '{name}'")

        def set_position(state: GameState):
            logger.debug("Entering state '%s'", name)
            state.flow.state = name
            state.flow.phase = None
            state.flow.phase_index = 0
            return [FlowStep(
                label="state.enter",
                event=Event.create(EventTag.STATE_ENTER, source="flow", default_effect=body.on_enter,
                                   state=name, player=state.flow.current_player),
            )]

        def first_phase(state: GameState):
            if state.game_over or state.flow.state != name:
                return []
            if not state.flow.live_phases.get(name):
                return []
            return self.enter_phase_steps(state, 0, begin_turn=True)

        return [
            FlowStep(label="state.position", apply=set_position),
            FlowStep(label="state.first_phase", apply=first_phase),
        ]

    def enter_phase_steps(self, state: GameState, index: int, begin_turn: bool) -> list[FlowStep]:
        state_name = state.flow.state

        def enter(s: GameState):
            phases = s.flow.live_phases.get(state_name, [])
            if index >= len(phases):
                return []
            name = phases[index]
            logger.debug("Entering phase '%s' of state '%s'", name, state_name)
            s.flow.phase_index = index
            s.flow.phase = name
            s.flow.phase_serial += 1
            steps = []
            if begin_turn:
                steps.append(FlowStep(
                    label="turn.begin",
                    event=Event.create(EventTag.TURN_BEGIN, source="flow", player=s.flow.current_player,
                                       turn_index=s.flow.turn_index),
                ))
            steps.append(FlowStep(
                label="phase.enter",
                event=Event.create(EventTag.PHASE_ENTER, source="flow",
                                   default_effect=self._phase_actions(state_name, name),
                                   phase=name, state=state_name, player=s.flow.current_player),
            ))
            return steps

        return [FlowStep(label="phase.position", apply=enter)]

    def _event_step(self, game_state: GameState, tag: str, **fields) -> FlowStep:
        fields.setdefault("player", game_state.flow.current_player)
        if tag in (EventTag.PHASE_EXIT, EventTag.PHASE_ENTER):
            fields.setdefault("state", game_state.flow.state)
        return FlowStep(label=tag, event=Event.create(tag, source="flow", **fields))

    def _phase_actions(self, state_name: str, phase: str) -> list[dict[str, Any]]:
        body = self.definition.state(state_name)
        found = body.phase(phase) if body else None
        if found is None:
            for other in self.definition.flow.states.values():
                found = other.phase(phase)
                if found is not None:
                    break
        return list(found.actions) if found else []

    # ------------------------------------------------------------------
    # Progression
    # ------------------------------------------------------------------

    def _progress(self, state: GameState, serial: int, end_turn: bool) -> list[FlowStep]:
        decided = self._checkpoint(state, phase_exited=True)
        if decided is not None:
            return decided
        flow = state.flow
        if flow.phase_serial != serial or state.game_over:
            # A rule already moved the flow during phase exit.
            return []
        if flow.phase is None:
            return []

        phases = flow.live_phases.get(flow.state, [])
        next_index = flow.phase_index + 1
        if not end_turn and next_index < len(phases):
            return self.enter_phase_steps(state, next_index, begin_turn=False)
        return self._end_turn_steps(state)

    def _end_turn_steps(self, state: GameState) -> list[FlowStep]:
        state_name = state.flow.state
        body = self.definition.state(state_name)

        def pass_turn(s: GameState):
            if s.game_over or s.flow.state != state_name:
                return []
            self.next_player(s)
            if body is not None and body.loop and s.flow.live_phases.get(state_name):
                return self.enter_phase_steps(s, 0, begin_turn=True)
            s.flow.phase = None
            return []

        return [
            self._event_step(state, EventTag.TURN_END, turn_index=state.flow.turn_index),
            FlowStep(label="turn.pass", apply=pass_turn),
        ]

    def _checkpoint(self, state: GameState, phase_exited: bool = False) -> list[FlowStep] | None:
        """Steps for a win or a transition, or None when neither applies."""
        if state.game_over:
            return []
        result = self.evaluate_win(state)
        if result is not None:
            return self.end_game_steps(result)
        transition = self.select_transition(state)
        if transition is not None:
            logger.debug("Transition '%s': %s -> %s", transition.transition_id,
                         state.flow.state, transition.to_state)
            return self.set_state_steps(state, transition.to_state, exit_phase=not phase_exited)
        return None

    def _context(self, state: GameState) -> EvalContext:
        return EvalContext(state=state, definition=self.definition, env=Environment.root())

    def evaluate_win(self, state: GameState) -> GameResult | None:
        flow_def = self.definition.flow
        if flow_def is None or flow_def.win_condition is None:
            return None
        win = flow_def.win_condition
        ctx = self._context(state)
        if win.condition is not None and not self.evaluator.evaluate_condition(win.condition, ctx):
            return None
        return normalize_result(self.evaluator.evaluate(win.evaluator, ctx), win.reason)

    def candidate_transitions(self, state: GameState) -> list[TransitionDefinition]:
        flow_def = self.definition.flow
        if flow_def is None or state.flow.state is None:
            return []
        body = flow_def.states.get(state.flow.state)
        local = list(body.transitions) if body else []
        shared = [t for t in flow_def.transitions if t.applies_from(state.flow.state)]
        return local + shared

    def select_transition(self, state: GameState) -> TransitionDefinition | None:
        """The winning true transition, by (position, -priority, seat distance, id)."""
        ctx = self._context(state)
        passing = []
        for transition in self.candidate_transitions(state):
            try:
                if self.evaluator.evaluate_condition(transition.condition, ctx):
                    passing.append(transition)
            except EngineError as exc:
                logger.warning("Transition '%s' condition failed: %s", transition.transition_id, exc)
                self.gate_failures.append(GateFailure(transition.transition_id, str(exc), type(exc).__name__))
        if not passing:
            return None
        return min(passing, key=lambda t: (
            t.position,
            -t.priority,
            self._seat_distance(state, t.seat),
            t.transition_id,
        ))

    @staticmethod
    def _seat_distance(state: GameState, seat: int | None) -> int:
        if seat is None or state.num_players == 0:
            return 0
        return ((seat - state.flow.current_player) * state.flow.direction) % state.num_players


def normalize_result(value: Any, reason: str) -> GameResult | None:
    """Turn a win evaluator's value into a GameResult (None: game continues)."""
    if value is None or value is False:
        return None
    if isinstance(value, GameResult):
        return value
    if value is True:
        return GameResult(winners=[], ranking=[], reason=reason)
    if isinstance(value, PlayerState):
        return GameResult(winners=[value.seat], ranking=[value.seat], reason=reason)
    if isinstance(value, int):
        return GameResult(winners=[value], ranking=[value], reason=reason)
    if isinstance(value, list):
        seats = [_seat(v) for v in value]
        if not seats:
            return None
        return GameResult(winners=seats[:1], ranking=seats, reason=reason)
    if isinstance(value, dict):
        winners = [_seat(v) for v in value.get("winners", [])]
        ranking = [_seat(v) for v in value.get("ranking", winners)]
        if not winners and not ranking:
            return None
        return GameResult(winners=winners or ranking[:1], ranking=ranking,
                          reason=value.get("reason", reason))
    raise StateLookupError(f"Win evaluator returned an unusable value: {value!r}")


def _seat(value: Any) -> int:
    if isinstance(value, PlayerState):
        return value.seat
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise StateLookupError(f"Expected a player, got {value!r}")
