"""
Action Executor - Frame-based resolution of actions, effects and events.

This module handles the runtime side of the rule language:
- Atomic actions (movement, visibility, randomness, variables, flow)
- Control structures (IF, FOR_EACH, FOR_EACH_PLAYER, PARALLEL)
- Input requests that suspend resolution until a driver answers
- Failure policies (continue / abort / rollback)
- Event emission and breadth-first dispatch through the Rule Dispatcher

The executor keeps an explicit frame stack and processes one frame step
at a time, pausing when a player input is required. It owns the working
GameState for the session; every mutation goes through its handlers.
"""

from __future__ import annotations
from collections import deque
from dataclasses import replace
from typing import Any, Callable
import logging
import time

from ..config import EngineConfig
from ..spec_schema.effect_dsl import ActionType, OnFailure
from ..spec_schema.game_definition import GameDefinition
from .action import ActionResult, FailureReport, PendingInput
from .context import EvalContext, Environment, PLAYER_BINDING
from .dispatcher import DefaultBehaviour, DispatchCycle, RuleDispatcher
from .errors import (
    ActionError,
    DispatchError,
    EngineError,
    InputError,
    InvariantViolation,
    OperandTypeError,
    StateLookupError,
)
from .events import Event, EventTag
from .expression import ExpressionEvaluator
from .flow import FlowController, FlowStep, normalize_result
from .frames import (
    DispatchFrame,
    EffectFrame,
    Frame,
    LoopFrame,
    ParallelFrame,
    ParkedIteration,
    ResolverState,
    SequenceFrame,
    StepsFrame,
)
from .state import Card, Face, GameResult, GameState, PlayerState, TeamState, Zone
from .values import RankSymbol, as_sequence, is_number

logger = logging.getLogger(__name__)

# Handler outcomes that are not result values
_PUSHED = object()  # child frame pushed; completes when the child finishes
_AWAIT = object()  # waiting on a pending input


class ActionExecutor:
    """
    Resolves effects step-by-step over one working GameState.

    Typical driver use:
        executor.load(state)
        executor.begin_effect(actions, rule_id="setup")
        pending = executor.run()
        executor.provide_input(pending[0].input_id, answer)
        executor.run()
    """

    def __init__(
        self,
        definition: GameDefinition,
        config: EngineConfig | None = None,
        dry_run: bool = False,
        dispatch_events: bool = True,
    ):
        self.definition = definition
        self.config = config or EngineConfig()
        self.dry_run = dry_run
        self.dispatch_events = dispatch_events and not dry_run

        self.evaluator = ExpressionEvaluator(dry_runner=self.can_perform)
        self.dispatcher = RuleDispatcher(definition, self.evaluator)
        self.flow = FlowController(definition, self.evaluator)

        self.state: GameState | None = None
        self.status = ResolverState.READY
        self.stack: list[Frame] = []
        self.queue: deque[Event] = deque()
        self.inputs: dict[str, PendingInput] = {}
        self.trace: list[Event] = []
        self.undispatched: list[Event] = []
        self.failures: list[FailureReport] = []
        self.last_effect_result: Any = None
        self.clock: Callable[[], float] = time.monotonic

        self._input_counter = 0
        self._dispatch_count = 0

        self._steppers = {
            SequenceFrame: self._step_sequence,
            EffectFrame: self._step_sequence,
            LoopFrame: self._step_loop,
            ParallelFrame: self._step_parallel,
            DispatchFrame: self._step_dispatch,
            StepsFrame: self._step_flow,
        }
        self._handlers: dict[ActionType, Callable[[SequenceFrame, dict, EvalContext], Any]] = {
            ActionType.MOVE: self._action_move,
            ActionType.MOVE_ALL: self._action_move_all,
            ActionType.DEAL: self._action_deal,
            ActionType.DEAL_ROUND_ROBIN: self._action_deal_round_robin,
            ActionType.DEAL_ALL: self._action_deal_all,
            ActionType.MILL: self._action_mill,
            ActionType.DRAW: self._action_draw,
            ActionType.REVEAL: self._action_reveal,
            ActionType.CONCEAL: self._action_conceal,
            ActionType.FLIP: self._action_flip,
            ActionType.PEEK: self._action_peek,
            ActionType.LOOK: self._action_look,
            ActionType.SHUFFLE: self._action_shuffle,
            ActionType.REORDER: self._action_reorder,
            ActionType.CHOOSE_RANDOM: self._action_choose_random,
            ActionType.SEARCH_ZONE: self._action_search_zone,
            ActionType.REVEAL_MATCHING: self._action_reveal_matching,
            ActionType.SET_VARIABLE: self._action_set_variable,
            ActionType.INCREMENT: self._action_increment,
            ActionType.SET_STATE: self._action_set_state,
            ActionType.SET_GAME_STATE: self._action_set_state,
            ActionType.SET_PHASE: self._action_set_phase,
            ActionType.SKIP_TURN: self._action_skip_turn,
            ActionType.EXTRA_TURN: self._action_extra_turn,
            ActionType.REVERSE_ORDER: self._action_reverse_order,
            ActionType.INSERT_PHASE: self._action_insert_phase,
            ActionType.REMOVE_PHASE: self._action_remove_phase,
            ActionType.END_TURN: self._action_end_turn,
            ActionType.END_GAME: self._action_end_game,
            ActionType.REQUEST_INPUT: self._action_request_input,
            ActionType.FOR_EACH_PLAYER: self._action_for_each_player,
            ActionType.FOR_EACH: self._action_for_each,
            ActionType.PARALLEL: self._action_parallel,
            ActionType.IF: self._action_if,
            ActionType.EMIT: self._action_emit,
        }

    # ------------------------------------------------------------------
    # Driver surface
    # ------------------------------------------------------------------

    def load(self, state: GameState):
        """Take ownership of a working state."""
        self.state = state

    def start(self):
        """Queue setup and entry into the initial flow state."""
        self.push_steps(self.flow.start_steps(self.state))
        if self.definition.setup:
            self.begin_effect(self.definition.setup, rule_id="setup")

    def begin_effect(
        self,
        actions: list[dict[str, Any]],
        rule_id: str | None = None,
        on_failure: OnFailure = OnFailure.ABORT,
        store_as: str | None = None,
        env: Environment | None = None,
        event: Event | None = None,
    ):
        """Push an effect; it runs on the next run()."""
        checkpoint = None
        if on_failure == OnFailure.ROLLBACK and self.config.rollback_supported:
            checkpoint = self.state.clone()
        self.stack.append(EffectFrame(
            env=env or Environment.root(),
            actions=list(actions),
            on_failure=on_failure,
            checkpoint=checkpoint,
            queue_mark=len(self.queue),
            rule_id=rule_id,
            store_as=store_as,
            event=event,
        ))

    def push_steps(self, steps: list[FlowStep], result: Any = None):
        if steps:
            self.stack.append(StepsFrame(env=Environment.root(), steps=list(steps), result=result))

    def queue_event(self, event: Event):
        """Queue an externally injected event."""
        self.queue.append(event)

    def run(self) -> list[PendingInput]:
        """
        Continue resolving until idle or blocked on input.

        Returns the open pending inputs (empty when idle).
        """
        self._dispatch_count = 0
        self.status = ResolverState.RESOLVING
        while True:
            if not self.stack:
                if not self.queue or not self.dispatch_events:
                    break
                self._push_dispatch(self.queue.popleft())
                continue
            frame = self.stack[-1]
            if not self._steppers[type(frame)](frame):
                break
        pending = self.pending_inputs
        self.status = ResolverState.WAITING_INPUT if pending else ResolverState.READY
        return pending

    @property
    def is_idle(self) -> bool:
        return not self.stack and not self.queue

    @property
    def pending_inputs(self) -> list[PendingInput]:
        return [p for p in self.inputs.values() if p.is_open]

    def provide_input(self, input_id: str, value: Any = None, indexes: list[int] | None = None) -> Any:
        """Answer a pending input. InputError leaves it open."""
        pending = self.inputs.get(input_id)
        if pending is None:
            raise InputError(f"No pending input '{input_id}'")
        return pending.resolve(value, indexes)

    def cancel_input(self, input_id: str):
        pending = self.inputs.get(input_id)
        if pending is None:
            raise InputError(f"No pending input '{input_id}'")
        pending.cancel()

    def expire_inputs(self, now: float | None = None) -> list[str]:
        """Cancel inputs whose timeout has passed."""
        now = self.clock() if now is None else now
        expired = []
        for pending in self.pending_inputs:
            if pending.expired(now):
                pending.cancel()
                expired.append(pending.input_id)
        return expired

    # ------------------------------------------------------------------
    # Functional surface
    # ------------------------------------------------------------------

    def apply(self, state: GameState, action: dict[str, Any], env: Environment | None = None) -> ActionResult:
        """
        Apply one action to a copy of state without dispatching events.

        Returns an ActionResult with the new state and the action's value,
        or a failure result.
        """
        executor = ActionExecutor(self.definition, self.config, dispatch_events=False)
        executor.load(state.clone())
        executor.begin_effect([action], rule_id="apply", env=env)
        pending = executor.run()
        if executor.failures:
            failure = executor.failures[0]
            return ActionResult.failure(failure.reason, failure.error_type, executor.failures)
        events = executor.undispatched + list(executor.queue)
        return ActionResult.success_with_state(
            executor.state, value=executor.last_effect_result, events=events, pending=pending,
        )

    def simulate(self, state: GameState, actions: list[dict[str, Any]],
                 env: Environment | None = None, event: Event | None = None) -> bool:
        """Dry-run actions on a clone; True if none of them fails."""
        executor = ActionExecutor(self.definition, self.config, dry_run=True)
        executor.load(state.clone())
        scoped = replace(env, table=dict(env.table), read_state=None) if env else None
        executor.begin_effect(actions, rule_id="canPerform", env=scoped, event=event)
        executor.run()
        return not executor.failures

    def can_perform(self, actions: list[dict[str, Any]], ctx: EvalContext) -> bool:
        return self.simulate(ctx.state, actions, ctx.env, ctx.event)

    # ------------------------------------------------------------------
    # Frame stepping
    # ------------------------------------------------------------------

    def _step_sequence(self, frame: SequenceFrame) -> bool:
        if frame.awaiting is not None:
            pending = self.inputs[frame.awaiting]
            if pending.is_open:
                return False
            input_id = frame.awaiting
            frame.awaiting = None
            del self.inputs[input_id]
            if pending.cancelled:
                self._fail(frame, ActionError(f"Input '{input_id}' was cancelled"))
            else:
                self._complete(frame, self._live(pending.value))
            return True

        action = frame.current_action
        if action is None:
            self._finish_sequence(frame)
            return True

        try:
            outcome = self._execute(frame, action)
        except InvariantViolation:
            raise
        except EngineError as exc:
            self._fail(frame, exc)
            return True

        if outcome is _PUSHED:
            frame.running_child = True
        elif outcome is not _AWAIT:
            self._complete(frame, outcome)
        return True

    def _step_loop(self, frame: LoopFrame) -> bool:
        if frame.next_index < len(frame.items):
            item = frame.items[frame.next_index]
            frame.next_index += 1
            self.stack.append(SequenceFrame(env=frame.env.bind(frame.binding, item), actions=frame.body))
            return True
        if frame.parked:
            if any(self.inputs[p.input_id].is_open for p in frame.parked if p.input_id in self.inputs):
                return False
            parked = frame.parked.pop(0)
            self.stack.extend(parked.frames)
            return True
        self.stack.pop()
        self._child_done(frame.results)
        return True

    def _step_parallel(self, frame: ParallelFrame) -> bool:
        if frame.next_branch < len(frame.branches):
            branch = frame.branches[frame.next_branch]
            frame.next_branch += 1
            self.stack.append(SequenceFrame(env=frame.env, actions=list(branch)))
            return True
        self.stack.pop()
        self._child_done(frame.results)
        return True

    def _step_dispatch(self, frame: DispatchFrame) -> bool:
        cycle = frame.cycle
        item = self.dispatcher.next_effect(cycle, self.state, self._event_context)
        self._report_gate_failures(cycle)
        if item is None:
            self.stack.pop()
            self._child_done(None)
        elif isinstance(item, DefaultBehaviour):
            self.begin_effect(item.actions, rule_id=f"default:{cycle.event.tag}", event=cycle.event)
        else:
            self.begin_effect(
                item.effect,
                rule_id=item.rule_id,
                on_failure=item.on_failure,
                store_as=item.store_as,
                event=cycle.event,
            )
        return True

    def _step_flow(self, frame: StepsFrame) -> bool:
        if frame.index >= len(frame.steps):
            self.stack.pop()
            self._child_done(frame.result)
            return True
        step = frame.steps[frame.index]
        frame.index += 1
        if step.event is not None:
            self._push_dispatch(step.event)
        elif step.apply is not None:
            try:
                more = step.apply(self.state)
            except InvariantViolation:
                raise
            except EngineError as exc:
                logger.error("Flow step '%s' failed: %s", step.label, exc)
                self.failures.append(FailureReport(
                    rule_id="flow", action_index=frame.index - 1, action=step.label,
                    reason=str(exc), error_type=type(exc).__name__, policy=OnFailure.ABORT,
                ))
                self.stack.pop()
                self._child_done(frame.result)
                return True
            self._report_failed_conditions(self.flow.gate_failures, "transition")
            if more:
                self.stack.append(StepsFrame(env=frame.env, steps=list(more)))
        return True

    def _event_context(self, event: Event) -> EvalContext:
        return EvalContext(state=self.state, definition=self.definition, env=Environment.root(), event=event)

    def _push_dispatch(self, event: Event):
        if not self.dispatch_events:
            self.undispatched.append(event)
            return
        self._dispatch_count += 1
        if self._dispatch_count > self.config.max_cascade_events:
            exc = DispatchError(
                f"Cascade limit of {self.config.max_cascade_events} events reached at '{event.tag}'"
            )
            logger.error("%s; dropping %d queued event(s)", exc, len(self.queue))
            self.failures.append(FailureReport(
                rule_id=None, action_index=-1, action="dispatch", reason=str(exc),
                error_type=type(exc).__name__, policy=OnFailure.ABORT,
            ))
            self.queue.clear()
            return
        event.sequence = len(self.trace)
        self.trace.append(event)
        cycle: DispatchCycle = self.dispatcher.begin(event, self.state)
        self.stack.append(DispatchFrame(env=Environment.root(), cycle=cycle))

    def _report_gate_failures(self, cycle: DispatchCycle):
        self._report_failed_conditions(cycle.gate_failures, "condition")

    def _report_failed_conditions(self, gate_failures: list, action: str):
        for failure in gate_failures:
            self.failures.append(FailureReport(
                rule_id=failure.rule_id, action_index=-1, action=action,
                reason=failure.reason, error_type=failure.error_type, policy=OnFailure.CONTINUE,
            ))
        gate_failures.clear()

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _complete(self, frame: SequenceFrame, value: Any):
        action = frame.current_action or {}
        name = action.get("store_as")
        if name:
            frame.env.store(name, value)
        frame.last_result = value
        effect = self._effect_frame()
        if effect is not None:
            effect.last_result = value
        frame.index += 1

    def _finish_sequence(self, frame: SequenceFrame):
        self.stack.pop()
        if isinstance(frame, EffectFrame):
            self._close_effect(frame)
        self._child_done(frame.last_result)

    def _child_done(self, result: Any):
        if not self.stack:
            return
        parent = self.stack[-1]
        if isinstance(parent, SequenceFrame) and parent.running_child:
            parent.running_child = False
            self._complete(parent, result)
        elif isinstance(parent, (LoopFrame, ParallelFrame)):
            parent.results.append(result)

    def _close_effect(self, frame: EffectFrame):
        for card_id in frame.peeked:
            self.state.peeks.pop(card_id, None)
        if frame.store_as and not frame.failed:
            self.state.results[frame.store_as] = frame.last_result
        self.last_effect_result = frame.last_result
        self.queue.extend(frame.emitted)
        frame.emitted = []
        if self.config.strict_invariants:
            self.state.check_invariants()
        logger.debug("Effect '%s' %s", frame.rule_id, "failed" if frame.failed else "completed")

    def _effect_frame(self) -> EffectFrame | None:
        for frame in reversed(self.stack):
            if isinstance(frame, EffectFrame):
                return frame
        return None

    def _emit(self, event: Event):
        if self.dry_run:
            return
        effect = self._effect_frame()
        if effect is not None:
            effect.emitted.append(event)
        else:
            self.queue.append(event)

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _inherited_policy(self) -> OnFailure:
        for frame in reversed(self.stack):
            if isinstance(frame, ParallelFrame) and frame.on_failure is not None:
                return frame.on_failure
            if isinstance(frame, EffectFrame):
                return frame.on_failure or OnFailure.ABORT
        return OnFailure.ABORT

    def _has_checkpoint(self) -> bool:
        if not self.config.rollback_supported:
            return False
        for frame in reversed(self.stack):
            if frame.checkpoint is not None:
                return True
            if isinstance(frame, EffectFrame):
                return False
        return False

    def _fail(self, frame: SequenceFrame, exc: EngineError, inherited_only: bool = False):
        action = frame.current_action or {}
        effect = self._effect_frame()
        own = None if inherited_only else action.get("on_failure")
        policy = OnFailure(own) if own else self._inherited_policy()
        report = FailureReport(
            rule_id=effect.rule_id if effect else None,
            action_index=frame.index,
            action=str(action.get("action")),
            reason=str(exc),
            error_type=type(exc).__name__,
            policy=policy,
        )
        if policy == OnFailure.ROLLBACK and not self._has_checkpoint():
            logger.warning("Rollback unavailable for rule '%s'; degrading to abort", report.rule_id)
            report.degraded = True
            report.policy = policy = OnFailure.ABORT
        self.failures.append(report)

        if policy == OnFailure.CONTINUE:
            logger.info("Action %s #%d of rule '%s' failed, continuing: %s",
                        report.action, report.action_index, report.rule_id, exc)
            frame.index += 1
            return
        logger.warning("Action %s #%d of rule '%s' failed (%s): %s",
                       report.action, report.action_index, report.rule_id, policy.value, exc)
        self._unwind(policy, exc)

    def _unwind(self, policy: OnFailure, exc: EngineError):
        while self.stack:
            frame = self.stack.pop()
            self._drop_parked(frame)
            if (isinstance(frame, ParallelFrame) and frame.checkpoint is not None
                    and policy == OnFailure.ROLLBACK):
                self._restore(frame)
                parent = self.stack[-1]
                if isinstance(parent, SequenceFrame):
                    parent.running_child = False
                    self._fail(parent, ActionError(f"PARALLEL block rolled back: {exc}"), inherited_only=True)
                return
            if isinstance(frame, EffectFrame):
                if policy == OnFailure.ROLLBACK and frame.checkpoint is not None:
                    self._restore(frame)
                frame.failed = True
                self._close_effect(frame)
                self._child_done(None)
                return

    def _restore(self, frame: Frame):
        """Reinstate a checkpoint and drop events emitted since it was taken."""
        self.state = frame.checkpoint
        frame.checkpoint = None
        # nested effects that closed under the checkpoint queued their events already
        del self.queue[frame.queue_mark:]
        if isinstance(frame, EffectFrame):
            frame.emitted = []
            frame.peeked = []
        else:
            effect = self._effect_frame()
            if effect is not None:
                del effect.emitted[frame.emitted_mark:]
        logger.info("Rolled back to checkpoint")

    def _drop_parked(self, frame: Frame):
        if isinstance(frame, LoopFrame):
            for parked in frame.parked:
                self.inputs.pop(parked.input_id, None)
            frame.parked = []

    # ------------------------------------------------------------------
    # Operand helpers
    # ------------------------------------------------------------------

    def _execute(self, frame: SequenceFrame, spec: dict[str, Any]) -> Any:
        if not isinstance(spec, dict):
            raise ActionError(f"Action must be a mapping, got {spec!r}")
        try:
            kind = ActionType(spec.get("action"))
        except ValueError:
            raise ActionError(f"Unknown action {spec.get('action')!r}") from None
        return self._handlers[kind](frame, spec, self._context(frame))

    def _context(self, frame: Frame) -> EvalContext:
        effect = self._effect_frame()
        return EvalContext(
            state=frame.env.read_state or self.state,
            definition=self.definition,
            env=frame.env,
            event=effect.event if effect else None,
        )

    def _eval(self, node: Any, ctx: EvalContext) -> Any:
        return self.evaluator.evaluate(node, ctx)

    def _live(self, value: Any) -> Any:
        """Map objects from snapshots or older states onto the working state."""
        if isinstance(value, Card):
            return self.state.card(value.card_id)
        if isinstance(value, PlayerState):
            return self.state.player(value.seat)
        if isinstance(value, Zone):
            return self.state.zone(value.key)
        if isinstance(value, TeamState):
            return self.state.teams[value.team_id]
        if isinstance(value, list):
            return [self._live(v) for v in value]
        return value

    @staticmethod
    def _require(spec: dict[str, Any], *names: str) -> Any:
        for name in names:
            if spec.get(name) is not None:
                return spec[name]
        raise ActionError(f"{spec.get('action')} needs '{names[0]}'")

    def _zone(self, node: Any, ctx: EvalContext, param: str) -> Zone:
        value = self._eval(node, ctx)
        if isinstance(value, list) and len(value) == 1:
            value = value[0]
        if isinstance(value, Zone):
            return self.state.zone(value.key)
        if isinstance(value, str):
            if value in self.state.zones:
                return self.state.zones[value]
            return self.state.zone(value)
        raise ActionError(f"'{param}' must resolve to a zone, got {type(value).__name__}")

    def _zones(self, node: Any, ctx: EvalContext, param: str) -> list[Zone]:
        value = self._eval(node, ctx)
        items = value if isinstance(value, list) else [value]
        zones = []
        for item in items:
            if not isinstance(item, Zone):
                raise ActionError(f"'{param}' must resolve to zones, got {type(item).__name__}")
            zones.append(self.state.zone(item.key))
        return zones

    def _source(self, node: Any, ctx: EvalContext) -> tuple[list[Card], bool]:
        """Live cards (top-first) from a zone, card or card list; flag is True for zones."""
        value = self._eval(node, ctx)
        if isinstance(value, Zone):
            return self.state.zone(value.key).ordered_cards(), True
        cards = []
        for item in as_sequence(value):
            if not isinstance(item, Card):
                raise ActionError(f"Expected cards, got {type(item).__name__}")
            cards.append(self.state.card(item.card_id))
        return cards, False

    def _cards(self, node: Any, ctx: EvalContext) -> list[Card]:
        return self._source(node, ctx)[0]

    def _filtered(self, items: list, spec: dict[str, Any], ctx: EvalContext) -> list:
        predicate = spec.get("filter")
        if predicate is None:
            return items
        return [item for item in items if self.evaluator.evaluate_condition(predicate, ctx.with_item(item))]

    def _count(self, spec: dict[str, Any], ctx: EvalContext, default: int | None, key: str = "count") -> int | None:
        node = spec.get(key)
        if node is None:
            return default
        if node == "all":
            return None
        value = self._eval(node, ctx)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ActionError(f"'{key}' must be a non-negative integer, got {value!r}")
        return value

    def _select(self, cards: list[Card], count: int | None, spec: dict[str, Any]) -> list[Card]:
        if count is None:
            return list(cards)
        if spec.get("exact") and len(cards) < count:
            raise ActionError(f"Needed {count} card(s), only {len(cards)} available")
        return cards[:count]

    def _player(self, node: Any, ctx: EvalContext) -> PlayerState:
        if node is None:
            return self.state.player(self._acting_seat(ctx))
        value = self._eval(node, ctx)
        if isinstance(value, list) and len(value) == 1:
            value = value[0]
        if isinstance(value, PlayerState):
            return self.state.player(value.seat)
        if isinstance(value, int) and not isinstance(value, bool):
            return self.state.player(value)
        raise ActionError(f"Expected a player, got {value!r}")

    def _players(self, node: Any, ctx: EvalContext) -> list[PlayerState]:
        value = self._eval(node, ctx)
        players = []
        for item in as_sequence(value):
            if isinstance(item, PlayerState):
                players.append(self.state.player(item.seat))
            elif isinstance(item, int) and not isinstance(item, bool):
                players.append(self.state.player(item))
            else:
                raise ActionError(f"Expected players, got {item!r}")
        return players

    def _acting_seat(self, ctx: EvalContext) -> int:
        bound = ctx.env.player
        if isinstance(bound, PlayerState):
            return bound.seat
        if isinstance(bound, int):
            return bound
        return self.state.flow.current_player

    def _move_cards(self, cards: list[Card], dest: Zone, tag: str, spec: dict[str, Any]) -> list[Card]:
        position = spec.get("position")
        if position not in (None, "top", "bottom"):
            raise ActionError(f"Unknown position {position!r}")
        face = Face(spec["face"]) if spec.get("face") else None
        moved = []
        for card in cards:
            source, target = self.state.move_card(card, dest, position, face)
            owner = target.owner if target.owner is not None else source.owner
            self._emit(Event.create(tag, fields={"card": card.card_id, "from": source.key,
                                                 "to": target.key, "player": owner}))
            moved.append(self.state.card(card.card_id))
        return moved

    @staticmethod
    def _single(items: list, count: int | None) -> Any:
        if count == 1:
            return items[0] if items else None
        return items

    # ------------------------------------------------------------------
    # Movement
    # ------------------------------------------------------------------

    def _transfer(self, spec: dict[str, Any], ctx: EvalContext, tag: str, dest: Zone,
                  default_count: int | None = 1) -> Any:
        cards, from_zone = self._source(self._require(spec, "from"), ctx)
        cards = self._filtered(cards, spec, ctx)
        count = self._count(spec, ctx, default_count if from_zone else None)
        moved = self._move_cards(self._select(cards, count, spec), dest, tag, spec)
        return self._single(moved, count)

    def _action_move(self, frame, spec, ctx):
        dest = self._zone(self._require(spec, "to"), ctx, "to")
        return self._transfer(spec, ctx, EventTag.MOVE, dest)

    def _action_move_all(self, frame, spec, ctx):
        dest = self._zone(self._require(spec, "to"), ctx, "to")
        cards = self._filtered(self._cards(self._require(spec, "from"), ctx), spec, ctx)
        return self._move_cards(cards, dest, EventTag.MOVE, spec)

    def _action_draw(self, frame, spec, ctx):
        if spec.get("to") is not None:
            dest = self._zone(spec["to"], ctx, "to")
        else:
            player = self.state.player(self._acting_seat(ctx))
            if "hand" not in player.zones:
                raise ActionError(f"Player {player.seat} has no 'hand' zone to draw into")
            dest = player.zones["hand"]
        return self._transfer(spec, ctx, EventTag.MOVE_DRAW, dest)

    def _action_mill(self, frame, spec, ctx):
        dest = self._zone(self._require(spec, "to"), ctx, "to")
        return self._transfer(spec, ctx, EventTag.MOVE_MILL, dest)

    def _action_deal(self, frame, spec, ctx):
        recipients = self._zones(self._require(spec, "to"), ctx, "to")
        if not recipients:
            return []
        count = self._count(spec, ctx, 1)
        moved = []
        for zone in recipients:
            cards = self._filtered(self._cards(self._require(spec, "from"), ctx), spec, ctx)
            moved.extend(self._move_cards(self._select(cards, count, spec), zone, EventTag.MOVE_DEAL, spec))
        return moved

    def _round_robin(self, spec: dict[str, Any], ctx: EvalContext, packet: int, rounds: int | None) -> list[Card]:
        recipients = self._zones(self._require(spec, "to"), ctx, "to")
        if spec.get("order") == "counterclockwise":
            recipients = [recipients[0]] + list(reversed(recipients[1:])) if recipients else []
        if spec.get("start") == "current":
            current = self.state.flow.current_player
            for i, zone in enumerate(recipients):
                if zone.owner == current:
                    recipients = recipients[i:] + recipients[:i]
                    break
        moved: list[Card] = []
        done = 0
        while rounds is None or done < rounds:
            for zone in recipients:
                cards = self._filtered(self._cards(self._require(spec, "from"), ctx), spec, ctx)
                if not cards:
                    return moved
                moved.extend(self._move_cards(self._select(cards, packet, spec), zone, EventTag.MOVE_DEAL, spec))
            done += 1
            if done > self.config.max_loop_iterations:
                raise ActionError("Round-robin deal exceeded the loop iteration limit")
        return moved

    def _action_deal_round_robin(self, frame, spec, ctx):
        packet = self._count(spec, ctx, 1) or 1
        rounds = self._count(spec, ctx, None, key="rounds")
        return self._round_robin(spec, ctx, packet, rounds)

    def _action_deal_all(self, frame, spec, ctx):
        packet = self._count(spec, ctx, 1) or 1
        return self._round_robin(spec, ctx, packet, None)

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------

    def _targets(self, spec: dict[str, Any], ctx: EvalContext) -> list[Card]:
        return self._filtered(self._cards(self._require(spec, "target", "cards", "card"), ctx), spec, ctx)

    def _viewers(self, spec: dict[str, Any], ctx: EvalContext, key: str) -> list[int] | None:
        if spec.get(key) is None:
            return None
        return [p.seat for p in self._players(spec[key], ctx)]

    def _action_reveal(self, frame, spec, ctx):
        cards = self._targets(spec, ctx)
        viewers = self._viewers(spec, ctx, "to")
        for card in cards:
            if viewers is None:
                self.state.reveal(card)
            else:
                self.state.grant_view(card, viewers)
            self._emit(Event.create(EventTag.REVEAL, card=card, viewers=viewers,
                                    zone=self.state.zone_of(card).key))
        return cards

    def _action_conceal(self, frame, spec, ctx):
        cards = self._targets(spec, ctx)
        for card in cards:
            self.state.conceal(card)
            self._emit(Event.create(EventTag.CONCEAL, card=card, zone=self.state.zone_of(card).key))
        return cards

    def _action_flip(self, frame, spec, ctx):
        cards = self._targets(spec, ctx)
        wanted = spec.get("face")
        for card in cards:
            if wanted is not None:
                face = Face(wanted)
            else:
                face = Face.DOWN if card.face == Face.UP else Face.UP
            self.state.set_face(card, face)
            self._emit(Event.create(EventTag.FLIP, card=card, face=face.value,
                                    zone=self.state.zone_of(card).key))
        return cards

    def _grant(self, spec, ctx, scoped: bool) -> list[Card]:
        cards = self._targets(spec, ctx)
        viewers = self._viewers(spec, ctx, "viewers") or self._viewers(spec, ctx, "player")
        if viewers is None:
            viewers = [self._acting_seat(ctx)]
        for card in cards:
            self.state.grant_view(card, viewers, scoped=scoped)
        if scoped:
            effect = self._effect_frame()
            if effect is not None:
                effect.peeked.extend(c.card_id for c in cards)
        return cards

    def _action_peek(self, frame, spec, ctx):
        return self._grant(spec, ctx, scoped=True)

    def _action_look(self, frame, spec, ctx):
        return self._grant(spec, ctx, scoped=False)

    # ------------------------------------------------------------------
    # Randomization and ordering
    # ------------------------------------------------------------------

    def _action_shuffle(self, frame, spec, ctx):
        for zone in self._zones(self._require(spec, "target", "zone"), ctx, "target"):
            self.state.shuffle_zone(zone)
            self._emit(Event.create(EventTag.SHUFFLE, zone=zone.key, player=zone.owner))
        return None

    def _action_reorder(self, frame, spec, ctx):
        zone = self._zone(self._require(spec, "target", "zone"), ctx, "target")
        if not zone.allows_reorder:
            raise ActionError(f"Zone '{zone.key}' does not allow reordering")
        cards = zone.ordered_cards()
        if spec.get("by") is not None:
            keys = [self._eval(spec["by"], ctx.with_item(card)) for card in cards]
            if any(isinstance(k, RankSymbol) for k in keys):
                raise OperandTypeError("REORDER by rank symbols; use rank_value")
            if not (all(is_number(k) for k in keys) or all(isinstance(k, str) for k in keys)):
                raise OperandTypeError("REORDER keys must be all numbers or all strings")
            order = [card for _, card in sorted(zip(keys, cards), key=lambda pair: pair[0],
                                                reverse=bool(spec.get("descending")))]
        elif spec.get("reverse"):
            order = list(reversed(cards))
        else:
            order = list(cards)
            self.state.rng.shuffle(order)
        self.state.reorder_zone(zone, order)
        return order

    def _action_choose_random(self, frame, spec, ctx):
        value = self._eval(self._require(spec, "from"), ctx)
        candidates = self._filtered(self._live(as_sequence(value)), spec, ctx)
        count = self._count(spec, ctx, 1)
        if count is None:
            count = len(candidates)
        if spec.get("exact") and len(candidates) < count:
            raise ActionError(f"Needed {count} random choice(s), only {len(candidates)} available")
        chosen = self.state.rng.sample(candidates, min(count, len(candidates)))
        if spec.get("to") is not None:
            if not all(isinstance(c, Card) for c in chosen):
                raise ActionError("CHOOSE_RANDOM can only move cards")
            dest = self._zone(spec["to"], ctx, "to")
            chosen = self._move_cards(chosen, dest, EventTag.MOVE, spec)
        return self._single(chosen, count)

    def _action_search_zone(self, frame, spec, ctx):
        cards = []
        for zone in self._zones(self._require(spec, "target", "zone"), ctx, "target"):
            cards.extend(zone.ordered_cards())
        matches = self._filtered(cards, spec, ctx)
        limit = self._count(spec, ctx, None, key="max")
        return matches if limit is None else matches[:limit]

    def _action_reveal_matching(self, frame, spec, ctx):
        matches = self._action_search_zone(frame, spec, ctx)
        viewers = self._viewers(spec, ctx, "to")
        for card in matches:
            if viewers is None:
                self.state.reveal(card)
            else:
                self.state.grant_view(card, viewers)
            self._emit(Event.create(EventTag.REVEAL, card=card, viewers=viewers,
                                    zone=self.state.zone_of(card).key))
        return matches

    # ------------------------------------------------------------------
    # Variables
    # ------------------------------------------------------------------

    def _variable_slot(self, spec, ctx) -> tuple[str, dict[str, Any], Any]:
        name = self._require(spec, "name", "variable")
        definition = self.definition.variable(name)
        if definition is None:
            raise StateLookupError(f"Unknown variable '{name}'")
        if definition.is_computed:
            raise ActionError(f"Variable '{name}' is computed and read-only")
        if definition.scope == "per_player":
            player = self._player(spec.get("player"), ctx)
            return name, player.variables, player
        if definition.scope == "per_team":
            if spec.get("team") is not None:
                team = self._eval(spec["team"], ctx)
                team_id = team.team_id if isinstance(team, TeamState) else team
            else:
                team_id = self.state.player(self._acting_seat(ctx)).team
            if team_id not in self.state.teams:
                raise StateLookupError(f"No team '{team_id}'")
            return name, self.state.teams[team_id].variables, team_id
        return name, self.state.variables, None

    def _assign(self, name: str, scope: dict[str, Any], owner: Any, value: Any):
        old = scope.get(name)
        scope[name] = value
        self._emit(Event.create(EventTag.VARIABLE_SET, name=name, value=value, old=old,
                                player=owner if isinstance(owner, PlayerState) else None,
                                team=owner if isinstance(owner, str) else None))

    def _action_set_variable(self, frame, spec, ctx):
        name, scope, owner = self._variable_slot(spec, ctx)
        value = self._live(self._eval(spec.get("value"), ctx))
        self._assign(name, scope, owner, value)
        return value

    def _action_increment(self, frame, spec, ctx):
        name, scope, owner = self._variable_slot(spec, ctx)
        current = scope.get(name, 0)
        by = self._eval(spec.get("by", 1), ctx)
        if not is_number(current) or not is_number(by):
            raise OperandTypeError(f"INCREMENT needs numbers, got {current!r} and {by!r}")
        self._assign(name, scope, owner, current + by)
        return current + by

    # ------------------------------------------------------------------
    # Flow control
    # ------------------------------------------------------------------

    def _action_set_state(self, frame, spec, ctx):
        name = self._eval(self._require(spec, "state", "to"), ctx)
        self.push_steps(self.flow.set_state_steps(self.state, name), result=name)
        return _PUSHED

    def _action_set_phase(self, frame, spec, ctx):
        name = self._eval(self._require(spec, "phase", "to"), ctx)
        self.push_steps(self.flow.set_phase_steps(self.state, name), result=name)
        return _PUSHED

    def _action_skip_turn(self, frame, spec, ctx):
        if spec.get("player") is not None:
            seat = self._player(spec["player"], ctx).seat
        else:
            flow = self.state.flow
            seat = (flow.current_player + flow.direction) % self.state.num_players
        self.flow.skip_turn(self.state, seat, self._count(spec, ctx, 1) or 1)
        return seat

    def _action_extra_turn(self, frame, spec, ctx):
        seat = self._player(spec.get("player"), ctx).seat
        self.flow.extra_turn(self.state, seat)
        return seat

    def _action_reverse_order(self, frame, spec, ctx):
        self.flow.reverse_order(self.state)
        return self.state.flow.direction_name

    def _action_insert_phase(self, frame, spec, ctx):
        phase = self._require(spec, "phase")
        name = phase["name"] if isinstance(phase, dict) else self._eval(phase, ctx)
        self.flow.insert_phase(
            self.state, name,
            state_name=spec.get("state"),
            after=spec.get("after"),
            before=spec.get("before"),
            index=spec.get("index"),
        )
        return name

    def _action_remove_phase(self, frame, spec, ctx):
        name = self._eval(self._require(spec, "phase"), ctx)
        self.flow.remove_phase(self.state, name, state_name=spec.get("state"))
        return name

    def _action_end_turn(self, frame, spec, ctx):
        self.push_steps(self.flow.advance_steps(self.state, end_turn=True))
        return _PUSHED

    def _action_end_game(self, frame, spec, ctx):
        reason = spec.get("reason", "end_game")
        winners = self._eval(spec["winners"], ctx) if spec.get("winners") is not None else None
        if isinstance(winners, list):
            # END_GAME names its winners outright; a bare list is not a ranking
            winners = {"winners": winners}
        result = normalize_result(winners, reason) or GameResult(reason=reason)
        self.push_steps(self.flow.end_game_steps(result), result=result.winners)
        return _PUSHED

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def _action_request_input(self, frame, spec, ctx):
        player = self._player(spec.get("player"), ctx)
        node = spec.get("options")
        if isinstance(node, list):
            options = [self._eval(option, ctx) for option in node]
        else:
            options = as_sequence(self._eval(node, ctx))
        options = self._live(self._filtered(options, spec, ctx))
        multiselect = bool(spec.get("multiselect", False))
        optional = bool(spec.get("optional", False))
        min_choices = int(spec.get("min", 0 if optional else 1))
        max_choices = int(spec.get("max", len(options) if multiselect else 1))

        if not options:
            if optional:
                return [] if multiselect else None
            raise ActionError("REQUEST_INPUT has no options")
        if self.dry_run:
            return options[:max(min_choices, 1)] if multiselect else options[0]

        self._input_counter += 1
        input_id = f"input-{self._input_counter}"
        effect = self._effect_frame()
        self.inputs[input_id] = PendingInput(
            input_id=input_id,
            player=player.seat,
            prompt=spec.get("prompt", ""),
            options=options,
            multiselect=multiselect,
            min_choices=min_choices,
            max_choices=max_choices,
            optional=optional,
            rule_id=effect.rule_id if effect else None,
            created_at=self.clock(),
            timeout=spec.get("timeout", self.config.input_timeout),
        )
        frame.awaiting = input_id
        self._park(input_id)
        return _AWAIT

    def _park(self, input_id: str):
        """Inside a simultaneous loop, set the waiting iteration aside."""
        for index in range(len(self.stack) - 1, -1, -1):
            frame = self.stack[index]
            if isinstance(frame, LoopFrame) and frame.simultaneous:
                frame.parked.append(ParkedIteration(frames=self.stack[index + 1:], input_id=input_id))
                del self.stack[index + 1:]
                return

    # ------------------------------------------------------------------
    # Control structures
    # ------------------------------------------------------------------

    def _loop_frame(self, frame, spec, ctx, items: list, binding: str) -> Any:
        if len(items) > self.config.max_loop_iterations:
            raise ActionError(f"Loop over {len(items)} items exceeds the iteration limit")
        body = spec.get("do", [])
        simultaneous = spec.get("order") == "simultaneous"
        env = frame.env
        if simultaneous:
            env = env.with_read_state(self.state.clone())
        self.stack.append(LoopFrame(
            env=env,
            items=items,
            binding=binding,
            body=list(body),
            simultaneous=simultaneous,
        ))
        return _PUSHED

    def _action_for_each_player(self, frame, spec, ctx):
        if spec.get("players") is not None:
            players = self._players(spec["players"], ctx)
        else:
            players = list(self.state.players)
        order = spec.get("order", "sequential")
        if order in ("clockwise", "counterclockwise") and players:
            step = 1 if order == "clockwise" else -1
            current = self.state.flow.current_player
            count = self.state.num_players
            rank = {p.seat: ((p.seat - current) * step) % count for p in players}
            players.sort(key=lambda p: rank[p.seat])
        elif spec.get("start") == "current":
            current = self.state.flow.current_player
            players.sort(key=lambda p: (p.seat - current) % self.state.num_players)
        return self._loop_frame(frame, spec, ctx, players, PLAYER_BINDING)

    def _action_for_each(self, frame, spec, ctx):
        items = self._live(as_sequence(self._eval(self._require(spec, "items", "in"), ctx)))
        return self._loop_frame(frame, spec, ctx, items, spec.get("as", "item"))

    def _action_parallel(self, frame, spec, ctx):
        if spec.get("wait", "all") != "all":
            raise ActionError(f"PARALLEL wait '{spec.get('wait')}' is not supported")
        branches = spec.get("branches", [])
        if not all(isinstance(branch, list) for branch in branches):
            raise ActionError("PARALLEL branches must be action lists")
        policy = OnFailure(spec["on_failure"]) if spec.get("on_failure") else None
        checkpoint = None
        if policy == OnFailure.ROLLBACK and self.config.rollback_supported:
            checkpoint = self.state.clone()
        effect = self._effect_frame()
        self.stack.append(ParallelFrame(
            env=frame.env,
            on_failure=policy,
            checkpoint=checkpoint,
            emitted_mark=len(effect.emitted) if effect else 0,
            queue_mark=len(self.queue),
            branches=branches,
        ))
        return _PUSHED

    def _action_if(self, frame, spec, ctx):
        passed = self.evaluator.evaluate_condition(self._require(spec, "condition"), ctx)
        branch = spec.get("then", []) if passed else spec.get("else", [])
        self.stack.append(SequenceFrame(env=frame.env, actions=list(branch)))
        return _PUSHED

    def _action_emit(self, frame, spec, ctx):
        tag = self._require(spec, "event")
        if tag.startswith("on."):
            tag = tag[3:]
        fields = {name: self._eval(node, ctx) for name, node in spec.get("fields", {}).items()}
        effect = self._effect_frame()
        event = Event.create(tag, source=effect.rule_id if effect else None, fields=fields)
        self._emit(event)
        return event.fields
