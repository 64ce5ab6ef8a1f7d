"""
Rule Dispatcher - Trigger-condition-effect matching for one event.

A dispatch cycle walks through:
    IDLE -> MATCHED -> (per rule) GATED -> CONDITIONED -> EXECUTING -> DONE

Matching is eager (trigger + once_per budget, ordered by priority then
declaration order). enabled_when and condition are evaluated lazily,
right before each rule would run, so earlier effects are visible to
later gates.

Timing:
- pre rules run before the event's default behaviour
- the first passing replace rule runs instead of it; the rest are skipped
- post rules run after it
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable
import logging

from ..spec_schema.effect_dsl import Timing
from ..spec_schema.game_definition import GameDefinition, RuleDefinition
from .context import EvalContext
from .errors import EngineError
from .events import Event
from .expression import ExpressionEvaluator
from .state import GameState

logger = logging.getLogger(__name__)


class CycleStage(Enum):
    IDLE = "idle"
    MATCHED = "matched"
    GATED = "gated"
    CONDITIONED = "conditioned"
    EXECUTING = "executing"
    DONE = "done"


class Phase(Enum):
    """Position inside a cycle's timing groups."""
    PRE = "pre"
    MAIN = "main"
    POST = "post"
    FINISHED = "finished"


@dataclass
class DefaultBehaviour:
    """The event's own effect (phase actions, on_enter)."""
    actions: list


@dataclass
class GateFailure:
    """A rule whose gate could not be evaluated."""
    rule_id: str
    reason: str
    error_type: str


@dataclass
class DispatchCycle:
    """Progress of one event through its matched rules."""
    event: Event
    pre: list[RuleDefinition] = field(default_factory=list)
    replace: list[RuleDefinition] = field(default_factory=list)
    post: list[RuleDefinition] = field(default_factory=list)
    stage: CycleStage = CycleStage.IDLE
    phase: Phase = Phase.PRE
    index: int = 0
    replaced_by: str | None = None
    fired: list[str] = field(default_factory=list)
    gate_failures: list[GateFailure] = field(default_factory=list)


class RuleDispatcher:
    """Matches events to rules and steps through dispatch cycles."""

    def __init__(self, definition: GameDefinition, evaluator: ExpressionEvaluator):
        self.definition = definition
        self.evaluator = evaluator

    def match(self, event: Event, state: GameState) -> list[RuleDefinition]:
        """Rules whose trigger matches and whose once_per budget allows firing."""
        matched = [
            rule for rule in self.definition.rules
            if rule.trigger.matches(event.tag, event.fields) and self.has_budget(rule, state)
        ]
        matched.sort(key=lambda r: (-r.priority, r.declaration_index))
        return matched

    def begin(self, event: Event, state: GameState) -> DispatchCycle:
        matched = self.match(event, state)
        cycle = DispatchCycle(
            event=event,
            pre=[r for r in matched if r.timing == Timing.PRE],
            replace=[r for r in matched if r.timing == Timing.REPLACE],
            post=[r for r in matched if r.timing == Timing.POST],
            stage=CycleStage.MATCHED,
        )
        logger.debug("Dispatching '%s' (%d rule(s) matched)", event.tag, len(matched))
        return cycle

    def next_effect(
        self,
        cycle: DispatchCycle,
        state: GameState,
        make_context: Callable[[Event], EvalContext],
    ) -> RuleDefinition | DefaultBehaviour | None:
        """
        The next thing to execute for this cycle, or None when done.

        Consumes the once_per budget of a returned rule.
        """
        while True:
            if cycle.phase == Phase.PRE:
                rule = self._next_passing(cycle, cycle.pre, state, make_context)
                if rule is not None:
                    return self._fire(cycle, rule, state)
                cycle.phase, cycle.index = Phase.MAIN, 0
            elif cycle.phase == Phase.MAIN:
                cycle.phase, cycle.index = Phase.POST, 0
                winner = self._next_passing(cycle, cycle.replace, state, make_context)
                if winner is not None:
                    cycle.replaced_by = winner.rule_id
                    skipped = [r.rule_id for r in cycle.replace[cycle.index:]]
                    if skipped:
                        logger.warning(
                            "Replace conflict on '%s': rule '%s' wins, skipped %s",
                            cycle.event.tag, winner.rule_id, skipped,
                        )
                    cycle.index = 0
                    return self._fire(cycle, winner, state)
                cycle.index = 0
                if cycle.event.default_effect:
                    cycle.stage = CycleStage.EXECUTING
                    return DefaultBehaviour(actions=cycle.event.default_effect)
            elif cycle.phase == Phase.POST:
                rule = self._next_passing(cycle, cycle.post, state, make_context)
                if rule is not None:
                    return self._fire(cycle, rule, state)
                cycle.phase = Phase.FINISHED
            else:
                cycle.stage = CycleStage.DONE
                return None

    def _next_passing(self, cycle, rules, state, make_context) -> RuleDefinition | None:
        while cycle.index < len(rules):
            rule = rules[cycle.index]
            cycle.index += 1
            if not self.has_budget(rule, state):
                continue
            if self.gate(rule, cycle, make_context(cycle.event)):
                return rule
        return None

    def gate(self, rule: RuleDefinition, cycle: DispatchCycle, ctx: EvalContext) -> bool:
        """enabled_when, then condition. Evaluation errors skip the rule."""
        try:
            if rule.enabled_when is not None and not self.evaluator.evaluate_condition(rule.enabled_when, ctx):
                return False
            cycle.stage = CycleStage.GATED
            if rule.condition is None:
                if rule.require_condition:
                    logger.warning("Rule '%s' requires a condition but has none", rule.rule_id)
                    return False
            elif not self.evaluator.evaluate_condition(rule.condition, ctx):
                return False
            cycle.stage = CycleStage.CONDITIONED
            return True
        except EngineError as exc:
            logger.warning("Rule '%s' gate failed on '%s': %s", rule.rule_id, cycle.event.tag, exc)
            cycle.gate_failures.append(GateFailure(rule.rule_id, str(exc), type(exc).__name__))
            return False

    def _fire(self, cycle: DispatchCycle, rule: RuleDefinition, state: GameState) -> RuleDefinition:
        self.consume(rule, state)
        cycle.stage = CycleStage.EXECUTING
        cycle.fired.append(rule.rule_id)
        logger.debug("Rule '%s' fires on '%s'", rule.rule_id, cycle.event.tag)
        return rule

    # ------------------------------------------------------------------
    # once_per budgets
    # ------------------------------------------------------------------

    @staticmethod
    def _budget_key(scope: str, state: GameState) -> str:
        if scope == "turn":
            return f"turn:{state.flow.turn_index}"
        if scope == "phase":
            return f"phase:{state.flow.phase_serial}"
        return "game"

    def has_budget(self, rule: RuleDefinition, state: GameState) -> bool:
        usage = state.rule_usage.get(rule.rule_id, {})
        for scope, limit in rule.once_per.items():
            entry = usage.get(scope)
            if entry and entry[0] == self._budget_key(scope, state) and entry[1] >= limit:
                return False
        return True

    def consume(self, rule: RuleDefinition, state: GameState):
        if not rule.once_per:
            return
        usage = state.rule_usage.setdefault(rule.rule_id, {})
        for scope in rule.once_per:
            key = self._budget_key(scope, state)
            entry = usage.get(scope)
            if entry and entry[0] == key:
                entry[1] += 1
            else:
                usage[scope] = [key, 1]
