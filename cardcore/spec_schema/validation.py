"""
Definition Validation - Runtime-semantic checks for a game definition.

Document shape is validated before the core ever sees it. This walker
checks what only the runtime knows:
1. Every action and operator tag belongs to the closed vocabularies
2. Selector strings are rooted at "$" or "$player"
3. References resolve (deck types, zone types, decks, flow states, zones,
   variables)
4. Flow entry points exist (initial state, transition targets)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any
import re

from ..engine_core.errors import DefinitionError
from .effect_dsl import ACTION_NAMES, OPERAND_KEYS, OPERATOR_NAMES
from .game_definition import GameDefinition

# Action parameters holding nested action lists
_NESTED_ACTION_KEYS = ("do", "then", "else")

# Action parameters holding plain settings rather than expressions
_LITERAL_KEYS = frozenset({
    "action", "store_as", "on_failure", "prompt", "order", "position", "face",
    "exact", "multiselect", "optional", "min", "reason", "event", "wait",
    "descending", "reverse", "start", "as", "state", "after", "before", "index",
    "timeout", "name", "variable", "phase",
})

_SELECTOR_ROOT = re.compile(r"^\$(player)?(?=$|[.\[])")
_ZONE_PATH = re.compile(r"^\$\.zones\.([A-Za-z_][\w-]*)")
_VARIABLE_PATH = re.compile(r"\.variables\.([A-Za-z_][\w-]*)")
_FUNCTION_HEAD = re.compile(r"^(?:top|bottom|all|count|owner|rank|rank_value)\(")


@dataclass
class ValidationResult:
    """Result of validation, with errors and warnings."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def validate_definition(definition: GameDefinition, raise_on_error: bool = False) -> ValidationResult:
    """
    Validate a complete game definition.

    Returns ValidationResult with errors and warnings.
    Raises DefinitionError if raise_on_error=True and errors exist.
    """
    walker = _Walker(definition)
    walker.run()
    result = ValidationResult(valid=not walker.errors, errors=walker.errors, warnings=walker.warnings)
    if raise_on_error and walker.errors:
        raise DefinitionError(walker.errors)
    return result


class _Walker:
    def __init__(self, definition: GameDefinition):
        self.definition = definition
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.global_zones = {z.name for z in definition.zones if z.owner_scope == "global"}
        self.variables = {v.name for v in definition.variables}

    def run(self):
        d = self.definition
        if d.min_players < 1:
            self.errors.append("meta.players.min must be >= 1")
        if d.max_players < d.min_players:
            self.errors.append("meta.players.max must be >= meta.players.min")

        self._check_components()

        for i, action in enumerate(d.setup):
            self._action(action, f"setup[{i}]")

        self._check_flow()

        seen_ids = set()
        for rule in d.rules:
            where = f"rule '{rule.rule_id}'"
            if rule.rule_id in seen_ids:
                self.errors.append(f"Duplicate rule id '{rule.rule_id}'")
            seen_ids.add(rule.rule_id)
            self._expression(rule.enabled_when, f"{where}.enabled_when")
            self._expression(rule.condition, f"{where}.condition")
            if rule.require_condition and rule.condition is None:
                self.warnings.append(f"{where} requires a condition but declares none; it never fires")
            for i, action in enumerate(rule.effect):
                self._action(action, f"{where}.effect[{i}]")

        if d.flow is None:
            self.warnings.append("No flow defined")
        elif d.flow.win_condition is None:
            self.warnings.append("No win condition defined")

    # ------------------------------------------------------------------
    # Components and flow
    # ------------------------------------------------------------------

    def _check_components(self):
        d = self.definition
        for name, deck in d.decks.items():
            if deck.deck_type not in d.deck_types:
                self.errors.append(f"Deck '{name}' has unknown deck type '{deck.deck_type}'")
            if deck.zone is not None and deck.zone not in self.global_zones:
                self.errors.append(f"Deck '{name}' targets unknown global zone '{deck.zone}'")
            elif deck.zone is None and not any(z.of_deck == name for z in d.zones if z.owner_scope == "global"):
                self.errors.append(f"Deck '{name}' has no starting zone")
        for zone in d.zones:
            if zone.zone_type not in d.zone_types:
                self.errors.append(f"Zone '{zone.name}' has unknown zone type '{zone.zone_type}'")
            if zone.of_deck is not None and zone.of_deck not in d.decks:
                self.errors.append(f"Zone '{zone.name}' references unknown deck '{zone.of_deck}'")
            if zone.owner_scope not in ("global", "player", "team"):
                self.errors.append(f"Zone '{zone.name}' has unknown owner_scope '{zone.owner_scope}'")
        for var in d.variables:
            if var.scope not in ("global", "per_player", "per_team"):
                self.errors.append(f"Variable '{var.name}' has unknown scope '{var.scope}'")
            self._expression(var.computed, f"variable '{var.name}'.computed")

    def _check_flow(self):
        flow = self.definition.flow
        if flow is None:
            return
        if flow.initial_state not in flow.states:
            self.errors.append(f"Initial state '{flow.initial_state}' is not defined")
        transitions = list(flow.transitions)
        for name, body in flow.states.items():
            for i, action in enumerate(body.on_enter):
                self._action(action, f"state '{name}'.on_enter[{i}]")
            for phase in body.phases:
                for i, action in enumerate(phase.actions):
                    self._action(action, f"phase '{name}.{phase.name}'.actions[{i}]")
            transitions.extend(body.transitions)
        for transition in transitions:
            where = f"transition '{transition.transition_id}'"
            if transition.to_state not in flow.states:
                self.errors.append(f"{where} targets unknown state '{transition.to_state}'")
            for source in transition.from_states:
                if source != "*" and source not in flow.states:
                    self.errors.append(f"{where} starts from unknown state '{source}'")
            self._expression(transition.condition, f"{where}.condition")
        if flow.win_condition is not None:
            self._expression(flow.win_condition.condition, "win_condition.condition")
            self._expression(flow.win_condition.evaluator, "win_condition.evaluator")

    # ------------------------------------------------------------------
    # Actions and expressions
    # ------------------------------------------------------------------

    def _action(self, action: Any, where: str):
        if not isinstance(action, dict):
            self.errors.append(f"{where}: action must be a mapping")
            return
        tag = action.get("action")
        if tag not in ACTION_NAMES:
            self.errors.append(f"{where}: unknown action '{tag}'")
            return
        for key, value in action.items():
            if key in _NESTED_ACTION_KEYS:
                for i, nested in enumerate(value or []):
                    self._action(nested, f"{where}.{key}[{i}]")
            elif key == "branches":
                for b, branch in enumerate(value or []):
                    if not isinstance(branch, list):
                        self.errors.append(f"{where}.branches[{b}]: branch must be a list of actions")
                        continue
                    for i, nested in enumerate(branch):
                        self._action(nested, f"{where}.branches[{b}][{i}]")
            elif key == "fields" and isinstance(value, dict):
                for name, node in value.items():
                    self._expression(node, f"{where}.fields.{name}")
            elif key == "options" and isinstance(value, list):
                for i, node in enumerate(value):
                    self._expression(node, f"{where}.options[{i}]")
            elif key not in _LITERAL_KEYS:
                self._expression(value, f"{where}.{key}")

        if tag in ("SET_VARIABLE", "INCREMENT"):
            name = action.get("name", action.get("variable"))
            if name not in self.variables:
                self.errors.append(f"{where}: unknown variable '{name}'")
        if tag in ("SET_STATE", "SET_GAME_STATE"):
            target = action.get("state", action.get("to"))
            flow = self.definition.flow
            if isinstance(target, str) and not target.startswith("$") and (flow is None or target not in flow.states):
                self.errors.append(f"{where}: unknown flow state '{target}'")

    def _expression(self, node: Any, where: str):
        if node is None:
            return
        if isinstance(node, list):
            self.errors.append(f"{where}: raw list in expression; use {{'list': [...]}}")
            return
        if isinstance(node, str):
            if node.startswith("$"):
                self._selector(node, where)
            return
        if not isinstance(node, dict):
            return
        if len(node) != 1:
            self.errors.append(f"{where}: expression node must have exactly one key, got {sorted(node)}")
            return
        key, operand = next(iter(node.items()))
        if key == "path":
            if not isinstance(operand, str) or not _unwrap_functions(operand).startswith("$"):
                self.errors.append(f"{where}: path operand must be a selector string")
            else:
                self._selector(operand, where)
        elif key in OPERAND_KEYS:
            return
        elif key not in OPERATOR_NAMES:
            self.errors.append(f"{where}: unknown operator '{key}'")
        elif key == "canPerform":
            actions = operand if isinstance(operand, list) else [operand]
            for i, action in enumerate(actions):
                self._action(action, f"{where}.canPerform[{i}]")
        elif isinstance(operand, list):
            for i, child in enumerate(operand):
                self._expression(child, f"{where}.{key}[{i}]")
        else:
            self._expression(operand, f"{where}.{key}")

    def _selector(self, text: str, where: str):
        text = _unwrap_functions(text)
        if not _SELECTOR_ROOT.match(text):
            self.errors.append(f"{where}: selector '{text}' is not rooted at '$' or '$player'")
            return
        if text.startswith("$.shared_zones"):
            self.errors.append(f"{where}: '$.shared_zones' is not a selector root; use '$.zones'")
            return
        zone = _ZONE_PATH.match(text)
        if zone and zone.group(1) not in self.global_zones:
            self.errors.append(f"{where}: unknown global zone '{zone.group(1)}' in '{text}'")
        for name in _VARIABLE_PATH.findall(text):
            if name not in self.variables:
                self.errors.append(f"{where}: unknown variable '{name}' in '{text}'")


def _unwrap_functions(text: str) -> str:
    """Strip leading selector function heads: "count(top($.x))" -> "$.x))"."""
    text = text.strip()
    while True:
        head = _FUNCTION_HEAD.match(text)
        if head is None:
            return text
        text = text[head.end():].lstrip()
