"""
Effect DSL - Closed vocabularies for actions, operators and rule options.

Actions and expressions travel through the engine as plain dict trees
(the merged game document). This module names every tag the runtime
understands so the executor, evaluator and definition walker agree on a
single closed set.

Key design decisions:
- One action = one dict with an "action" key (e.g. {"action": "MOVE", ...})
- One operator node = one dict with exactly one operator key
- Unknown tags are rejected, never ignored
- Factory functions build the common action shapes for tests and
  built-in games
"""

from __future__ import annotations
from enum import Enum
from typing import Any


class ActionType(Enum):
    """Atomic actions the executor can apply."""
    # Movement
    MOVE = "MOVE"
    MOVE_ALL = "MOVE_ALL"
    DEAL = "DEAL"
    DEAL_ROUND_ROBIN = "DEAL_ROUND_ROBIN"
    DEAL_ALL = "DEAL_ALL"
    MILL = "MILL"
    DRAW = "DRAW"

    # Visibility
    REVEAL = "REVEAL"
    CONCEAL = "CONCEAL"
    FLIP = "FLIP"
    PEEK = "PEEK"
    LOOK = "LOOK"

    # Randomization and ordering
    SHUFFLE = "SHUFFLE"
    REORDER = "REORDER"
    CHOOSE_RANDOM = "CHOOSE_RANDOM"
    SEARCH_ZONE = "SEARCH_ZONE"
    REVEAL_MATCHING = "REVEAL_MATCHING"

    # Variables
    SET_VARIABLE = "SET_VARIABLE"
    INCREMENT = "INCREMENT"

    # Flow control
    SET_STATE = "SET_STATE"
    SET_GAME_STATE = "SET_GAME_STATE"
    SET_PHASE = "SET_PHASE"
    SKIP_TURN = "SKIP_TURN"
    EXTRA_TURN = "EXTRA_TURN"
    REVERSE_ORDER = "REVERSE_ORDER"
    INSERT_PHASE = "INSERT_PHASE"
    REMOVE_PHASE = "REMOVE_PHASE"
    END_TURN = "END_TURN"
    END_GAME = "END_GAME"

    # Input
    REQUEST_INPUT = "REQUEST_INPUT"

    # Control structures
    FOR_EACH_PLAYER = "FOR_EACH_PLAYER"
    FOR_EACH = "FOR_EACH"
    PARALLEL = "PARALLEL"
    IF = "IF"

    # Events
    EMIT = "EMIT"


class OperatorKey(Enum):
    """Expression operators."""
    # Comparison
    IS_EQUAL = "isEqual"
    IS_GREATER_THAN = "isGreaterThan"
    IS_LESS_THAN = "isLessThan"

    # Boolean
    NOT = "not"
    AND = "and"
    OR = "or"

    # Lists and aggregation
    LIST = "list"
    ANY = "any"
    ALL = "all"
    COUNT = "count"
    LEN = "len"
    MAX = "max"
    MIN = "min"
    CONTAINS = "contains"
    IN = "in"
    EXISTS = "exists"
    DISTINCT = "distinct"
    GROUP_BY = "group_by"
    FILTER = "filter"

    # Math
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    MOD = "mod"
    SUM = "sum"
    AVG = "avg"

    # Rank helpers
    RANK_VALUE = "rank_value"

    # Feasibility
    CAN_PERFORM = "canPerform"


# Operand forms that are not operators
OPERAND_KEYS = frozenset({"value", "path", "ref"})

OPERATOR_NAMES = frozenset(op.value for op in OperatorKey)
ACTION_NAMES = frozenset(a.value for a in ActionType)


class Timing(Enum):
    """When a rule's effect runs relative to the event's default behaviour."""
    PRE = "pre"
    POST = "post"
    REPLACE = "replace"


class OnFailure(Enum):
    """Failure policy for an action, PARALLEL block or rule effect."""
    CONTINUE = "continue"
    ABORT = "abort"
    ROLLBACK = "rollback"


class OncePer(Enum):
    """Scopes for rule firing budgets."""
    TURN = "turn"
    PHASE = "phase"
    GAME = "game"


class LoopOrder(Enum):
    """Iteration order for FOR_EACH / FOR_EACH_PLAYER."""
    SEQUENTIAL = "sequential"
    SIMULTANEOUS = "simultaneous"
    CLOCKWISE = "clockwise"
    COUNTERCLOCKWISE = "counterclockwise"


def action_type_of(spec: dict[str, Any]) -> ActionType:
    """Resolve the ActionType of an action dict (ValueError if unknown)."""
    return ActionType(spec.get("action"))


def parse_once_per(raw: Any) -> dict[str, int]:
    """
    Normalize a once_per option into {scope: limit}.

    Accepts "turn", ["turn", "game"] or {"turn": 2}.
    """
    if raw is None:
        return {}
    if isinstance(raw, str):
        return {OncePer(raw).value: 1}
    if isinstance(raw, list):
        return {OncePer(scope).value: 1 for scope in raw}
    if isinstance(raw, dict):
        return {OncePer(scope).value: int(limit) for scope, limit in raw.items()}
    raise ValueError(f"Invalid once_per: {raw!r}")


# ============================================================================
# Factory functions for common action shapes
# ============================================================================

def move(source: Any, to: Any, count: int | None = 1, **params) -> dict:
    """Create a MOVE action."""
    spec = {"action": ActionType.MOVE.value, "from": source, "to": to, **params}
    if count is not None:
        spec["count"] = count
    return spec


def move_all(source: Any, to: Any, **params) -> dict:
    """Create a MOVE_ALL action."""
    return {"action": ActionType.MOVE_ALL.value, "from": source, "to": to, **params}


def deal_round_robin(source: Any, to: Any, count: int = 1, rounds: int | None = None, **params) -> dict:
    """Create a DEAL_ROUND_ROBIN action."""
    spec = {"action": ActionType.DEAL_ROUND_ROBIN.value, "from": source, "to": to, "count": count, **params}
    if rounds is not None:
        spec["rounds"] = rounds
    return spec


def shuffle(target: Any) -> dict:
    """Create a SHUFFLE action."""
    return {"action": ActionType.SHUFFLE.value, "target": target}


def set_variable(name: str, value: Any, **params) -> dict:
    """Create a SET_VARIABLE action."""
    return {"action": ActionType.SET_VARIABLE.value, "name": name, "value": value, **params}


def increment(name: str, by: Any = 1, **params) -> dict:
    """Create an INCREMENT action."""
    return {"action": ActionType.INCREMENT.value, "name": name, "by": by, **params}


def if_action(condition: Any, then: list[dict], otherwise: list[dict] | None = None) -> dict:
    """Create an IF action."""
    spec = {"action": ActionType.IF.value, "condition": condition, "then": then}
    if otherwise:
        spec["else"] = otherwise
    return spec


def for_each_player(do: list[dict], order: str = "sequential", **params) -> dict:
    """Create a FOR_EACH_PLAYER loop (binds $player)."""
    return {"action": ActionType.FOR_EACH_PLAYER.value, "order": order, "do": do, **params}


def for_each(items: Any, do: list[dict], name: str = "item", order: str = "sequential") -> dict:
    """Create a FOR_EACH loop binding each item under `name`."""
    return {"action": ActionType.FOR_EACH.value, "items": items, "as": name, "order": order, "do": do}


def parallel(branches: list[list[dict]], on_failure: str | None = None) -> dict:
    """Create a PARALLEL block."""
    spec = {"action": ActionType.PARALLEL.value, "branches": branches, "wait": "all"}
    if on_failure:
        spec["on_failure"] = on_failure
    return spec


def request_input(player: Any, options: Any, store_as: str, prompt: str = "", **params) -> dict:
    """Create a REQUEST_INPUT action."""
    return {
        "action": ActionType.REQUEST_INPUT.value,
        "player": player,
        "options": options,
        "store_as": store_as,
        "prompt": prompt,
        **params,
    }


def emit(event: str, **fields) -> dict:
    """Create an EMIT action for a custom event."""
    return {"action": ActionType.EMIT.value, "event": event, "fields": fields}
