"""
Expression Evaluator - Operator trees over game state.

An expression node is one of:
- a literal scalar: 3, "red", true, null
- a selector string: "$.zones.deck" (anything starting with "$")
- a binding string: "ref:chosen"
- an operand dict: {"value": ...}, {"path": "<selector>"}, {"ref": "name.attr"}
- an operator dict with exactly one key: {"isEqual": [a, b]}, {"not": a}, ...

Raw lists are never expressions: sequences are built explicitly with
{"list": [...]} or come from selectors.

Evaluation is a pure function of (expression, state, context); the only
thing it can run is canPerform, which dry-runs actions on a clone.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Any, Callable

from ..config import RANK_ORDINAL_BASE
from ..spec_schema.effect_dsl import OPERATOR_NAMES, OperatorKey
from .context import EvalContext, Environment, PLAYER_BINDING
from .errors import (
    AmbiguousDeckError,
    BindingError,
    DivisionByZeroError,
    EngineError,
    ExpressionValidationError,
    OperandTypeError,
    StateLookupError,
)
from .selector import SelectorResolver
from .state import Card, GameState, PlayerState, TeamState, Zone
from .values import (
    RankSymbol,
    as_sequence,
    hashable_key,
    is_number,
    plain_key,
    symbols_match,
    truthy,
    values_equal,
)


DryRunner = Callable[[list, EvalContext], bool]


class ExpressionEvaluator:
    """
    Evaluates operator trees.

    The evaluator owns the selector resolver for its definition so
    computed variables and rank lookups go through one place.
    """

    def __init__(self, dry_runner: DryRunner | None = None):
        self.dry_runner = dry_runner
        self.resolver = SelectorResolver(
            rank_ordinal=self.rank_ordinal,
            computed_reader=self._read_computed,
        )
        self._handlers: dict[str, Callable[[Any, EvalContext], Any]] = {
            OperatorKey.IS_EQUAL.value: self._op_is_equal,
            OperatorKey.IS_GREATER_THAN.value: self._op_greater,
            OperatorKey.IS_LESS_THAN.value: self._op_less,
            OperatorKey.NOT.value: self._op_not,
            OperatorKey.AND.value: self._op_and,
            OperatorKey.OR.value: self._op_or,
            OperatorKey.LIST.value: self._op_list,
            OperatorKey.ANY.value: self._op_any,
            OperatorKey.ALL.value: self._op_all,
            OperatorKey.COUNT.value: self._op_count,
            OperatorKey.LEN.value: self._op_len,
            OperatorKey.MAX.value: self._op_max,
            OperatorKey.MIN.value: self._op_min,
            OperatorKey.CONTAINS.value: self._op_contains,
            OperatorKey.IN.value: self._op_in,
            OperatorKey.EXISTS.value: self._op_exists,
            OperatorKey.DISTINCT.value: self._op_distinct,
            OperatorKey.GROUP_BY.value: self._op_group_by,
            OperatorKey.FILTER.value: self._op_filter,
            OperatorKey.ADD.value: self._op_add,
            OperatorKey.SUB.value: self._op_sub,
            OperatorKey.MUL.value: self._op_mul,
            OperatorKey.DIV.value: self._op_div,
            OperatorKey.MOD.value: self._op_mod,
            OperatorKey.SUM.value: self._op_sum,
            OperatorKey.AVG.value: self._op_avg,
            OperatorKey.RANK_VALUE.value: self._op_rank_value,
            OperatorKey.CAN_PERFORM.value: self._op_can_perform,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def evaluate(self, expr: Any, context: EvalContext) -> Any:
        """
        Evaluate an expression.

        Args:
            expr: Literal, selector string, operand dict or operator dict
            context: Evaluation context

        Returns:
            Typed value (bool, number, Card, Zone, list, ...)
        """
        if context.root_expr is None:
            context = replace(context, root_expr=expr)
        return self._eval(expr, context)

    def evaluate_condition(self, expr: Any, context: EvalContext) -> bool:
        """Evaluate an expression as a boolean condition (None passes)."""
        if expr is None:
            return True
        return truthy(self.evaluate(expr, context))

    def _eval(self, node: Any, ctx: EvalContext) -> Any:
        if isinstance(node, list):
            raise ExpressionValidationError(
                "Raw list in expression; build sequences with {'list': [...]}"
            )
        if isinstance(node, str):
            if node.startswith("$"):
                return self.resolver.resolve(node, ctx)
            if node.startswith("ref:"):
                return self._ref(node[4:], ctx)
            return node
        if isinstance(node, dict):
            if len(node) != 1:
                raise ExpressionValidationError(f"Expression node must have exactly one key: {sorted(node)}")
            key, operand = next(iter(node.items()))
            if key == "value":
                return operand
            if key == "path":
                return self.resolver.resolve(operand, ctx)
            if key == "ref":
                return self._ref(operand, ctx)
            if key not in OPERATOR_NAMES:
                raise ExpressionValidationError(f"Unknown operator '{key}'")
            return self._handlers[key](operand, ctx)
        return node

    def _ref(self, name: Any, ctx: EvalContext) -> Any:
        if not isinstance(name, str) or not name:
            raise ExpressionValidationError(f"Invalid ref {name!r}")
        head, _, rest = name.partition(".")
        value = ctx.env.lookup(head)
        if isinstance(value, (Card, PlayerState, Zone)):
            value = self._live(value, ctx.state)
        if rest:
            value = self.resolver.read_attribute(value, rest, ctx)
        return value

    @staticmethod
    def _live(value: Any, state: GameState) -> Any:
        """Re-anchor a bound object onto the state being read."""
        try:
            if isinstance(value, Card):
                return state.card(value.card_id)
            if isinstance(value, PlayerState):
                return state.player(value.seat)
            if isinstance(value, Zone):
                return state.zone(value.key)
        except StateLookupError:
            return value
        return value

    # ------------------------------------------------------------------
    # Operand helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _args(operand: Any, op: str, minimum: int = 1, maximum: int | None = None) -> list:
        args = operand if isinstance(operand, list) else [operand]
        if len(args) < minimum or (maximum is not None and len(args) > maximum):
            expected = f"{minimum}" if maximum == minimum else f"{minimum}..{maximum or 'n'}"
            raise ExpressionValidationError(f"'{op}' takes {expected} operand(s), got {len(args)}")
        return args

    def _sequence(self, node: Any, ctx: EvalContext, op: str) -> list:
        if isinstance(node, dict) and set(node) == {"value"} and isinstance(node["value"], list):
            raise ExpressionValidationError(f"'{op}' needs a selector or 'list' operand, not a literal list")
        value = self._eval(node, ctx)
        if value is None or isinstance(value, (Zone, list, tuple)):
            return as_sequence(value)
        raise OperandTypeError(f"'{op}' expects a sequence, got {type(value).__name__}")

    def _number(self, node: Any, ctx: EvalContext, op: str) -> int | float:
        value = self._eval(node, ctx)
        if not is_number(value):
            raise OperandTypeError(f"'{op}' expects numbers, got {_describe(value)}")
        return value

    def _numbers(self, operand: Any, ctx: EvalContext, op: str) -> list:
        """Numbers from either one sequence operand or several scalar operands."""
        args = self._args(operand, op)
        if len(args) == 1:
            values = self._sequence(args[0], ctx, op)
        else:
            values = [self._eval(a, ctx) for a in args]
        for value in values:
            if not is_number(value):
                raise OperandTypeError(f"'{op}' expects numbers, got {_describe(value)}")
        return values

    def _predicate(self, node: Any, item: Any, ctx: EvalContext) -> bool:
        return truthy(self._eval(node, ctx.with_item(item)))

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def _op_is_equal(self, operand, ctx):
        left, right = self._args(operand, "isEqual", 2, 2)
        return values_equal(self._eval(left, ctx), self._eval(right, ctx))

    def _ordered_pair(self, operand, ctx, op):
        left, right = self._args(operand, op, 2, 2)
        return self._number(left, ctx, op), self._number(right, ctx, op)

    def _op_greater(self, operand, ctx):
        left, right = self._ordered_pair(operand, ctx, "isGreaterThan")
        return left > right

    def _op_less(self, operand, ctx):
        left, right = self._ordered_pair(operand, ctx, "isLessThan")
        return left < right

    # ------------------------------------------------------------------
    # Boolean
    # ------------------------------------------------------------------

    def _op_not(self, operand, ctx):
        (inner,) = self._args(operand, "not", 1, 1)
        return not truthy(self._eval(inner, ctx))

    def _op_and(self, operand, ctx):
        for node in self._args(operand, "and"):
            if not truthy(self._eval(node, ctx)):
                return False
        return True

    def _op_or(self, operand, ctx):
        for node in self._args(operand, "or"):
            if truthy(self._eval(node, ctx)):
                return True
        return False

    # ------------------------------------------------------------------
    # Lists and aggregation
    # ------------------------------------------------------------------

    def _op_list(self, operand, ctx):
        if not isinstance(operand, list):
            raise ExpressionValidationError("'list' takes a list of operands")
        return [self._eval(node, ctx) for node in operand]

    def _seq_and_predicate(self, operand, ctx, op):
        args = self._args(operand, op, 1, 2)
        items = self._sequence(args[0], ctx, op)
        predicate = args[1] if len(args) == 2 else None
        return items, predicate

    def _op_any(self, operand, ctx):
        items, predicate = self._seq_and_predicate(operand, ctx, "any")
        if predicate is None:
            return any(truthy(item) for item in items)
        return any(self._predicate(predicate, item, ctx) for item in items)

    def _op_all(self, operand, ctx):
        items, predicate = self._seq_and_predicate(operand, ctx, "all")
        if predicate is None:
            return all(truthy(item) for item in items)
        return all(self._predicate(predicate, item, ctx) for item in items)

    def _op_count(self, operand, ctx):
        items, predicate = self._seq_and_predicate(operand, ctx, "count")
        if predicate is None:
            return len(items)
        return sum(1 for item in items if self._predicate(predicate, item, ctx))

    def _op_len(self, operand, ctx):
        (inner,) = self._args(operand, "len", 1, 1)
        value = self._eval(inner, ctx)
        if isinstance(value, Zone):
            return value.count
        if isinstance(value, (list, tuple, str, dict)):
            return len(value)
        if value is None:
            return 0
        raise OperandTypeError(f"'len' expects a sequence, got {_describe(value)}")

    def _op_max(self, operand, ctx):
        values = self._numbers(operand, ctx, "max")
        return max(values) if values else None

    def _op_min(self, operand, ctx):
        values = self._numbers(operand, ctx, "min")
        return min(values) if values else None

    def _op_contains(self, operand, ctx):
        seq, item = self._args(operand, "contains", 2, 2)
        items = self._sequence(seq, ctx, "contains")
        needle = self._eval(item, ctx)
        return any(values_equal(candidate, needle) for candidate in items)

    def _op_in(self, operand, ctx):
        item, seq = self._args(operand, "in", 2, 2)
        return self._op_contains([seq, item], ctx)

    def _op_exists(self, operand, ctx):
        (inner,) = self._args(operand, "exists", 1, 1)
        try:
            value = self._eval(inner, ctx)
        except (StateLookupError, BindingError):
            return False
        return value is not None

    def _op_distinct(self, operand, ctx):
        (inner,) = self._args(operand, "distinct", 1, 1)
        seen = set()
        result = []
        for item in self._sequence(inner, ctx, "distinct"):
            key = hashable_key(item.properties) if isinstance(item, Card) else hashable_key(item)
            if key not in seen:
                seen.add(key)
                result.append(item)
        return result

    def _op_group_by(self, operand, ctx):
        seq, key_expr = self._args(operand, "group_by", 2, 2)
        groups: dict[Any, list] = {}
        for item in self._sequence(seq, ctx, "group_by"):
            key = plain_key(self._eval(key_expr, ctx.with_item(item)))
            groups.setdefault(key, []).append(item)
        return groups

    def _op_filter(self, operand, ctx):
        seq, predicate = self._args(operand, "filter", 2, 2)
        items = self._sequence(seq, ctx, "filter")
        return [item for item in items if self._predicate(predicate, item, ctx)]

    # ------------------------------------------------------------------
    # Math
    # ------------------------------------------------------------------

    def _op_add(self, operand, ctx):
        args = self._args(operand, "add", 2)
        return sum(self._number(a, ctx, "add") for a in args)

    def _op_sub(self, operand, ctx):
        args = self._args(operand, "sub", 2)
        result = self._number(args[0], ctx, "sub")
        for node in args[1:]:
            result -= self._number(node, ctx, "sub")
        return result

    def _op_mul(self, operand, ctx):
        args = self._args(operand, "mul", 2)
        result = 1
        for node in args:
            result *= self._number(node, ctx, "mul")
        return result

    def _op_div(self, operand, ctx):
        left, right = self._ordered_pair(operand, ctx, "div")
        if right == 0:
            raise DivisionByZeroError("div by zero")
        if isinstance(left, int) and isinstance(right, int) and left % right == 0:
            return left // right
        return left / right

    def _op_mod(self, operand, ctx):
        left, right = self._ordered_pair(operand, ctx, "mod")
        if right == 0:
            raise DivisionByZeroError("mod by zero")
        return left % right

    def _op_sum(self, operand, ctx):
        return sum(self._numbers(operand, ctx, "sum"))

    def _op_avg(self, operand, ctx):
        values = self._numbers(operand, ctx, "avg")
        if not values:
            raise DivisionByZeroError("avg of an empty sequence")
        return sum(values) / len(values)

    # ------------------------------------------------------------------
    # Rank helpers
    # ------------------------------------------------------------------

    def _op_rank_value(self, operand, ctx):
        args = self._args(operand, "rank_value", 1, 2)
        value = self._eval(args[0], ctx)
        deck = self._deck_name(self._eval(args[1], ctx), ctx) if len(args) == 2 else None
        if isinstance(value, (list, Zone)):
            return [self.rank_ordinal(v, ctx, deck) for v in as_sequence(value)]
        return self.rank_ordinal(value, ctx, deck)

    def rank_ordinal(self, value: Any, ctx: EvalContext, deck: str | None = None) -> int:
        """Ordinal of a rank in its deck type's rank_hierarchy (1-based)."""
        if value is None:
            raise StateLookupError("rank_value of nothing")
        if isinstance(value, Card):
            value = self.resolver.rank_of(value, ctx)
        if isinstance(value, RankSymbol):
            symbol = value.symbol
            deck = deck or value.deck_type
        else:
            symbol = value
        if deck is None:
            deck = self._infer_deck(ctx)

        deck_type = ctx.definition.deck_type_for(deck)
        if deck_type is None:
            raise StateLookupError(f"Unknown deck or deck type '{deck}'")
        if not deck_type.rank_hierarchy:
            raise StateLookupError(f"Deck type '{deck_type.name}' has no rank_hierarchy")
        for index, rank in enumerate(deck_type.rank_hierarchy):
            if symbols_match(rank, symbol):
                return index + RANK_ORDINAL_BASE
        raise StateLookupError(f"Rank {symbol!r} is not in the hierarchy of '{deck_type.name}'")

    def _deck_name(self, value: Any, ctx: EvalContext) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, Zone):
            if not value.of_deck:
                raise AmbiguousDeckError(f"Zone '{value.key}' is not bound to a deck")
            return value.of_deck
        if isinstance(value, Card):
            return self.resolver.deck_type_of(value, ctx)
        if isinstance(value, RankSymbol) and value.deck_type:
            return value.deck_type
        raise AmbiguousDeckError(f"Cannot take a deck from {_describe(value)}")

    def _infer_deck(self, ctx: EvalContext) -> str:
        """Deck type implied by zone/card operands elsewhere in the expression."""
        found: set[str] = set()
        for selector in _selectors_in(ctx.root_expr):
            try:
                value = self.resolver.resolve(selector, ctx)
            except EngineError:
                continue
            for item in (value if isinstance(value, list) else [value]):
                if isinstance(item, Zone) and item.of_deck:
                    deck_type = ctx.definition.deck_type_for(item.of_deck)
                    if deck_type is not None:
                        found.add(deck_type.name)
                elif isinstance(item, Card):
                    found.add(self.resolver.deck_type_of(item, ctx))
                elif isinstance(item, RankSymbol) and item.deck_type:
                    found.add(item.deck_type)
        if len(found) != 1:
            raise AmbiguousDeckError(
                "rank_value of a bare rank needs exactly one deck in context, "
                f"found {sorted(found) or 'none'}"
            )
        return found.pop()

    # ------------------------------------------------------------------
    # Computed variables
    # ------------------------------------------------------------------

    def _read_computed(self, definition, ctx: EvalContext, owner: Any) -> Any:
        if definition.name in ctx.computing:
            raise ExpressionValidationError(f"Computed variable '{definition.name}' depends on itself")
        env = ctx.env
        if isinstance(owner, PlayerState):
            env = env.bind(PLAYER_BINDING, owner)
        elif isinstance(owner, TeamState):
            env = env.bind("$team", owner)
        inner = replace(
            ctx,
            env=env,
            root_expr=None,
            computing=ctx.computing | {definition.name},
        )
        return self.evaluate(definition.computed, inner)

    # ------------------------------------------------------------------
    # Feasibility
    # ------------------------------------------------------------------

    def _op_can_perform(self, operand, ctx):
        if self.dry_runner is None:
            raise ExpressionValidationError("canPerform needs an action executor")
        actions = operand if isinstance(operand, list) else [operand]
        for action in actions:
            if not isinstance(action, dict) or "action" not in action:
                raise ExpressionValidationError("canPerform takes action specs")
        return self.dry_runner(actions, ctx)


def _selectors_in(node: Any) -> list[str]:
    """Selector strings mentioned anywhere in an expression tree."""
    found: list[str] = []
    if isinstance(node, str) and node.startswith("$"):
        found.append(node)
    elif isinstance(node, dict):
        for key, value in node.items():
            if key == "path" and isinstance(value, str):
                found.append(value)
            elif key not in ("value", OperatorKey.CAN_PERFORM.value):
                found.extend(_selectors_in(value))
    elif isinstance(node, list):
        for value in node:
            found.extend(_selectors_in(value))
    return found


def _describe(value: Any) -> str:
    if isinstance(value, RankSymbol):
        return f"rank symbol {value.symbol!r} (use rank_value)"
    return f"{type(value).__name__} {value!r}"


# Convenience function
def evaluate_expression(
    expr: Any,
    state: GameState,
    definition,
    env: Environment | None = None,
    event=None,
) -> Any:
    """
    Evaluate an expression in a game context.

    Args:
        expr: Expression to evaluate
        state: Current game state
        definition: GameDefinition the state was built from
        env: Optional bindings
        event: Optional triggering event (for $.event)

    Returns:
        Evaluated value
    """
    context = EvalContext(
        state=state,
        definition=definition,
        env=env or Environment.root(),
        event=event,
    )
    return ExpressionEvaluator().evaluate(expr, context)
