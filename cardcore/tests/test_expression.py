"""
Tests for the Expression Evaluator.

Tests:
- Operand forms (literal, value, path, ref, selector strings)
- Comparison and identity rules, including rank symbols
- Boolean, aggregation and list operators
- Math and its error kinds
- canPerform dry runs
"""

import pytest

from ..engine_core.errors import (
    AmbiguousDeckError,
    DivisionByZeroError,
    ExpressionValidationError,
    OperandTypeError,
)
from ..engine_core.expression import ExpressionEvaluator


@pytest.fixture
def evaluate(context):
    """Evaluate an expression against the mini state."""
    evaluator = ExpressionEvaluator()

    def run(expr, state=None, bindings=None):
        return evaluator.evaluate(expr, context(state, bindings))
    return run


class TestOperands:
    """Tests for operand forms."""

    def test_literals(self, evaluate):
        assert evaluate(3) == 3
        assert evaluate("red") == "red"
        assert evaluate(None) is None

    def test_value_operand(self, evaluate):
        assert evaluate({"value": [1, 2]}) == [1, 2]

    def test_path_operand_with_function(self, evaluate):
        assert evaluate({"path": "count($.zones.deck)"}) == 6

    def test_ref_with_attribute(self, evaluate, mini_state):
        card = mini_state.card("main-4")
        assert evaluate({"ref": "chosen.suit"}, bindings={"chosen": card}) == "clubs"
        assert evaluate("ref:chosen", bindings={"chosen": card}).card_id == "main-4"

    def test_raw_list_is_rejected(self, evaluate):
        with pytest.raises(ExpressionValidationError):
            evaluate([1, 2])

    def test_literal_list_to_aggregation_is_rejected(self, evaluate):
        with pytest.raises(ExpressionValidationError):
            evaluate({"sum": {"value": [1, 2]}})

    def test_node_with_two_keys(self, evaluate):
        with pytest.raises(ExpressionValidationError):
            evaluate({"add": [1, 2], "sub": [1, 2]})

    def test_unknown_operator(self, evaluate):
        with pytest.raises(ExpressionValidationError):
            evaluate({"xor": [True, False]})


class TestComparison:
    """Tests for isEqual / isGreaterThan / isLessThan."""

    def test_numbers(self, evaluate):
        assert evaluate({"isGreaterThan": [3, 2]}) is True
        assert evaluate({"isLessThan": [3, 2]}) is False
        assert evaluate({"isEqual": [2, 2]}) is True

    def test_cards_compare_by_identity(self, evaluate):
        assert evaluate({"isEqual": [{"path": "top($.zones.deck)"}, "$.zones.deck[0]"]}) is True
        assert evaluate({"isEqual": [{"path": "top($.zones.deck)"}, "$.zones.deck[1]"]}) is False

    def test_rank_symbol_equals_bare_literal(self, evaluate):
        assert evaluate({"isEqual": [{"path": "top($.zones.deck).rank"}, 2]}) is True
        assert evaluate({"isEqual": [{"path": "$.zones.deck[2].rank"}, "J"]}) is True

    def test_bare_rank_literals_never_order(self, evaluate):
        with pytest.raises(TypeError):
            evaluate({"isGreaterThan": ["K", 7]})

    def test_rank_symbols_never_order(self, evaluate):
        with pytest.raises(OperandTypeError):
            evaluate({"isGreaterThan": [{"path": "$.zones.deck[3].rank"}, {"path": "$.zones.deck[0].rank"}]})

    def test_rank_values_order(self, evaluate):
        expr = {"isGreaterThan": [
            {"path": "rank_value($.zones.deck[3])"},
            {"path": "rank_value($.zones.deck[0])"},
        ]}
        assert evaluate(expr) is True


class TestRankValue:
    """Tests for rank ordinals."""

    def test_monotonic_over_hierarchy(self, evaluate, mini_definition):
        hierarchy = mini_definition.deck_types["mini"].rank_hierarchy
        values = [evaluate({"rank_value": [rank, "main"]}) for rank in hierarchy]
        assert values == list(range(1, len(hierarchy) + 1))

    def test_deck_inferred_from_expression(self, evaluate):
        expr = {"isGreaterThan": [{"rank_value": "K"}, {"rank_value": {"path": "top($.zones.deck)"}}]}
        assert evaluate(expr) is True

    def test_bare_literal_without_deck(self, evaluate):
        with pytest.raises(AmbiguousDeckError):
            evaluate({"rank_value": "K"})

    def test_over_a_zone(self, evaluate):
        assert evaluate({"rank_value": "$.zones.deck"}) == [1, 4, 5, 7, 8, 4]


class TestBooleans:
    """Tests for not / and / or."""

    def test_not(self, evaluate):
        assert evaluate({"not": False}) is True

    def test_and_short_circuits(self, evaluate):
        # The second operand would fail if evaluated
        assert evaluate({"and": [False, {"div": [1, 0]}]}) is False

    def test_or(self, evaluate):
        assert evaluate({"or": [False, {"isEqual": [1, 1]}]}) is True


class TestAggregation:
    """Tests for list and aggregation operators."""

    def test_count_distinct(self, evaluate):
        assert evaluate({"count": {"distinct": {"list": ["x", "x", "y"]}}}) == 2

    def test_count_with_card_predicate(self, evaluate):
        assert evaluate({"count": ["$.zones.deck", {"isEqual": ["$.card.suit", "hearts"]}]}) == 3

    def test_any_and_all(self, evaluate):
        assert evaluate({"any": ["$.zones.deck", {"isEqual": ["$.card.suit", "clubs"]}]}) is True
        assert evaluate({"all": ["$.zones.deck", {"isEqual": ["$.card.suit", "clubs"]}]}) is False

    def test_filter(self, evaluate):
        cards = evaluate({"filter": ["$.zones.deck", {"isGreaterThan": ["ref:item.cost", 3]}]})
        assert [c.card_id for c in cards] == ["main-4", "main-5"]

    def test_group_by(self, evaluate):
        groups = evaluate({"group_by": ["$.zones.deck", "$.card.suit"]})
        assert sorted(groups) == ["clubs", "hearts", "spades"]
        assert len(groups["hearts"]) == 3

    def test_distinct_cards_by_properties(self, evaluate):
        assert len(evaluate({"distinct": "$.zones.deck"})) == 6

    def test_contains_and_in(self, evaluate, mini_state):
        card = mini_state.card("main-2")
        assert evaluate({"contains": ["$.zones.deck", "ref:c"]}, bindings={"c": card}) is True
        assert evaluate({"in": ["ref:c", "$.zones.discard"]}, bindings={"c": card}) is False

    def test_exists(self, evaluate):
        assert evaluate({"exists": "$.zones.deck"}) is True
        assert evaluate({"exists": "$.zones.nowhere"}) is False
        assert evaluate({"exists": {"path": "top($.zones.discard)"}}) is False

    def test_numeric_aggregates(self, evaluate, mini_state):
        mini_state.players[0].variables["score"] = 2
        mini_state.players[1].variables["score"] = 6
        assert evaluate({"max": "$.players[*].variables.score"}) == 6
        assert evaluate({"min": "$.players[*].variables.score"}) == 2
        assert evaluate({"sum": "$.players[*].variables.score"}) == 8
        assert evaluate({"avg": "$.players[*].variables.score"}) == 4

    def test_len(self, evaluate):
        assert evaluate({"len": "$.zones.deck"}) == 6
        assert evaluate({"len": {"list": [1, 2, 3]}}) == 3


class TestMath:
    """Tests for arithmetic."""

    def test_operators(self, evaluate):
        assert evaluate({"add": [1, 2, 3]}) == 6
        assert evaluate({"sub": [10, 4]}) == 6
        assert evaluate({"mul": [2, 3]}) == 6
        assert evaluate({"div": [12, 2]}) == 6
        assert evaluate({"div": [3, 2]}) == 1.5
        assert evaluate({"mod": [7, 4]}) == 3

    def test_division_by_zero(self, evaluate):
        with pytest.raises(DivisionByZeroError):
            evaluate({"div": [1, 0]})
        with pytest.raises(ArithmeticError):
            evaluate({"mod": [1, 0]})

    def test_non_numbers(self, evaluate):
        with pytest.raises(OperandTypeError):
            evaluate({"add": [1, "two"]})


class TestCanPerform:
    """Tests for canPerform dry runs."""

    def test_feasible_action(self, executor, context, mini_state):
        expr = {"canPerform": {"action": "MOVE", "from": "$.zones.deck", "to": "$.zones.discard"}}
        assert executor.evaluator.evaluate(expr, context()) is True
        # Dry runs never touch the live state
        assert mini_state.zones["deck"].count == 6
        assert mini_state.zones["discard"].count == 0

    def test_infeasible_action(self, executor, context):
        expr = {"canPerform": {"action": "MOVE", "from": "$.zones.discard", "to": "$.zones.deck",
                               "exact": True}}
        assert executor.evaluator.evaluate(expr, context()) is False

    def test_input_requests_are_satisfiable(self, executor, context):
        expr = {"canPerform": [
            {"action": "REQUEST_INPUT", "player": 0, "options": "$.zones.deck", "store_as": "pick"},
            {"action": "MOVE", "from": "ref:pick", "to": "$.zones.discard"},
        ]}
        assert executor.evaluator.evaluate(expr, context()) is True

    def test_without_executor(self, evaluate):
        with pytest.raises(ExpressionValidationError):
            evaluate({"canPerform": {"action": "SHUFFLE", "target": "$.zones.deck"}})
