"""
Tests for definition loading and validation.

Tests:
- Building a GameDefinition from a merged document
- Trigger and once_per parsing
- Runtime-semantic validation errors and warnings
"""

import pytest

from ..engine_core.errors import DefinitionError
from ..spec_schema import GameDefinition, Trigger, validate_definition
from ..spec_schema.effect_dsl import OnFailure, Timing, parse_once_per
from .conftest import mini_document


def errors_for(**sections):
    return validate_definition(GameDefinition.from_dict(mini_document(**sections))).errors


def with_rule(*effect, **options):
    return {"rules": [{"id": "r", "trigger": "on.ping", "effect": list(effect), **options}]}


class TestDefinitionLoading:
    """Tests for GameDefinition.from_dict."""

    def test_mini_document(self, mini_definition):
        assert mini_definition.name == "mini"
        assert (mini_definition.min_players, mini_definition.max_players) == (2, 4)
        assert mini_definition.decks["main"].deck_type == "mini"
        assert mini_definition.zone_definition("hand").owner_scope == "player"
        assert mini_definition.zone_definition("deck").owner_scope == "global"
        assert mini_definition.variable("hand_size").is_computed
        assert mini_definition.state("main").phase("play") is not None

    def test_deck_composition_counts(self):
        document = mini_document()
        document["components"]["component_types"]["deck_types"]["mini"]["composition"] = [
            {"type": "cards", "cards": [{"rank": 2, "suit": "hearts", "count": 3}]},
            {"type": "card", "count": 2, "properties": {"rank": "A"}},
        ]
        cards = GameDefinition.from_dict(document).deck_types["mini"].build_card_properties()
        assert cards == [{"rank": 2, "suit": "hearts"}] * 3 + [{"rank": "A"}] * 2

    def test_unknown_template(self):
        document = mini_document()
        document["components"]["component_types"]["deck_types"]["mini"]["composition"] = [
            {"type": "template", "template": "tarot"},
        ]
        with pytest.raises(ValueError):
            GameDefinition.from_dict(document).deck_types["mini"].build_card_properties()

    def test_rule_defaults(self):
        definition = GameDefinition.from_dict(mini_document(**with_rule()))
        rule = definition.rules[0]

        assert rule.timing == Timing.POST
        assert rule.on_failure == OnFailure.ABORT
        assert rule.priority == 0
        assert rule.once_per == {}
        assert rule.declaration_index == 0

    def test_definition_keeps_the_document(self):
        document = mini_document()
        definition = GameDefinition.from_dict(document)
        document["meta"]["name"] = "changed"
        assert definition.raw["meta"]["name"] == "mini"

    def test_string_phases_and_transitions(self):
        definition = GameDefinition.from_dict(mini_document(flow={
            "initial_state": "a",
            "states": {
                "a": {"phases": ["x", {"name": "y", "actions": [{"action": "END_TURN"}]}],
                      "transitions": [{"to": "b"}]},
                "b": {"phases": ["z"], "loop": False},
            },
        }))
        state = definition.state("a")
        assert [p.name for p in state.phases] == ["x", "y"]
        assert state.phases[1].actions == [{"action": "END_TURN"}]
        assert state.transitions[0].from_states == ["a"]
        assert state.transitions[0].transition_id == "a-0"
        assert definition.state("b").loop is False


class TestTriggers:
    """Tests for trigger and budget parsing."""

    def test_trigger_strings(self):
        trigger = Trigger.parse("on.move")
        assert trigger.tag == "move"
        assert trigger.matches("move", {})
        assert trigger.matches("move.draw", {})
        assert not trigger.matches("mover", {})

    def test_trigger_filters(self):
        trigger = Trigger.parse({"on": "on.phase.enter", "phase": "compare"})
        assert trigger.matches("phase.enter", {"phase": "compare", "state": "playing"})
        assert not trigger.matches("phase.enter", {"phase": "flip"})

    def test_invalid_trigger(self):
        with pytest.raises(ValueError):
            Trigger.parse(["on.move"])

    @pytest.mark.parametrize("raw, expected", [
        (None, {}),
        ("turn", {"turn": 1}),
        (["turn", "game"], {"turn": 1, "game": 1}),
        ({"phase": 3}, {"phase": 3}),
    ])
    def test_once_per(self, raw, expected):
        assert parse_once_per(raw) == expected

    def test_once_per_unknown_scope(self):
        with pytest.raises(ValueError):
            parse_once_per("round")


class TestValidation:
    """Tests for validate_definition."""

    def test_mini_is_valid_with_a_warning(self, mini_definition):
        result = validate_definition(mini_definition)
        assert result.valid
        assert result.warnings == ["No win condition defined"]

    def test_unknown_action(self):
        assert errors_for(**with_rule({"action": "TELEPORT"})) == ["rule 'r'.effect[0]: unknown action 'TELEPORT'"]

    def test_nested_actions_are_walked(self):
        effect = {"action": "IF", "condition": True, "then": [{"action": "NOPE"}]}
        assert errors_for(**with_rule(effect)) == ["rule 'r'.effect[0].then[0]: unknown action 'NOPE'"]

    def test_unknown_operator(self):
        effect = {"action": "SET_VARIABLE", "name": "round", "value": {"pow": [2, 3]}}
        assert errors_for(**with_rule(effect)) == ["rule 'r'.effect[0].value: unknown operator 'pow'"]

    def test_raw_list_in_expression(self):
        effect = {"action": "SET_VARIABLE", "name": "log", "value": [1, 2]}
        errors = errors_for(**with_rule(effect))
        assert errors == ["rule 'r'.effect[0].value: raw list in expression; use {'list': [...]}"]

    def test_unknown_variable(self):
        effect = {"action": "INCREMENT", "name": "points"}
        assert errors_for(**with_rule(effect)) == ["rule 'r'.effect[0]: unknown variable 'points'"]

    def test_unknown_zone_in_selector(self):
        effect = {"action": "MOVE", "from": "$.zones.attic", "to": "$.zones.discard"}
        assert errors_for(**with_rule(effect)) == [
            "rule 'r'.effect[0].from: unknown global zone 'attic' in '$.zones.attic'"
        ]

    def test_selector_root(self):
        effect = {"action": "SHUFFLE", "target": {"path": "zones.deck"}}
        assert errors_for(**with_rule(effect)) == ["rule 'r'.effect[0].target: path operand must be a selector string"]

    def test_shared_zones_root_is_rejected(self):
        effect = {"action": "SHUFFLE", "target": "$.shared_zones.deck"}
        assert errors_for(**with_rule(effect)) == [
            "rule 'r'.effect[0].target: '$.shared_zones' is not a selector root; use '$.zones'"
        ]

    def test_function_selectors_are_unwrapped(self):
        condition = {"isGreaterThan": [{"path": "count(top($.zones.deck))"}, 0]}
        assert errors_for(**with_rule(condition=condition)) == []

    def test_duplicate_rule_ids(self):
        rules = [{"id": "r", "trigger": "on.ping"}, {"id": "r", "trigger": "on.pong"}]
        assert errors_for(rules=rules) == ["Duplicate rule id 'r'"]

    def test_require_condition_without_condition_warns(self):
        definition = GameDefinition.from_dict(mini_document(**with_rule(require_condition=True)))
        result = validate_definition(definition)
        assert result.valid
        assert "rule 'r' requires a condition but declares none; it never fires" in result.warnings

    def test_flow_references(self):
        flow = {
            "initial_state": "start",
            "states": {"main": {"phases": ["p"], "transitions": [{"to": "elsewhere"}]}},
        }
        assert errors_for(flow=flow) == [
            "Initial state 'start' is not defined",
            "transition 'main-0' targets unknown state 'elsewhere'",
        ]

    def test_set_state_target(self):
        effect = {"action": "SET_STATE", "state": "limbo"}
        assert errors_for(**with_rule(effect)) == ["rule 'r'.effect[0]: unknown flow state 'limbo'"]

    def test_component_references(self):
        document = mini_document()
        document["components"]["decks"]["extra"] = {"type": "tarot", "zone": "attic"}
        document["components"]["zones"].append({"name": "bench", "type": "shelf"})
        errors = validate_definition(GameDefinition.from_dict(document)).errors

        assert "Deck 'extra' has unknown deck type 'tarot'" in errors
        assert "Deck 'extra' targets unknown global zone 'attic'" in errors
        assert "Zone 'bench' has unknown zone type 'shelf'" in errors

    def test_player_bounds(self):
        document = mini_document()
        document["meta"]["players"] = {"min": 3, "max": 2}
        assert errors_for(meta=document["meta"]) == ["meta.players.max must be >= meta.players.min"]

    def test_raise_on_error(self):
        definition = GameDefinition.from_dict(mini_document(**with_rule({"action": "TELEPORT"})))
        with pytest.raises(DefinitionError) as exc_info:
            validate_definition(definition, raise_on_error=True)
        assert exc_info.value.errors == ["rule 'r'.effect[0]: unknown action 'TELEPORT'"]

    def test_war_is_valid(self, war_definition):
        assert validate_definition(war_definition).errors == []
