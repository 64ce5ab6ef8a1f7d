"""
War Game Definition

The classic two-player War, written as a declarative document and run
entirely by the engine (no game-specific Python).

The definition declares:
- One standard_52 deck, dealt out evenly at setup
- Per-player draw pile, play area and winnings; a shared pot for ties
- A "playing" state with two phases: flip, then compare
- Comparison rules keyed on rank_value
- A win condition: the first player left holding no cards loses
"""

from typing import Any

from ...spec_schema.game_definition import GameDefinition


RANKS = [2, 3, 4, 5, 6, 7, 8, 9, 10, "J", "Q", "K", "A"]

P0_PLAY = "$.players[0].zones.play_area"
P1_PLAY = "$.players[1].zones.play_area"


def create_war_definition() -> GameDefinition:
    """Build the War GameDefinition."""
    return GameDefinition.from_dict(war_document())


def war_document() -> dict[str, Any]:
    """The merged War document, as a plain dict tree."""
    return {
        "meta": {
            "name": "war",
            "version": "1.0.0",
            "players": {"min": 2, "max": 2},
            "rng": {"deterministic": True},
        },
        "components": _define_components(),
        "setup": _define_setup(),
        "flow": _define_flow(),
        "rules": _define_rules(),
    }


def _define_components() -> dict[str, Any]:
    return {
        "component_types": {
            "deck_types": {
                "standard_52": {
                    "composition": [
                        {"type": "template", "template": "standard_suits", "values": list(RANKS)},
                    ],
                    "rank_hierarchy": list(RANKS),
                },
            },
            "zone_types": {
                "stock": {
                    "ordering": "lifo",
                    "visibility": {"all": "count_only"},
                    "default_face": "down",
                },
                "pile": {
                    "ordering": "lifo",
                    "visibility": {"owner": "count_only", "others": "count_only"},
                    "default_face": "down",
                },
                "table": {
                    "ordering": "lifo",
                    "visibility": {"all": "all"},
                    "default_face": "up",
                },
            },
        },
        "decks": {"main": {"type": "standard_52", "zone": "deck"}},
        "zones": [
            {"name": "deck", "type": "stock", "of_deck": "main", "owner_scope": "global"},
            {"name": "pot", "type": "pile", "owner_scope": "global"},
            {"name": "draw_pile", "type": "pile", "owner_scope": "player"},
            {"name": "play_area", "type": "table", "owner_scope": "player"},
            {"name": "winnings", "type": "pile", "owner_scope": "player"},
        ],
        "variables": [
            {
                "name": "total_cards",
                "scope": "per_player",
                "computed": {"add": [
                    "$player.zones.draw_pile.count",
                    "$player.zones.play_area.count",
                    "$player.zones.winnings.count",
                ]},
            },
            {"name": "rounds", "scope": "global", "initial_value": 0},
        ],
    }


def _define_setup() -> list[dict[str, Any]]:
    """Shuffle the deck and deal it out one card at a time."""
    return [
        {"action": "SHUFFLE", "target": "$.zones.deck"},
        {"action": "DEAL_ALL", "from": "$.zones.deck", "to": "$.players[*].zones.draw_pile", "count": 1},
    ]


def _define_flow() -> dict[str, Any]:
    """One looping state; every turn is a flip followed by a compare."""
    flip = {
        "action": "FOR_EACH_PLAYER",
        "order": "sequential",
        "do": [
            {
                "action": "IF",
                "condition": {"isEqual": ["$player.zones.draw_pile.count", 0]},
                "then": [
                    {"action": "MOVE_ALL", "from": "$player.zones.winnings", "to": "$player.zones.draw_pile"},
                    {"action": "SHUFFLE", "target": "$player.zones.draw_pile"},
                ],
            },
            {"action": "MOVE", "from": "$player.zones.draw_pile", "to": "$player.zones.play_area",
             "count": 1, "face": "up"},
        ],
    }
    return {
        "initial_state": "playing",
        "player_order": {"direction": "clockwise", "first": 0, "mode": "sequential"},
        "states": {
            "playing": {
                "phases": [
                    {"name": "flip", "actions": [flip]},
                    {"name": "compare", "actions": [{"action": "INCREMENT", "name": "rounds", "by": 1}]},
                ],
                "loop": True,
            },
        },
        "win_condition": {
            "condition": {"any": ["$.players[*].variables.total_cards", {"isEqual": ["ref:item", 0]}]},
            "evaluator": {"filter": ["$.players", {"isGreaterThan": [{"ref": "item.variables.total_cards"}, 0]}]},
            "reason": "opponent_out_of_cards",
        },
    }


def _both_flipped() -> dict[str, Any]:
    return {"and": [
        {"isGreaterThan": [{"path": f"count({P0_PLAY})"}, 0]},
        {"isGreaterThan": [{"path": f"count({P1_PLAY})"}, 0]},
    ]}


def _collect(seat: int) -> list[dict[str, Any]]:
    """Move both played cards and the pot into one player's winnings."""
    winnings = f"$.players[{seat}].zones.winnings"
    return [
        {"action": "MOVE_ALL", "from": P0_PLAY, "to": winnings, "face": "down"},
        {"action": "MOVE_ALL", "from": P1_PLAY, "to": winnings, "face": "down"},
        {"action": "MOVE_ALL", "from": "$.zones.pot", "to": winnings, "face": "down"},
    ]


def _define_rules() -> list[dict[str, Any]]:
    compare_trigger = {"on": "on.phase.enter", "phase": "compare"}
    p0_rank = {"path": f"rank_value(top({P0_PLAY}))"}
    p1_rank = {"path": f"rank_value(top({P1_PLAY}))"}
    return [
        {
            "id": "compare_cards_p1_wins",
            "trigger": compare_trigger,
            "timing": "post",
            "priority": 10,
            "condition": {"and": [_both_flipped(), {"isGreaterThan": [p0_rank, p1_rank]}]},
            "effect": _collect(0),
        },
        {
            "id": "compare_cards_p2_wins",
            "trigger": compare_trigger,
            "timing": "post",
            "priority": 10,
            "condition": {"and": [_both_flipped(), {"isGreaterThan": [p1_rank, p0_rank]}]},
            "effect": _collect(1),
        },
        {
            "id": "tie_to_pot",
            "trigger": compare_trigger,
            "timing": "post",
            "priority": 5,
            "condition": {"and": [_both_flipped(), {"isEqual": [p0_rank, p1_rank]}]},
            "effect": [
                {"action": "MOVE_ALL", "from": P0_PLAY, "to": "$.zones.pot"},
                {"action": "MOVE_ALL", "from": P1_PLAY, "to": "$.zones.pot"},
            ],
        },
    ]
