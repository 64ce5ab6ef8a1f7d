"""
Pytest fixtures for cardcore tests.
"""

import pytest

from ..config import EngineConfig
from ..engine_core.context import EvalContext, Environment
from ..engine_core.executor import ActionExecutor
from ..engine_core.setup import build_initial_state
from ..engine_core.state import GameState
from ..games.war import create_war_definition
from ..spec_schema import GameDefinition, OnFailure


# Deck order after setup, top-first: main-1 .. main-6
MINI_CARDS = [
    {"rank": 2, "suit": "hearts", "cost": 1},
    {"rank": 5, "suit": "spades", "cost": 3},
    {"rank": "J", "suit": "hearts", "cost": 2},
    {"rank": "K", "suit": "clubs", "cost": 4},
    {"rank": "A", "suit": "spades", "cost": 5},
    {"rank": 5, "suit": "hearts", "cost": 3},
]


def mini_document(**sections) -> dict:
    """A small definition document; keyword arguments replace top-level sections."""
    document = {
        "meta": {
            "name": "mini",
            "version": "0.1",
            "players": {"min": 2, "max": 4},
            "rng": {"deterministic": True},
        },
        "components": {
            "component_types": {
                "deck_types": {
                    "mini": {
                        "composition": [{"type": "cards", "cards": [dict(c) for c in MINI_CARDS]}],
                        "rank_hierarchy": [2, 3, 4, 5, "J", "Q", "K", "A"],
                    },
                },
                "zone_types": {
                    "stock": {"ordering": "lifo", "visibility": {"all": "count_only"}, "default_face": "down"},
                    "hand": {
                        "ordering": "unordered",
                        "visibility": {"owner": "all", "others": "count_only"},
                        "default_face": "down",
                        "allows_reorder": True,
                    },
                    "table": {"ordering": "lifo", "visibility": {"all": "all"}, "default_face": "up"},
                    "queue": {"ordering": "fifo", "visibility": {"all": "all"}, "default_face": "up"},
                    "vault": {"ordering": "lifo", "visibility": {"all": "hidden"}, "default_face": "down"},
                },
            },
            "decks": {"main": {"type": "mini", "zone": "deck"}},
            "zones": [
                {"name": "deck", "type": "stock", "of_deck": "main"},
                {"name": "discard", "type": "table"},
                {"name": "line", "type": "queue"},
                {"name": "vault", "type": "vault"},
                {"name": "hand", "type": "hand", "per_player": True},
                {"name": "table", "type": "table", "per_player": True},
            ],
            "variables": [
                {"name": "score", "scope": "per_player", "initial_value": 0},
                {"name": "round", "scope": "global", "initial_value": 0},
                {"name": "log", "scope": "global", "initial_value": []},
                {"name": "hand_size", "scope": "per_player", "computed": {"len": "$player.zones.hand"}},
            ],
        },
        "setup": [],
        "flow": {
            "initial_state": "main",
            "states": {"main": {"phases": ["draw", "play"], "loop": True}},
        },
        "rules": [],
    }
    document.update(sections)
    return document


@pytest.fixture
def mini_definition() -> GameDefinition:
    """The mini game definition."""
    return GameDefinition.from_dict(mini_document())


@pytest.fixture
def mini_state(mini_definition: GameDefinition) -> GameState:
    """A 2-player mini state with every card still in the deck."""
    return build_initial_state(mini_definition, 2, seed=7, game_id="test_game")


@pytest.fixture
def executor(mini_definition: GameDefinition, mini_state: GameState) -> ActionExecutor:
    """An executor owning the mini state."""
    executor = ActionExecutor(mini_definition, EngineConfig())
    executor.load(mini_state)
    return executor


@pytest.fixture
def run_effect():
    """Run a list of actions as one effect; returns the executor's pending inputs."""
    def run(executor: ActionExecutor, actions: list, on_failure: str = "abort", **kwargs):
        executor.begin_effect(actions, rule_id=kwargs.pop("rule_id", "test"),
                              on_failure=OnFailure(on_failure), **kwargs)
        return executor.run()
    return run


@pytest.fixture
def context(mini_definition: GameDefinition, mini_state: GameState):
    """Build an EvalContext over the mini state, with optional bindings."""
    def make(state: GameState = None, bindings: dict = None, event=None) -> EvalContext:
        return EvalContext(
            state=state or mini_state,
            definition=mini_definition,
            env=Environment(table={}, local=dict(bindings or {})),
            event=event,
        )
    return make


@pytest.fixture
def war_definition() -> GameDefinition:
    """The built-in War definition."""
    return create_war_definition()
