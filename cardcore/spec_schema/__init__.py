"""Game definition schema - game-agnostic rule vocabularies and definitions."""

from .effect_dsl import ActionType, OperatorKey, Timing, OnFailure, OncePer, LoopOrder
from .game_definition import (
    GameDefinition,
    DeckType,
    ZoneType,
    ZoneDefinition,
    VariableDefinition,
    StateDefinition,
    TransitionDefinition,
    WinCondition,
    RuleDefinition,
    Trigger,
)
from .validation import validate_definition, ValidationResult

__all__ = [
    "ActionType",
    "OperatorKey",
    "Timing",
    "OnFailure",
    "OncePer",
    "LoopOrder",
    "GameDefinition",
    "DeckType",
    "ZoneType",
    "ZoneDefinition",
    "VariableDefinition",
    "StateDefinition",
    "TransitionDefinition",
    "WinCondition",
    "RuleDefinition",
    "Trigger",
    "validate_definition",
    "ValidationResult",
]
