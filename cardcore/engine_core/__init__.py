"""
Engine Core - Deterministic rule execution over a card-game state.

The engine is the runtime that:
1. Builds the State Model from a GameDefinition
2. Resolves selectors and evaluates expressions against it
3. Executes actions through an explicit frame machine
4. Dispatches events to trigger-condition-effect rules
5. Drives the state/phase machine and detects the end of the game
"""

from .state import Card, Face, GameResult, GameState, Ordering, PlayerState, TeamState, Visibility, Zone
from .action import ActionResult, FailureReport, PendingInput
from .context import Environment, EvalContext
from .events import Event, EventTag
from .expression import ExpressionEvaluator, evaluate_expression
from .selector import SelectorResolver
from .dispatcher import RuleDispatcher
from .flow import FlowController
from .executor import ActionExecutor
from .setup import build_initial_state
from .errors import (
    EngineError,
    SelectorError,
    OperandTypeError,
    StateLookupError,
    DivisionByZeroError,
    AmbiguousDeckError,
    ActionError,
    BindingError,
    ExpressionValidationError,
    InvariantViolation,
    DispatchError,
    InputError,
    DefinitionError,
)

__all__ = [
    "Card",
    "Face",
    "GameResult",
    "GameState",
    "Ordering",
    "PlayerState",
    "TeamState",
    "Visibility",
    "Zone",
    "ActionResult",
    "FailureReport",
    "PendingInput",
    "Environment",
    "EvalContext",
    "Event",
    "EventTag",
    "ExpressionEvaluator",
    "evaluate_expression",
    "SelectorResolver",
    "RuleDispatcher",
    "FlowController",
    "ActionExecutor",
    "build_initial_state",
    "EngineError",
    "SelectorError",
    "OperandTypeError",
    "StateLookupError",
    "DivisionByZeroError",
    "AmbiguousDeckError",
    "ActionError",
    "BindingError",
    "ExpressionValidationError",
    "InvariantViolation",
    "DispatchError",
    "InputError",
    "DefinitionError",
]
