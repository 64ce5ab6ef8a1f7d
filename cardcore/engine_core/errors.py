"""
Engine Errors - The closed set of failure kinds raised by the runtime.

Every error derives from EngineError. Where a failure kind has a natural
Python counterpart (TypeError, LookupError, ...) the error subclasses it as
well, so callers can catch either the engine type or the builtin one.

Propagation:
- Selector/expression errors surface synchronously from resolve/evaluate.
- Action failures are handled by the executor's on_failure policy.
- InvariantViolation is fatal and halts the session.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every runtime failure."""


class SelectorError(EngineError, ValueError):
    """Unrooted or malformed selector path, or a forbidden root."""


class OperandTypeError(EngineError, TypeError):
    """Operand of the wrong kind (e.g. ordering comparison of rank symbols)."""


class StateLookupError(EngineError, LookupError):
    """Missing zone, player, card, variable or attribute."""


class DivisionByZeroError(EngineError, ZeroDivisionError):
    """div/mod/avg with a zero divisor."""


class AmbiguousDeckError(EngineError):
    """rank_value of a bare rank literal with no resolvable deck context."""


class ActionError(EngineError):
    """An action's precondition failed."""


class BindingError(EngineError, LookupError):
    """Unknown store_as/ref binding name."""


class ExpressionValidationError(EngineError, ValueError):
    """Malformed expression node (unknown operator, implicit sequence, arity)."""


class InvariantViolation(EngineError):
    """A State Model invariant was broken. Fatal for the session."""


class DispatchError(EngineError):
    """Rule dispatch cycle could not complete (e.g. cascade limit)."""


class InputError(EngineError, ValueError):
    """A driver supplied an answer inconsistent with a pending input."""


class DefinitionError(EngineError, ValueError):
    """Raised when a game definition fails runtime-semantic checks."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Definition check failed with {len(errors)} error(s)")
