"""
Action System - Results, pending inputs and failure reports.

Actions themselves are plain dicts ({"action": "MOVE", ...}, see
spec_schema.effect_dsl). This module holds what the executor produces
while applying them:
- ActionResult: outcome of a functional apply()
- PendingInput: an outstanding REQUEST_INPUT awaiting a driver answer
- FailureReport: one failed action and the policy that handled it
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any

from ..spec_schema.effect_dsl import OnFailure
from .errors import InputError
from .state import Card, PlayerState, Zone
from .values import values_equal


@dataclass
class ActionResult:
    """
    Result of applying an action.

    Contains:
    - Whether the action succeeded
    - New state and result value (if it succeeded)
    - Errors (if it failed)
    - Events the action emitted, pending inputs it opened
    """
    success: bool
    new_state: Any | None = None  # GameState
    value: Any = None
    error: str | None = None
    error_code: str | None = None

    events: list[Any] = field(default_factory=list)
    pending_inputs: list[PendingInput] = field(default_factory=list)
    failures: list[FailureReport] = field(default_factory=list)

    @classmethod
    def failure(cls, error: str, error_code: str | None = None, failures=None) -> ActionResult:
        """Create a failure result."""
        return cls(success=False, error=error, error_code=error_code, failures=list(failures or []))

    @classmethod
    def success_with_state(cls, state: Any, value: Any = None, events=None, pending=None) -> ActionResult:
        """Create a success result with new state."""
        return cls(
            success=True,
            new_state=state,
            value=value,
            events=list(events or []),
            pending_inputs=list(pending or []),
        )


@dataclass
class FailureReport:
    """One action failure and how it was handled."""
    rule_id: str | None
    action_index: int
    action: str
    reason: str
    error_type: str
    policy: OnFailure
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "action_index": self.action_index,
            "action": self.action,
            "reason": self.reason,
            "error_type": self.error_type,
            "policy": self.policy.value,
            "degraded": self.degraded,
        }


@dataclass
class PendingInput:
    """
    An outstanding input request.

    Created by REQUEST_INPUT; the requesting effect is suspended until
    the driver answers, cancels, or the input expires.
    """
    input_id: str
    player: int
    prompt: str
    options: list[Any]
    multiselect: bool = False
    min_choices: int = 1
    max_choices: int = 1
    optional: bool = False
    rule_id: str | None = None
    created_at: float = 0.0
    timeout: float | None = None

    resolved: bool = False
    cancelled: bool = False
    value: Any = None

    @property
    def is_open(self) -> bool:
        return not self.resolved and not self.cancelled

    def expired(self, now: float) -> bool:
        return self.timeout is not None and now >= self.created_at + self.timeout

    def resolve(self, answer: Any = None, indexes: list[int] | None = None) -> Any:
        """
        Validate an answer and record the matching option(s).

        Raises InputError for answers that match no option or break the
        selection bounds; the input stays open in that case.
        """
        if not self.is_open:
            raise InputError(f"Input '{self.input_id}' is no longer open")

        if indexes is not None:
            chosen = []
            for index in indexes:
                if not isinstance(index, int) or index < 0 or index >= len(self.options):
                    raise InputError(f"Option index {index!r} out of range for '{self.input_id}'")
                chosen.append(self.options[index])
        elif answer is None:
            chosen = []
        elif self.multiselect:
            if not isinstance(answer, (list, tuple)):
                raise InputError(f"Input '{self.input_id}' expects a list of choices")
            chosen = [self._match(a) for a in answer]
        else:
            chosen = [self._match(answer)]

        if not chosen:
            if not self.optional:
                raise InputError(f"Input '{self.input_id}' requires a choice")
            value = [] if self.multiselect else None
        else:
            ids = [id(c) for c in chosen]
            if len(set(ids)) != len(ids):
                raise InputError(f"Duplicate choices for '{self.input_id}'")
            if self.multiselect:
                if len(chosen) < self.min_choices or len(chosen) > self.max_choices:
                    raise InputError(
                        f"Input '{self.input_id}' takes {self.min_choices}..{self.max_choices} choices, "
                        f"got {len(chosen)}"
                    )
                value = chosen
            else:
                if len(chosen) != 1:
                    raise InputError(f"Input '{self.input_id}' takes exactly one choice")
                value = chosen[0]

        self.resolved = True
        self.value = value
        return value

    def cancel(self):
        if not self.is_open:
            raise InputError(f"Input '{self.input_id}' is no longer open")
        self.cancelled = True

    def _match(self, answer: Any) -> Any:
        for option in self.options:
            if option_matches(option, answer):
                return option
        raise InputError(f"{answer!r} is not an option of '{self.input_id}'")


def option_matches(option: Any, answer: Any) -> bool:
    """Drivers may answer with the option itself or its identifier."""
    if isinstance(option, Card):
        if isinstance(answer, Card):
            return answer.card_id == option.card_id
        return answer == option.card_id
    if isinstance(option, PlayerState):
        if isinstance(answer, PlayerState):
            return answer.seat == option.seat
        return isinstance(answer, int) and not isinstance(answer, bool) and answer == option.seat
    if isinstance(option, Zone):
        if isinstance(answer, Zone):
            return answer.key == option.key
        return answer in (option.key, option.name)
    return values_equal(option, answer)
