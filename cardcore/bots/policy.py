"""
Input Policy - Interface for answering pending inputs automatically.

An InputPolicy looks at a PendingInput (and the state it was opened in)
and returns a decision:
- The chosen option index(es)
- Or a cancellation
- With an explanation for logs and traces

Policies drive automated play (GameLoop, CLI runs) and replays.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
import random

if TYPE_CHECKING:
    from ..engine_core.action import PendingInput
    from ..engine_core.state import GameState


@dataclass
class InputDecision:
    """
    A decision for one pending input.

    indexes select options by position; value answers with an option
    (or its identifier) directly. cancel gives up on the input.
    """
    input_id: str
    indexes: list[int] | None = None
    value: Any = None
    cancel: bool = False
    explanation: str = ""


class InputPolicy(ABC):
    """
    Abstract base class for input policies.

    A policy defines how an automated seat answers REQUEST_INPUT.
    Implementations range from trivial (first option) to scripted
    replays of a recorded input sequence.
    """

    @abstractmethod
    def select_input(self, state: GameState, pending: PendingInput) -> InputDecision:
        """
        Answer a pending input.

        Args:
            state: Current game state
            pending: The input that needs an answer

        Returns:
            InputDecision for that input
        """

    def get_name(self) -> str:
        """Get the policy's name/identifier."""
        return self.__class__.__name__


def _required_count(pending: PendingInput) -> int:
    if not pending.multiselect:
        return 1
    return max(pending.min_choices, 0 if pending.optional else 1)


class FirstOptionPolicy(InputPolicy):
    """
    First-option policy - always takes the leading option(s).

    Used for:
    - Deterministic testing
    - Baseline comparison
    """

    def select_input(self, state: GameState, pending: PendingInput) -> InputDecision:
        if not pending.options:
            return InputDecision(pending.input_id, cancel=True, explanation="No options")
        count = _required_count(pending)
        return InputDecision(
            pending.input_id,
            indexes=list(range(min(count, len(pending.options)))),
            explanation="Selected first option",
        )


class RandomPolicy(InputPolicy):
    """
    Random policy - picks options uniformly with its own seeded PRNG.

    The policy's PRNG is separate from the session's, so random answers
    never disturb the game's draw sequence.
    """

    def __init__(self, seed: int | None = None):
        self.rng = random.Random(seed)

    def select_input(self, state: GameState, pending: PendingInput) -> InputDecision:
        if not pending.options:
            return InputDecision(pending.input_id, cancel=True, explanation="No options")
        if pending.multiselect:
            low = _required_count(pending)
            high = min(pending.max_choices, len(pending.options))
            count = self.rng.randint(min(low, high), high)
        else:
            count = 1
        indexes = sorted(self.rng.sample(range(len(pending.options)), count))
        return InputDecision(pending.input_id, indexes=indexes, explanation="Selected randomly")


class ScriptedPolicy(InputPolicy):
    """
    Scripted policy - replays a fixed sequence of answers.

    Each script entry is either a list of option indexes or
    {"value": ...} / {"cancel": True}. When the script runs out the
    fallback policy answers (first option by default).
    """

    def __init__(self, script: list[Any], fallback: InputPolicy | None = None):
        self.script = list(script)
        self.fallback = fallback or FirstOptionPolicy()
        self.position = 0

    @property
    def exhausted(self) -> bool:
        return self.position >= len(self.script)

    def select_input(self, state: GameState, pending: PendingInput) -> InputDecision:
        if self.exhausted:
            return self.fallback.select_input(state, pending)
        entry = self.script[self.position]
        self.position += 1
        if isinstance(entry, dict):
            return InputDecision(
                pending.input_id,
                value=entry.get("value"),
                cancel=bool(entry.get("cancel", False)),
                explanation=f"Script entry {self.position}",
            )
        indexes = list(entry) if isinstance(entry, (list, tuple)) else [entry]
        return InputDecision(pending.input_id, indexes=indexes, explanation=f"Script entry {self.position}")


POLICIES = {
    "first": FirstOptionPolicy,
    "random": RandomPolicy,
}


def make_policy(name: str, seed: int | None = None) -> InputPolicy:
    """Build a policy by CLI name."""
    if name not in POLICIES:
        raise ValueError(f"Unknown policy '{name}'; expected one of {sorted(POLICIES)}")
    if name == "random":
        return RandomPolicy(seed)
    return POLICIES[name]()
