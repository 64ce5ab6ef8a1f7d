"""
Execution frames for the Action Executor.

The executor keeps an explicit stack of frames instead of recursing, so
resolution can stop at any REQUEST_INPUT and resume later from exactly
the same point. Each frame carries the lexical environment its actions
see, an optional failure policy, and an optional rollback checkpoint.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TYPE_CHECKING

from ..spec_schema.effect_dsl import OnFailure
from .context import Environment
from .events import Event

if TYPE_CHECKING:
    from .dispatcher import DispatchCycle
    from .flow import FlowStep
    from .state import GameState


class ResolverState(Enum):
    """State of the executor."""
    READY = "ready"  # Nothing pending
    RESOLVING = "resolving"  # Processing frames
    WAITING_INPUT = "waiting_input"  # Paused for driver input


@dataclass
class Frame:
    env: Environment
    on_failure: OnFailure | None = None
    checkpoint: GameState | None = None
    emitted_mark: int = 0
    queue_mark: int = 0


@dataclass
class SequenceFrame(Frame):
    """Runs a list of actions in order."""
    actions: list[dict[str, Any]] = field(default_factory=list)
    index: int = 0
    awaiting: str | None = None  # open input id
    running_child: bool = False
    last_result: Any = None

    @property
    def current_action(self) -> dict[str, Any] | None:
        if self.index < len(self.actions):
            return self.actions[self.index]
        return None


@dataclass
class EffectFrame(SequenceFrame):
    """
    A rule effect (or default behaviour, or setup).

    Failures unwind to here. Events emitted by its actions are held
    until the effect completes, then queued breadth-first.
    """
    rule_id: str | None = None
    store_as: str | None = None
    event: Event | None = None
    emitted: list[Event] = field(default_factory=list)
    peeked: list[str] = field(default_factory=list)
    failed: bool = False


@dataclass
class ParkedIteration:
    """A simultaneous-loop iteration suspended on input."""
    frames: list[Frame]
    input_id: str


@dataclass
class LoopFrame(Frame):
    """FOR_EACH / FOR_EACH_PLAYER."""
    items: list[Any] = field(default_factory=list)
    binding: str = "item"
    body: list[dict[str, Any]] = field(default_factory=list)
    next_index: int = 0
    simultaneous: bool = False
    parked: list[ParkedIteration] = field(default_factory=list)
    results: list[Any] = field(default_factory=list)


@dataclass
class ParallelFrame(Frame):
    """PARALLEL: branches run in listed order; one failure unit."""
    branches: list[list[dict[str, Any]]] = field(default_factory=list)
    next_branch: int = 0
    results: list[Any] = field(default_factory=list)


@dataclass
class DispatchFrame(Frame):
    """One event's pre / replace-or-default / post cycle."""
    cycle: DispatchCycle | None = None


@dataclass
class StepsFrame(Frame):
    """Flow controller steps: synchronous events and state updates."""
    steps: list[FlowStep] = field(default_factory=list)
    index: int = 0
    result: Any = None
