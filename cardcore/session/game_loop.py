"""
Game Loop - Drives a session to completion with input policies.

The loop:
1. If inputs are pending, ask the seat's policy for each answer
2. Otherwise advance the flow (end the current phase or turn)
3. Repeat until the game ends, the flow stalls, or the step budget
   runs out

Every answer goes through the normal session surface, so a loop run is
exactly reproducible from (definition, seed, policy answers).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING
import logging

from ..bots.policy import FirstOptionPolicy, InputPolicy
from ..engine_core.action import FailureReport
from ..engine_core.errors import InputError
from ..engine_core.state import GameResult

if TYPE_CHECKING:
    from .manager import Session

logger = logging.getLogger(__name__)


class LoopState(Enum):
    """State of the game loop."""
    RUNNING = "running"
    GAME_OVER = "game_over"
    STALLED = "stalled"  # No phase to advance and no result
    STEP_LIMIT = "step_limit"


@dataclass
class LoopResult:
    """
    Result of a loop run.

    Contains the final loop state, the number of advances and answered
    inputs, any failures reported along the way and the game result.
    """
    loop_state: LoopState
    steps: int = 0
    inputs_answered: int = 0
    failures: list[FailureReport] = field(default_factory=list)
    result: GameResult | None = None

    @property
    def finished(self) -> bool:
        return self.loop_state == LoopState.GAME_OVER


class GameLoop:
    """
    The automated game loop driver.

    Usage:
        loop = GameLoop(session, policies={0: FirstOptionPolicy()})
        result = loop.run(max_steps=500)
    """

    def __init__(
        self,
        session: Session,
        policy: InputPolicy | None = None,
        policies: dict[int, InputPolicy] | None = None,
    ):
        self.session = session
        self.default_policy = policy or FirstOptionPolicy()
        self.policies = dict(policies or {})
        self.state = LoopState.RUNNING

    def policy_for(self, seat: int) -> InputPolicy:
        return self.policies.get(seat, self.default_policy)

    def run(self, max_steps: int = 1000) -> LoopResult:
        """Answer inputs and advance until the game ends or max_steps is reached."""
        result = LoopResult(loop_state=LoopState.RUNNING)
        while True:
            if self.session.is_over:
                result.loop_state = LoopState.GAME_OVER
                break
            pending = self.session.pending_inputs
            if pending:
                outcome = self._answer(pending[0])
                result.inputs_answered += 1
            else:
                if result.steps >= max_steps:
                    result.loop_state = LoopState.STEP_LIMIT
                    break
                if self.session.state.flow.phase is None:
                    result.loop_state = LoopState.STALLED
                    break
                outcome = self.session.advance()
                result.steps += 1
            result.failures.extend(outcome.failures)

        self.state = result.loop_state
        result.result = self.session.result
        logger.info("Game loop ended: %s after %d step(s), %d input(s)",
                    result.loop_state.value, result.steps, result.inputs_answered)
        return result

    def _answer(self, pending):
        policy = self.policy_for(pending.player)
        decision = policy.select_input(self.session.state, pending)
        logger.debug("%s answers %s: %s", policy.get_name(), pending.input_id, decision.explanation)
        if decision.cancel:
            return self.session.cancel_input(pending.input_id)
        try:
            return self.session.provide_input(pending.input_id, decision.value, decision.indexes)
        except InputError as exc:
            logger.warning("Policy %s gave an invalid answer for %s (%s); cancelling",
                           policy.get_name(), pending.input_id, exc)
            return self.session.cancel_input(pending.input_id)
