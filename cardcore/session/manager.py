"""
Session Manager - Creates and manages game sessions.

LIFECYCLE:
1. Driver creates a session from a GameDefinition (+ seat count, seed)
2. start(): the State Model is built, setup runs, the initial state is entered
3. During the game:
   - advance() ends the current phase (or turn)
   - pending inputs are answered through provide_input / cancel_input
   - drivers may inject events and ask for a checkpoint
4. The game ends when the win condition or END_GAME produces a result
5. Sessions can be snapshotted at any time and restored from a full,
   settled snapshot

CONCURRENCY:
- One writer per session: every mutating call holds the session RLock
- "Simultaneous" play is a scheduling discipline inside the executor,
  never real threads

FAILURE:
- Action failures are reported and handled by their policy
- An invariant violation halts the session; every later mutating call
  raises it again
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
import logging
import threading
import time
import uuid

from ..config import EngineConfig
from ..engine_core.action import FailureReport, PendingInput
from ..engine_core.errors import InputError, InvariantViolation
from ..engine_core.events import Event
from ..engine_core.executor import ActionExecutor
from ..engine_core.setup import build_initial_state
from ..engine_core.state import GameResult, GameState
from ..spec_schema.game_definition import GameDefinition
from .snapshot import GameSnapshot, restore_state, snapshot_state

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """State of a game session."""
    CREATED = "created"  # Built, not started
    ACTIVE = "active"  # Idle between driver calls
    WAITING_INPUT = "waiting_input"  # Pending input(s) open
    GAME_OVER = "game_over"  # Result recorded
    HALTED = "halted"  # Invariant violation
    ENDED = "ended"  # Removed by the manager


@dataclass
class StepOutcome:
    """What one driver call produced."""
    status: SessionState
    events: list[Event] = field(default_factory=list)
    failures: list[FailureReport] = field(default_factory=list)
    pending_inputs: list[PendingInput] = field(default_factory=list)
    result: GameResult | None = None


class Session:
    """
    One playthrough of one game definition.

    Contains:
    - The definition and the executor that owns the working state
    - The dispatched-event trace and failure reports
    - Session metadata (seed, creation time)
    """

    def __init__(
        self,
        definition: GameDefinition,
        num_players: int,
        seed: int | None = None,
        session_id: str | None = None,
        config: EngineConfig | None = None,
        player_names: list[str] | None = None,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.definition = definition
        self.num_players = num_players
        self.requested_seed = seed
        self.player_names = player_names
        self.config = config or EngineConfig()
        self.created_at = time.time()
        self.status = SessionState.CREATED
        self.halted_reason: str | None = None
        self.metadata: dict[str, Any] = {}

        self.executor = ActionExecutor(definition, self.config)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> GameState | None:
        return self.executor.state

    @property
    def halted(self) -> bool:
        return self.status == SessionState.HALTED

    @property
    def is_over(self) -> bool:
        return self.state is not None and self.state.game_over

    @property
    def result(self) -> GameResult | None:
        return self.state.result if self.state else None

    @property
    def pending_inputs(self) -> list[PendingInput]:
        return self.executor.pending_inputs

    @property
    def trace(self) -> list[dict[str, Any]]:
        """Dispatched events in order, serialized."""
        return [event.to_dict() for event in self.executor.trace]

    @property
    def failures(self) -> list[FailureReport]:
        return list(self.executor.failures)

    def is_active(self) -> bool:
        return self.status in {SessionState.CREATED, SessionState.ACTIVE, SessionState.WAITING_INPUT}

    # ------------------------------------------------------------------
    # Driver calls
    # ------------------------------------------------------------------

    def start(self) -> StepOutcome:
        """Build the State Model, run setup and enter the initial state."""
        with self._lock:
            if self.status != SessionState.CREATED:
                raise InputError(f"Session '{self.session_id}' already started")
            state = build_initial_state(
                self.definition,
                self.num_players,
                seed=self.requested_seed,
                game_id=self.session_id,
                player_names=self.player_names,
            )
            self.executor.load(state)
            logger.info("Session %s started: %s, %d player(s), seed=%d",
                        self.session_id, self.definition.name, self.num_players, state.seed)
            self.executor.start()
            return self._run()

    def advance(self) -> StepOutcome:
        """End the current phase (or turn) and move the flow on."""
        with self._lock:
            self._require_idle()
            if not self.is_over:
                self.executor.push_steps(self.executor.flow.advance_steps(self.state))
            return self._run()

    def checkpoint(self) -> StepOutcome:
        """Check the win condition and transitions without ending the phase."""
        with self._lock:
            self._require_idle()
            self.executor.push_steps(self.executor.flow.checkpoint_steps(self.state))
            return self._run()

    def inject_event(self, tag: str, fields: dict[str, Any] | None = None) -> StepOutcome:
        """Dispatch a driver-supplied event."""
        with self._lock:
            self._require_idle()
            if tag.startswith("on."):
                tag = tag[3:]
            self.executor.queue_event(Event.create(tag, source="driver", fields=fields))
            return self._run()

    def provide_input(self, input_id: str, value: Any = None, indexes: list[int] | None = None) -> StepOutcome:
        """Answer a pending input; invalid answers raise InputError and keep it open."""
        with self._lock:
            self._require_running()
            self.executor.provide_input(input_id, value, indexes)
            logger.debug("Input %s answered", input_id)
            return self._run()

    def cancel_input(self, input_id: str) -> StepOutcome:
        """Cancel a pending input; the requesting action fails under its policy."""
        with self._lock:
            self._require_running()
            self.executor.cancel_input(input_id)
            logger.info("Input %s cancelled", input_id)
            return self._run()

    def expire_inputs(self, now: float | None = None) -> StepOutcome:
        """Cancel every pending input whose timeout has passed."""
        with self._lock:
            self._require_running()
            expired = self.executor.expire_inputs(now)
            for input_id in expired:
                logger.info("Input %s expired", input_id)
            return self._run()

    # ------------------------------------------------------------------
    # Snapshot / restore
    # ------------------------------------------------------------------

    def snapshot(self, viewer: int | None = None, redact: bool = False) -> GameSnapshot:
        with self._lock:
            if self.state is None:
                raise InputError(f"Session '{self.session_id}' has no state yet")
            settled = self.executor.is_idle and not self.pending_inputs
            return snapshot_state(self.state, viewer=viewer, redact=redact, settled=settled)

    @classmethod
    def restore(
        cls,
        definition: GameDefinition,
        snapshot: GameSnapshot,
        config: EngineConfig | None = None,
        session_id: str | None = None,
    ) -> Session:
        """Continue a game from a full, settled snapshot."""
        if not snapshot.settled:
            raise InputError("Snapshots taken in the middle of a resolution cannot be restored")
        if snapshot.definition_name != definition.name:
            raise InputError(
                f"Snapshot is of '{snapshot.definition_name}', not '{definition.name}'"
            )
        state = restore_state(snapshot)
        session = cls(
            definition,
            num_players=state.num_players,
            seed=state.seed,
            session_id=session_id or snapshot.game_id,
            config=config,
        )
        session.executor.load(state)
        session.status = SessionState.GAME_OVER if state.game_over else SessionState.ACTIVE
        logger.info("Session %s restored from snapshot of %s", session.session_id, snapshot.game_id)
        return session

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_running(self):
        if self.status == SessionState.HALTED:
            raise InvariantViolation(f"Session '{self.session_id}' is halted: {self.halted_reason}")
        if self.status in (SessionState.CREATED, SessionState.ENDED):
            raise InputError(f"Session '{self.session_id}' is not running")

    def _require_idle(self):
        self._require_running()
        if self.pending_inputs:
            ids = [p.input_id for p in self.pending_inputs]
            raise InputError(f"Pending input(s) must be answered first: {ids}")

    def _run(self) -> StepOutcome:
        trace_mark = len(self.executor.trace)
        failure_mark = len(self.executor.failures)
        try:
            pending = self.executor.run()
        except InvariantViolation as exc:
            self.status = SessionState.HALTED
            self.halted_reason = str(exc)
            logger.critical("Session %s halted: %s", self.session_id, exc)
            raise

        if self.is_over:
            self.status = SessionState.GAME_OVER
        elif pending:
            self.status = SessionState.WAITING_INPUT
        else:
            self.status = SessionState.ACTIVE
        return StepOutcome(
            status=self.status,
            events=self.executor.trace[trace_mark:],
            failures=self.executor.failures[failure_mark:],
            pending_inputs=pending,
            result=self.result,
        )


class SessionManager:
    """
    Manages game sessions.

    Responsibilities:
    - Create sessions from game definitions
    - Track active sessions
    - Clean up completed sessions

    No persistence - sessions are in-memory only; snapshots are the
    driver's business.
    """

    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def create_session(
        self,
        definition: GameDefinition,
        num_players: int,
        seed: int | None = None,
        player_names: list[str] | None = None,
        start: bool = True,
    ) -> Session:
        """
        Create a new game session.

        Args:
            definition: Game definition to play
            num_players: Number of seats
            seed: PRNG seed (ignored when the definition pins one)
            player_names: Optional display names
            start: Run setup and enter the initial state right away

        Returns:
            New Session
        """
        session = Session(definition, num_players, seed=seed, config=self.config, player_names=player_names)
        with self._lock:
            self._sessions[session.session_id] = session
        if start:
            session.start()
        return session

    def add_session(self, session: Session) -> Session:
        """Track an existing (e.g. restored) session."""
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    def get_session(self, session_id: str) -> Session | None:
        """Get a session by ID."""
        return self._sessions.get(session_id)

    def end_session(self, session_id: str) -> bool:
        """End a session and drop it from memory."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        if session.status != SessionState.HALTED:
            session.status = SessionState.ENDED
        logger.info("Session %s ended", session_id)
        return True

    def list_active_sessions(self) -> list[str]:
        """List IDs of active sessions."""
        return [sid for sid, session in self._sessions.items() if session.is_active()]

    def cleanup_stale_sessions(self, max_age_seconds: int = 3600, now: float | None = None) -> list[str]:
        """
        Drop finished or halted sessions older than max_age.

        Called periodically to free memory.
        """
        now = time.time() if now is None else now
        stale = [
            sid for sid, session in list(self._sessions.items())
            if now - session.created_at > max_age_seconds and not session.is_active()
        ]
        for session_id in stale:
            self.end_session(session_id)
        return stale
