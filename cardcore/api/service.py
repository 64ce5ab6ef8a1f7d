"""
API Service - Driver-facing layer between callers and the engine.

The service:
1. Translates requests into session calls
2. Manages sessions through the SessionManager
3. Maps engine errors onto structured error responses
4. Formats events, failures and pending inputs for drivers

This layer is transport-agnostic: it returns pydantic models and never
raises for expected driver mistakes.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable

from ..engine_core.action import FailureReport, PendingInput
from ..engine_core.errors import (
    DefinitionError,
    EngineError,
    InputError,
    InvariantViolation,
)
from ..engine_core.events import Event, to_identifier
from ..games import GAMES
from ..session import GameSnapshot, Session, SessionManager, StepOutcome
from ..spec_schema.game_definition import GameDefinition
from ..spec_schema.validation import validate_definition
from .schemas import (
    CreateSessionRequest,
    EndSessionResponse,
    ErrorCode,
    ErrorResponse,
    EventInfo,
    FailureInfo,
    InjectEventRequest,
    OptionInfo,
    PendingInputInfo,
    ProvideInputRequest,
    RestoreSessionRequest,
    ResultInfo,
    SessionListResponse,
    SessionResponse,
    SessionStatus,
    StepResponse,
)


@dataclass
class EngineService:
    """
    Main service for engine drivers.

    Usage:
        service = EngineService()

        # Create and start a session
        created = service.create_session(CreateSessionRequest(game_type="war", seed=7))

        # Drive it
        step = service.advance(created.session_id)
        step = service.provide_input(created.session_id, ProvideInputRequest(input_id="input-1", indexes=[0]))
    """
    session_manager: SessionManager = field(default_factory=SessionManager)
    games: dict[str, Callable[[], GameDefinition]] = field(default_factory=lambda: dict(GAMES))

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, request: CreateSessionRequest) -> SessionResponse | ErrorResponse:
        """Create a session and run setup up to the first stop."""
        definition = self._load_definition(request.game_type, request.definition)
        if isinstance(definition, ErrorResponse):
            return definition
        session = self.session_manager.create_session(
            definition,
            request.num_players,
            seed=request.seed,
            player_names=request.player_names,
            start=False,
        )
        try:
            outcome = session.start()
        except EngineError as exc:
            self.session_manager.end_session(session.session_id)
            return _error(exc)
        return self._session_to_response(session, outcome)

    def get_session(self, session_id: str) -> SessionResponse | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _not_found(session_id)
        return self._session_to_response(session)

    def restore_session(self, request: RestoreSessionRequest) -> SessionResponse | ErrorResponse:
        """Continue a game from a full snapshot."""
        definition = self._load_definition(request.game_type, request.definition)
        if isinstance(definition, ErrorResponse):
            return definition
        try:
            session = Session.restore(definition, request.snapshot, config=self.session_manager.config)
        except EngineError as exc:
            return _error(exc)
        self.session_manager.add_session(session)
        return self._session_to_response(session)

    def end_session(self, session_id: str) -> EndSessionResponse:
        return EndSessionResponse(
            success=self.session_manager.end_session(session_id),
            session_id=session_id,
        )

    def list_sessions(self) -> SessionListResponse:
        sessions = self.session_manager.list_active_sessions()
        return SessionListResponse(sessions=sessions, count=len(sessions))

    # ------------------------------------------------------------------
    # Driver calls
    # ------------------------------------------------------------------

    def advance(self, session_id: str) -> StepResponse | ErrorResponse:
        return self._call(session_id, lambda s: s.advance())

    def checkpoint(self, session_id: str) -> StepResponse | ErrorResponse:
        return self._call(session_id, lambda s: s.checkpoint())

    def inject_event(self, session_id: str, request: InjectEventRequest) -> StepResponse | ErrorResponse:
        return self._call(session_id, lambda s: s.inject_event(request.tag, request.fields))

    def provide_input(self, session_id: str, request: ProvideInputRequest) -> StepResponse | ErrorResponse:
        return self._call(
            session_id,
            lambda s: s.provide_input(request.input_id, request.value, request.indexes),
        )

    def cancel_input(self, session_id: str, input_id: str) -> StepResponse | ErrorResponse:
        return self._call(session_id, lambda s: s.cancel_input(input_id))

    def expire_inputs(self, session_id: str, now: float | None = None) -> StepResponse | ErrorResponse:
        return self._call(session_id, lambda s: s.expire_inputs(now))

    def get_snapshot(self, session_id: str, viewer: int | None = None) -> GameSnapshot | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _not_found(session_id)
        try:
            return session.snapshot(viewer=viewer)
        except EngineError as exc:
            return _error(exc)

    def get_trace(self, session_id: str) -> list[EventInfo] | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _not_found(session_id)
        return [EventInfo(**event) for event in session.trace]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _call(self, session_id: str, call: Callable[[Session], StepOutcome]) -> StepResponse | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _not_found(session_id)
        try:
            outcome = call(session)
        except EngineError as exc:
            return _error(exc)
        return self._step_to_response(session, outcome)

    def _load_definition(self, game_type: str | None, document: dict[str, Any] | None) -> GameDefinition | ErrorResponse:
        if document is not None:
            try:
                definition = GameDefinition.from_dict(document)
            except (KeyError, TypeError, ValueError) as exc:
                return ErrorResponse(
                    error=f"Definition could not be loaded: {exc}",
                    error_code=ErrorCode.INVALID_DEFINITION,
                )
            validation = validate_definition(definition)
            if not validation.valid:
                return ErrorResponse(
                    error="Definition failed validation",
                    error_code=ErrorCode.INVALID_DEFINITION,
                    details={"errors": validation.errors, "warnings": validation.warnings},
                )
            return definition
        factory = self.games.get(game_type or "")
        if factory is None:
            return ErrorResponse(
                error=f"Unknown game type: {game_type}",
                error_code=ErrorCode.UNKNOWN_GAME,
                details={"available": sorted(self.games)},
            )
        return factory()

    def _session_to_response(self, session: Session, outcome: StepOutcome | None = None) -> SessionResponse:
        state = session.state
        return SessionResponse(
            session_id=session.session_id,
            status=SessionStatus(session.status.value),
            game_name=session.definition.name,
            num_players=session.num_players,
            seed=state.seed if state else session.requested_seed,
            deterministic=state.deterministic if state else True,
            created_at=session.created_at,
            step=self._step_to_response(session, outcome) if outcome else None,
        )

    def _step_to_response(self, session: Session, outcome: StepOutcome) -> StepResponse:
        flow = session.state.flow if session.state else None
        result = outcome.result
        return StepResponse(
            session_id=session.session_id,
            status=SessionStatus(outcome.status.value),
            events=[_event_info(e) for e in outcome.events],
            failures=[_failure_info(f) for f in outcome.failures],
            pending_inputs=[_pending_info(p) for p in outcome.pending_inputs],
            flow_state=flow.state if flow else None,
            phase=flow.phase if flow else None,
            current_player=flow.current_player if flow else None,
            result=ResultInfo(winners=result.winners, ranking=result.ranking, reason=result.reason)
            if result else None,
        )


# =============================================================================
# Converters
# =============================================================================

def _event_info(event: Event) -> EventInfo:
    return EventInfo(**event.to_dict())


def _failure_info(report: FailureReport) -> FailureInfo:
    return FailureInfo(**report.to_dict())


def _pending_info(pending: PendingInput) -> PendingInputInfo:
    return PendingInputInfo(
        input_id=pending.input_id,
        player=pending.player,
        prompt=pending.prompt,
        options=[
            OptionInfo(index=i, value=to_identifier(option), label=str(option))
            for i, option in enumerate(pending.options)
        ],
        multiselect=pending.multiselect,
        min_choices=pending.min_choices,
        max_choices=pending.max_choices,
        optional=pending.optional,
        rule_id=pending.rule_id,
        timeout=pending.timeout,
    )


def _not_found(session_id: str) -> ErrorResponse:
    return ErrorResponse(
        error="Session not found",
        error_code=ErrorCode.SESSION_NOT_FOUND,
        details={"session_id": session_id},
    )


def _error(exc: EngineError) -> ErrorResponse:
    if isinstance(exc, InvariantViolation):
        code = ErrorCode.INVARIANT_VIOLATION
    elif isinstance(exc, DefinitionError):
        code = ErrorCode.INVALID_DEFINITION
    elif isinstance(exc, InputError):
        code = ErrorCode.INVALID_INPUT
    else:
        code = ErrorCode.ENGINE_ERROR
    details = {"error_type": type(exc).__name__}
    if isinstance(exc, DefinitionError):
        details["errors"] = list(exc.errors)
    return ErrorResponse(error=str(exc), error_code=code, details=details)
