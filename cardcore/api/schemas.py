"""
Pydantic Schemas for the driver API - request/response models.

These models define the exact contract between a driver (UI, bot
harness, replay tool) and the engine. Every response is a plain,
JSON-serializable model; cards, players and zones appear by identifier.

Error Codes:
- SESSION_NOT_FOUND: Session does not exist or has ended
- UNKNOWN_GAME: No built-in game with that name
- INVALID_DEFINITION: Definition failed to load or validate
- INVALID_INPUT: Answer, event or call not acceptable right now
- INVARIANT_VIOLATION: The session is halted
- ENGINE_ERROR: Any other engine failure
"""

from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, Field

from ..session.snapshot import GameSnapshot


# =============================================================================
# Enums
# =============================================================================

class SessionStatus(str, Enum):
    """Session status values."""
    CREATED = "created"
    ACTIVE = "active"
    WAITING_INPUT = "waiting_input"
    GAME_OVER = "game_over"
    HALTED = "halted"
    ENDED = "ended"


class ErrorCode(str, Enum):
    """Structured error codes."""
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    UNKNOWN_GAME = "UNKNOWN_GAME"
    INVALID_DEFINITION = "INVALID_DEFINITION"
    INVALID_INPUT = "INVALID_INPUT"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"
    ENGINE_ERROR = "ENGINE_ERROR"


# =============================================================================
# Shared Models
# =============================================================================

class OptionInfo(BaseModel):
    """One selectable option of a pending input."""
    index: int
    value: Any = Field(None, description="Card id, seat, zone key or plain value")
    label: str = ""


class PendingInputInfo(BaseModel):
    """An input the engine is waiting for."""
    input_id: str
    player: int
    prompt: str = ""
    options: list[OptionInfo] = Field(default_factory=list)
    multiselect: bool = False
    min_choices: int = 1
    max_choices: int = 1
    optional: bool = False
    rule_id: Optional[str] = None
    timeout: Optional[float] = Field(None, description="Seconds before the input expires")


class EventInfo(BaseModel):
    """A dispatched event."""
    sequence: int
    tag: str
    fields: dict[str, Any] = Field(default_factory=dict)
    source: Optional[str] = None


class FailureInfo(BaseModel):
    """An action failure and the policy that handled it."""
    rule_id: Optional[str] = None
    action_index: int
    action: str
    reason: str
    error_type: str
    policy: str = Field(description="continue, abort, rollback")
    degraded: bool = Field(False, description="Rollback degraded to abort")


class ResultInfo(BaseModel):
    """Terminal game result."""
    winners: list[int] = Field(default_factory=list)
    ranking: list[int] = Field(default_factory=list)
    reason: str = ""


# =============================================================================
# Request Models
# =============================================================================

class CreateSessionRequest(BaseModel):
    """Request to create and start a new game session."""
    game_type: Optional[str] = Field("war", description="Built-in game name")
    definition: Optional[dict[str, Any]] = Field(
        None, description="Merged game document; overrides game_type"
    )
    num_players: int = Field(2, ge=1, description="Number of seats")
    seed: Optional[int] = Field(None, description="Seed for reproducible games")
    player_names: Optional[list[str]] = None


class InjectEventRequest(BaseModel):
    """Request to dispatch a driver-supplied event."""
    tag: str = Field(..., description="Event tag, with or without the 'on.' prefix")
    fields: dict[str, Any] = Field(default_factory=dict)


class ProvideInputRequest(BaseModel):
    """Answer to a pending input: option value(s) or option indexes."""
    input_id: str
    value: Any = None
    indexes: Optional[list[int]] = None


class RestoreSessionRequest(BaseModel):
    """Request to continue a game from a full snapshot."""
    game_type: Optional[str] = "war"
    definition: Optional[dict[str, Any]] = None
    snapshot: GameSnapshot


# =============================================================================
# Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str = Field(..., description="Human-readable error message")
    error_code: ErrorCode = Field(..., description="Machine-readable error code")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error context")
    api_version: str = Field("v1", description="API version")


class StepResponse(BaseModel):
    """What one driver call produced."""
    session_id: str
    status: SessionStatus
    events: list[EventInfo] = Field(default_factory=list)
    failures: list[FailureInfo] = Field(default_factory=list)
    pending_inputs: list[PendingInputInfo] = Field(default_factory=list)
    flow_state: Optional[str] = None
    phase: Optional[str] = None
    current_player: Optional[int] = None
    result: Optional[ResultInfo] = None
    api_version: str = "v1"


class SessionResponse(BaseModel):
    """Response containing session information."""
    session_id: str
    status: SessionStatus
    game_name: str
    num_players: int
    seed: Optional[int] = None
    deterministic: bool = True
    created_at: float = 0.0
    step: Optional[StepResponse] = Field(None, description="Outcome of starting the session")
    api_version: str = "v1"


class SessionListResponse(BaseModel):
    """Response listing active sessions."""
    sessions: list[str]
    count: int


class EndSessionResponse(BaseModel):
    """Response after ending a session."""
    success: bool
    session_id: str


__all__ = [
    "SessionStatus",
    "ErrorCode",
    "OptionInfo",
    "PendingInputInfo",
    "EventInfo",
    "FailureInfo",
    "ResultInfo",
    "CreateSessionRequest",
    "InjectEventRequest",
    "ProvideInputRequest",
    "RestoreSessionRequest",
    "ErrorResponse",
    "StepResponse",
    "SessionResponse",
    "SessionListResponse",
    "EndSessionResponse",
    "GameSnapshot",
]
