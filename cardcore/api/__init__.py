"""
API Module - Driver interface.

Exposes the engine to drivers (UIs, bot harnesses, replay tools):
1. Create sessions from built-in games or merged definition documents
2. Advance the flow and dispatch injected events
3. Answer or cancel pending inputs
4. Take and restore snapshots

There is no network transport here; callers embed EngineService.
"""

from .schemas import (
    # Requests
    CreateSessionRequest,
    InjectEventRequest,
    ProvideInputRequest,
    RestoreSessionRequest,
    # Responses
    StepResponse,
    SessionResponse,
    SessionListResponse,
    EndSessionResponse,
    ErrorResponse,
    # Shared
    PendingInputInfo,
    OptionInfo,
    EventInfo,
    FailureInfo,
    ResultInfo,
    GameSnapshot,
    # Enums
    SessionStatus,
    ErrorCode,
)
from .service import EngineService

__all__ = [
    # Requests
    "CreateSessionRequest",
    "InjectEventRequest",
    "ProvideInputRequest",
    "RestoreSessionRequest",
    # Responses
    "StepResponse",
    "SessionResponse",
    "SessionListResponse",
    "EndSessionResponse",
    "ErrorResponse",
    # Shared
    "PendingInputInfo",
    "OptionInfo",
    "EventInfo",
    "FailureInfo",
    "ResultInfo",
    "GameSnapshot",
    # Enums
    "SessionStatus",
    "ErrorCode",
    # Service
    "EngineService",
]
