"""
Session Module - Manages game sessions.

A session represents one play-through of a game:
- Created from a GameDefinition, seat count and seed
- Owns the working State Model through its executor
- Exposes the driver surface (advance, inputs, events, snapshots)
- Serializes every mutation behind one lock

Sessions are in-memory only; GameSnapshot is the save/replay contract.
"""

from .snapshot import GameSnapshot, snapshot_state, restore_state
from .manager import SessionManager, Session, SessionState, StepOutcome
from .game_loop import GameLoop, LoopState, LoopResult

__all__ = [
    "GameSnapshot",
    "snapshot_state",
    "restore_state",
    "SessionManager",
    "Session",
    "SessionState",
    "StepOutcome",
    "GameLoop",
    "LoopState",
    "LoopResult",
]
