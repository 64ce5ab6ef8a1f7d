"""
Events - Notifications raised by actions, the flow controller and drivers.

Event fields hold identifiers only (card ids, seats, zone keys), so an
event stays valid across rollback and snapshot/restore. Selectors under
$.event resolve them back to live objects.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any

from .state import Card, PlayerState, Zone
from .values import RankSymbol


class EventTag:
    """Built-in event tags."""
    STATE_ENTER = "state.enter"
    STATE_EXIT = "state.exit"
    PHASE_ENTER = "phase.enter"
    PHASE_EXIT = "phase.exit"
    TURN_BEGIN = "turn.begin"
    TURN_END = "turn.end"
    MOVE = "move"
    MOVE_DRAW = "move.draw"
    MOVE_DEAL = "move.deal"
    MOVE_MILL = "move.mill"
    SHUFFLE = "shuffle"
    REVEAL = "reveal"
    CONCEAL = "conceal"
    FLIP = "flip"
    VARIABLE_SET = "variable.set"
    GAME_END = "game.end"


@dataclass
class Event:
    """A single dispatched (or queued) event."""
    tag: str
    fields: dict[str, Any] = field(default_factory=dict)
    default_effect: list[dict[str, Any]] = field(default_factory=list)
    source: str | None = None
    sequence: int = -1

    @classmethod
    def create(cls, tag: str, source: str | None = None, default_effect=None,
               fields: dict[str, Any] | None = None, **values) -> Event:
        """Build an event, normalizing live objects in fields to identifiers."""
        merged = dict(fields or {})
        merged.update(values)
        return cls(
            tag=tag,
            fields={k: to_identifier(v) for k, v in merged.items()},
            default_effect=list(default_effect or []),
            source=source,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "tag": self.tag,
            "fields": dict(self.fields),
            "source": self.source,
        }


def to_identifier(value: Any) -> Any:
    """Replace cards, players, zones and rank symbols by their identifiers."""
    if isinstance(value, Card):
        return value.card_id
    if isinstance(value, PlayerState):
        return value.seat
    if isinstance(value, Zone):
        return value.key
    if isinstance(value, RankSymbol):
        return value.symbol
    if isinstance(value, (list, tuple)):
        return [to_identifier(v) for v in value]
    if isinstance(value, dict):
        return {k: to_identifier(v) for k, v in value.items()}
    return value
