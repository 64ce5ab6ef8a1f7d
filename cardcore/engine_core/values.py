"""
Value helpers shared by the selector resolver and the expression evaluator.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any

from .state import Card, PlayerState, Zone


@dataclass(frozen=True)
class RankSymbol:
    """
    A rank read from a card, tagged with the card's deck type.

    Rank symbols compare equal to each other and to bare literals by
    symbol, but never order: use rank_value for that.
    """
    symbol: Any
    deck_type: str | None = None

    def __str__(self):
        return str(self.symbol)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def symbols_match(a: Any, b: Any) -> bool:
    """Loose rank-symbol equality (10 matches "10")."""
    return a == b or str(a) == str(b)


def values_equal(a: Any, b: Any) -> bool:
    """Equality with engine identity rules."""
    if isinstance(a, RankSymbol) or isinstance(b, RankSymbol):
        left = a.symbol if isinstance(a, RankSymbol) else a
        right = b.symbol if isinstance(b, RankSymbol) else b
        return symbols_match(left, right)
    if isinstance(a, Card) or isinstance(b, Card):
        return isinstance(a, Card) and isinstance(b, Card) and a.card_id == b.card_id
    if isinstance(a, PlayerState) or isinstance(b, PlayerState):
        left = a.seat if isinstance(a, PlayerState) else a
        right = b.seat if isinstance(b, PlayerState) else b
        return left == right
    if isinstance(a, Zone) or isinstance(b, Zone):
        return isinstance(a, Zone) and isinstance(b, Zone) and a.key == b.key
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    return a == b


def truthy(value: Any) -> bool:
    if isinstance(value, Zone):
        return not value.is_empty
    return bool(value)


def as_sequence(value: Any) -> list:
    """View a zone, list or single value as a list (None is empty)."""
    if value is None:
        return []
    if isinstance(value, Zone):
        return value.ordered_cards()
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def hashable_key(value: Any) -> Any:
    """A hashable grouping key with engine identity rules."""
    if isinstance(value, RankSymbol):
        return ("rank", str(value.symbol))
    if isinstance(value, Card):
        return ("card", value.card_id)
    if isinstance(value, PlayerState):
        return ("player", value.seat)
    if isinstance(value, Zone):
        return ("zone", value.key)
    if isinstance(value, list):
        return tuple(hashable_key(v) for v in value)
    if isinstance(value, dict):
        return tuple(sorted((k, hashable_key(v)) for k, v in value.items()))
    return value


def plain_key(value: Any) -> Any:
    """JSON-friendly key for group_by results."""
    if isinstance(value, RankSymbol):
        return value.symbol
    if isinstance(value, Card):
        return value.card_id
    if isinstance(value, PlayerState):
        return value.seat
    if isinstance(value, Zone):
        return value.key
    return value
