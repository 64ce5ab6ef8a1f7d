"""
War - The reference game.

Two players flip the top card of their draw piles; the higher rank takes
both cards (and the pot of earlier ties). A player who runs out of cards
loses. Everything is declared in the definition document.
"""

from .spec import create_war_definition, war_document, RANKS

__all__ = [
    "create_war_definition",
    "war_document",
    "RANKS",
]
