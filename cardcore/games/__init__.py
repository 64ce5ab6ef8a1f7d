"""
Games module - Built-in game definitions.

Each game has its own subpackage that builds a GameDefinition from a
plain document tree. GAMES maps a game name to its factory.
"""

from .war import create_war_definition

GAMES = {
    "war": create_war_definition,
}

__all__ = ["GAMES", "create_war_definition"]
