"""
Bindings and evaluation context.

Environment is the lexical scope of one rule effect: a shared store_as
table for the whole effect plus a chain of loop-local bindings
("$player", FOR_EACH item names). A simultaneous loop also pins a
read-only snapshot that every read inside the body uses.

EvalContext bundles everything a selector or expression needs.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, TYPE_CHECKING

from .errors import BindingError
from .state import Card, GameState

if TYPE_CHECKING:
    from .events import Event
    from ..spec_schema.game_definition import GameDefinition


PLAYER_BINDING = "$player"


@dataclass(frozen=True)
class Environment:
    """Immutable chain of local bindings over a shared store_as table."""
    table: dict[str, Any] = field(default_factory=dict)
    local: dict[str, Any] = field(default_factory=dict)
    parent: Environment | None = None
    read_state: GameState | None = None

    @classmethod
    def root(cls, **bindings) -> Environment:
        return cls(table={}, local=dict(bindings))

    def bind(self, name: str, value: Any) -> Environment:
        """A child scope with one extra local binding."""
        return Environment(table=self.table, local={name: value}, parent=self, read_state=self.read_state)

    def with_read_state(self, state: GameState | None) -> Environment:
        return replace(self, read_state=state)

    def store(self, name: str, value: Any):
        """store_as: visible to every later action of the same effect."""
        self.table[name] = value

    def has(self, name: str) -> bool:
        env = self
        while env is not None:
            if name in env.local:
                return True
            env = env.parent
        return name in self.table

    def lookup(self, name: str) -> Any:
        env = self
        while env is not None:
            if name in env.local:
                return env.local[name]
            env = env.parent
        if name in self.table:
            return self.table[name]
        raise BindingError(f"Unknown binding '{name}'")

    @property
    def player(self) -> Any:
        return self.lookup(PLAYER_BINDING) if self.has(PLAYER_BINDING) else None


@dataclass(frozen=True)
class EvalContext:
    """Inputs to selector resolution and expression evaluation."""
    state: GameState
    definition: GameDefinition
    env: Environment = field(default_factory=Environment.root)
    event: Event | None = None
    card: Card | None = None
    player: int | None = None  # current-player override
    root_expr: Any = None  # top of the expression being evaluated (deck inference)
    computing: frozenset = frozenset()  # computed variables under evaluation

    @property
    def current_seat(self) -> int:
        if self.player is not None:
            return self.player
        return self.state.flow.current_player

    def with_card(self, card: Card | None) -> EvalContext:
        return replace(self, card=card)

    def with_item(self, item: Any, name: str = "item") -> EvalContext:
        card = item if isinstance(item, Card) else self.card
        return replace(self, env=self.env.bind(name, item), card=card)

    def with_env(self, env: Environment) -> EvalContext:
        return replace(self, env=env)
