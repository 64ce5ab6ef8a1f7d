"""
Game State - In-memory State Model for one playthrough.

Design principles:
- Single mutation gateway: zone membership only changes through
  GameState.move_card / reorder_zone / shuffle_zone, which enforce the
  one-card-one-zone invariant.
- Cheap snapshots: clone() gives an independent copy for dry runs and
  rollback checkpoints.
- Serializable: every field maps onto the snapshot schema.

Zones store their cards top-first (index 0 is the top card). A zone's
ordering policy only decides where a card lands by default.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Iterator
from copy import deepcopy
from enum import Enum
import random

from .errors import InvariantViolation, StateLookupError


class Face(Enum):
    """Card face orientation."""
    UP = "up"
    DOWN = "down"


class Ordering(Enum):
    """Zone ordering policy."""
    LIFO = "lifo"
    FIFO = "fifo"
    UNORDERED = "unordered"
    SHUFFLED = "shuffled"


class Visibility(Enum):
    """What a viewer may observe of a zone."""
    ALL = "all"
    COUNT_ONLY = "count_only"
    HIDDEN = "hidden"
    TOP_CARD_ONLY = "top_card_only"


@dataclass(eq=False)
class Card:
    """
    A card instance.

    card_id is unique for the session and stable across zone moves.
    deck_type is the back-reference used for rank resolution.
    """
    card_id: str
    properties: dict[str, Any]
    deck: str
    deck_type: str
    face: Face = Face.DOWN

    def __hash__(self):
        return hash(self.card_id)

    def __eq__(self, other):
        if not isinstance(other, Card):
            return False
        return self.card_id == other.card_id

    def __repr__(self):
        return f"Card({self.card_id!r}, {self.properties!r})"

    def get(self, name: str, default: Any = None) -> Any:
        return self.properties.get(name, default)


@dataclass
class Zone:
    """
    A container of cards.

    key is the unique address of the zone inside the state:
    "zones.<name>", "players.<seat>.<name>" or "teams.<team>.<name>".
    """
    key: str
    name: str
    zone_type: str
    ordering: Ordering = Ordering.LIFO
    visibility: dict[str, str] = field(default_factory=dict)
    default_face: Face = Face.UP
    allows_reorder: bool = False
    of_deck: str | None = None
    scope: str = "global"  # global | player | team
    owner: int | None = None  # seat for per-player zones
    team: str | None = None
    cards: list[Card] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.cards)

    @property
    def is_empty(self) -> bool:
        return len(self.cards) == 0

    @property
    def is_per_player(self) -> bool:
        return self.scope == "player"

    @property
    def top_card(self) -> Card | None:
        return self.cards[0] if self.cards else None

    @property
    def bottom_card(self) -> Card | None:
        return self.cards[-1] if self.cards else None

    def ordered_cards(self) -> list[Card]:
        """Cards top-first."""
        return list(self.cards)

    def index_of(self, card_id: str) -> int:
        for i, card in enumerate(self.cards):
            if card.card_id == card_id:
                return i
        return -1

    def contains(self, card_id: str) -> bool:
        return self.index_of(card_id) >= 0

    def _insert(self, card: Card, position: str | None = None):
        if position is None:
            position = "bottom" if self.ordering == Ordering.FIFO else "top"
        if position == "top":
            self.cards.insert(0, card)
        elif position == "bottom":
            self.cards.append(card)
        else:
            raise ValueError(f"Unknown insert position: {position}")

    def visibility_for(self, viewer: int | None) -> Visibility:
        """Zone policy for a viewer (owner / others / all)."""
        rules = self.visibility or {}
        if viewer is not None and self.owner is not None and viewer == self.owner:
            raw = rules.get("owner", rules.get("all", "all"))
        elif viewer is not None:
            raw = rules.get("others", rules.get("all", "all"))
        else:
            raw = rules.get("all", "all")
        return Visibility(raw)


@dataclass
class PlayerState:
    """A seat at the table with its variables and per-player zones."""
    seat: int
    name: str
    team: str | None = None
    variables: dict[str, Any] = field(default_factory=dict)
    zones: dict[str, Zone] = field(default_factory=dict)

    @property
    def player_id(self) -> int:
        return self.seat

    def __repr__(self):
        return f"PlayerState(seat={self.seat}, name={self.name!r})"


@dataclass
class TeamState:
    """A team with shared variables and zones."""
    team_id: str
    members: list[int] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)
    zones: dict[str, Zone] = field(default_factory=dict)


@dataclass
class FlowPosition:
    """Where the game is in its state/phase machine."""
    state: str | None = None
    phase: str | None = None
    phase_index: int = 0
    current_player: int = 0
    direction: int = 1  # 1 clockwise, -1 counterclockwise
    order_mode: str = "sequential"
    turn_index: int = 0
    phase_serial: int = 0  # bumped on every phase entry (once_per phase budgets)
    live_phases: dict[str, list[str]] = field(default_factory=dict)
    skip_credits: dict[int, int] = field(default_factory=dict)
    extra_turns: list[int] = field(default_factory=list)

    @property
    def direction_name(self) -> str:
        return "clockwise" if self.direction >= 0 else "counterclockwise"


@dataclass
class GameResult:
    """Terminal result of a game."""
    winners: list[int] = field(default_factory=list)
    ranking: list[int] = field(default_factory=list)
    reason: str = ""


@dataclass
class GameState:
    """
    Complete game state at a point in time.

    This is the canonical state that the engine operates on.
    All mutations go through the Action Executor.
    """
    game_id: str
    definition_name: str
    players: list[PlayerState] = field(default_factory=list)
    zones: dict[str, Zone] = field(default_factory=dict)
    teams: dict[str, TeamState] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)
    cards: dict[str, Card] = field(default_factory=dict)
    locations: dict[str, str] = field(default_factory=dict)
    flow: FlowPosition = field(default_factory=FlowPosition)

    # Visibility metadata
    revealed: set[str] = field(default_factory=set)
    grants: dict[str, list[int]] = field(default_factory=dict)  # LOOK
    peeks: dict[str, list[int]] = field(default_factory=dict)  # PEEK

    # Rule bookkeeping
    rule_usage: dict[str, dict[str, list]] = field(default_factory=dict)
    results: dict[str, Any] = field(default_factory=dict)
    result: GameResult | None = None

    # Session PRNG (advanced only by executor actions and setup)
    seed: int = 0
    deterministic: bool = True
    rng: random.Random = field(default_factory=random.Random)

    @property
    def game_over(self) -> bool:
        return self.result is not None

    @property
    def num_players(self) -> int:
        return len(self.players)

    @property
    def current_player(self) -> PlayerState:
        return self.players[self.flow.current_player]

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def player(self, seat: int) -> PlayerState:
        if isinstance(seat, bool) or not isinstance(seat, int):
            raise StateLookupError(f"Player seat must be an int, got {seat!r}")
        if seat < 0 or seat >= len(self.players):
            raise StateLookupError(f"No player at seat {seat}")
        return self.players[seat]

    def zone(self, key: str) -> Zone:
        """Look up a zone by its key."""
        parts = key.split(".")
        try:
            if parts[0] == "zones" and len(parts) == 2:
                return self.zones[parts[1]]
            if parts[0] == "players" and len(parts) == 3:
                return self.player(int(parts[1])).zones[parts[2]]
            if parts[0] == "teams" and len(parts) == 3:
                return self.teams[parts[1]].zones[parts[2]]
        except (KeyError, ValueError):
            pass
        raise StateLookupError(f"No zone with key '{key}'")

    def all_zones(self) -> Iterator[Zone]:
        """Every zone, in a fixed order: global, per-player by seat, per-team."""
        yield from self.zones.values()
        for player in self.players:
            yield from player.zones.values()
        for team in self.teams.values():
            yield from team.zones.values()

    def card(self, card_id: str) -> Card:
        try:
            return self.cards[card_id]
        except KeyError:
            raise StateLookupError(f"No card with id '{card_id}'") from None

    def zone_of(self, card: Card | str) -> Zone:
        """The zone currently holding a card."""
        card_id = card if isinstance(card, str) else card.card_id
        key = self.locations.get(card_id)
        if key is None:
            raise StateLookupError(f"Card '{card_id}' is not in any zone")
        return self.zone(key)

    def team_of(self, seat: int) -> TeamState | None:
        team_id = self.player(seat).team
        return self.teams.get(team_id) if team_id else None

    # ------------------------------------------------------------------
    # Mutation gateway
    # ------------------------------------------------------------------

    def place_card(self, card: Card, zone: Zone, position: str | None = None):
        """Register a new card into a zone (setup only)."""
        if card.card_id in self.cards:
            raise InvariantViolation(f"Card '{card.card_id}' already exists")
        target = self.zone(zone.key)
        self.cards[card.card_id] = card
        target._insert(card, position or "bottom")
        self.locations[card.card_id] = target.key

    def move_card(
        self,
        card: Card | str,
        destination: Zone,
        position: str | None = None,
        face: Face | None = None,
    ) -> tuple[Zone, Zone]:
        """
        Transactional remove-from-source + insert-into-destination.

        Returns (source zone, destination zone).
        """
        card_id = card if isinstance(card, str) else card.card_id
        live = self.card(card_id)
        source_key = self.locations.get(card_id)
        if source_key is None:
            raise InvariantViolation(f"Card '{card_id}' is orphaned")
        source = self.zone(source_key)
        target = self.zone(destination.key)

        index = source.index_of(card_id)
        if index < 0:
            raise InvariantViolation(
                f"Card '{card_id}' indexed in '{source_key}' but not present there"
            )
        if target is not source and target.contains(card_id):
            raise InvariantViolation(f"Card '{card_id}' would be in two zones")

        source.cards.pop(index)
        target._insert(live, position)
        self.locations[card_id] = target.key
        live.face = face if face is not None else target.default_face
        self._clear_visibility(card_id)
        return source, target

    def shuffle_zone(self, zone: Zone):
        target = self.zone(zone.key)
        self.rng.shuffle(target.cards)

    def reorder_zone(self, zone: Zone, new_order: list[Card]):
        """Replace a zone's order with a permutation of its own cards."""
        target = self.zone(zone.key)
        old_ids = sorted(c.card_id for c in target.cards)
        new_ids = sorted(c.card_id for c in new_order)
        if old_ids != new_ids:
            raise InvariantViolation(f"Reorder of '{zone.key}' is not a permutation")
        target.cards = [self.cards[c.card_id] for c in new_order]

    def set_face(self, card: Card | str, face: Face):
        card_id = card if isinstance(card, str) else card.card_id
        self.card(card_id).face = face

    def reveal(self, card: Card | str):
        card_id = card if isinstance(card, str) else card.card_id
        self.card(card_id)
        self.revealed.add(card_id)

    def conceal(self, card: Card | str):
        card_id = card if isinstance(card, str) else card.card_id
        self._clear_visibility(card_id)
        self.card(card_id).face = Face.DOWN

    def grant_view(self, card: Card | str, viewers: list[int], scoped: bool = False):
        """LOOK (session-scoped) or PEEK (effect-scoped) visibility."""
        card_id = card if isinstance(card, str) else card.card_id
        self.card(card_id)
        table = self.peeks if scoped else self.grants
        current = table.setdefault(card_id, [])
        for viewer in viewers:
            if viewer not in current:
                current.append(viewer)

    def _clear_visibility(self, card_id: str):
        self.revealed.discard(card_id)
        self.grants.pop(card_id, None)
        self.peeks.pop(card_id, None)

    def is_visible(self, card: Card, viewer: int | None) -> bool:
        """Whether a viewer may observe a card's identity."""
        if card.card_id in self.revealed:
            return True
        if viewer is not None and (
            viewer in self.grants.get(card.card_id, ())
            or viewer in self.peeks.get(card.card_id, ())
        ):
            return True
        zone = self.zone_of(card)
        policy = zone.visibility_for(viewer)
        if policy == Visibility.ALL:
            allowed = True
        elif policy == Visibility.TOP_CARD_ONLY:
            allowed = zone.top_card is not None and zone.top_card.card_id == card.card_id
        else:
            allowed = False
        if not allowed:
            return False
        is_owner = viewer is not None and zone.owner == viewer
        return card.face == Face.UP or is_owner

    def check_invariants(self):
        """Every card in exactly one zone, and the location index agrees."""
        seen: dict[str, str] = {}
        for zone in self.all_zones():
            for card in zone.cards:
                if card.card_id in seen:
                    raise InvariantViolation(
                        f"Card '{card.card_id}' in both '{seen[card.card_id]}' and '{zone.key}'"
                    )
                seen[card.card_id] = zone.key
                if self.cards.get(card.card_id) is not card:
                    raise InvariantViolation(f"Card '{card.card_id}' is not the registered instance")
        if set(seen) != set(self.cards):
            missing = sorted(set(self.cards) - set(seen))
            raise InvariantViolation(f"Cards not in any zone: {missing}")
        for card_id, key in seen.items():
            if self.locations.get(card_id) != key:
                raise InvariantViolation(f"Location index stale for '{card_id}'")

    def clone(self) -> GameState:
        """Deep copy the state (dry runs, rollback checkpoints)."""
        return deepcopy(self)
