"""
Selector Resolver - Evaluates rooted path strings against game state.

Grammar (informal):
    selector := func "(" selector ")" suffix | root suffix
    root     := "$" | "$player"
    suffix   := ("." name | "[" filter "]")*
    func     := top | bottom | all | count | owner | rank | rank_value

Examples:
    $.zones.deck
    $.players[current].zones.hand
    $.players[*].variables.score
    top($.players[0].zones.play_area).rank
    rank_value(top($player.zones.hand))
    $.zones.deck[by_id=ref:chosen]

"ref:<name>" tokens are replaced by the bound value's identifier before
parsing. Resolution is a pure function of (selector, state, context).
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any, Callable

from .context import EvalContext
from .errors import (
    BindingError,
    SelectorError,
    StateLookupError,
)
from .state import Card, FlowPosition, PlayerState, TeamState, Zone
from .values import RankSymbol


FUNCTIONS = ("top", "bottom", "all", "count", "owner", "rank", "rank_value")

_REF_TOKEN = re.compile(r"ref:([A-Za-z_][A-Za-z0-9_]*)")
_SEGMENT = re.compile(r"\.([A-Za-z_][A-Za-z0-9_\-]*)|\[([^\]]*)\]")
_FUNC_HEAD = re.compile(r"^([a-z_]+)\(")


class _Root:
    """The "$" view of the whole state."""


@dataclass
class _Namespace:
    """A named mapping reached through a path (zones, teams, results)."""
    label: str
    mapping: dict[str, Any]

    def get(self, name: str) -> Any:
        if name not in self.mapping:
            raise StateLookupError(f"No '{name}' in {self.label}")
        return self.mapping[name]


@dataclass
class _VariableScope:
    """Variables of one scope; computed variables evaluate on read."""
    scope: str  # global | per_player | per_team
    owner: Any
    values: dict[str, Any]


@dataclass
class _EventView:
    event: Any


class SelectorResolver:
    """
    Resolves selectors to typed values: Card, list[Card], Zone,
    PlayerState, list[PlayerState], scalars or None.
    """

    def __init__(self, rank_ordinal: Callable[[Any, EvalContext], int],
                 computed_reader: Callable[[Any, EvalContext, Any], Any]):
        # Callbacks into the expression evaluator
        self._rank_ordinal = rank_ordinal
        self._read_computed = computed_reader

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def resolve(self, selector: str, ctx: EvalContext) -> Any:
        if not isinstance(selector, str):
            raise SelectorError(f"Selector must be a string, got {selector!r}")
        text = self._substitute_refs(selector.strip(), ctx)
        value = self._resolve_text(text, ctx)
        return self._unwrap(value, selector)

    def _substitute_refs(self, text: str, ctx: EvalContext) -> str:
        def replace(match: re.Match) -> str:
            value = ctx.env.lookup(match.group(1))
            return _ref_token(value)
        return _REF_TOKEN.sub(replace, text)

    def _resolve_text(self, text: str, ctx: EvalContext) -> Any:
        head = _FUNC_HEAD.match(text)
        if head and head.group(1) in FUNCTIONS:
            name = head.group(1)
            close = _matching_paren(text, len(name))
            inner = text[len(name) + 1:close]
            rest = text[close + 1:]
            value = self._apply_function(name, self._resolve_text(inner.strip(), ctx), ctx)
            return self._walk(value, rest, ctx, text)
        if head:
            raise SelectorError(f"Unknown selector function '{head.group(1)}' in '{text}'")

        if text.startswith("$player"):
            player = ctx.env.player
            if player is None:
                raise BindingError("$player is not bound here")
            root = self._live_player(player, ctx)
            rest = text[len("$player"):]
        elif text.startswith("$"):
            root = _Root()
            rest = text[1:]
        else:
            raise SelectorError(f"Selector is not rooted at '$' or '$player': '{text}'")
        return self._walk(root, rest, ctx, text)

    def _walk(self, value: Any, rest: str, ctx: EvalContext, text: str) -> Any:
        position = 0
        while position < len(rest):
            match = _SEGMENT.match(rest, position)
            if match is None:
                raise SelectorError(f"Malformed selector near '{rest[position:]}' in '{text}'")
            position = match.end()
            if match.group(1) is not None:
                value = self._attribute(value, match.group(1), ctx)
            else:
                value = self._filter(value, match.group(2).strip(), ctx)
        return value

    def read_attribute(self, value: Any, path: str, ctx: EvalContext) -> Any:
        """Dotted attribute access on an already-resolved value (ref: card.rank)."""
        for name in path.split("."):
            value = self._attribute(value, name, ctx)
        return self._unwrap(value, path)

    def _unwrap(self, value: Any, selector: str) -> Any:
        if isinstance(value, _Root):
            raise SelectorError(f"Selector '{selector}' does not address an element")
        if isinstance(value, _Namespace):
            return dict(value.mapping)
        if isinstance(value, _VariableScope):
            return dict(value.values)
        if isinstance(value, _EventView):
            return value.event
        return value

    # ------------------------------------------------------------------
    # Attribute access
    # ------------------------------------------------------------------

    def _attribute(self, value: Any, name: str, ctx: EvalContext) -> Any:
        state = ctx.state
        if isinstance(value, list):
            return [self._attribute(item, name, ctx) for item in value]

        if isinstance(value, _Root):
            if name == "players":
                return list(state.players)
            if name == "zones":
                return _Namespace("global zones", state.zones)
            if name == "teams":
                return _Namespace("teams", state.teams)
            if name == "variables":
                return _VariableScope("global", None, state.variables)
            if name == "card":
                if ctx.card is None:
                    raise StateLookupError("$.card is only bound while filtering cards")
                return ctx.card
            if name == "event":
                if ctx.event is None:
                    raise StateLookupError("No event in this context")
                return _EventView(ctx.event)
            if name == "flow":
                return state.flow
            if name == "results":
                return _Namespace("results", state.results)
            if name == "shared_zones":
                raise SelectorError("$.shared_zones is not a valid root; use $.zones")
            raise StateLookupError(f"Unknown root attribute '{name}'")

        if isinstance(value, PlayerState):
            if name == "zones":
                return _Namespace(f"zones of player {value.seat}", value.zones)
            if name == "variables":
                return _VariableScope("per_player", value, value.variables)
            if name in ("seat", "id", "index"):
                return value.seat
            if name == "name":
                return value.name
            if name == "team":
                return state.teams.get(value.team) if value.team else None
            raise StateLookupError(f"Player has no attribute '{name}'")

        if isinstance(value, TeamState):
            if name == "zones":
                return _Namespace(f"zones of team {value.team_id}", value.zones)
            if name == "variables":
                return _VariableScope("per_team", value, value.variables)
            if name == "id":
                return value.team_id
            if name == "members":
                return [state.player(seat) for seat in value.members]
            raise StateLookupError(f"Team has no attribute '{name}'")

        if isinstance(value, _Namespace):
            return value.get(name)

        if isinstance(value, _VariableScope):
            return self._variable(value, name, ctx)

        if isinstance(value, Zone):
            if name == "cards":
                return value.ordered_cards()
            if name == "count":
                return value.count
            if name == "name":
                return value.name
            if name == "owner":
                return state.player(value.owner) if value.owner is not None else None
            if name == "of_deck":
                return value.of_deck
            if name == "type":
                return value.zone_type
            raise StateLookupError(f"Zone has no attribute '{name}'")

        if isinstance(value, Card):
            if name == "id":
                return value.card_id
            if name == "face":
                return value.face.value
            if name == "rank":
                return self.rank_of(value, ctx)
            if name == "deck":
                return value.deck
            if name == "properties":
                return dict(value.properties)
            if name in value.properties:
                return value.properties[name]
            raise StateLookupError(f"Card '{value.card_id}' has no property '{name}'")

        if isinstance(value, _EventView):
            return self._event_field(value.event, name, ctx)

        if isinstance(value, FlowPosition):
            if name == "current_player":
                return state.player(value.current_player)
            if name == "direction":
                return value.direction_name
            if name in ("state", "phase", "turn_index", "phase_index"):
                return getattr(value, name)
            raise StateLookupError(f"Flow has no attribute '{name}'")

        if isinstance(value, RankSymbol):
            if name == "symbol":
                return value.symbol
            raise StateLookupError(f"Rank has no attribute '{name}'")

        if isinstance(value, dict):
            if name not in value:
                raise StateLookupError(f"No key '{name}'")
            return value[name]

        if value is None:
            raise StateLookupError(f"Cannot read '{name}' of nothing")
        raise StateLookupError(f"Cannot read '{name}' of {type(value).__name__}")

    def _variable(self, scope: _VariableScope, name: str, ctx: EvalContext) -> Any:
        definition = ctx.definition.variable(name)
        if definition is not None and definition.is_computed:
            return self._read_computed(definition, ctx, scope.owner)
        if name not in scope.values:
            raise StateLookupError(f"Unknown {scope.scope} variable '{name}'")
        return scope.values[name]

    def _event_field(self, event, name: str, ctx: EvalContext) -> Any:
        state = ctx.state
        if name == "tag":
            return event.tag
        if name not in event.fields:
            raise StateLookupError(f"Event '{event.tag}' has no field '{name}'")
        raw = event.fields[name]
        if raw is None:
            return None
        if name == "card":
            return state.card(raw)
        if name == "player":
            return state.player(raw)
        if name in ("zone", "from", "to"):
            return state.zone(raw)
        return raw

    # ------------------------------------------------------------------
    # Bracket filters
    # ------------------------------------------------------------------

    def _filter(self, value: Any, text: str, ctx: EvalContext) -> Any:
        if isinstance(value, Zone):
            return self._filter_cards(value.ordered_cards(), text, value.key)
        if isinstance(value, _Namespace):
            return value.get(text)
        if isinstance(value, list):
            if value and all(isinstance(v, PlayerState) for v in value):
                return self._filter_players(value, text, ctx)
            if all(isinstance(v, Card) for v in value):
                return self._filter_cards(value, text, "card list")
            if text == "*":
                return value
            return self._index(value, text)
        raise SelectorError(f"Cannot apply filter [{text}] to {type(value).__name__}")

    def _filter_players(self, players: list[PlayerState], text: str, ctx: EvalContext) -> Any:
        state = ctx.state
        if text == "*":
            return players
        if text == "current":
            return self._find_seat(players, ctx.current_seat)
        if text == "opponent":
            current = ctx.current_seat
            others = [p for p in players if p.seat != current]
            return others[0] if len(others) == 1 else others
        if text == "$player":
            player = ctx.env.player
            if player is None:
                raise BindingError("$player is not bound here")
            return self._find_seat(players, _seat_of(player))
        if text.startswith("by_id="):
            return self._find_seat(players, _parse_int(text[6:], text))
        if text.startswith("team="):
            team = text[5:]
            if team not in state.teams:
                raise StateLookupError(f"No team '{team}'")
            return [p for p in players if p.team == team]
        return self._index(players, text)

    def _filter_cards(self, cards: list[Card], text: str, label: str) -> Any:
        if text == "*":
            return cards
        if text.startswith("by_id="):
            card_id = text[6:]
            for card in cards:
                if card.card_id == card_id:
                    return card
            raise StateLookupError(f"No card '{card_id}' in {label}")
        return self._index(cards, text)

    def _index(self, items: list, text: str) -> Any:
        index = _parse_int(text, text)
        try:
            return items[index]
        except IndexError:
            raise StateLookupError(f"Index {index} out of range ({len(items)} items)") from None

    def _find_seat(self, players: list[PlayerState], seat: int) -> PlayerState:
        for player in players:
            if player.seat == seat:
                return player
        raise StateLookupError(f"No player at seat {seat}")

    # ------------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------------

    def _apply_function(self, name: str, value: Any, ctx: EvalContext) -> Any:
        if name == "top":
            if isinstance(value, Zone):
                return value.top_card
            items = _cards(value, name)
            return items[0] if items else None
        if name == "bottom":
            if isinstance(value, Zone):
                return value.bottom_card
            items = _cards(value, name)
            return items[-1] if items else None
        if name == "all":
            if isinstance(value, Zone):
                return value.ordered_cards()
            return _cards(value, name)
        if name == "count":
            if value is None:
                return 0
            if isinstance(value, Zone):
                return value.count
            if isinstance(value, list):
                return len(value)
            raise StateLookupError(f"count() needs a zone or list, got {type(value).__name__}")
        if name == "owner":
            return self.owner_of(value, ctx)
        if name == "rank":
            if isinstance(value, list):
                return [self.rank_of(c, ctx) for c in value]
            return self.rank_of(value, ctx)
        if name == "rank_value":
            if isinstance(value, list):
                return [self._rank_ordinal(self.rank_of(c, ctx) if isinstance(c, Card) else c, ctx)
                        for c in value]
            if isinstance(value, Card):
                value = self.rank_of(value, ctx)
            return self._rank_ordinal(value, ctx)
        raise SelectorError(f"Unknown selector function '{name}'")

    def owner_of(self, value: Any, ctx: EvalContext) -> int:
        """Seat controlling a card's current zone (or a zone)."""
        if isinstance(value, Card):
            zone = ctx.state.zone_of(value)
        elif isinstance(value, Zone):
            zone = value
        else:
            raise StateLookupError(f"owner() needs a card or zone, got {type(value).__name__}")
        if zone.owner is None:
            raise StateLookupError(f"Zone '{zone.key}' has no owning player")
        return zone.owner

    def rank_of(self, card: Any, ctx: EvalContext) -> RankSymbol:
        if not isinstance(card, Card):
            raise StateLookupError(f"rank() needs a card, got {type(card).__name__}")
        if "rank" not in card.properties:
            raise StateLookupError(f"Card '{card.card_id}' has no rank")
        return RankSymbol(card.properties["rank"], self.deck_type_of(card, ctx))

    def deck_type_of(self, card: Card, ctx: EvalContext) -> str:
        """A card's deck type, read through its zone's of_deck when set."""
        key = ctx.state.locations.get(card.card_id)
        if key is not None:
            zone = ctx.state.zone(key)
            if zone.of_deck:
                deck_type = ctx.definition.deck_type_for(zone.of_deck)
                if deck_type is not None:
                    return deck_type.name
        return card.deck_type

    def _live_player(self, player: Any, ctx: EvalContext) -> PlayerState:
        return ctx.state.player(_seat_of(player))


def _seat_of(player: Any) -> int:
    if isinstance(player, PlayerState):
        return player.seat
    if isinstance(player, int) and not isinstance(player, bool):
        return player
    raise BindingError(f"Expected a player binding, got {player!r}")


def _cards(value: Any, func: str) -> list:
    if value is None:
        return []
    if isinstance(value, Card):
        return [value]
    if isinstance(value, list):
        return value
    raise StateLookupError(f"{func}() needs a zone or card list, got {type(value).__name__}")


def _parse_int(text: str, original: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise SelectorError(f"Invalid filter [{original}]") from None


def _matching_paren(text: str, open_index: int) -> int:
    depth = 0
    for i in range(open_index, len(text)):
        if text[i] == "(":
            depth += 1
        elif text[i] == ")":
            depth -= 1
            if depth == 0:
                return i
    raise SelectorError(f"Unbalanced parentheses in '{text}'")


def _ref_token(value: Any) -> str:
    if isinstance(value, Card):
        return value.card_id
    if isinstance(value, PlayerState):
        return str(value.seat)
    if isinstance(value, Zone):
        return value.name
    if isinstance(value, TeamState):
        return value.team_id
    if isinstance(value, RankSymbol):
        return str(value.symbol)
    if isinstance(value, (list, dict)) or value is None:
        raise SelectorError(f"Cannot substitute {value!r} into a selector")
    return str(value)
