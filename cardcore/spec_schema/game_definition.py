"""
Game Definition - Immutable, in-memory form of a merged game document.

The definition is built once per session from an already-merged dict tree
(meta, components, setup, flow, rules) and never mutated during play.
Actions and expressions are kept as raw dict trees; the executor and the
evaluator interpret them.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any
from copy import deepcopy

from .effect_dsl import OnFailure, Timing, parse_once_per


STANDARD_SUITS = ["hearts", "diamonds", "clubs", "spades"]


@dataclass
class DeckType:
    """A deck type: how its cards are composed and how ranks order."""
    name: str
    composition: list[dict[str, Any]] = field(default_factory=list)
    rank_hierarchy: list[Any] = field(default_factory=list)

    def build_card_properties(self) -> list[dict[str, Any]]:
        """Expand composition entries into one property dict per card."""
        cards: list[dict[str, Any]] = []
        for entry in self.composition:
            kind = entry.get("type", "card")
            if kind == "template":
                template = entry.get("template")
                if template != "standard_suits":
                    raise ValueError(f"Unknown composition template: {template}")
                suits = entry.get("suits", STANDARD_SUITS)
                values = entry.get("values") or list(self.rank_hierarchy)
                for suit in suits:
                    for rank in values:
                        cards.append({"rank": rank, "suit": suit})
            elif kind == "cards":
                for card in entry.get("cards", []):
                    props = {k: v for k, v in card.items() if k != "count"}
                    for _ in range(int(card.get("count", 1))):
                        cards.append(dict(props))
            elif kind == "card":
                for _ in range(int(entry.get("count", 1))):
                    cards.append(dict(entry.get("properties", {})))
            else:
                raise ValueError(f"Unknown composition entry type: {kind}")
        return cards


@dataclass
class ZoneType:
    """Ordering, visibility and face policy shared by zones of a type."""
    name: str
    ordering: str = "lifo"
    visibility: dict[str, str] = field(default_factory=lambda: {"all": "all"})
    default_face: str = "up"
    allows_reorder: bool = False


@dataclass
class DeckInstance:
    """A deck instance of a deck type, optionally bound to a starting zone."""
    name: str
    deck_type: str
    zone: str | None = None


@dataclass
class ZoneDefinition:
    """A declared zone (global, one per player, or one per team)."""
    name: str
    zone_type: str
    of_deck: str | None = None
    owner_scope: str = "global"  # global | player | team


@dataclass
class VariableDefinition:
    """A declared variable, either stored or computed on read."""
    name: str
    scope: str = "global"  # global | per_player | per_team
    initial_value: Any = None
    computed: Any = None

    @property
    def is_computed(self) -> bool:
        return self.computed is not None


@dataclass
class PhaseDefinition:
    name: str
    actions: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class TransitionDefinition:
    """A guarded edge of the flow graph."""
    transition_id: str
    to_state: str
    from_states: list[str] = field(default_factory=lambda: ["*"])
    condition: Any = None
    priority: int = 0
    seat: int | None = None
    position: int = 0  # declaration index within its list

    def applies_from(self, state: str | None) -> bool:
        return "*" in self.from_states or state in self.from_states


@dataclass
class StateDefinition:
    """A flow state: ordered phases, on_enter actions, local transitions."""
    name: str
    phases: list[PhaseDefinition] = field(default_factory=list)
    loop: bool = True
    on_enter: list[dict[str, Any]] = field(default_factory=list)
    transitions: list[TransitionDefinition] = field(default_factory=list)

    def phase(self, name: str) -> PhaseDefinition | None:
        for phase in self.phases:
            if phase.name == name:
                return phase
        return None


@dataclass
class WinCondition:
    """Evaluator returning winner(s); optional condition gates evaluation."""
    evaluator: Any
    condition: Any = None
    reason: str = "win_condition"


@dataclass
class PlayerOrder:
    direction: str = "clockwise"
    first: int = 0
    mode: str = "sequential"


@dataclass
class FlowDefinition:
    initial_state: str
    states: dict[str, StateDefinition] = field(default_factory=dict)
    transitions: list[TransitionDefinition] = field(default_factory=list)
    win_condition: WinCondition | None = None
    player_order: PlayerOrder = field(default_factory=PlayerOrder)


@dataclass
class Trigger:
    """
    Event pattern of a rule.

    "on.move" matches the tag "move" and every "move.*" sub-kind.
    Extra filters compare event fields for equality.
    """
    tag: str
    filters: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, raw: Any) -> Trigger:
        if isinstance(raw, str):
            return cls(tag=_strip_on(raw))
        if isinstance(raw, dict) and "on" in raw:
            filters = {k: v for k, v in raw.items() if k != "on"}
            return cls(tag=_strip_on(raw["on"]), filters=filters)
        raise ValueError(f"Invalid trigger: {raw!r}")

    def matches(self, tag: str, fields: dict[str, Any]) -> bool:
        if tag != self.tag and not tag.startswith(self.tag + "."):
            return False
        for name, expected in self.filters.items():
            if fields.get(name) != expected:
                return False
        return True


def _strip_on(raw: str) -> str:
    return raw[3:] if raw.startswith("on.") else raw


@dataclass
class RuleDefinition:
    """A trigger-condition-effect rule."""
    rule_id: str
    trigger: Trigger
    effect: list[dict[str, Any]] = field(default_factory=list)
    timing: Timing = Timing.POST
    priority: int = 0
    once_per: dict[str, int] = field(default_factory=dict)
    enabled_when: Any = None
    condition: Any = None
    require_condition: bool = False
    on_failure: OnFailure = OnFailure.ABORT
    store_as: str | None = None
    declaration_index: int = 0


@dataclass
class GameDefinition:
    """
    Complete, immutable game definition.

    Build with GameDefinition.from_dict(document).
    """
    name: str
    version: str = "1.0"
    min_players: int = 1
    max_players: int = 8
    teams: dict[str, list[int]] = field(default_factory=dict)
    rng_deterministic: bool = True
    rng_seed: int | None = None
    deck_types: dict[str, DeckType] = field(default_factory=dict)
    zone_types: dict[str, ZoneType] = field(default_factory=dict)
    decks: dict[str, DeckInstance] = field(default_factory=dict)
    zones: list[ZoneDefinition] = field(default_factory=list)
    variables: list[VariableDefinition] = field(default_factory=list)
    setup: list[dict[str, Any]] = field(default_factory=list)
    flow: FlowDefinition | None = None
    rules: list[RuleDefinition] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def deck_type_for(self, name: str) -> DeckType | None:
        """Resolve a deck instance name or a deck type name to its DeckType."""
        if name in self.decks:
            return self.deck_types.get(self.decks[name].deck_type)
        return self.deck_types.get(name)

    def zone_definition(self, name: str) -> ZoneDefinition | None:
        for zone in self.zones:
            if zone.name == name:
                return zone
        return None

    def variable(self, name: str) -> VariableDefinition | None:
        for var in self.variables:
            if var.name == name:
                return var
        return None

    def state(self, name: str) -> StateDefinition | None:
        if self.flow is None:
            return None
        return self.flow.states.get(name)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GameDefinition:
        """Build a definition from a merged document tree."""
        meta = data.get("meta", {})
        players = meta.get("players", {})
        rng = meta.get("rng", {})
        components = data.get("components", {})
        types = components.get("component_types", {})

        deck_types = {
            name: DeckType(
                name=name,
                composition=list(body.get("composition", [])),
                rank_hierarchy=list(body.get("rank_hierarchy", [])),
            )
            for name, body in types.get("deck_types", {}).items()
        }
        zone_types = {
            name: ZoneType(
                name=name,
                ordering=body.get("ordering", "lifo"),
                visibility=dict(body.get("visibility", {"all": "all"})),
                default_face=body.get("default_face", "up"),
                allows_reorder=bool(body.get("allows_reorder", False)),
            )
            for name, body in types.get("zone_types", {}).items()
        }
        decks = {
            name: DeckInstance(name=name, deck_type=body["type"], zone=body.get("zone"))
            for name, body in components.get("decks", {}).items()
        }
        zones = [_parse_zone(z) for z in components.get("zones", [])]
        variables = [_parse_variable(v) for v in components.get("variables", [])]

        rules = [
            _parse_rule(raw, index) for index, raw in enumerate(data.get("rules", []))
        ]

        return cls(
            name=meta.get("name", "unnamed"),
            version=str(meta.get("version", "1.0")),
            min_players=int(players.get("min", 1)),
            max_players=int(players.get("max", 8)),
            teams={k: list(v) for k, v in meta.get("teams", {}).items()},
            rng_deterministic=bool(rng.get("deterministic", True)),
            rng_seed=rng.get("seed"),
            deck_types=deck_types,
            zone_types=zone_types,
            decks=decks,
            zones=zones,
            variables=variables,
            setup=list(data.get("setup", [])),
            flow=_parse_flow(data["flow"]) if data.get("flow") else None,
            rules=rules,
            raw=deepcopy(data),
        )


def _parse_zone(raw: dict[str, Any]) -> ZoneDefinition:
    scope = raw.get("owner_scope")
    if scope is None:
        scope = "player" if raw.get("per_player") else "global"
    return ZoneDefinition(
        name=raw["name"],
        zone_type=raw["type"],
        of_deck=raw.get("of_deck"),
        owner_scope=scope,
    )


def _parse_variable(raw: dict[str, Any]) -> VariableDefinition:
    scope = raw.get("scope")
    if scope is None:
        scope = "per_player" if raw.get("per_player") else "global"
    return VariableDefinition(
        name=raw["name"],
        scope=scope,
        initial_value=deepcopy(raw.get("initial_value")),
        computed=raw.get("computed"),
    )


def _parse_transitions(raw_list: list[dict[str, Any]], owner: str | None) -> list[TransitionDefinition]:
    transitions = []
    for index, raw in enumerate(raw_list):
        source = raw.get("from", owner if owner else "*")
        from_states = source if isinstance(source, list) else [source]
        transitions.append(TransitionDefinition(
            transition_id=str(raw.get("id", f"{owner or 'flow'}-{index}")),
            to_state=raw["to"],
            from_states=from_states,
            condition=raw.get("condition"),
            priority=int(raw.get("priority", 0)),
            seat=raw.get("seat"),
            position=index,
        ))
    return transitions


def _parse_flow(raw: dict[str, Any]) -> FlowDefinition:
    states = {}
    for name, body in raw.get("states", {}).items():
        phases = []
        for phase in body.get("phases", []):
            if isinstance(phase, str):
                phases.append(PhaseDefinition(name=phase))
            else:
                phases.append(PhaseDefinition(name=phase["name"], actions=list(phase.get("actions", []))))
        states[name] = StateDefinition(
            name=name,
            phases=phases,
            loop=bool(body.get("loop", True)),
            on_enter=list(body.get("on_enter", [])),
            transitions=_parse_transitions(body.get("transitions", []), name),
        )

    win = raw.get("win_condition")
    win_condition = None
    if win:
        win_condition = WinCondition(
            evaluator=win.get("evaluator"),
            condition=win.get("condition"),
            reason=win.get("reason", "win_condition"),
        )

    order = raw.get("player_order", {})
    return FlowDefinition(
        initial_state=raw["initial_state"],
        states=states,
        transitions=_parse_transitions(raw.get("transitions", []), None),
        win_condition=win_condition,
        player_order=PlayerOrder(
            direction=order.get("direction", "clockwise"),
            first=int(order.get("first", 0)),
            mode=order.get("mode", "sequential"),
        ),
    )


def _parse_rule(raw: dict[str, Any], index: int) -> RuleDefinition:
    return RuleDefinition(
        rule_id=str(raw.get("id", f"rule-{index}")),
        trigger=Trigger.parse(raw["trigger"]),
        effect=list(raw.get("effect", [])),
        timing=Timing(raw.get("timing", "post")),
        priority=int(raw.get("priority", 0)),
        once_per=parse_once_per(raw.get("once_per")),
        enabled_when=raw.get("enabled_when"),
        condition=raw.get("condition"),
        require_condition=bool(raw.get("require_condition", False)),
        on_failure=OnFailure(raw.get("on_failure", "abort")),
        store_as=raw.get("store_as"),
        declaration_index=index,
    )
