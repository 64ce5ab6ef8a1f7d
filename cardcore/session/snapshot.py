"""
State snapshots - Serializable form of the State Model.

A GameSnapshot is the save/replay contract of a session:
- Full snapshots (viewer=None) carry everything needed to restore the
  state exactly, including the PRNG state.
- Viewer snapshots are redacted: cards the viewer may not observe lose
  their identity and properties, and the PRNG state is omitted. They are
  for display only and cannot be restored.

Values stored in variables and results may reference live objects; they
are encoded as tagged dicts ({"$card": id}, {"$player": seat}, ...) and
re-attached to the restored state.
"""

from typing import Any, Optional
import random

from pydantic import BaseModel, Field

from ..engine_core.errors import InputError
from ..engine_core.state import (
    Card,
    Face,
    FlowPosition,
    GameResult,
    GameState,
    Ordering,
    PlayerState,
    TeamState,
    Visibility,
    Zone,
)
from ..engine_core.values import RankSymbol

HIDDEN_CARD_ID = "hidden"


# =============================================================================
# Models
# =============================================================================

class CardSnapshot(BaseModel):
    """A card as seen by the snapshot's viewer."""
    card_id: str
    deck: Optional[str] = None
    deck_type: Optional[str] = None
    face: str = Face.DOWN.value
    properties: Optional[dict[str, Any]] = None
    hidden: bool = False


class ZoneSnapshot(BaseModel):
    """A zone with its policy and (possibly redacted) contents, top-first."""
    key: str
    name: str
    zone_type: str
    ordering: str = Ordering.LIFO.value
    visibility: dict[str, str] = Field(default_factory=dict)
    default_face: str = Face.UP.value
    allows_reorder: bool = False
    of_deck: Optional[str] = None
    scope: str = "global"
    owner: Optional[int] = None
    team: Optional[str] = None
    count: Optional[int] = None
    cards: Optional[list[CardSnapshot]] = None


class PlayerSnapshot(BaseModel):
    seat: int
    name: str
    team: Optional[str] = None
    variables: dict[str, Any] = Field(default_factory=dict)
    zones: dict[str, ZoneSnapshot] = Field(default_factory=dict)


class TeamSnapshot(BaseModel):
    team_id: str
    members: list[int] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)
    zones: dict[str, ZoneSnapshot] = Field(default_factory=dict)


class FlowSnapshot(BaseModel):
    """Position in the state/phase machine."""
    state: Optional[str] = None
    phase: Optional[str] = None
    phase_index: int = 0
    current_player: int = 0
    direction: int = 1
    order_mode: str = "sequential"
    turn_index: int = 0
    phase_serial: int = 0
    live_phases: dict[str, list[str]] = Field(default_factory=dict)
    skip_credits: dict[int, int] = Field(default_factory=dict)
    extra_turns: list[int] = Field(default_factory=list)


class ResultSnapshot(BaseModel):
    winners: list[int] = Field(default_factory=list)
    ranking: list[int] = Field(default_factory=list)
    reason: str = ""


class GameSnapshot(BaseModel):
    """Complete (or viewer-redacted) State Model."""
    game_id: str
    definition_name: str
    seed: int
    deterministic: bool = True
    viewer: Optional[int] = None
    redacted: bool = False
    settled: bool = Field(default=True, description="False when taken in the middle of a resolution")

    players: list[PlayerSnapshot] = Field(default_factory=list)
    zones: dict[str, ZoneSnapshot] = Field(default_factory=dict)
    teams: dict[str, TeamSnapshot] = Field(default_factory=dict)
    variables: dict[str, Any] = Field(default_factory=dict)
    flow: FlowSnapshot = Field(default_factory=FlowSnapshot)

    revealed: list[str] = Field(default_factory=list)
    grants: dict[str, list[int]] = Field(default_factory=dict)
    peeks: dict[str, list[int]] = Field(default_factory=dict)
    rule_usage: dict[str, dict[str, list[Any]]] = Field(default_factory=dict)
    results: dict[str, Any] = Field(default_factory=dict)
    result: Optional[ResultSnapshot] = None

    rng_state: Optional[list[Any]] = None


# =============================================================================
# Value encoding
# =============================================================================

def encode_value(value: Any) -> Any:
    """Encode a runtime value into JSON-friendly data."""
    if isinstance(value, Card):
        return {"$card": value.card_id}
    if isinstance(value, PlayerState):
        return {"$player": value.seat}
    if isinstance(value, Zone):
        return {"$zone": value.key}
    if isinstance(value, TeamState):
        return {"$team": value.team_id}
    if isinstance(value, RankSymbol):
        return {"$rank": value.symbol, "deck_type": value.deck_type}
    if isinstance(value, GameResult):
        return {"winners": list(value.winners), "ranking": list(value.ranking), "reason": value.reason}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    if isinstance(value, dict):
        return {str(k): encode_value(v) for k, v in value.items()}
    return value


def decode_value(value: Any, state: GameState) -> Any:
    """Re-attach encoded references to objects of a restored state."""
    if isinstance(value, list):
        return [decode_value(v, state) for v in value]
    if not isinstance(value, dict):
        return value
    if len(value) == 1:
        (tag, ref), = value.items()
        if tag == "$card":
            return state.card(ref)
        if tag == "$player":
            return state.player(ref)
        if tag == "$zone":
            return state.zone(ref)
        if tag == "$team":
            return state.teams[ref]
    if set(value) == {"$rank", "deck_type"}:
        return RankSymbol(value["$rank"], value["deck_type"])
    return {k: decode_value(v, state) for k, v in value.items()}


# =============================================================================
# State -> snapshot
# =============================================================================

def snapshot_state(state: GameState, viewer: Optional[int] = None, redact: bool = False,
                   settled: bool = True) -> GameSnapshot:
    """
    Build a snapshot of a state.

    Args:
        state: State to capture
        viewer: Seat the snapshot is rendered for (implies redaction)
        redact: Redact for an observer with no seat (viewer=None)
        settled: Whether the session was idle when the snapshot was taken
    """
    redacted = redact or viewer is not None

    def zone_snapshot(zone: Zone) -> ZoneSnapshot:
        snap = ZoneSnapshot(
            key=zone.key,
            name=zone.name,
            zone_type=zone.zone_type,
            ordering=zone.ordering.value,
            visibility=dict(zone.visibility),
            default_face=zone.default_face.value,
            allows_reorder=zone.allows_reorder,
            of_deck=zone.of_deck,
            scope=zone.scope,
            owner=zone.owner,
            team=zone.team,
        )
        policy = zone.visibility_for(viewer) if redacted else Visibility.ALL
        if policy == Visibility.HIDDEN:
            return snap
        snap.count = zone.count
        snap.cards = [card_snapshot(card) for card in zone.cards]
        return snap

    def card_snapshot(card: Card) -> CardSnapshot:
        if redacted and not state.is_visible(card, viewer):
            return CardSnapshot(card_id=HIDDEN_CARD_ID, face=card.face.value, hidden=True)
        return CardSnapshot(
            card_id=card.card_id,
            deck=card.deck,
            deck_type=card.deck_type,
            face=card.face.value,
            properties=encode_value(card.properties),
        )

    flow = state.flow
    return GameSnapshot(
        game_id=state.game_id,
        definition_name=state.definition_name,
        seed=state.seed,
        deterministic=state.deterministic,
        viewer=viewer,
        redacted=redacted,
        settled=settled,
        players=[
            PlayerSnapshot(
                seat=p.seat,
                name=p.name,
                team=p.team,
                variables=encode_value(p.variables),
                zones={name: zone_snapshot(z) for name, z in p.zones.items()},
            )
            for p in state.players
        ],
        zones={name: zone_snapshot(z) for name, z in state.zones.items()},
        teams={
            team_id: TeamSnapshot(
                team_id=team_id,
                members=list(t.members),
                variables=encode_value(t.variables),
                zones={name: zone_snapshot(z) for name, z in t.zones.items()},
            )
            for team_id, t in state.teams.items()
        },
        variables=encode_value(state.variables),
        flow=FlowSnapshot(
            state=flow.state,
            phase=flow.phase,
            phase_index=flow.phase_index,
            current_player=flow.current_player,
            direction=flow.direction,
            order_mode=flow.order_mode,
            turn_index=flow.turn_index,
            phase_serial=flow.phase_serial,
            live_phases={k: list(v) for k, v in flow.live_phases.items()},
            skip_credits=dict(flow.skip_credits),
            extra_turns=list(flow.extra_turns),
        ),
        revealed=sorted(state.revealed),
        grants={k: list(v) for k, v in state.grants.items()},
        peeks={k: list(v) for k, v in state.peeks.items()},
        rule_usage={rule: {scope: list(entry) for scope, entry in usage.items()}
                    for rule, usage in state.rule_usage.items()},
        results=encode_value(state.results),
        result=ResultSnapshot(**encode_value(state.result)) if state.result else None,
        rng_state=None if redacted else _encode_rng(state.rng),
    )


def _encode_rng(rng: random.Random) -> list[Any]:
    version, internal, gauss_next = rng.getstate()
    return [version, list(internal), gauss_next]


# =============================================================================
# Snapshot -> state
# =============================================================================

def restore_state(snapshot: GameSnapshot) -> GameState:
    """
    Rebuild a GameState from a full snapshot.

    Raises InputError for redacted snapshots, which lack hidden identities.
    """
    if snapshot.redacted or snapshot.rng_state is None:
        raise InputError("Only full, unredacted snapshots can be restored")

    rng = random.Random()
    version, internal, gauss_next = snapshot.rng_state
    rng.setstate((version, tuple(internal), gauss_next))

    f = snapshot.flow
    state = GameState(
        game_id=snapshot.game_id,
        definition_name=snapshot.definition_name,
        seed=snapshot.seed,
        deterministic=snapshot.deterministic,
        rng=rng,
        flow=FlowPosition(
            state=f.state,
            phase=f.phase,
            phase_index=f.phase_index,
            current_player=f.current_player,
            direction=f.direction,
            order_mode=f.order_mode,
            turn_index=f.turn_index,
            phase_serial=f.phase_serial,
            live_phases={k: list(v) for k, v in f.live_phases.items()},
            skip_credits=dict(f.skip_credits),
            extra_turns=list(f.extra_turns),
        ),
    )

    def zone_from(snap: ZoneSnapshot) -> Zone:
        zone = Zone(
            key=snap.key,
            name=snap.name,
            zone_type=snap.zone_type,
            ordering=Ordering(snap.ordering),
            visibility=dict(snap.visibility),
            default_face=Face(snap.default_face),
            allows_reorder=snap.allows_reorder,
            of_deck=snap.of_deck,
            scope=snap.scope,
            owner=snap.owner,
            team=snap.team,
        )
        for card_snap in snap.cards or []:
            card = Card(
                card_id=card_snap.card_id,
                properties=dict(card_snap.properties or {}),
                deck=card_snap.deck,
                deck_type=card_snap.deck_type,
                face=Face(card_snap.face),
            )
            zone.cards.append(card)
            state.cards[card.card_id] = card
            state.locations[card.card_id] = zone.key
        return zone

    for p in snapshot.players:
        player = PlayerState(seat=p.seat, name=p.name, team=p.team)
        player.zones = {name: zone_from(z) for name, z in p.zones.items()}
        state.players.append(player)
    state.zones = {name: zone_from(z) for name, z in snapshot.zones.items()}
    for team_id, t in snapshot.teams.items():
        team = TeamState(team_id=team_id, members=list(t.members))
        team.zones = {name: zone_from(z) for name, z in t.zones.items()}
        state.teams[team_id] = team

    # References resolve only once every card, player and zone exists
    for p, player in zip(snapshot.players, state.players):
        player.variables = decode_value(p.variables, state)
    for team_id, t in snapshot.teams.items():
        state.teams[team_id].variables = decode_value(t.variables, state)
    state.variables = decode_value(snapshot.variables, state)
    state.results = decode_value(snapshot.results, state)

    state.revealed = set(snapshot.revealed)
    state.grants = {k: list(v) for k, v in snapshot.grants.items()}
    state.peeks = {k: list(v) for k, v in snapshot.peeks.items()}
    state.rule_usage = {rule: {scope: list(entry) for scope, entry in usage.items()}
                        for rule, usage in snapshot.rule_usage.items()}
    if snapshot.result is not None:
        state.result = GameResult(
            winners=list(snapshot.result.winners),
            ranking=list(snapshot.result.ranking),
            reason=snapshot.result.reason,
        )

    state.check_invariants()
    return state
