"""
Game Setup - Builds the initial State Model from a definition.

This module handles:
- Choosing and recording the session seed
- Creating global, per-player and per-team zones
- Expanding deck compositions into card instances
- Initial variable values and teams

The setup actions of the definition are not run here; the session runs
them as the first effect once the state exists.
"""

from __future__ import annotations
from copy import deepcopy
import logging
import random
import uuid

from ..spec_schema.game_definition import GameDefinition, ZoneDefinition
from .errors import DefinitionError
from .state import Card, Face, GameState, Ordering, PlayerState, TeamState, Zone

logger = logging.getLogger(__name__)


def choose_seed(definition: GameDefinition, seed: int | None = None) -> tuple[int, bool]:
    """
    The seed for a new session and whether the run is reproducible.

    A deterministic definition with a pinned seed always uses it; an
    explicit seed argument comes next; otherwise a fresh one is drawn.
    """
    if definition.rng_deterministic and definition.rng_seed is not None:
        return int(definition.rng_seed), True
    if seed is not None:
        return int(seed), definition.rng_deterministic
    return random.SystemRandom().randrange(2 ** 32), False


def build_initial_state(
    definition: GameDefinition,
    num_players: int,
    seed: int | None = None,
    game_id: str | None = None,
    player_names: list[str] | None = None,
) -> GameState:
    """
    Set up a new game state.

    Args:
        definition: The game definition
        num_players: Number of seats
        seed: PRNG seed (ignored when the definition pins one)
        game_id: Session id (generated if not provided)
        player_names: Display names (default "Player 1", ...)

    Returns:
        GameState with every card placed and variables initialised
    """
    if num_players < definition.min_players or num_players > definition.max_players:
        raise DefinitionError([
            f"{definition.name} supports {definition.min_players}-{definition.max_players} "
            f"players, got {num_players}"
        ])

    used_seed, deterministic = choose_seed(definition, seed)
    logger.info("Seeding '%s' with %d (deterministic=%s)", definition.name, used_seed, deterministic)

    state = GameState(
        game_id=game_id or str(uuid.uuid4()),
        definition_name=definition.name,
        seed=used_seed,
        deterministic=deterministic,
        rng=random.Random(used_seed),
    )

    names = player_names or [f"Player {i + 1}" for i in range(num_players)]
    seat_team = {seat: team for team, seats in definition.teams.items() for seat in seats}
    for seat in range(num_players):
        state.players.append(PlayerState(seat=seat, name=names[seat], team=seat_team.get(seat)))
    for team_id, seats in definition.teams.items():
        state.teams[team_id] = TeamState(team_id=team_id, members=[s for s in seats if s < num_players])

    _create_zones(definition, state)
    _create_cards(definition, state)
    _init_variables(definition, state)

    for zone in state.all_zones():
        if zone.ordering == Ordering.SHUFFLED and zone.cards:
            state.shuffle_zone(zone)

    state.check_invariants()
    return state


def _make_zone(definition: GameDefinition, zone_def: ZoneDefinition, key: str,
               owner: int | None = None, team: str | None = None) -> Zone:
    zone_type = definition.zone_types.get(zone_def.zone_type)
    if zone_type is None:
        raise DefinitionError([f"Zone '{zone_def.name}' has unknown type '{zone_def.zone_type}'"])
    return Zone(
        key=key,
        name=zone_def.name,
        zone_type=zone_def.zone_type,
        ordering=Ordering(zone_type.ordering),
        visibility=dict(zone_type.visibility),
        default_face=Face(zone_type.default_face),
        allows_reorder=zone_type.allows_reorder,
        of_deck=zone_def.of_deck,
        scope=zone_def.owner_scope,
        owner=owner,
        team=team,
    )


def _create_zones(definition: GameDefinition, state: GameState):
    for zone_def in definition.zones:
        if zone_def.owner_scope == "player":
            for player in state.players:
                key = f"players.{player.seat}.{zone_def.name}"
                player.zones[zone_def.name] = _make_zone(definition, zone_def, key, owner=player.seat)
        elif zone_def.owner_scope == "team":
            for team in state.teams.values():
                key = f"teams.{team.team_id}.{zone_def.name}"
                team.zones[zone_def.name] = _make_zone(definition, zone_def, key, team=team.team_id)
        else:
            state.zones[zone_def.name] = _make_zone(definition, zone_def, f"zones.{zone_def.name}")


def _deck_zone(definition: GameDefinition, state: GameState, deck_name: str) -> Zone:
    deck = definition.decks[deck_name]
    if deck.zone is not None:
        if deck.zone not in state.zones:
            raise DefinitionError([f"Deck '{deck_name}' targets unknown global zone '{deck.zone}'"])
        return state.zones[deck.zone]
    for zone in state.zones.values():
        if zone.of_deck == deck_name:
            return zone
    raise DefinitionError([f"Deck '{deck_name}' has no starting zone"])


def _create_cards(definition: GameDefinition, state: GameState):
    for deck_name, deck in definition.decks.items():
        deck_type = definition.deck_types.get(deck.deck_type)
        if deck_type is None:
            raise DefinitionError([f"Deck '{deck_name}' has unknown type '{deck.deck_type}'"])
        zone = _deck_zone(definition, state, deck_name)
        try:
            properties = deck_type.build_card_properties()
        except ValueError as exc:
            raise DefinitionError([f"Deck type '{deck_type.name}': {exc}"]) from exc
        for n, props in enumerate(properties, start=1):
            card = Card(
                card_id=f"{deck_name}-{n}",
                properties=props,
                deck=deck_name,
                deck_type=deck_type.name,
                face=zone.default_face,
            )
            state.place_card(card, zone, "bottom")
        logger.debug("Placed %d card(s) of deck '%s' in '%s'", len(properties), deck_name, zone.key)


def _init_variables(definition: GameDefinition, state: GameState):
    for var in definition.variables:
        if var.is_computed:
            continue
        if var.scope == "per_player":
            for player in state.players:
                player.variables[var.name] = _fresh(var.initial_value)
        elif var.scope == "per_team":
            for team in state.teams.values():
                team.variables[var.name] = _fresh(var.initial_value)
        else:
            state.variables[var.name] = _fresh(var.initial_value)


def _fresh(value):
    return deepcopy(value) if isinstance(value, (list, dict)) else value
