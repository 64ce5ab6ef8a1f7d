"""
Tests for the built-in War definition.

War is declared entirely as a document, so these tests exercise setup,
phase actions, rule gates on rank_value and the win condition together.
"""

import pytest

from ..engine_core.state import Face
from ..games import GAMES
from ..games.war import RANKS, war_document
from ..session import GameLoop, LoopState, Session
from ..spec_schema import GameDefinition, validate_definition


def find(state, rank, suit):
    return next(c for c in state.cards.values() if c.get("rank") == rank and c.get("suit") == suit)


def stage(state, p0_card, p1_card):
    """Put chosen cards in the play areas, returning whatever was there."""
    for player in state.players:
        for card in list(player.zones["play_area"].cards):
            state.move_card(card, player.zones["draw_pile"])
    state.move_card(p0_card, state.players[0].zones["play_area"])
    state.move_card(p1_card, state.players[1].zones["play_area"])


def total_cards(state):
    return sum(zone.count for zone in state.all_zones())


@pytest.fixture
def session(war_definition):
    session = Session(war_definition, 2, seed=42)
    session.start()
    return session


class TestDefinition:
    """Tests for the War document itself."""

    def test_validates(self, war_definition):
        result = validate_definition(war_definition)
        assert result.valid
        assert result.errors == []

    def test_registered(self):
        assert GAMES["war"]().name == "war"

    def test_deck_composition(self, war_definition):
        cards = war_definition.deck_types["standard_52"].build_card_properties()
        assert len(cards) == 52
        assert {c["rank"] for c in cards} == set(RANKS)

    def test_document_round_trips_through_from_dict(self):
        assert GameDefinition.from_dict(war_document()).name == "war"


class TestSetup:
    """Tests for dealing and the first flip."""

    def test_deal_and_first_flip(self, session):
        state = session.state
        assert state.zones["deck"].count == 0
        for player in state.players:
            assert player.zones["draw_pile"].count == 25
            assert player.zones["play_area"].count == 1
            assert player.zones["play_area"].top_card.face == Face.UP
        assert (state.flow.state, state.flow.phase) == ("playing", "flip")

    def test_same_seed_same_deal(self, war_definition, session):
        other = Session(war_definition, 2, seed=42)
        other.start()
        for seat in (0, 1):
            ours = [c.card_id for c in session.state.players[seat].zones["draw_pile"].cards]
            theirs = [c.card_id for c in other.state.players[seat].zones["draw_pile"].cards]
            assert ours == theirs


class TestCompare:
    """Tests for the comparison rules."""

    def test_higher_rank_takes_both(self, session):
        state = session.state
        stage(state, find(state, "K", "hearts"), find(state, 7, "spades"))
        session.advance()

        assert state.flow.phase == "compare"
        assert state.variables["rounds"] == 1
        winnings = state.players[0].zones["winnings"]
        assert sorted(c.card_id for c in winnings.cards) == sorted([
            find(state, "K", "hearts").card_id, find(state, 7, "spades").card_id,
        ])
        assert all(c.face == Face.DOWN for c in winnings.cards)
        assert state.players[1].zones["winnings"].count == 0

    def test_second_player_can_win(self, session):
        state = session.state
        stage(state, find(state, 2, "clubs"), find(state, "A", "clubs"))
        session.advance()

        assert state.players[1].zones["winnings"].count == 2
        assert state.players[0].zones["winnings"].count == 0

    def test_tie_goes_to_the_pot_then_to_the_next_winner(self, session):
        state = session.state
        stage(state, find(state, 7, "hearts"), find(state, 7, "diamonds"))
        session.advance()

        assert state.zones["pot"].count == 2
        assert state.players[0].zones["winnings"].count == 0
        assert state.players[1].zones["winnings"].count == 0

        session.advance()
        assert state.flow.phase == "flip"
        stage(state, find(state, 3, "spades"), find(state, "Q", "spades"))
        session.advance()

        assert state.zones["pot"].count == 0
        assert state.players[1].zones["winnings"].count == 4


class TestFullGame:
    """Tests for automated play."""

    def test_cards_are_conserved(self, session):
        result = GameLoop(session).run(max_steps=400)

        assert result.loop_state in (LoopState.GAME_OVER, LoopState.STEP_LIMIT)
        assert result.failures == []
        assert total_cards(session.state) == 52
        session.state.check_invariants()

    def test_game_over_names_the_player_with_cards(self, session):
        state = session.state
        stage(state, find(state, "A", "hearts"), find(state, 2, "clubs"))
        # player 1 is down to the card in play
        for card in list(state.players[1].zones["draw_pile"].cards):
            state.move_card(card, state.players[0].zones["draw_pile"])

        result = GameLoop(session).run(max_steps=10)

        assert result.loop_state == LoopState.GAME_OVER
        assert result.result.winners == [0]
        assert result.result.reason == "opponent_out_of_cards"
        assert total_cards(state) == 52
        loser = state.players[1]
        assert sum(loser.zones[name].count for name in ("draw_pile", "play_area", "winnings")) == 0
