"""Tests for resolving cards laid on the table"""

import pytest

from services.card_resolver import CardNotFoundError
from services.game_models import CardAction, Direction, StepPhase
from .utils import (
    filler, ids, make_card, make_context, resolver_for, seat_of, user_id,
    assert_cards_conserved, assert_cards_unique, assert_next_step
)

EVENT_PHASES = [StepPhase.PLAY_FROM_TABLE, StepPhase.PROCESS_EVENT]
PANIC_PHASES = [StepPhase.PLAY_FROM_TABLE, StepPhase.PROCESS_PANIC]


def event_card(action: CardAction):
    return make_card(action, event_requester=1)


def panic_card(action: CardAction):
    return make_card(action, panic_requester=1)


class TestSwapCards:
    """Test cards that move players between seats"""

    def test_run_away_swaps_seats_and_hands(self):
        """Test Run away moves the player together with their hand"""
        run_away = event_card(CardAction.RUN_AWAY)
        ctx = make_context(phases=EVENT_PHASES, table={1: [run_away]})
        own_hand, other_hand = ids(ctx.state.hands[1]), ids(ctx.state.hands[3])

        resolution = resolver_for(ctx).play_table_card(run_away.id, 3)

        assert seat_of(resolution, user_id(1)) == 3
        assert seat_of(resolution, user_id(3)) == 1
        assert ids(resolution.state.hands[3]) == own_hand
        assert ids(resolution.state.hands[1]) == other_hand
        assert resolution.state.trash[0].id == run_away.id
        assert_next_step(resolution, [StepPhase.GIVE_TO_NEXT_PLAYER], 3)
        assert_cards_conserved(ctx.state, resolution.state)
        assert_cards_unique(resolution.state)

    def test_step_info_uses_names_before_the_swap(self):
        run_away = event_card(CardAction.RUN_AWAY)
        ctx = make_context(phases=EVENT_PHASES, table={1: [run_away]})

        resolution = resolver_for(ctx).play_table_card(run_away.id, 3)

        assert resolution.step_info.active_username == "player1"
        assert resolution.step_info.other_username == "player3"
        assert resolution.state.previous_step_player_id == 1

    def test_run_away_against_good_here_asks_target(self):
        """Test a target holding Good here decides on the swap"""
        run_away = event_card(CardAction.RUN_AWAY)
        ctx = make_context(
            phases=EVENT_PHASES,
            table={1: [run_away]},
            hands={3: filler(3) + [make_card(CardAction.GOOD_HERE)]},
        )

        resolution = resolver_for(ctx).play_table_card(run_away.id, 3)

        assert_next_step(
            resolution, [StepPhase.DEFENCE_FROM_HAND, StepPhase.ACCEPT_REQUEST, StepPhase.PROCESS_EVENT], 3
        )
        moved = resolution.state.table[3][-1]
        assert moved.id == run_away.id
        assert moved.requester == 1
        assert seat_of(resolution, user_id(1)) == 1

    def test_swap_places_with_neighbor(self):
        swap = event_card(CardAction.SWAP_PLACES)
        ctx = make_context(phases=EVENT_PHASES, table={1: [swap]})

        resolution = resolver_for(ctx).play_table_card(swap.id, 2)

        assert seat_of(resolution, user_id(1)) == 2
        assert_next_step(resolution, [StepPhase.GIVE_TO_NEXT_PLAYER], 2)

    def test_go_away_swaps_with_any_player(self):
        go_away = panic_card(CardAction.GO_AWAY)
        ctx = make_context(phases=PANIC_PHASES, table={1: [go_away]})

        resolution = resolver_for(ctx).play_table_card(go_away.id, 3)

        assert seat_of(resolution, user_id(1)) == 3
        assert resolution.state.table[1] == []
        assert_next_step(resolution, [StepPhase.GIVE_TO_NEXT_PLAYER], 3)

    def test_one_two_swaps_with_third_neighbor(self):
        one_two = panic_card(CardAction.ONE_TWO)
        ctx = make_context(phases=PANIC_PHASES, table={1: [one_two]})

        resolution = resolver_for(ctx).play_table_card(one_two.id, 4)

        assert seat_of(resolution, user_id(1)) == 4
        assert seat_of(resolution, user_id(4)) == 1
        assert_next_step(resolution, [StepPhase.GIVE_TO_NEXT_PLAYER], 4)

    def test_is_it_party_swaps_pairs(self):
        """Test the party swaps neighbors pairwise starting at the current seat"""
        party = panic_card(CardAction.IS_IT_PARTY)
        ctx = make_context(
            phases=PANIC_PHASES,
            table={1: [party], 3: [make_card(CardAction.QUARANTINE, steps_spent=1)]},
            borders={4: [make_card(CardAction.LOCKED_DOOR, block_from=3)]},
        )
        first_hand = ids(ctx.state.hands[1])

        resolution = resolver_for(ctx).play_table_card(party.id)

        assert seat_of(resolution, user_id(1)) == 2
        assert seat_of(resolution, user_id(2)) == 1
        assert seat_of(resolution, user_id(3)) == 4
        assert seat_of(resolution, user_id(4)) == 3
        assert ids(resolution.state.hands[2]) == first_hand
        assert not resolution.state.has_quarantine(3)
        assert resolution.state.borders[4] == []
        assert_next_step(resolution, [StepPhase.GIVE_TO_NEXT_PLAYER], 2)
        assert_cards_unique(resolution.state)

    def test_is_it_party_leaves_last_seat_with_odd_count(self):
        party = make_card(CardAction.IS_IT_PARTY, panic_requester=2)
        ctx = make_context(seats=5, current=2, phases=PANIC_PHASES, table={2: [party]})

        resolution = resolver_for(ctx).play_table_card(party.id)

        assert seat_of(resolution, user_id(1)) == 1
        assert seat_of(resolution, user_id(2)) == 3
        assert seat_of(resolution, user_id(4)) == 5
        assert_next_step(resolution, [StepPhase.GIVE_TO_NEXT_PLAYER], 3)


class TestObstacleRemoval:
    """Test cards that clear quarantines and locked doors"""

    def test_axe_removes_own_quarantine(self):
        quarantine = make_card(CardAction.QUARANTINE, steps_spent=1)
        axe = event_card(CardAction.AXE)
        ctx = make_context(phases=EVENT_PHASES, table={1: [quarantine, axe]})

        resolution = resolver_for(ctx).play_table_card(axe.id, 1)

        assert resolution.state.table[1] == []
        assert {card.id for card in resolution.state.trash} == {quarantine.id, axe.id}
        assert_next_step(resolution, [StepPhase.GIVE_TO_NEXT_PLAYER], 1)

    def test_axe_removes_neighbor_door(self):
        door = make_card(CardAction.LOCKED_DOOR, block_from=1)
        axe = event_card(CardAction.AXE)
        ctx = make_context(phases=EVENT_PHASES, table={1: [axe]}, borders={2: [door]})

        resolution = resolver_for(ctx).play_table_card(axe.id, 2)

        assert resolution.state.borders[2] == []
        assert_next_step(resolution, [StepPhase.GIVE_TO_NEXT_PLAYER], 1)

    def test_axe_removes_own_door(self):
        door = make_card(CardAction.LOCKED_DOOR, block_from=2)
        axe = event_card(CardAction.AXE)
        ctx = make_context(phases=EVENT_PHASES, table={1: [axe]}, borders={1: [door]})

        resolution = resolver_for(ctx).play_table_card(axe.id, 1)

        assert resolution.state.borders[1] == []
        assert_next_step(resolution, [StepPhase.GIVE_TO_NEXT_PLAYER], 1)

    def test_old_ropes_lifts_every_quarantine(self):
        old_ropes = panic_card(CardAction.OLD_ROPES)
        ctx = make_context(
            phases=PANIC_PHASES,
            table={
                1: [old_ropes],
                2: [make_card(CardAction.QUARANTINE, steps_spent=0)],
                3: [make_card(CardAction.QUARANTINE, steps_spent=2)],
            },
        )

        resolution = resolver_for(ctx).play_table_card(old_ropes.id)

        assert all(not cards for cards in resolution.state.table.values())
        assert len(resolution.state.trash) == 3
        assert_next_step(resolution, [StepPhase.GIVE_TO_NEXT_PLAYER], 1)

    def test_three_four_opens_every_door(self):
        three_four = panic_card(CardAction.THREE_FOUR)
        ctx = make_context(
            phases=PANIC_PHASES,
            table={1: [three_four]},
            borders={
                2: [make_card(CardAction.LOCKED_DOOR, block_from=1)],
                3: [make_card(CardAction.LOCKED_DOOR, block_from=4)],
            },
        )

        resolution = resolver_for(ctx).play_table_card(three_four.id)

        assert all(not cards for cards in resolution.state.borders.values())
        assert resolution.state.table[1] == []
        assert_next_step(resolution, [StepPhase.GIVE_TO_NEXT_PLAYER], 1)


class TestRevealCards:
    """Test direction changes and hand reveals"""

    def test_look_around_reverses_direction(self):
        look_around = event_card(CardAction.LOOK_AROUND)
        ctx = make_context(phases=EVENT_PHASES, table={1: [look_around]})

        resolution = resolver_for(ctx).play_table_card(look_around.id)

        assert resolution.state.direction == Direction.COUNTER_CLOCKWISE
        assert_next_step(resolution, [StepPhase.GIVE_TO_NEXT_PLAYER], 1)

    def test_look_around_checks_new_neighbor(self):
        """Test the exchange is checked against the neighbor in the new direction"""
        look_around = event_card(CardAction.LOOK_AROUND)
        ctx = make_context(
            phases=EVENT_PHASES,
            table={1: [look_around], 4: [make_card(CardAction.QUARANTINE, steps_spent=1)]},
        )

        resolution = resolver_for(ctx).play_table_card(look_around.id)

        assert_next_step(resolution, [StepPhase.TAKE_FROM_DECK], 4)

    def test_between_us_shows_hand_to_target(self):
        between_us = panic_card(CardAction.BETWEEN_US)
        ctx = make_context(phases=PANIC_PHASES, table={1: [between_us]})

        resolution = resolver_for(ctx).play_table_card(between_us.id, 2)

        assert all(card.shared_with_player_id == 2 for card in resolution.state.hands[1])
        assert_next_step(resolution, [StepPhase.DROP_FROM_TABLE, StepPhase.PROCESS_PANIC], 1)

    def test_oops_shows_hand_to_everyone(self):
        oops = panic_card(CardAction.OOPS)
        ctx = make_context(phases=PANIC_PHASES, table={1: [oops]})

        resolution = resolver_for(ctx).play_table_card(oops.id)

        assert all(card.shared for card in resolution.state.hands[1])
        assert_next_step(resolution, [StepPhase.DROP_FROM_TABLE, StepPhase.PROCESS_PANIC], 1)


class TestTablePlayRejections:
    """Test table plays that must not happen"""

    def test_card_without_table_effect_is_ignored(self):
        friends = panic_card(CardAction.FRIENDS)
        ctx = make_context(phases=PANIC_PHASES, table={1: [friends]})
        assert resolver_for(ctx).play_table_card(friends.id, 2) is None

    def test_card_on_other_table_raises(self):
        run_away = event_card(CardAction.RUN_AWAY)
        ctx = make_context(phases=EVENT_PHASES, table={2: [run_away]})
        with pytest.raises(CardNotFoundError):
            resolver_for(ctx).play_table_card(run_away.id, 3)

    def test_wrong_phase_is_ignored(self):
        run_away = event_card(CardAction.RUN_AWAY)
        ctx = make_context(phases=[StepPhase.DROP_FROM_TABLE], table={1: [run_away]})
        assert resolver_for(ctx).play_table_card(run_away.id, 3) is None
