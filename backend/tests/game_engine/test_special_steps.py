"""Tests for peeking, confessions, accepted requests and admin helpers"""

import pytest

from services.card_resolver import MissingActiveCardError, MissingPlayerError
from services.game_models import CardAction, StepPhase
from .utils import (
    filler, make_card, make_context, resolver_for, seat_of, user_id,
    assert_next_step
)


class TestTakeHandCard:
    """Test picking a card from another hand after Suspicion"""

    def test_suspicion_peeks_at_one_card(self):
        suspicion = make_card(CardAction.SUSPICION, event_requester=1)
        ctx = make_context(
            phases=[StepPhase.PICK_FROM_HAND, StepPhase.PROCESS_EVENT],
            table={2: [suspicion]},
            last_card=suspicion,
        )
        picked = ctx.state.hands[2][1]

        resolution = resolver_for(ctx).take_hand_card(picked.id)

        hand = resolution.state.hands[2]
        assert hand[1].shared_with_player_id == 1
        assert all(card.shared_with_player_id is None for index, card in enumerate(hand) if index != 1)
        assert_next_step(resolution, [StepPhase.DROP_FROM_TABLE], 1)
        assert resolution.step_info.other_username == "player2"

    def test_pick_without_suspicion_raises(self):
        ctx = make_context(phases=[StepPhase.PICK_FROM_HAND], last_card=make_card(CardAction.ANALYSIS))
        with pytest.raises(MissingActiveCardError):
            resolver_for(ctx).take_hand_card(ctx.state.hands[2][0].id)


def confession_context(current: int = 2, hand=None):
    confession = make_card(CardAction.CONFESSION_TIME, panic_requester=1)
    ctx = make_context(
        current=current,
        phases=[StepPhase.SHOW_FROM_HAND, StepPhase.PROCESS_PANIC],
        hands={current: hand or filler(4)},
        table={1: [confession]},
        last_card=confession,
    )
    return ctx, confession


class TestShowCards:
    """Test the Confession time round"""

    def test_clean_hand_passes_confession_on(self):
        ctx, confession = confession_context()

        resolution = resolver_for(ctx).show_cards()

        assert all(card.shared for card in resolution.state.hands[2])
        assert_next_step(resolution, [StepPhase.SHOW_FROM_HAND, StepPhase.PROCESS_PANIC], 3)
        assert resolution.state.last_card.id == confession.id
        assert resolution.step_info.show_all is True

    def test_infection_stops_confession(self):
        """Test showing an infection card ends the round"""
        infection = make_card(CardAction.INFECTION_3)
        ctx, _ = confession_context(hand=filler(3) + [infection])

        resolution = resolver_for(ctx).show_cards(show_all=False)

        hand = resolution.state.hands[2]
        assert [card.id for card in hand if card.shared] == [infection.id]
        assert_next_step(resolution, [StepPhase.DROP_FROM_TABLE, StepPhase.PROCESS_PANIC], 1)

    def test_round_ends_back_at_panic_owner(self):
        ctx, _ = confession_context(current=4)

        resolution = resolver_for(ctx).show_cards()

        assert_next_step(resolution, [StepPhase.DROP_FROM_TABLE, StepPhase.PROCESS_PANIC], 1)

    def test_skip_showing_reveals_nothing(self):
        infection = make_card(CardAction.INFECTION_3)
        ctx, _ = confession_context(hand=filler(3) + [infection])

        resolution = resolver_for(ctx).show_cards(skip_showing=True)

        assert not any(card.shared for card in resolution.state.hands[2])
        assert_next_step(resolution, [StepPhase.SHOW_FROM_HAND, StepPhase.PROCESS_PANIC], 3)
        assert resolution.step_info.skip_showing is True

    def test_show_without_panic_raises(self):
        ctx = make_context(phases=[StepPhase.SHOW_FROM_HAND])
        with pytest.raises(MissingActiveCardError):
            resolver_for(ctx).show_cards()


class TestAcceptRequest:
    """Test accepting a swap instead of defending"""

    def test_accepting_run_away_swaps_seats(self):
        run_away = make_card(CardAction.RUN_AWAY, event_requester=1, requester=1)
        ctx = make_context(
            current=3,
            phases=[StepPhase.DEFENCE_FROM_HAND, StepPhase.ACCEPT_REQUEST, StepPhase.PROCESS_EVENT],
            table={3: [run_away]},
            last_card=run_away,
        )

        resolution = resolver_for(ctx).accept_request()

        assert seat_of(resolution, user_id(1)) == 3
        assert seat_of(resolution, user_id(3)) == 1
        assert resolution.state.table[3] == []
        assert resolution.state.trash[0].id == run_away.id
        assert resolution.state.last_card.id == run_away.id
        assert_next_step(resolution, [StepPhase.GIVE_TO_NEXT_PLAYER], 3)

    def test_accept_without_event_raises(self):
        ctx = make_context(current=3, phases=[StepPhase.ACCEPT_REQUEST])
        with pytest.raises(MissingActiveCardError):
            resolver_for(ctx).accept_request()

    def test_accept_outside_phase_is_ignored(self):
        ctx = make_context(current=3, phases=[StepPhase.DEFENCE_FROM_HAND])
        assert resolver_for(ctx).accept_request() is None


class TestAdminHelpers:
    """Test the quarantine and locked door helpers"""

    def test_put_on_quarantine(self):
        ctx = make_context(phases=[StepPhase.GIVE_TO_NEXT_PLAYER])

        resolution = resolver_for(ctx).put_on_quarantine(2)

        quarantine = resolution.state.get_quarantine(2)
        assert quarantine.steps_spent == 0
        assert quarantine.hidden is False
        assert resolution.state.previous_step_phases == [StepPhase.GIVE_TO_NEXT_PLAYER]
        assert resolution.step_info is None

    def test_set_locked_door(self):
        ctx = make_context()

        resolution = resolver_for(ctx).set_locked_door(1, 2)

        assert resolution.state.has_locked_door(1, 2)
        assert not resolution.state.has_locked_door(2, 1)

    def test_unknown_seat_raises(self):
        ctx = make_context()
        with pytest.raises(MissingPlayerError):
            resolver_for(ctx).put_on_quarantine(9)
