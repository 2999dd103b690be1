"""
Legality predicates.

Pure functions over a GameContext snapshot. They never raise and never mutate;
an illegal move is simply reported as False. Callers consult these before
invoking the resolver.
"""
from typing import Any, Dict, List, Optional, Sequence

from services.card_rules import (
    DEFENCE_TRIGGERS,
    HAND_PLAY_PREFLIGHT,
    REQUESTED_CARD_DEFENCES,
    TARGETED_HAND_ACTIONS,
    TARGETED_TABLE_ACTIONS,
    TargetGroup,
    Targeting,
    hand_targeting,
    table_targeting,
)
from services.game_models import (
    MAX_HAND_CARDS,
    Card,
    CardAction,
    CardLocation,
    CardSubType,
    CardType,
    GameContext,
    StepPhase,
    count_infections,
)
from services.turn_order import next_player_id, nth_next_player_id, nth_previous_player_id, previous_player_id

DROP_PHASES = (StepPhase.DROP_FROM_HAND, StepPhase.DROP_FROM_TABLE)
PLAY_PHASES = (
    StepPhase.PLAY_FROM_HAND,
    StepPhase.DEFENCE_FROM_HAND,
    StepPhase.SHOW_FROM_HAND,
    StepPhase.PLAY_FROM_TABLE,
)
GIVE_PHASES = (
    StepPhase.GIVE_TO_NEXT_PLAYER,
    StepPhase.GIVE_TO_PREVIOUS_PLAYER,
    StepPhase.GIVE_TO_PLAYER,
    StepPhase.GIVE_TO_SPECIFIC_PLAYER,
    StepPhase.RETURN_TO_PLAYER,
)
HAND_GIVE_PHASES = GIVE_PHASES[:4]
TAKE_PHASES = {
    CardLocation.DECK: (StepPhase.TAKE_FROM_DECK, StepPhase.FULFILL_HAND_FROM_DECK),
    CardLocation.HAND: (StepPhase.PICK_FROM_HAND,),
}


def is_taking_step(ctx: GameContext, user_id: str) -> bool:
    """Whether user_id may act for the current seat (directly or as bot manager)"""
    if not ctx.room.is_game_mode:
        return False

    current = ctx.current_player
    if current is None:
        return False

    if ctx.room.bot_manager_id == user_id and current.is_bot:
        return True

    return current.user_id == user_id


def _phase_gate(ctx: GameContext, user_id: str, phases: Sequence[StepPhase]) -> bool:
    return (
        is_taking_step(ctx, user_id)
        and not ctx.room.is_game_finished
        and ctx.state.has_any_of_step_phases(*phases)
    )


def can_drop(ctx: GameContext, user_id: str) -> bool:
    return _phase_gate(ctx, user_id, DROP_PHASES)


def can_take(ctx: GameContext, user_id: str, phases: Sequence[StepPhase]) -> bool:
    return _phase_gate(ctx, user_id, phases)


def can_play(ctx: GameContext, user_id: str) -> bool:
    return _phase_gate(ctx, user_id, PLAY_PHASES)


def can_give(ctx: GameContext, user_id: str) -> bool:
    return _phase_gate(ctx, user_id, GIVE_PHASES)


def can_refill_deck(ctx: GameContext, user_id: str) -> bool:
    return (
        is_taking_step(ctx, user_id)
        and not ctx.room.is_game_finished
        and not ctx.state.deck
        and bool(ctx.state.trash)
    )


def can_exchange(ctx: GameContext, first_player_id: Optional[int], second_player_id: Optional[int],
                 ignore_quarantines: bool = False, ignore_locked_doors: bool = False,
                 ignore_self_quarantine: bool = False) -> bool:
    """Single source of truth for "can these two seats interact right now".

    ignore_self_quarantine only relaxes the quarantine check for the first seat.
    """
    if first_player_id is None or second_player_id is None:
        return False
    if ctx.get_player(first_player_id) is None or ctx.get_player(second_player_id) is None:
        return False
    if ctx.is_inactive(first_player_id) or ctx.is_inactive(second_player_id):
        return False

    state = ctx.state
    quarantine_ok = ignore_quarantines or (
        (ignore_self_quarantine or not state.has_quarantine(first_player_id))
        and not state.has_quarantine(second_player_id)
    )
    doors_ok = ignore_locked_doors or (
        not state.has_locked_door(first_player_id, second_player_id)
        and not state.has_locked_door(second_player_id, first_player_id)
    )
    return quarantine_ok and doors_ok


def can_exchange_with(ctx: GameContext, other_player_id: Optional[int], **flags) -> bool:
    return can_exchange(ctx, ctx.state.current_step_player_id, other_player_id, **flags)


def _last_card_id(ctx: GameContext) -> Optional[str]:
    return ctx.state.last_card.id if ctx.state.last_card else None


def _last_card_action(ctx: GameContext) -> Optional[CardAction]:
    return ctx.state.last_card.action if ctx.state.last_card else None


def _dedupe(player_ids: List[Optional[int]]) -> List[int]:
    seen = []
    for player_id in player_ids:
        if player_id is not None and player_id not in seen:
            seen.append(player_id)
    return seen


def _group_candidates(ctx: GameContext, group: TargetGroup) -> List[Optional[int]]:
    current = ctx.state.current_step_player_id
    all_ids = [player.player_id for player in ctx.seated_players()]

    if group == TargetGroup.NONE:
        return []
    if group == TargetGroup.ALL:
        return all_ids
    if group == TargetGroup.OTHERS:
        return [player_id for player_id in all_ids if player_id != current]
    if group == TargetGroup.NEIGHBORS:
        return [previous_player_id(ctx), next_player_id(ctx)]
    if group == TargetGroup.NEIGHBORS_AND_SELF:
        return [previous_player_id(ctx), current, next_player_id(ctx)]
    if group == TargetGroup.THIRD_NEIGHBORS:
        return [nth_previous_player_id(ctx, 3), nth_next_player_id(ctx, 3)]

    # Axe targets: self when obstructed, neighbors that block the current seat
    state = ctx.state
    selected = []
    for player_id in (previous_player_id(ctx), current, next_player_id(ctx)):
        if player_id == current:
            obstructed = state.has_quarantine(player_id) or state.has_any_locked_door(player_id)
        elif group == TargetGroup.BLOCKED:
            obstructed = not can_exchange_with(ctx, player_id)
        else:
            obstructed = state.has_quarantine(player_id) or state.has_locked_door(player_id, current)
        if obstructed:
            selected.append(player_id)
    return selected


def targets_for(ctx: GameContext, targeting: Targeting) -> List[int]:
    candidates = _group_candidates(ctx, targeting.group)
    if targeting.unfiltered:
        return [player_id for player_id in _dedupe(candidates) if ctx.get_player(player_id) is not None]
    return [
        player_id for player_id in _dedupe(candidates)
        if can_exchange_with(
            ctx,
            player_id,
            ignore_locked_doors=targeting.ignore_locked_doors,
            ignore_self_quarantine=targeting.ignore_self_quarantine,
        )
    ]


def receiving_players(ctx: GameContext, card: Card) -> List[int]:
    """Seats the given card may currently be played on or handed to"""
    state = ctx.state
    if not ctx.seated_players():
        return []

    current = state.current_step_player_id

    if state.has_step_phase(StepPhase.GIVE_TO_PLAYER):
        others = [player.player_id for player in ctx.seated_players() if player.player_id != current]
        panic_card = state.get_active_card(CardType.PANIC)
        if state.has_step_phase(StepPhase.PROCESS_PANIC) and panic_card and panic_card.action == CardAction.FRIENDS:
            return [player_id for player_id in others if not state.has_quarantine(player_id)]
        return others

    if state.has_step_phase(StepPhase.GIVE_TO_NEXT_PLAYER):
        return _dedupe([next_player_id(ctx)])

    if state.has_any_of_step_phases(StepPhase.GIVE_TO_PREVIOUS_PLAYER, StepPhase.DEFENCE_FROM_HAND,
                                    StepPhase.RETURN_TO_PLAYER):
        requester = state.get_active_requester()
        active_ids = [player.player_id for player in ctx.seated_players()]
        return [requester] if requester in active_ids else []

    if state.has_step_phase(StepPhase.GIVE_TO_SPECIFIC_PLAYER):
        last_card_id = _last_card_id(ctx)
        return _dedupe([state.get_table_part_id(last_card_id)]) if last_card_id else []

    if state.has_step_phase(StepPhase.PLAY_FROM_HAND):
        return targets_for(ctx, hand_targeting(card.action))

    if state.has_step_phase(StepPhase.PLAY_FROM_TABLE):
        return targets_for(ctx, table_targeting(card.action))

    return []


def _hand_position(ctx: GameContext, card: Card, owner_id: Optional[int]) -> int:
    hand = ctx.state.get_hand(owner_id)
    return next((index for index, item in enumerate(hand) if item.id == card.id), -1)


def can_drop_card(ctx: GameContext, user_id: str, card_id: str) -> bool:
    if not can_drop(ctx, user_id):
        return False

    state = ctx.state
    current = state.current_step_player_id
    location, owner_id, card = state.locate_card(card_id)
    if card is None:
        return False

    if location == CardLocation.HAND:
        if not state.has_step_phase(StepPhase.DROP_FROM_HAND) or owner_id != current:
            return False
        if card.action == CardAction.IT:
            return False
        if (card.sub_type == CardSubType.INFECTION and ctx.is_infected(current)
                and count_infections(state.get_hand(current)) < 2):
            return False
        if state.has_step_phase(StepPhase.PROCESS_PANIC):
            panic_card = state.get_active_card(CardType.PANIC)
            if (panic_card and panic_card.action in (CardAction.CHAIN_REACTION, CardAction.BLIND_DATE)
                    and _last_card_id(ctx) == card.id):
                return False
        if state.has_step_phase(StepPhase.PROCESS_EVENT):
            event_card = state.get_active_card(CardType.EVENT)
            # Only the freshly drawn cards can be dropped while persisting
            if (event_card and event_card.action == CardAction.PERSISTENCE
                    and _hand_position(ctx, card, owner_id) <= MAX_HAND_CARDS - 1):
                return False
        return True

    if location == CardLocation.TABLE:
        if not state.has_step_phase(StepPhase.DROP_FROM_TABLE):
            return False
        involved = owner_id == current or current in (card.requester, card.event_requester, card.panic_requester)
        if not involved:
            return False
        return not state.had_step_phase(StepPhase.DEFENCE_FROM_HAND) or card.id == _last_card_id(ctx)

    return False


def can_take_card(ctx: GameContext, user_id: str, card_id: str) -> bool:
    state = ctx.state
    location, owner_id, card = state.locate_card(card_id)
    if card is None or location not in TAKE_PHASES:
        return False
    if not can_take(ctx, user_id, TAKE_PHASES[location]):
        return False

    if location == CardLocation.DECK:
        return state.deck[0].id == card.id

    if _last_card_action(ctx) != CardAction.SUSPICION:
        return True
    return owner_id == state.get_table_part_id(state.last_card.id)


def _can_play_from_hand(ctx: GameContext, card: Card) -> bool:
    state = ctx.state
    if card.sub_type == CardSubType.DEFENCE:
        return False
    if card.action == CardAction.SWAP_PLACES and not (
            can_exchange_with(ctx, previous_player_id(ctx)) or can_exchange_with(ctx, next_player_id(ctx))):
        return False
    if card.action in HAND_PLAY_PREFLIGHT and not targets_for(ctx, HAND_PLAY_PREFLIGHT[card.action]):
        return False
    if card.action in TARGETED_HAND_ACTIONS and not receiving_players(ctx, card):
        return False
    return state.has_step_phase(StepPhase.PLAY_FROM_HAND)


def _can_defend_from_hand(ctx: GameContext, card: Card) -> bool:
    state = ctx.state
    if not state.has_step_phase(StepPhase.DEFENCE_FROM_HAND) or card.sub_type != CardSubType.DEFENCE:
        return False
    if state.has_step_phase(StepPhase.PROCESS_PANIC):
        panic_card = state.get_active_card(CardType.PANIC)
        if panic_card and panic_card.action == CardAction.CHAIN_REACTION:
            return False
    if card.action in DEFENCE_TRIGGERS and _last_card_action(ctx) not in DEFENCE_TRIGGERS[card.action]:
        return False
    if card.action in REQUESTED_CARD_DEFENCES and state.get_active_card() is None:
        return False
    return True


def can_play_card(ctx: GameContext, user_id: str, card_id: str) -> bool:
    if not can_play(ctx, user_id):
        return False

    state = ctx.state
    current = state.current_step_player_id
    location, owner_id, card = state.locate_card(card_id)
    if card is None or owner_id != current:
        return False

    if location == CardLocation.HAND:
        if card.sub_type == CardSubType.INFECTION:
            return False
        if state.has_quarantine(current) and card.action != CardAction.AXE:
            return False
        return _can_play_from_hand(ctx, card) or _can_defend_from_hand(ctx, card)

    if location == CardLocation.TABLE:
        if not state.has_step_phase(StepPhase.PLAY_FROM_TABLE) or card.action == CardAction.QUARANTINE:
            return False
        return card.action not in TARGETED_TABLE_ACTIONS or bool(receiving_players(ctx, card))

    return False


def _infected_may_give(ctx: GameContext) -> bool:
    state = ctx.state
    if state.has_step_phase(StepPhase.GIVE_TO_PLAYER):
        return True
    if state.has_step_phase(StepPhase.GIVE_TO_NEXT_PLAYER) and ctx.is_it(next_player_id(ctx)):
        return True
    if state.has_step_phase(StepPhase.GIVE_TO_PREVIOUS_PLAYER) and ctx.is_it(state.get_active_requester()):
        return True
    last_card_id = _last_card_id(ctx)
    if (state.has_step_phase(StepPhase.GIVE_TO_SPECIFIC_PLAYER) and last_card_id
            and ctx.is_it(state.get_table_part_id(last_card_id))):
        return True
    return False


def can_give_card(ctx: GameContext, user_id: str, card_id: str) -> bool:
    if not can_give(ctx, user_id):
        return False

    state = ctx.state
    current = state.current_step_player_id
    location, owner_id, card = state.locate_card(card_id)
    if card is None or card.action == CardAction.IT:
        return False

    if location == CardLocation.HAND:
        if not state.has_any_of_step_phases(*HAND_GIVE_PHASES) or owner_id != current:
            return False
        if card.sub_type == CardSubType.INFECTION:
            infections = count_infections(state.get_hand(current))
            allowed = infections >= 2 and (
                ctx.is_it(current) or (ctx.is_infected(current) and _infected_may_give(ctx))
            )
            if not allowed:
                return False
        if state.has_step_phase(StepPhase.PROCESS_PANIC):
            panic_card = state.get_active_card(CardType.PANIC)
            if panic_card and panic_card.action == CardAction.CHAIN_REACTION and card.id == _last_card_id(ctx):
                return False
    elif location == CardLocation.TABLE:
        if not state.has_step_phase(StepPhase.RETURN_TO_PLAYER) or card.requester is None:
            return False
    else:
        return False

    return len(receiving_players(ctx, card)) >= 1


def card_options(ctx: GameContext, user_id: str, card_id: str) -> Dict[str, Any]:
    """Everything a client needs to render the moves available for one card"""
    _, _, card = ctx.state.locate_card(card_id)
    return {
        "card_id": card_id,
        "can_drop": can_drop_card(ctx, user_id, card_id),
        "can_take": can_take_card(ctx, user_id, card_id),
        "can_play": can_play_card(ctx, user_id, card_id),
        "can_give": can_give_card(ctx, user_id, card_id),
        "can_refill_deck": can_refill_deck(ctx, user_id),
        "receivers": receiving_players(ctx, card) if card else [],
    }
