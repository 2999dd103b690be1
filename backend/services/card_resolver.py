"""
Card-action resolver.

A CardResolver works on a private deep copy of a GameContext. Each public
operation validates the actor and phase, mutates the working copy, and
returns a StepResolution describing the next state, or None when the move is
rejected (wrong actor or wrong phase). Caller-contract violations raise a
GameEngineError; the working copy is then simply discarded, so nothing is
ever partially applied.
"""
import copy
import logging
import random
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from services.card_rules import (
    EVENT_SWAP_CONTINUATIONS,
    FORGETFULNESS_DROPS,
    PANIC_REVEAL_PHASES,
    PANIC_SWAP_CONTINUATIONS,
    PERSISTENCE_EXTRA_DRAWS,
    PERSISTENCE_EXTRA_KEEP,
    TABLE_PLAY_DEFENCES,
)
from services.game_models import (
    MAX_HAND_CARDS,
    QUARANTINE_STEPS,
    Card,
    CardAction,
    CardSubType,
    CardType,
    GameContext,
    GameState,
    Player,
    Role,
    StepInfo,
    StepPhase,
)
from services.legality import can_exchange, is_taking_step
from services.turn_order import nth_next_player_id, nth_previous_player_id, next_player_id, seated_player_ids

logger = logging.getLogger(__name__)

Transition = Tuple[List[StepPhase], Optional[int]]


class GameEngineError(Exception):
    """Base class for caller-contract violations detected by the engine"""
    pass


class CardNotFoundError(GameEngineError):
    pass


class MissingPlayerError(GameEngineError):
    pass


class MissingActiveCardError(GameEngineError):
    pass


class ReservationConflictError(GameEngineError):
    """A reservation was requested while another one is still pending"""
    pass


class GameNotFoundError(GameEngineError):
    pass


@dataclass
class StepResolution:
    state: GameState
    players: List[Player] = field(default_factory=list)
    step_info: Optional[StepInfo] = None
    check_winner: bool = False


class CardResolver:
    """Resolves one player action against a GameContext snapshot"""

    def __init__(self, ctx: GameContext, user_id: str, rng: Optional[random.Random] = None):
        self.snapshot = ctx
        self.ctx = GameContext(
            state=copy.deepcopy(ctx.state),
            room=copy.deepcopy(ctx.room),
            players=copy.deepcopy(ctx.players),
        )
        self.state = self.ctx.state
        self.user_id = user_id
        self.rng = rng or random.Random()
        self.active_player_id = self.state.current_step_player_id
        self.incoming_phases = list(self.state.current_step_phases)
        self.check_winner = False

        self._play_hand_handlers: Dict[CardAction, Callable[[Card, Optional[int], Optional[int]], Transition]] = {
            CardAction.LOCKED_DOOR: self._play_locked_door,
            CardAction.QUARANTINE: self._play_quarantine,
            CardAction.WHISKEY: self._play_whiskey,
            CardAction.RUN_AWAY: self._play_to_own_table,
            CardAction.SWAP_PLACES: self._play_to_own_table,
            CardAction.LOOK_AROUND: self._play_to_own_table,
            CardAction.AXE: self._play_to_own_table,
            CardAction.TEMPTATION: self._play_temptation,
            CardAction.FLAMETHROWER: self._play_flamethrower,
            CardAction.ANALYSIS: self._play_analysis,
            CardAction.PERSISTENCE: self._play_persistence,
            CardAction.SUSPICION: self._play_suspicion,
        }
        self._defence_handlers: Dict[CardAction, Callable[[Card], Transition]] = {
            CardAction.FEAR: self._defend_fear,
            CardAction.MISS: self._defend_on_table,
            CardAction.NO_BARBECUE: self._defend_against_event,
            CardAction.GOOD_HERE: self._defend_against_event,
            CardAction.NO_THANKS: self._defend_no_thanks,
        }
        self._play_table_handlers: Dict[CardAction, Callable[[Card, Optional[int], Optional[int]], Transition]] = {
            CardAction.OLD_ROPES: self._table_old_ropes,
            CardAction.BETWEEN_US: self._table_between_us,
            CardAction.OOPS: self._table_oops,
            CardAction.GO_AWAY: self._table_swap_with_other,
            CardAction.ONE_TWO: self._table_swap_with_other,
            CardAction.IS_IT_PARTY: self._table_is_it_party,
            CardAction.THREE_FOUR: self._table_three_four,
            CardAction.RUN_AWAY: self._table_run_away,
            CardAction.SWAP_PLACES: self._table_run_away,
            CardAction.AXE: self._table_axe,
            CardAction.LOOK_AROUND: self._table_look_around,
        }
        self._drop_table_handlers: Dict[CardAction, Callable[[Card, int, Optional[int]], Transition]] = {
            CardAction.BETWEEN_US: self._drop_panic,
            CardAction.CONFESSION_TIME: self._drop_panic,
            CardAction.OOPS: self._drop_panic,
            CardAction.WHISKEY: self._drop_whiskey,
            CardAction.FLAMETHROWER: self._drop_flamethrower,
            CardAction.NO_BARBECUE: self._drop_no_barbecue,
            CardAction.SUSPICION: self._drop_suspicion,
            CardAction.ANALYSIS: self._drop_analysis,
            CardAction.MISS: self._drop_miss,
            CardAction.GOOD_HERE: self._drop_good_here,
        }

    # Guards and lookups

    def _can_act(self, operation: str, *phases: StepPhase) -> bool:
        room_id = self.state.room_id
        if not is_taking_step(self.ctx, self.user_id):
            logger.warning(f"{operation} ignored in room {room_id}: user {self.user_id} is not taking step")
            return False
        if self.ctx.room.is_game_finished:
            logger.warning(f"{operation} ignored in room {room_id}: game is finished")
            return False
        if phases and not self.state.has_any_of_step_phases(*phases):
            current = [phase.value for phase in self.state.current_step_phases]
            logger.warning(f"{operation} ignored in room {room_id}: incorrect step phase {current}")
            return False
        return True

    def _ignore(self, operation: str, card: Card) -> None:
        logger.warning(f"{operation} has no effect for {card.action.value} in room {self.state.room_id}")
        return None

    def _hand(self, player_id: int) -> List[Card]:
        return self.state.hands.setdefault(player_id, [])

    def _table(self, player_id: int) -> List[Card]:
        return self.state.table.setdefault(player_id, [])

    def _border(self, player_id: int) -> List[Card]:
        return self.state.borders.setdefault(player_id, [])

    @staticmethod
    def _find(cards: List[Card], card_id: str) -> Optional[Card]:
        return next((card for card in cards if card.id == card_id), None)

    @staticmethod
    def _take_from(cards: List[Card], card_id: str) -> Optional[Card]:
        for index, card in enumerate(cards):
            if card.id == card_id:
                return cards.pop(index)
        return None

    def _require_card(self, cards: List[Card], card_id: str) -> Card:
        card = self._find(cards, card_id)
        if card is None:
            raise CardNotFoundError(f"Card {card_id} not found")
        return card

    def _require_player(self, player_id: Optional[int]) -> int:
        if player_id is None:
            raise MissingPlayerError("Missing other player ID")
        if self.ctx.get_player(player_id) is None:
            raise MissingPlayerError(f"No player sits at seat {player_id}")
        return player_id

    def _require_active_card(self, card_type: Optional[CardType] = None) -> Card:
        card = self.state.get_active_card(card_type)
        if card is None:
            kind = card_type.value.lower() if card_type else "requested"
            raise MissingActiveCardError(f"Missing active {kind} card")
        return card

    def _marker(self) -> List[StepPhase]:
        """Context marker carried over while a forced sub-resolution is running"""
        if self.state.has_step_phase(StepPhase.PROCESS_PANIC):
            return [StepPhase.PROCESS_PANIC]
        if self.state.has_step_phase(StepPhase.PROCESS_EVENT):
            return [StepPhase.PROCESS_EVENT]
        return []

    def _next(self, relative_to: Optional[int] = None) -> Optional[int]:
        return next_player_id(self.ctx, relative_to)

    # Zone side effects

    def _trash(self, card: Card, clear_event_requester: bool = False) -> None:
        card.hidden = True
        if clear_event_requester:
            card.event_requester = None
        self.state.trash.insert(0, card)

    def _trash_from(self, cards: List[Card], predicate: Callable[[Card], bool], **kwargs) -> None:
        for card in [item for item in cards if predicate(item)]:
            cards.remove(card)
            self._trash(card, **kwargs)

    def _trash_anywhere(self, card_id: str, **kwargs) -> None:
        part_id = self.state.get_table_part_id(card_id)
        if part_id is not None:
            self._trash_from(self._table(part_id), lambda item: item.id == card_id, **kwargs)

    def _move_to_hand(self, card: Card, player_id: int) -> None:
        card.hidden = False
        card.requester = None
        card.shared_with_player_id = None
        self._hand(player_id).append(card)

    # Ledger helpers

    def _hand_fulfillment(self, player_id: int) -> Transition:
        if len(self._hand(player_id)) < MAX_HAND_CARDS:
            return [StepPhase.FULFILL_HAND_FROM_DECK], player_id
        return [StepPhase.TAKE_FROM_DECK], self._next(player_id)

    def _give_next_or_fulfill(self, player_id: int, next_id: Optional[int] = None) -> Transition:
        """Exchange with the next seat when allowed, otherwise run the hand-fulfillment check"""
        if next_id is None:
            next_id = self._next(player_id)
        if can_exchange(self.ctx, player_id, next_id):
            return [StepPhase.GIVE_TO_NEXT_PLAYER], player_id
        return self._hand_fulfillment(player_id)

    def _process_reserved_data(self, phases: List[StepPhase], player_id: Optional[int]) -> Transition:
        """Resume the suspended step if there is one; the reservation is always cleared"""
        if self.state.has_reserved_data:
            phases = list(self.state.reserved_step_phases)
            player_id = self.state.reserved_step_player_id
        self.state.reserved_step_phases = []
        self.state.reserved_step_player_id = None
        return phases, player_id

    def _reserve(self, phases: List[StepPhase], player_id: Optional[int]) -> None:
        if self.state.has_reserved_data:
            raise ReservationConflictError(
                f"Room {self.state.room_id} already has a reserved step for seat {self.state.reserved_step_player_id}"
            )
        self.state.reserved_step_phases = list(phases)
        self.state.reserved_step_player_id = player_id

    def _process_quarantine(self, player_id: int) -> None:
        quarantine = self.state.get_quarantine(player_id)
        if quarantine is None:
            return
        steps_spent = quarantine.steps_spent or 0
        if steps_spent < QUARANTINE_STEPS:
            quarantine.steps_spent = steps_spent + 1
        else:
            self._trash_from(self._table(player_id), lambda item: item.id == quarantine.id)

    def _process_role_change(self, player_id: int, role: Role) -> None:
        player = self.ctx.get_player(player_id)
        if player is None:
            raise MissingPlayerError(f"No player sits at seat {player_id}")
        if player.role != role:
            player.previous_role = player.role
            player.role = role

    def _process_infection(self, player_id: int, card: Card) -> None:
        if self.ctx.is_human(player_id) and card.sub_type == CardSubType.INFECTION:
            self.ctx.get_player(player_id).role = Role.INFECTED
            logger.info(f"Seat {player_id} got infected in room {self.state.room_id}")

    def _process_swap_places(self, first_player_id: Optional[int], second_player_id: Optional[int]) -> None:
        if first_player_id is None or second_player_id is None:
            raise MissingPlayerError("Missing first or second player ID")
        first = self.ctx.get_player(first_player_id)
        second = self.ctx.get_player(second_player_id)
        if first is None or second is None:
            raise MissingPlayerError(f"Cannot swap seats {first_player_id} and {second_player_id}")

        hands = self.state.hands
        hands[first_player_id], hands[second_player_id] = (
            self._hand(second_player_id), self._hand(first_player_id)
        )
        first.player_id, second.player_id = second_player_id, first_player_id
        logger.info(f"Swapping 2 players: #{first_player_id} with #{second_player_id}")

    def _finish(self, transition: Transition, step_phase: StepPhase, card: Optional[Card] = None,
                other_player_id: Optional[int] = None, keep_last_card: bool = False,
                skip_showing: Optional[bool] = None, show_all: Optional[bool] = None) -> StepResolution:
        phases, player_id = transition
        state = self.state
        state.previous_step_phases = list(self.incoming_phases)
        state.previous_step_player_id = self.active_player_id
        state.current_step_phases = list(phases)
        state.current_step_player_id = player_id
        if not keep_last_card:
            state.last_card = copy.deepcopy(card)

        step_info = StepInfo(
            room_id=state.room_id,
            step_phase=step_phase,
            active_username=self.snapshot.get_username(self.active_player_id),
            other_username=self.snapshot.get_username(other_player_id),
            card_action=card.action if card else None,
            skip_showing=skip_showing,
            show_all=show_all,
        )
        return StepResolution(
            state=state,
            players=self.ctx.players,
            step_info=step_info,
            check_winner=self.check_winner,
        )

    # take_deck_card

    def take_deck_card(self, card_id: str) -> Optional[StepResolution]:
        if not self._can_act("take_deck_card", StepPhase.TAKE_FROM_DECK, StepPhase.FULFILL_HAND_FROM_DECK):
            return None

        state = self.state
        card = self._take_from(state.deck, card_id)
        if card is None:
            raise CardNotFoundError(f"Card {card_id} is not in the deck")

        if state.has_step_phase(StepPhase.TAKE_FROM_DECK):
            transition = self._take_from_deck(card)
            step_phase = StepPhase.TAKE_FROM_DECK
        else:
            transition = self._fulfill_hand_from_deck(card)
            step_phase = StepPhase.FULFILL_HAND_FROM_DECK

        return self._finish(transition, step_phase, card)

    def _take_from_deck(self, card: Card) -> Transition:
        state = self.state
        active = self.active_player_id
        hand = self._hand(active)
        marker = self._marker()
        max_hand_cards = MAX_HAND_CARDS

        if marker == [StepPhase.PROCESS_EVENT]:
            event_card = self._require_active_card(CardType.EVENT)
            if event_card.action == CardAction.PERSISTENCE:
                max_hand_cards += PERSISTENCE_EXTRA_DRAWS

        if card.is_event:
            card.hidden = False
            hand.append(card)

            if len(hand) < max_hand_cards:
                return [StepPhase.TAKE_FROM_DECK] + marker, active

            if not marker:
                phases = [StepPhase.DROP_FROM_HAND, StepPhase.PLAY_FROM_HAND]
                if state.has_quarantine(active):
                    self._process_quarantine(active)
                    has_axe = any(item.action == CardAction.AXE for item in hand)
                    # Still quarantined without an axe: only dropping is possible
                    if state.has_quarantine(active) and not has_axe:
                        phases = [StepPhase.DROP_FROM_HAND]
                return phases, active

            if marker == [StepPhase.PROCESS_PANIC]:
                panic_card = self._require_active_card(CardType.PANIC)
                if panic_card.action == CardAction.BLIND_DATE:
                    self._trash_anywhere(panic_card.id)
                    return self._hand_fulfillment(active)
                return [StepPhase.PROCESS_PANIC], active

            event_card = self._require_active_card(CardType.EVENT)
            if event_card.action == CardAction.PERSISTENCE:
                return [StepPhase.DROP_FROM_HAND, StepPhase.PROCESS_EVENT], active
            return [StepPhase.PROCESS_EVENT], active

        # Panic card: trashed while the hand is short, revealed once it is full
        if len(hand) < max_hand_cards:
            self._trash(card)
            return [StepPhase.TAKE_FROM_DECK] + marker, active

        if not marker:
            self._process_quarantine(active)

        phases = self._panic_reveal_phases(card)
        phases.append(StepPhase.PROCESS_PANIC)

        card.hidden = False
        card.panic_requester = active
        self._table(active).append(card)
        return phases, active

    def _panic_reveal_phases(self, card: Card) -> List[StepPhase]:
        state = self.state
        active = self.active_player_id

        if card.action == CardAction.ONE_TWO:
            third_previous = nth_previous_player_id(self.ctx, 3, active)
            third_next = nth_next_player_id(self.ctx, 3, active)
            if not state.has_quarantine(third_previous) or not state.has_quarantine(third_next):
                return [StepPhase.PLAY_FROM_TABLE]
            return [StepPhase.DROP_FROM_TABLE]

        if card.action == CardAction.GO_AWAY:
            available = [
                player_id for player_id in seated_player_ids(self.ctx)
                if player_id != active and not state.has_quarantine(player_id)
            ]
            return [StepPhase.PLAY_FROM_TABLE] if available else [StepPhase.DROP_FROM_TABLE]

        phase = PANIC_REVEAL_PHASES.get(card.action)
        return [phase] if phase else []

    def _fulfill_hand_from_deck(self, card: Card) -> Transition:
        state = self.state
        active = self.active_player_id
        hand = self._hand(active)

        if card.is_panic:
            self._trash(card)
            if len(hand) < MAX_HAND_CARDS:
                return [StepPhase.FULFILL_HAND_FROM_DECK] + self._marker(), active
            return self._process_reserved_data(*self._hand_fulfillment(active))

        card.hidden = False
        hand.append(card)

        if state.has_step_phase(StepPhase.PROCESS_PANIC):
            if len(hand) < MAX_HAND_CARDS:
                phases, player_id = self._hand_fulfillment(active)
                return phases + [StepPhase.PROCESS_PANIC], player_id
            # The forced refill is over: the panic card is done
            self._trash_from(self._table(active), lambda item: item.is_panic)
            return self._process_reserved_data(*self._give_next_or_fulfill(active))

        transition = self._hand_fulfillment(active)
        if len(hand) >= MAX_HAND_CARDS:
            return self._process_reserved_data(*transition)
        return transition

    # take_hand_card

    def take_hand_card(self, card_id: str) -> Optional[StepResolution]:
        if not self._can_act("take_hand_card", StepPhase.PICK_FROM_HAND):
            return None

        part_id = self.state.get_hand_part_id(card_id)
        if part_id is None:
            raise CardNotFoundError(f"Card {card_id} is not in any hand")
        card = self._require_card(self._hand(part_id), card_id)

        last_card = self.state.last_card
        if last_card is None or last_card.action != CardAction.SUSPICION:
            raise MissingActiveCardError("Picking a hand card requires an active suspicion")

        # Peek at the selected card of another player
        card.shared_with_player_id = self.active_player_id
        return self._finish(([StepPhase.DROP_FROM_TABLE], self.active_player_id), StepPhase.PICK_FROM_HAND, card,
                            other_player_id=part_id)

    # play_hand_card

    def play_hand_card(self, card_id: str, other_player_id: Optional[int] = None) -> Optional[StepResolution]:
        if not self._can_act("play_hand_card", StepPhase.PLAY_FROM_HAND, StepPhase.DEFENCE_FROM_HAND):
            return None

        active = self.active_player_id
        card = self._require_card(self._hand(active), card_id)
        self.check_winner = True

        if card.sub_type == CardSubType.DEFENCE:
            handler = self._defence_handlers.get(card.action)
            if handler is None:
                return self._ignore("play_hand_card", card)
            phases, player_id = handler(card)
            return self._finish((phases + self._marker(), player_id), StepPhase.DEFENCE_FROM_HAND, card,
                                other_player_id=other_player_id)

        self._take_from(self._hand(active), card_id)
        next_id = self._next()
        card.event_requester = active

        handler = self._play_hand_handlers.get(card.action)
        if handler is None:
            return self._ignore("play_hand_card", card)
        phases, player_id = handler(card, other_player_id, next_id)

        # Obstacles are processed passively
        if card.sub_type != CardSubType.OBSTACLE:
            phases = phases + [StepPhase.PROCESS_EVENT]

        return self._finish((phases, player_id), StepPhase.PLAY_FROM_HAND, card, other_player_id=other_player_id)

    def _play_locked_door(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        other = self._require_player(other_player_id)
        card.block_from = other
        self._border(self.active_player_id).append(card)
        return self._give_next_or_fulfill(self.active_player_id, next_id)

    def _play_quarantine(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        other = self._require_player(other_player_id)
        # Self-quarantine already counts the current step
        card.steps_spent = 1 if other == self.active_player_id else 0
        self._table(other).append(card)
        return self._give_next_or_fulfill(self.active_player_id, next_id)

    def _play_whiskey(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        self._table(self.active_player_id).append(card)
        for item in self._hand(self.active_player_id):
            item.shared = True
        return [StepPhase.DROP_FROM_TABLE], self.active_player_id

    def _play_to_own_table(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        self._table(self.active_player_id).append(card)
        return [StepPhase.PLAY_FROM_TABLE], self.active_player_id

    def _play_temptation(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        other = self._require_player(other_player_id)
        self._table(other).append(card)
        return [StepPhase.GIVE_TO_SPECIFIC_PLAYER], self.active_player_id

    def _play_flamethrower(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        other = self._require_player(other_player_id)
        self._table(other).append(card)

        defence = TABLE_PLAY_DEFENCES[card.action]
        if any(item.action == defence for item in self._hand(other)):
            return [StepPhase.DEFENCE_FROM_HAND], other

        self._process_role_change(other, Role.INACTIVE)
        return [StepPhase.DROP_FROM_TABLE], self.active_player_id

    def _play_analysis(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        other = self._require_player(other_player_id)
        self._table(other).append(card)
        for item in self._hand(other):
            item.shared_with_player_id = self.active_player_id
        return [StepPhase.DROP_FROM_TABLE], self.active_player_id

    def _play_persistence(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        self._table(self.active_player_id).append(card)
        return [StepPhase.TAKE_FROM_DECK], self.active_player_id

    def _play_suspicion(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        other = self._require_player(other_player_id)
        self._table(other).append(card)
        return [StepPhase.PICK_FROM_HAND], self.active_player_id

    def _defend_fear(self, card: Card) -> Transition:
        active = self.active_player_id
        requested = self._require_active_card()
        self._take_from(self._hand(active), card.id)
        requested.shared_with_player_id = active
        self._table(active).append(card)
        return [StepPhase.RETURN_TO_PLAYER], active

    def _defend_no_thanks(self, card: Card) -> Transition:
        self._require_active_card()
        return self._defend_with(card, StepPhase.RETURN_TO_PLAYER)

    def _defend_on_table(self, card: Card) -> Transition:
        return self._defend_with(card, StepPhase.DROP_FROM_TABLE)

    def _defend_against_event(self, card: Card) -> Transition:
        self._require_active_card(CardType.EVENT)
        return self._defend_with(card, StepPhase.DROP_FROM_TABLE)

    def _defend_with(self, card: Card, phase: StepPhase) -> Transition:
        active = self.active_player_id
        self._take_from(self._hand(active), card.id)
        self._table(active).append(card)
        return [phase], active

    # play_table_card

    def play_table_card(self, card_id: str, other_player_id: Optional[int] = None) -> Optional[StepResolution]:
        if not self._can_act("play_table_card", StepPhase.PLAY_FROM_TABLE):
            return None

        card = self._require_card(self._table(self.active_player_id), card_id)
        next_id = self._next()

        handler = self._play_table_handlers.get(card.action)
        if handler is None:
            return self._ignore("play_table_card", card)

        transition = handler(card, other_player_id, next_id)
        return self._finish(transition, StepPhase.PLAY_FROM_TABLE, card, other_player_id=other_player_id)

    def _table_old_ropes(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        for part in self.state.table.values():
            self._trash_from(part, lambda item: item.id == card.id or item.action == CardAction.QUARANTINE)
        return self._give_next_or_fulfill(self.active_player_id, next_id)

    def _table_between_us(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        other = self._require_player(other_player_id)
        for item in self._hand(self.active_player_id):
            item.shared_with_player_id = other
        return [StepPhase.DROP_FROM_TABLE, StepPhase.PROCESS_PANIC], self.active_player_id

    def _table_oops(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        for item in self._hand(self.active_player_id):
            item.shared = True
        return [StepPhase.DROP_FROM_TABLE, StepPhase.PROCESS_PANIC], self.active_player_id

    def _table_swap_with_other(self, card: Card, other_player_id: Optional[int],
                               next_id: Optional[int]) -> Transition:
        other = self._require_player(other_player_id)
        self._trash_from(self._table(self.active_player_id), lambda item: item.id == card.id)
        self._process_swap_places(self.active_player_id, other)
        # The acting player now sits at the other seat
        return self._give_next_or_fulfill(other)

    def _table_is_it_party(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        for part in self.state.table.values():
            self._trash_from(part, lambda item: item.id == card.id or item.action == CardAction.QUARANTINE)
        for part in self.state.borders.values():
            self._trash_from(part, lambda item: item.action == CardAction.LOCKED_DOOR)

        active = self.active_player_id
        player_ids = seated_player_ids(self.ctx)
        start = player_ids.index(active) if active in player_ids else 0
        player_ids = player_ids[start:] + player_ids[:start]
        # With an odd count the last seat stays where it is
        if len(player_ids) % 2 != 0:
            player_ids.pop()

        next_step_player_id = next_id
        for index in range(0, len(player_ids), 2):
            first, second = player_ids[index], player_ids[index + 1]
            self._process_swap_places(first, second)
            if active == first:
                next_step_player_id = second
            elif active == second:
                next_step_player_id = first

        return [StepPhase.GIVE_TO_NEXT_PLAYER], next_step_player_id

    def _table_three_four(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        self._trash_from(self._table(self.active_player_id), lambda item: item.id == card.id)
        for part in self.state.borders.values():
            self._trash_from(part, lambda item: item.action == CardAction.LOCKED_DOOR)
        return self._give_next_or_fulfill(self.active_player_id, next_id)

    def _table_run_away(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        active = self.active_player_id
        other = self._require_player(other_player_id)

        defence = TABLE_PLAY_DEFENCES[card.action]
        if any(item.action == defence for item in self._hand(other)):
            # Let the target decide whether the swap happens
            self._take_from(self._table(active), card.id)
            card.event_requester = active
            card.requester = active
            self._table(other).append(card)
            return [StepPhase.DEFENCE_FROM_HAND, StepPhase.ACCEPT_REQUEST, StepPhase.PROCESS_EVENT], other

        self._trash_from(self._table(active), lambda item: item.id == card.id)
        self._process_swap_places(active, other)
        return self._give_next_or_fulfill(other)

    def _table_axe(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        active = self.active_player_id
        other = self._require_player(other_player_id)
        state = self.state

        self._trash_from(self._table(active), lambda item: item.id == card.id)

        if state.has_quarantine(other):
            self._trash_from(self._table(other), lambda item: item.action == CardAction.QUARANTINE)
        elif state.has_locked_door(other, active):
            if other == active:
                border = self._border(active)
                door = next((item for item in border if item.action == CardAction.LOCKED_DOOR), None)
                if door is not None:
                    self._trash_from(border, lambda item: item.id == door.id)
            else:
                self._trash_from(self._border(other), lambda item: item.block_from == active)

        return self._give_next_or_fulfill(active, next_id)

    def _table_look_around(self, card: Card, other_player_id: Optional[int], next_id: Optional[int]) -> Transition:
        self._trash_from(self._table(self.active_player_id), lambda item: item.id == card.id)
        self.state.direction = self.state.direction.flipped()
        # Neighbors changed with the direction
        return self._give_next_or_fulfill(self.active_player_id)

    # drop_table_card

    def drop_table_card(self, card_id: str) -> Optional[StepResolution]:
        if not self._can_act("drop_table_card", StepPhase.DROP_FROM_TABLE):
            return None

        part_id = self.state.get_table_part_id(card_id)
        if part_id is None:
            raise CardNotFoundError(f"Card {card_id} is not on the table")
        card = self._require_card(self._table(part_id), card_id)
        next_id = self._next()

        handler = self._drop_table_handlers.get(card.action)
        if handler is None and card.is_panic:
            handler = self._drop_panic
        if handler is None:
            return self._ignore("drop_table_card", card)

        transition = handler(card, part_id, next_id)
        return self._finish(transition, StepPhase.DROP_FROM_TABLE, card)

    def _drop_panic(self, card: Card, part_id: int, next_id: Optional[int]) -> Transition:
        active = self.active_player_id
        if card.action == CardAction.BETWEEN_US:
            for item in self._hand(active):
                item.shared_with_player_id = None
        elif card.action in (CardAction.CONFESSION_TIME, CardAction.OOPS):
            for hand in self.state.hands.values():
                for item in hand:
                    item.shared = False

        self._trash_from(self._table(part_id), lambda item: item.id == card.id)
        return self._give_next_or_fulfill(active, next_id)

    def _drop_whiskey(self, card: Card, part_id: int, next_id: Optional[int]) -> Transition:
        active = self.active_player_id
        for item in self._hand(active):
            item.shared = False
        self._trash_from(self._table(part_id), lambda item: item.id == card.id)
        return self._give_next_or_fulfill(active, next_id)

    def _drop_flamethrower(self, card: Card, part_id: int, next_id: Optional[int]) -> Transition:
        # Everything the burnt player owned goes to the trash
        for cards in (self._table(part_id), self._border(part_id), self._hand(part_id)):
            self._trash_from(cards, lambda item: True)
        return self._give_next_or_fulfill(self.active_player_id, next_id)

    def _drop_no_barbecue(self, card: Card, part_id: int, next_id: Optional[int]) -> Transition:
        active = self.active_player_id
        event_card = self._require_active_card(CardType.EVENT)
        requester = event_card.event_requester
        next_after_requester = self._next(requester)

        if can_exchange(self.ctx, requester, next_after_requester):
            self._reserve([StepPhase.GIVE_TO_NEXT_PLAYER], requester)
        else:
            self._reserve([StepPhase.TAKE_FROM_DECK], next_after_requester)

        self._trash_from(self._table(active), lambda item: item.id in (card.id, event_card.id),
                         clear_event_requester=True)
        return [StepPhase.FULFILL_HAND_FROM_DECK], active

    def _drop_suspicion(self, card: Card, part_id: int, next_id: Optional[int]) -> Transition:
        active = self.active_player_id
        # Hide back the card that was peeked at
        for item in self._hand(part_id):
            if item.shared_with_player_id == active:
                item.shared_with_player_id = None
        self._trash_from(self._table(part_id), lambda item: item.id == card.id, clear_event_requester=True)
        return self._give_next_or_fulfill(active, next_id)

    def _drop_analysis(self, card: Card, part_id: int, next_id: Optional[int]) -> Transition:
        for item in self._hand(part_id):
            item.shared_with_player_id = None
        self._trash_from(self._table(part_id), lambda item: item.id == card.id, clear_event_requester=True)
        return self._give_next_or_fulfill(self.active_player_id, next_id)

    def _drop_miss(self, card: Card, part_id: int, next_id: Optional[int]) -> Transition:
        active = self.active_player_id
        requested = self._require_active_card()
        event_card = self.state.get_active_card(CardType.EVENT)

        # The next neighbor becomes the receiver; skip the requester to avoid a loop
        receiver = next_id
        if event_card is not None and receiver == event_card.event_requester:
            receiver = self._next(receiver)

        moving_ids = {requested.id}
        if event_card is not None:
            moving_ids.add(event_card.id)

        table = self._table(part_id)
        for item in [item for item in table if item.id in moving_ids]:
            table.remove(item)
            self._table(receiver).append(item)
        self._trash_from(table, lambda item: item.id == card.id, clear_event_requester=True)

        self._reserve([StepPhase.GIVE_TO_PREVIOUS_PLAYER, StepPhase.DEFENCE_FROM_HAND] + self._marker(), receiver)
        return [StepPhase.FULFILL_HAND_FROM_DECK], active

    def _drop_good_here(self, card: Card, part_id: int, next_id: Optional[int]) -> Transition:
        active = self.active_player_id
        event_card = self._require_active_card(CardType.EVENT)
        requester = event_card.event_requester

        self._trash_from(self._table(part_id), lambda item: item.id in (card.id, event_card.id),
                         clear_event_requester=True)

        # The requester stays in place and carries on with a regular exchange
        next_after_requester = self._next(requester)
        if can_exchange(self.ctx, requester, next_after_requester):
            self._reserve([StepPhase.GIVE_TO_NEXT_PLAYER], requester)
        else:
            self._reserve([StepPhase.TAKE_FROM_DECK], next_after_requester)
        return [StepPhase.FULFILL_HAND_FROM_DECK], active

    # drop_hand_card

    def drop_hand_card(self, card_id: str) -> Optional[StepResolution]:
        if not self._can_act("drop_hand_card", StepPhase.DROP_FROM_HAND):
            return None

        state = self.state
        active = self.active_player_id
        hand = self._hand(active)
        card = self._take_from(hand, card_id)
        if card is None:
            raise CardNotFoundError(f"Card {card_id} is not in the hand of seat {active}")
        self._trash(card)

        if state.has_step_phase(StepPhase.PROCESS_PANIC):
            panic_card = self._require_active_card(CardType.PANIC)
            if panic_card.action == CardAction.BLIND_DATE:
                phases = [StepPhase.TAKE_FROM_DECK]
            elif panic_card.action == CardAction.FORGETFULNESS:
                if len(hand) == MAX_HAND_CARDS - FORGETFULNESS_DROPS:
                    phases = [StepPhase.FULFILL_HAND_FROM_DECK]
                else:
                    phases = [StepPhase.DROP_FROM_HAND]
            else:
                return self._ignore("drop_hand_card", panic_card)
            transition = (phases + [StepPhase.PROCESS_PANIC], active)

        elif state.has_step_phase(StepPhase.PROCESS_EVENT):
            event_card = self._require_active_card(CardType.EVENT)
            if event_card.action != CardAction.PERSISTENCE:
                return self._ignore("drop_hand_card", event_card)

            if len(hand) > MAX_HAND_CARDS + PERSISTENCE_EXTRA_KEEP:
                transition = ([StepPhase.DROP_FROM_HAND, StepPhase.PROCESS_EVENT], active)
            else:
                # Persistence is over, back to a regular turn
                self._trash_anywhere(event_card.id)
                transition = ([StepPhase.DROP_FROM_HAND, StepPhase.PLAY_FROM_HAND], active)

        else:
            transition = self._give_next_or_fulfill(active)

        return self._finish(transition, StepPhase.DROP_FROM_HAND, card)

    # give_hand_card

    def give_hand_card(self, card_id: str, other_player_id: Optional[int]) -> Optional[StepResolution]:
        if not self._can_act("give_hand_card", StepPhase.GIVE_TO_PLAYER, StepPhase.GIVE_TO_NEXT_PLAYER,
                             StepPhase.GIVE_TO_PREVIOUS_PLAYER, StepPhase.GIVE_TO_SPECIFIC_PLAYER):
            return None

        state = self.state
        active = self.active_player_id
        card = self._require_card(self._hand(active), card_id)
        other = self._require_player(other_player_id)
        self.check_winner = True

        if state.has_any_of_step_phases(StepPhase.GIVE_TO_PLAYER, StepPhase.GIVE_TO_NEXT_PLAYER,
                                        StepPhase.GIVE_TO_SPECIFIC_PLAYER):
            transition = self._give_to_player(card, other)
            step_phase = StepPhase.GIVE_TO_PLAYER
        else:
            transition = self._give_back_to_requester(card, other)
            step_phase = StepPhase.GIVE_TO_PREVIOUS_PLAYER

        return self._finish(transition, step_phase, card, other_player_id=other)

    def _give_to_player(self, card: Card, other: int) -> Transition:
        state = self.state
        active = self.active_player_id
        self._take_from(self._hand(active), card.id)

        if state.has_step_phase(StepPhase.PROCESS_PANIC):
            panic_card = self._require_active_card(CardType.PANIC)
            if panic_card.action == CardAction.CHAIN_REACTION:
                self._hand(other).append(card)
                self._process_infection(other, card)

                if panic_card.panic_requester == other:
                    # The chain has gone full circle
                    self._trash_from(self._table(other), lambda item: item.is_panic)
                    return [StepPhase.TAKE_FROM_DECK], self._next(other)
                return [StepPhase.GIVE_TO_NEXT_PLAYER, StepPhase.PROCESS_PANIC], other

            phases = [StepPhase.GIVE_TO_PREVIOUS_PLAYER, StepPhase.DEFENCE_FROM_HAND, StepPhase.PROCESS_PANIC]
        else:
            phases = [StepPhase.GIVE_TO_PREVIOUS_PLAYER, StepPhase.DEFENCE_FROM_HAND] + self._marker()

        card.hidden = True
        card.requester = active
        self._table(other).append(card)
        self._process_infection(other, card)
        return phases, other

    def _give_back_to_requester(self, card: Card, other: int) -> Transition:
        state = self.state
        active = self.active_player_id
        requested = self._require_active_card()
        next_after_requester = self._next(other)

        self._take_from(self._hand(active), card.id)
        card.hidden = False
        self._hand(other).append(card)

        requested_part = state.get_table_part_id(requested.id)
        self._take_from(self._table(requested_part), requested.id)
        self._move_to_hand(requested, active)

        transition: Transition = ([StepPhase.TAKE_FROM_DECK], next_after_requester)
        if state.has_step_phase(StepPhase.PROCESS_PANIC):
            panic_card = self._require_active_card(CardType.PANIC)
            if (panic_card.action in PANIC_SWAP_CONTINUATIONS
                    and can_exchange(self.ctx, other, next_after_requester)):
                transition = ([StepPhase.GIVE_TO_NEXT_PLAYER], other)
            self._trash_anywhere(panic_card.id)
        elif state.has_step_phase(StepPhase.PROCESS_EVENT):
            event_card = self._require_active_card(CardType.EVENT)
            self._trash_anywhere(event_card.id)

        self._process_infection(active, requested)
        self._process_infection(other, card)
        return transition

    # give_table_card

    def give_table_card(self, card_id: str, other_player_id: Optional[int]) -> Optional[StepResolution]:
        if not self._can_act("give_table_card", StepPhase.RETURN_TO_PLAYER):
            return None

        state = self.state
        active = self.active_player_id
        card = self._require_card(self._table(active), card_id)
        other = self._require_player(other_player_id)

        next_after_requester = self._next(other)
        requested = self._require_active_card()
        event_card = state.get_active_card(CardType.EVENT)
        panic_card = state.get_active_card(CardType.PANIC)

        # Return the requested card after a successful defence
        self._take_from(self._table(active), requested.id)
        self._move_to_hand(requested, other)

        if state.has_step_phase(StepPhase.PROCESS_PANIC):
            if panic_card is None:
                raise MissingActiveCardError("Missing active panic card")
            continues = panic_card.action in PANIC_SWAP_CONTINUATIONS
            if continues and can_exchange(self.ctx, other, next_after_requester):
                self._reserve([StepPhase.GIVE_TO_NEXT_PLAYER], other)
            else:
                self._reserve([StepPhase.TAKE_FROM_DECK], next_after_requester)
            if continues:
                self._trash_anywhere(panic_card.id)
        elif state.has_step_phase(StepPhase.PROCESS_EVENT):
            if event_card is None:
                raise MissingActiveCardError("Missing active event card")
            if (event_card.action in EVENT_SWAP_CONTINUATIONS
                    and can_exchange(self.ctx, other, next_after_requester)):
                self._reserve([StepPhase.GIVE_TO_NEXT_PLAYER], other)
            else:
                self._reserve([StepPhase.TAKE_FROM_DECK], next_after_requester)
            if event_card.id != requested.id:
                self._trash_anywhere(event_card.id)
        else:
            self._reserve([StepPhase.TAKE_FROM_DECK], next_after_requester)

        self._trash_from(self._table(active), lambda item: item.sub_type == CardSubType.DEFENCE)
        return self._finish(([StepPhase.FULFILL_HAND_FROM_DECK], active), StepPhase.RETURN_TO_PLAYER, card,
                            other_player_id=other)

    # show_cards

    def show_cards(self, show_all: bool = True, skip_showing: bool = False) -> Optional[StepResolution]:
        if not self._can_act("show_cards", StepPhase.SHOW_FROM_HAND):
            return None
        if not self.state.has_step_phase(StepPhase.PROCESS_PANIC):
            raise MissingActiveCardError("Showing cards requires an active panic")

        active = self.active_player_id
        panic_card = self._require_active_card(CardType.PANIC)
        hand = self._hand(active)
        next_id = self._next()

        infection_card = next(
            (item for item in hand if item.sub_type == CardSubType.INFECTION and item.action != CardAction.IT),
            None
        )
        if not skip_showing:
            if show_all:
                for item in hand:
                    item.shared = True
            elif infection_card is not None:
                infection_card.shared = True

        requester = panic_card.panic_requester
        if next_id != requester and (skip_showing or infection_card is None):
            transition = ([StepPhase.SHOW_FROM_HAND, StepPhase.PROCESS_PANIC], next_id)
        else:
            # Stop the confession round
            transition = ([StepPhase.DROP_FROM_TABLE, StepPhase.PROCESS_PANIC], requester)

        return self._finish(transition, StepPhase.SHOW_FROM_HAND, keep_last_card=True,
                            skip_showing=skip_showing, show_all=show_all)

    # accept_request

    def accept_request(self) -> Optional[StepResolution]:
        if not self._can_act("accept_request", StepPhase.ACCEPT_REQUEST):
            return None

        active = self.active_player_id
        event_card = self._require_active_card(CardType.EVENT)
        requester = event_card.event_requester

        if event_card.action not in (CardAction.RUN_AWAY, CardAction.SWAP_PLACES):
            return self._ignore("accept_request", event_card)
        if requester is None:
            raise MissingPlayerError("Missing event requester")

        self._trash_from(self._table(active), lambda item: item.id == event_card.id)
        self._process_swap_places(active, requester)

        # The requester now sits at this seat
        transition = self._give_next_or_fulfill(active)
        return self._finish(transition, StepPhase.ACCEPT_REQUEST, other_player_id=requester, keep_last_card=True)

    # refill_deck

    def refill_deck(self) -> Optional[StepResolution]:
        if not self._can_act("refill_deck"):
            return None

        state = self.state
        cards = list(state.trash)
        self.rng.shuffle(cards)
        for card in cards:
            card.reset_flags()
        state.deck.extend(cards)
        state.trash = []

        step_info = StepInfo(
            room_id=state.room_id,
            step_phase=StepPhase.REFILL_DECK,
            active_username=self.snapshot.get_username(self.active_player_id),
        )
        return StepResolution(state=state, players=self.ctx.players, step_info=step_info)

    # Admin helpers

    def put_on_quarantine(self, player_id: Optional[int]) -> StepResolution:
        seat = self._require_player(player_id)
        card = Card.create(CardAction.QUARANTINE, hidden=False, event_requester=seat, steps_spent=0)
        self._table(seat).append(card)
        self.state.previous_step_phases = list(self.state.current_step_phases)
        return StepResolution(state=self.state, players=self.ctx.players)

    def set_locked_door(self, from_id: Optional[int], to_id: Optional[int]) -> StepResolution:
        seat = self._require_player(from_id)
        blocked = self._require_player(to_id)
        card = Card.create(CardAction.LOCKED_DOOR, hidden=False, event_requester=seat, block_from=blocked)
        self._border(seat).append(card)
        self.state.previous_step_phases = list(self.state.current_step_phases)
        return StepResolution(state=self.state, players=self.ctx.players)
