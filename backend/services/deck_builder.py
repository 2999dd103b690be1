import logging
import random
from typing import Dict, List, Optional, Tuple

from services.card_rules import CARD_RULES, EVENT_DRAWS, PANIC_DRAWS
from services.game_models import MAX_HAND_CARDS, Card, CardAction, CardSubType, CardType

logger = logging.getLogger(__name__)


def _available_actions(players_qty: int, filter_by_quantity: bool) -> List[CardAction]:
    actions = [action for action in CardAction if action in CARD_RULES]
    if filter_by_quantity:
        actions = [action for action in actions if CARD_RULES[action].min_players <= players_qty]
    # The single "It" card is dealt separately
    return [action for action in actions if action != CardAction.IT]


def init_deck(players_qty: int, filter_by_quantity: bool = False,
              rng: Optional[random.Random] = None) -> List[Card]:
    """Build a shuffled deck of event and panic cards within the catalog limits.

    Event cards are drawn by picking a random subtype first and then a random
    action of that subtype, so every subtype gets a fair share of the deck.
    """
    rng = rng or random.Random()
    actions = _available_actions(players_qty, filter_by_quantity)
    counters: Dict[CardAction, int] = {}
    deck: List[Card] = []

    def take(action: CardAction):
        deck.append(Card.create(action, hidden=True))
        counters[action] = counters.get(action, 0) + 1
        if counters[action] >= CARD_RULES[action].max_quantity:
            actions.remove(action)

    for _ in range(EVENT_DRAWS):
        event_actions = [action for action in actions if action.card_type == CardType.EVENT]
        sub_types = sorted({action.sub_type for action in event_actions}, key=lambda sub_type: sub_type.value)
        if not sub_types:
            break
        sub_type = rng.choice(sub_types)
        take(rng.choice([action for action in event_actions if action.sub_type == sub_type]))

    for _ in range(PANIC_DRAWS):
        panic_actions = [action for action in actions if action.card_type == CardType.PANIC]
        if not panic_actions:
            break
        take(rng.choice(panic_actions))

    rng.shuffle(deck)
    return deck


def init_all_cards(player_ids: List[int], filter_by_quantity: bool = False,
                   rng: Optional[random.Random] = None
                   ) -> Tuple[List[Card], Dict[int, List[Card]], Dict[int, List[Card]], Dict[int, List[Card]], int]:
    """Deal the starting hands.

    Returns (deck, hands, table, borders, lucky_player_id) where the lucky seat
    holds the "It" card among its starting hand.
    """
    if not player_ids:
        raise ValueError("Cannot deal cards without seated players")

    rng = rng or random.Random()
    deck = init_deck(len(player_ids), filter_by_quantity, rng)

    # Infection and panic cards never reach the starting hands
    separated = [card for card in deck if card.is_panic or card.sub_type == CardSubType.INFECTION]
    deck = [card for card in deck if not (card.is_panic or card.sub_type == CardSubType.INFECTION)]

    hands: Dict[int, List[Card]] = {player_id: [] for player_id in player_ids}
    lucky_player_id = rng.choice(player_ids)

    for player_id in player_ids:
        dealt = MAX_HAND_CARDS - 1 if player_id == lucky_player_id else MAX_HAND_CARDS
        for _ in range(dealt):
            if not deck:
                break
            card = deck.pop(0)
            card.hidden = False
            hands[player_id].append(card)
        if player_id == lucky_player_id:
            hands[player_id].append(Card.create(CardAction.IT, hidden=False))

    deck = deck + separated
    rng.shuffle(deck)
    for card in deck:
        card.hidden = True

    table: Dict[int, List[Card]] = {player_id: [] for player_id in player_ids}
    borders: Dict[int, List[Card]] = {player_id: [] for player_id in player_ids}
    logger.info(f"Dealt {len(player_ids)} hands, {len(deck)} cards left in the deck")
    return deck, hands, table, borders, lucky_player_id
