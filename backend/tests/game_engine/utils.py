"""Test utilities for game engine tests"""

from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

from services.card_resolver import CardResolver, StepResolution
from services.game_models import (
    Card,
    CardAction,
    Direction,
    GameContext,
    GameState,
    Player,
    Role,
    Room,
    StepPhase,
)
from services.game_persistence import GamePersistence
from services.state_store import GAMES, PLAYERS, ROOMS, StateStore, Write

ROOM_ID = "room-1"


def user_id(seat: int) -> str:
    return f"user_{seat}"


def make_card(action: CardAction, **kwargs) -> Card:
    """Create a face-up card unless told otherwise"""
    kwargs.setdefault("hidden", False)
    return Card.create(action, **kwargs)


def filler(count: int, action: CardAction = CardAction.ANALYSIS) -> List[Card]:
    """Cards with no effect on the branch under test"""
    return [make_card(action) for _ in range(count)]


def make_context(seats: int = 4,
                 current: int = 1,
                 phases: Optional[List[StepPhase]] = None,
                 hands: Optional[Dict[int, List[Card]]] = None,
                 table: Optional[Dict[int, List[Card]]] = None,
                 borders: Optional[Dict[int, List[Card]]] = None,
                 deck: Optional[List[Card]] = None,
                 trash: Optional[List[Card]] = None,
                 roles: Optional[Dict[int, Role]] = None,
                 direction: Direction = Direction.CLOCKWISE,
                 last_card: Optional[Card] = None,
                 previous_phases: Optional[List[StepPhase]] = None,
                 reserved: Optional[Tuple[List[StepPhase], int]] = None,
                 bot_seats: Iterable[int] = (),
                 bot_manager_id: Optional[str] = None,
                 is_game_finished: bool = False) -> GameContext:
    """Build a running game; every seat gets four filler cards unless a hand is given"""
    seat_ids = list(range(1, seats + 1))
    bot_seats = set(bot_seats)
    roles = roles or {}

    state = GameState(
        room_id=ROOM_ID,
        deck=deck if deck is not None else filler(10, CardAction.WHISKEY),
        trash=trash or [],
        hands={seat: (hands or {}).get(seat, filler(4)) for seat in seat_ids},
        table={seat: (table or {}).get(seat, []) for seat in seat_ids},
        borders={seat: (borders or {}).get(seat, []) for seat in seat_ids},
        current_step_player_id=current,
        current_step_phases=list(phases or [StepPhase.TAKE_FROM_DECK]),
        previous_step_phases=list(previous_phases or []),
        direction=direction,
        last_card=last_card,
        author_id=user_id(1),
    )
    for card in state.deck:
        card.hidden = True
    if reserved:
        state.reserved_step_phases, state.reserved_step_player_id = list(reserved[0]), reserved[1]

    players = [
        Player(
            user_id=f"BOT_{seat}" if seat in bot_seats else user_id(seat),
            room_id=ROOM_ID,
            player_id=seat,
            role=roles.get(seat, Role.HUMAN),
            username=f"player{seat}",
        )
        for seat in seat_ids
    ]
    room = Room(
        room_id=ROOM_ID,
        name="Test room",
        author_id=user_id(1),
        owner_id=user_id(1),
        bot_manager_id=bot_manager_id,
        is_game_mode=True,
        is_game_finished=is_game_finished,
    )
    return GameContext(state=state, room=room, players=players)


def resolver_for(ctx: GameContext, user: Optional[str] = None) -> CardResolver:
    """Resolver acting as the current seat (or as the given user)"""
    if user is None:
        user = ctx.current_player.user_id
    return CardResolver(ctx, user)


def seat_of(resolution: StepResolution, user: str) -> Optional[int]:
    player = next((player for player in resolution.players if player.user_id == user), None)
    return player.player_id if player else None


def role_of(resolution: StepResolution, seat: int) -> Optional[Role]:
    player = next((player for player in resolution.players if player.player_id == seat), None)
    return player.role if player else None


def ids(cards: Iterable[Card]) -> List[str]:
    return [card.id for card in cards]


async def seed_game(store: StateStore, ctx: GameContext) -> None:
    """Write a prepared context into a store the way the engine would find it"""
    writes = [
        Write(GAMES, ctx.state.room_id, GamePersistence.serialize_game_state(ctx.state), merge=False),
        Write(ROOMS, ctx.room.room_id, GamePersistence.serialize_room(ctx.room), merge=False),
    ]
    for player in ctx.players:
        writes.append(Write(PLAYERS, player.doc_id, GamePersistence.serialize_player(player), merge=False))
    await store.commit(writes)


def assert_cards_unique(state: GameState):
    """Assert every card id lives in exactly one zone"""
    counts = Counter(card.id for card in state.all_cards())
    duplicates = [card_id for card_id, count in counts.items() if count > 1]
    assert not duplicates, f"Cards found in several zones: {duplicates}"


def assert_cards_conserved(before: GameState, after: GameState):
    assert sorted(ids(before.all_cards())) == sorted(ids(after.all_cards()))


def assert_next_step(resolution: StepResolution, phases: List[StepPhase], player_id: Optional[int]):
    """Assert the ledger points at the expected phases and seat"""
    state = resolution.state
    assert state.current_step_phases == phases, \
        f"Expected phases {[p.value for p in phases]}, got {[p.value for p in state.current_step_phases]}"
    assert state.current_step_player_id == player_id, \
        f"Expected seat {player_id}, got {state.current_step_player_id}"


def assert_reserved(state: GameState, phases: List[StepPhase], player_id: Optional[int]):
    assert state.reserved_step_phases == phases
    assert state.reserved_step_player_id == player_id


def assert_no_reservation(state: GameState):
    assert state.reserved_step_phases == []
    assert state.reserved_step_player_id is None
