"""
GameEngine: the explicit context object that runs card actions for a room.

Every mutating call takes the per-room store lock, loads one snapshot, runs the
pure CardResolver and writes the outcome back with a single commit. The step
log is written after the commit; its failures never undo the game write.
"""
import logging
import random
from typing import Any, Callable, Dict, List, Optional

from services.card_resolver import CardResolver, GameNotFoundError, StepResolution
from services.deck_builder import init_all_cards
from services.game_models import (
    MAX_PLAYERS,
    MIN_PLAYERS,
    Direction,
    GameContext,
    GameState,
    Role,
    StepInfo,
    StepPhase,
    anybody_won,
    humans_won,
)
from services.game_persistence import GamePersistence
from services.legality import card_options
from services.state_store import GAMES, PLAYERS, ROOMS, StateStore, Write
from services.step_log import StepLog

logger = logging.getLogger(__name__)


class GameEngine:
    def __init__(self, store: StateStore, step_log: Optional[StepLog] = None,
                 rng: Optional[random.Random] = None):
        self.store = store
        self.step_log = step_log
        self.rng = rng or random.Random()

    # Snapshots

    async def load_context(self, room_id: str) -> GameContext:
        game_data = await self.store.get(GAMES, room_id)
        if not game_data:
            raise GameNotFoundError(f"No game found for room {room_id}")
        room_data = await self.store.get(ROOMS, room_id)
        if not room_data:
            raise GameNotFoundError(f"Room {room_id} not found")
        players = await self.store.query_by_field(PLAYERS, "room_id", "==", room_id)

        return GameContext(
            state=GamePersistence.deserialize_game_state(game_data),
            room=GamePersistence.deserialize_room(room_data),
            players=[GamePersistence.deserialize_player(data) for data in players],
        )

    async def get_game(self, room_id: str) -> GameState:
        return (await self.load_context(room_id)).state

    async def get_options(self, room_id: str, user_id: str, card_id: str) -> Dict[str, Any]:
        """Legality flags and receivers for one card, as seen by user_id"""
        ctx = await self.load_context(room_id)
        return card_options(ctx, user_id, card_id)

    async def get_step_log(self, room_id: str, limit: Optional[int] = None) -> List[StepInfo]:
        if not self.step_log:
            return []
        return await self.step_log.list_for_room(room_id, limit)

    # Resolution

    async def _resolve(self, room_id: str, user_id: Optional[str],
                       operation: Callable[[CardResolver], Optional[StepResolution]]) -> GameState:
        async with self.store.lock(f"game:{room_id}"):
            ctx = await self.load_context(room_id)
            resolution = operation(CardResolver(ctx, user_id, self.rng))
            if resolution is None:
                return ctx.state
            await self._commit(ctx, resolution)

        step_info = resolution.step_info
        if step_info:
            logger.info(
                f"Room {room_id}: {step_info.active_username} resolved {step_info.step_phase.value}"
                f"{' with ' + step_info.card_action.value if step_info.card_action else ''}, "
                f"next seat {resolution.state.current_step_player_id} "
                f"{[phase.value for phase in resolution.state.current_step_phases]}"
            )
            if self.step_log:
                await self.step_log.record(step_info)
        return resolution.state

    async def _commit(self, ctx: GameContext, resolution: StepResolution) -> None:
        room_id = ctx.state.room_id
        writes = [Write(GAMES, room_id, GamePersistence.serialize_game_state(resolution.state), merge=False)]

        before = {player.doc_id: GamePersistence.serialize_player(player) for player in ctx.players}
        for player in resolution.players:
            data = GamePersistence.serialize_player(player)
            if before.get(player.doc_id) != data:
                writes.append(Write(PLAYERS, player.doc_id, data, merge=False))

        if resolution.check_winner and not ctx.room.is_game_finished and anybody_won(resolution.players):
            writes.append(Write(ROOMS, room_id, {"is_game_finished": True}))
            winners = "Humans" if humans_won(resolution.players) else "It"
            logger.info(f"Game in room {room_id} is finished: {winners} won")

        await self.store.commit(writes)

    # Card actions

    async def take_deck_card(self, room_id: str, user_id: str, card_id: str) -> GameState:
        return await self._resolve(room_id, user_id, lambda resolver: resolver.take_deck_card(card_id))

    async def take_hand_card(self, room_id: str, user_id: str, card_id: str) -> GameState:
        return await self._resolve(room_id, user_id, lambda resolver: resolver.take_hand_card(card_id))

    async def play_hand_card(self, room_id: str, user_id: str, card_id: str,
                             other_player_id: Optional[int] = None) -> GameState:
        return await self._resolve(
            room_id, user_id, lambda resolver: resolver.play_hand_card(card_id, other_player_id)
        )

    async def play_table_card(self, room_id: str, user_id: str, card_id: str,
                              other_player_id: Optional[int] = None) -> GameState:
        return await self._resolve(
            room_id, user_id, lambda resolver: resolver.play_table_card(card_id, other_player_id)
        )

    async def drop_hand_card(self, room_id: str, user_id: str, card_id: str) -> GameState:
        return await self._resolve(room_id, user_id, lambda resolver: resolver.drop_hand_card(card_id))

    async def drop_table_card(self, room_id: str, user_id: str, card_id: str) -> GameState:
        return await self._resolve(room_id, user_id, lambda resolver: resolver.drop_table_card(card_id))

    async def give_hand_card(self, room_id: str, user_id: str, card_id: str,
                             other_player_id: Optional[int]) -> GameState:
        return await self._resolve(
            room_id, user_id, lambda resolver: resolver.give_hand_card(card_id, other_player_id)
        )

    async def give_table_card(self, room_id: str, user_id: str, card_id: str,
                              other_player_id: Optional[int]) -> GameState:
        return await self._resolve(
            room_id, user_id, lambda resolver: resolver.give_table_card(card_id, other_player_id)
        )

    async def show_cards(self, room_id: str, user_id: str, show_all: bool = True,
                         skip_showing: bool = False) -> GameState:
        return await self._resolve(
            room_id, user_id, lambda resolver: resolver.show_cards(show_all, skip_showing)
        )

    async def accept_request(self, room_id: str, user_id: str) -> GameState:
        return await self._resolve(room_id, user_id, lambda resolver: resolver.accept_request())

    async def refill_deck(self, room_id: str, user_id: str) -> GameState:
        return await self._resolve(room_id, user_id, lambda resolver: resolver.refill_deck())

    # Admin helpers

    async def put_on_quarantine(self, room_id: str, player_id: int) -> GameState:
        return await self._resolve(room_id, None, lambda resolver: resolver.put_on_quarantine(player_id))

    async def set_locked_door(self, room_id: str, from_id: int, to_id: int) -> GameState:
        return await self._resolve(room_id, None, lambda resolver: resolver.set_locked_door(from_id, to_id))

    # Lifecycle

    async def start_game(self, room_id: str, user_id: str) -> GameState:
        """Deal cards to the seated players and switch the room into game mode"""
        async with self.store.lock(f"game:{room_id}"):
            room_data = await self.store.get(ROOMS, room_id)
            if not room_data:
                raise GameNotFoundError(f"Room {room_id} not found")
            room = GamePersistence.deserialize_room(room_data)

            members = [
                GamePersistence.deserialize_player(data)
                for data in await self.store.query_by_field(PLAYERS, "room_id", "==", room_id)
            ]
            seated = sorted((player for player in members if player.has_seat), key=lambda player: player.player_id)
            if not MIN_PLAYERS <= len(seated) <= MAX_PLAYERS:
                raise ValueError(f"A game needs {MIN_PLAYERS} to {MAX_PLAYERS} seated players, got {len(seated)}")

            player_ids = [player.player_id for player in seated]
            if room.has_random_starting_player:
                starting_player_id = self.rng.choice(player_ids)
            else:
                starting_player_id = player_ids[0]

            deck, hands, table, borders, lucky_player_id = init_all_cards(
                player_ids, room.has_cards_based_on_quantity, self.rng
            )
            state = GameState(
                room_id=room_id,
                deck=deck,
                trash=[],
                hands=hands,
                table=table,
                borders=borders,
                current_step_player_id=starting_player_id,
                current_step_phases=[StepPhase.TAKE_FROM_DECK],
                direction=Direction.CLOCKWISE,
                author_id=user_id,
            )

            writes = [Write(GAMES, room_id, GamePersistence.serialize_game_state(state), merge=False)]
            for player in members:
                if not player.has_seat:
                    # Remove players without selected places
                    writes.append(Write(PLAYERS, player.doc_id))
                    continue
                player.role = Role.IT if player.player_id == lucky_player_id else Role.HUMAN
                player.previous_role = None
                writes.append(Write(PLAYERS, player.doc_id, GamePersistence.serialize_player(player), merge=False))
            writes.append(Write(ROOMS, room_id, {"is_game_mode": True, "is_game_finished": False}))

            await self.store.commit(writes)

        logger.info(f"Game started in room {room_id} with {len(seated)} players, seat {starting_player_id} begins")
        return state

    async def end_game(self, room_id: str, delete_data: bool = True) -> None:
        """Leave game mode; members are removed, or reset to humans when delete_data is False"""
        async with self.store.lock(f"game:{room_id}"):
            if not await self.store.get(ROOMS, room_id):
                raise GameNotFoundError(f"Room {room_id} not found")

            members = [
                GamePersistence.deserialize_player(data)
                for data in await self.store.query_by_field(PLAYERS, "room_id", "==", room_id)
            ]
            writes = [Write(ROOMS, room_id, {"is_game_mode": False, "is_game_finished": False})]
            for player in members:
                if delete_data:
                    writes.append(Write(PLAYERS, player.doc_id))
                else:
                    writes.append(Write(PLAYERS, player.doc_id, {"role": Role.HUMAN.value, "previous_role": None}))
            writes.append(Write(GAMES, room_id))

            await self.store.commit(writes)

        if self.step_log:
            await self.step_log.delete_for_room(room_id)
        logger.info(f"Game ended in room {room_id}")

    async def restart_game(self, room_id: str, user_id: str) -> GameState:
        await self.end_game(room_id, delete_data=False)
        return await self.start_game(room_id, user_id)
