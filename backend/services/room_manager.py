import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from services.game_models import (
    BOT_PREFIX,
    MAX_PLAYERS,
    Player,
    Role,
    Room,
    generate_id,
    player_doc_id,
)
from services.game_persistence import GamePersistence
from services.state_store import PLAYERS, ROOMS, StateStore, Write

logger = logging.getLogger(__name__)

ROOM_SETTINGS = (
    "name",
    "description",
    "has_random_starting_player",
    "has_cards_based_on_quantity",
    "bot_manager_id",
)


class AlreadyInRoomError(Exception):
    """Exception raised when a user is already in a room"""

    def __init__(self, message: str, current_room: Room):
        super().__init__(message)
        self.current_room = current_room


class RoomManager:
    """Rooms, memberships and seats, stored as documents in the StateStore"""

    def __init__(self, store: StateStore):
        self.store = store

    async def _ensure_not_in_room(self, user_id: str) -> None:
        memberships = await self.store.query_by_field(PLAYERS, "user_id", "==", user_id)
        for membership in memberships:
            current_room = await self.get_room(membership["room_id"])
            if current_room:
                raise AlreadyInRoomError(f"User {user_id} is already in a room", current_room)
            # Clean up stale membership
            await self.store.delete(PLAYERS, membership["id"])

    async def _require_room(self, room_id: str) -> Room:
        room = await self.get_room(room_id)
        if not room:
            raise ValueError(f"Room {room_id} not found")
        return room

    async def _require_player(self, room_id: str, user_id: str) -> Player:
        data = await self.store.get(PLAYERS, player_doc_id(room_id, user_id))
        if not data:
            raise ValueError(f"User {user_id} is not in room {room_id}")
        return GamePersistence.deserialize_player(data)

    @staticmethod
    def _require_owner(room: Room, user_id: str) -> None:
        if room.owner_id != user_id:
            raise ValueError("Only the room owner can do this")

    async def create_room(self, user_id: str, name: str, username: Optional[str] = None,
                          settings: Optional[Dict[str, Any]] = None) -> Room:
        """Create a new room with its author as owner and first member"""
        await self._ensure_not_in_room(user_id)

        settings = settings or {}
        room = Room(
            room_id=generate_id(12),
            name=name,
            author_id=user_id,
            owner_id=user_id,
            description=settings.get("description"),
            has_random_starting_player=settings.get("has_random_starting_player", False),
            has_cards_based_on_quantity=settings.get("has_cards_based_on_quantity", False),
            created_at=datetime.utcnow(),
        )
        player = Player(user_id=user_id, room_id=room.room_id, username=username)

        await self.store.commit([
            Write(ROOMS, room.room_id, GamePersistence.serialize_room(room), merge=False),
            Write(PLAYERS, player.doc_id, GamePersistence.serialize_player(player), merge=False),
        ])
        logger.info(f"Room {room.room_id} created by {user_id}")
        return room

    async def get_room(self, room_id: str) -> Optional[Room]:
        data = await self.store.get(ROOMS, room_id)
        return GamePersistence.deserialize_room(data) if data else None

    async def list_rooms(self) -> List[Room]:
        rooms = [GamePersistence.deserialize_room(data) for data in await self.store.get_all(ROOMS)]
        return sorted(rooms, key=lambda room: room.created_at, reverse=True)

    async def get_players(self, room_id: str) -> List[Player]:
        players = await self.store.query_by_field(PLAYERS, "room_id", "==", room_id)
        return [GamePersistence.deserialize_player(data) for data in players]

    def room_lock(self, room_id: str):
        """Same per-room lock the game engine holds while dealing and resolving steps"""
        return self.store.lock(f"game:{room_id}")

    async def _require_free_seat(self, room: Room, user_id: str, player_id: int) -> None:
        if room.is_game_mode:
            raise ValueError("Cannot change seats while the game is running")
        if not 1 <= player_id <= MAX_PLAYERS:
            raise ValueError(f"Seat must be between 1 and {MAX_PLAYERS}")

        taken = await self.store.query(PLAYERS, [("room_id", "==", room.room_id), ("player_id", "==", player_id)])
        if any(data["user_id"] != user_id for data in taken):
            raise ValueError(f"Seat {player_id} is already taken")

    async def delete_room(self, room_id: str, user_id: str) -> None:
        """Delete a room and all of its memberships (owner only)"""
        async with self.room_lock(room_id):
            room = await self._require_room(room_id)
            self._require_owner(room, user_id)

            players = await self.get_players(room_id)
            await self.store.commit(
                [Write(PLAYERS, player.doc_id) for player in players] + [Write(ROOMS, room_id)]
            )
        logger.info(f"Room {room_id} deleted by {user_id}")

    async def join_room(self, room_id: str, user_id: str, username: Optional[str] = None) -> Room:
        """Join an existing room without taking a seat"""
        async with self.room_lock(room_id):
            room = await self._require_room(room_id)
            await self._ensure_not_in_room(user_id)

            player = Player(user_id=user_id, room_id=room_id, username=username)
            await self.store.set(PLAYERS, player.doc_id, GamePersistence.serialize_player(player))
        logger.info(f"User {user_id} joined room {room_id}")
        return room

    async def leave_room(self, room_id: str, user_id: str) -> Optional[str]:
        """Leave the room. Returns the new owner id if ownership moved"""
        async with self.room_lock(room_id):
            room = await self._require_room(room_id)
            player = await self._require_player(room_id, user_id)

            writes = [Write(PLAYERS, player.doc_id)]
            new_owner_id = None
            if room.owner_id == user_id:
                others = [member for member in await self.get_players(room_id) if member.user_id != user_id]
                humans = [member for member in others if not member.is_bot]
                if humans:
                    new_owner_id = humans[0].user_id
                    writes.append(Write(ROOMS, room_id, {"owner_id": new_owner_id}))
                else:
                    # No one left, delete the room
                    writes.extend(Write(PLAYERS, bot.doc_id) for bot in others)
                    writes.append(Write(ROOMS, room_id))

            await self.store.commit(writes)
        logger.info(f"User {user_id} left room {room_id}")
        return new_owner_id

    async def take_seat(self, room_id: str, user_id: str, player_id: int) -> Player:
        async with self.room_lock(room_id):
            room = await self._require_room(room_id)
            player = await self._require_player(room_id, user_id)
            await self._require_free_seat(room, user_id, player_id)

            player.player_id = player_id
            player.role = Role.HUMAN
            await self.store.update(PLAYERS, player.doc_id, {"player_id": player_id, "role": Role.HUMAN.value})
        return player

    async def release_seat(self, room_id: str, user_id: str) -> Player:
        async with self.room_lock(room_id):
            room = await self._require_room(room_id)
            if room.is_game_mode:
                raise ValueError("Cannot change seats while the game is running")

            player = await self._require_player(room_id, user_id)
            player.player_id = None
            player.role = None
            await self.store.update(PLAYERS, player.doc_id, {"player_id": None, "role": None})
        return player

    async def add_bot(self, room_id: str, user_id: str, player_id: int) -> Player:
        """Seat a bot; the owner becomes the bot manager unless one is already set"""
        async with self.room_lock(room_id):
            room = await self._require_room(room_id)
            self._require_owner(room, user_id)

            bot = Player(
                user_id=f"{BOT_PREFIX}_{generate_id(8)}",
                room_id=room_id,
                player_id=player_id,
                role=Role.HUMAN,
                username=f"Bot {player_id}",
            )
            await self._require_free_seat(room, bot.user_id, player_id)

            writes = [Write(PLAYERS, bot.doc_id, GamePersistence.serialize_player(bot), merge=False)]
            if not room.bot_manager_id:
                writes.append(Write(ROOMS, room_id, {"bot_manager_id": user_id}))
            await self.store.commit(writes)
        return bot

    async def remove_bot(self, room_id: str, user_id: str, bot_user_id: str) -> None:
        async with self.room_lock(room_id):
            room = await self._require_room(room_id)
            self._require_owner(room, user_id)
            if room.is_game_mode:
                raise ValueError("Cannot remove bots while the game is running")

            bot = await self._require_player(room_id, bot_user_id)
            if not bot.is_bot:
                raise ValueError(f"User {bot_user_id} is not a bot")
            await self.store.delete(PLAYERS, bot.doc_id)

    async def update_room(self, room_id: str, user_id: str, settings: Dict[str, Any]) -> Room:
        """Update room settings (owner only)"""
        async with self.room_lock(room_id):
            room = await self._require_room(room_id)
            self._require_owner(room, user_id)
            if room.is_game_mode:
                raise ValueError("Cannot update settings after the game has started")

            changes = {key: value for key, value in settings.items() if key in ROOM_SETTINGS}
            if changes:
                await self.store.update(ROOMS, room_id, changes)
        return await self.get_room(room_id)
