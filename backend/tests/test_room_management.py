import asyncio

import pytest

from services.game_models import MAX_PLAYERS, Role
from services.room_manager import AlreadyInRoomError, RoomManager
from services.state_store import PLAYERS, ROOMS, InMemoryStateStore


@pytest.mark.asyncio
async def test_create_room(room_manager: RoomManager, store):
    """Test creating a new room"""
    room = await room_manager.create_room("host", "Friday game", username="Host",
                                          settings={"description": "Bring snacks"})

    assert room is not None
    assert len(room.room_id) == 12
    assert room.owner_id == "host"
    assert room.author_id == "host"
    assert room.description == "Bring snacks"
    assert room.is_game_mode is False

    players = await room_manager.get_players(room.room_id)
    assert [player.user_id for player in players] == ["host"]
    assert players[0].player_id is None


@pytest.mark.asyncio
async def test_create_room_while_in_another_fails(room_manager: RoomManager):
    first = await room_manager.create_room("host", "First")

    with pytest.raises(AlreadyInRoomError) as exc_info:
        await room_manager.create_room("host", "Second")

    assert exc_info.value.current_room.room_id == first.room_id


@pytest.mark.asyncio
async def test_stale_membership_is_cleaned_up(room_manager: RoomManager, store):
    """Test a membership pointing to a deleted room does not block joining"""
    await store.set(PLAYERS, "gone_user", {"id": "gone_user", "user_id": "user", "room_id": "gone"})

    room = await room_manager.create_room("user", "Fresh")

    assert room.owner_id == "user"
    assert await store.get(PLAYERS, "gone_user") is None


@pytest.mark.asyncio
async def test_join_room(room_manager: RoomManager):
    """Test joining an existing room"""
    room = await room_manager.create_room("host", "Room")

    joined_room = await room_manager.join_room(room.room_id, "guest", username="Guest")

    assert joined_room.room_id == room.room_id
    members = {player.user_id for player in await room_manager.get_players(room.room_id)}
    assert members == {"host", "guest"}


@pytest.mark.asyncio
async def test_join_missing_room_fails(room_manager: RoomManager):
    with pytest.raises(ValueError):
        await room_manager.join_room("nope", "guest")


@pytest.mark.asyncio
async def test_take_seat(room_manager: RoomManager):
    room = await room_manager.create_room("host", "Room")

    player = await room_manager.take_seat(room.room_id, "host", 3)

    assert player.player_id == 3
    assert player.role == Role.HUMAN


@pytest.mark.asyncio
async def test_taken_seat_is_rejected(room_manager: RoomManager):
    room = await room_manager.create_room("host", "Room")
    await room_manager.join_room(room.room_id, "guest")
    await room_manager.take_seat(room.room_id, "host", 1)

    with pytest.raises(ValueError):
        await room_manager.take_seat(room.room_id, "guest", 1)


class SlowStateStore(InMemoryStateStore):
    """Store that yields to other tasks after every collection read, like a networked store"""

    async def get_all(self, collection: str):
        documents = await super().get_all(collection)
        await asyncio.sleep(0)
        return documents


@pytest.mark.asyncio
async def test_concurrent_seat_requests_keep_one_holder():
    """Test two members racing for the same seat never both get it"""
    room_manager = RoomManager(SlowStateStore())
    room = await room_manager.create_room("host", "Room")
    await room_manager.join_room(room.room_id, "guest")

    results = await asyncio.gather(
        room_manager.take_seat(room.room_id, "host", 1),
        room_manager.take_seat(room.room_id, "guest", 1),
        return_exceptions=True,
    )

    assert sum(isinstance(result, ValueError) for result in results) == 1
    holders = [player.user_id for player in await room_manager.get_players(room.room_id) if player.player_id == 1]
    assert len(holders) == 1


@pytest.mark.asyncio
async def test_seat_change_waits_for_room_lock(room_manager: RoomManager, store):
    """Test a seat change queued behind a game start sees the game mode"""
    room = await room_manager.create_room("host", "Room")

    async with store.lock(f"game:{room.room_id}"):
        pending = asyncio.ensure_future(room_manager.take_seat(room.room_id, "host", 1))
        await asyncio.sleep(0.01)
        assert not pending.done()
        await store.update(ROOMS, room.room_id, {"is_game_mode": True})

    with pytest.raises(ValueError):
        await pending
    assert (await room_manager.get_players(room.room_id))[0].player_id is None


@pytest.mark.asyncio
@pytest.mark.parametrize("seat", [0, MAX_PLAYERS + 1])
async def test_seat_out_of_range_is_rejected(room_manager: RoomManager, seat):
    room = await room_manager.create_room("host", "Room")

    with pytest.raises(ValueError):
        await room_manager.take_seat(room.room_id, "host", seat)


@pytest.mark.asyncio
async def test_release_seat(room_manager: RoomManager):
    room = await room_manager.create_room("host", "Room")
    await room_manager.take_seat(room.room_id, "host", 2)

    player = await room_manager.release_seat(room.room_id, "host")

    assert player.player_id is None
    assert player.role is None


@pytest.mark.asyncio
async def test_seats_are_frozen_during_game(room_manager: RoomManager, store):
    room = await room_manager.create_room("host", "Room")
    await store.update(ROOMS, room.room_id, {"is_game_mode": True})

    with pytest.raises(ValueError):
        await room_manager.take_seat(room.room_id, "host", 1)
    with pytest.raises(ValueError):
        await room_manager.release_seat(room.room_id, "host")


@pytest.mark.asyncio
async def test_leave_room_transfers_ownership(room_manager: RoomManager):
    """Test the next human member becomes owner when the owner leaves"""
    room = await room_manager.create_room("host", "Room")
    await room_manager.join_room(room.room_id, "guest")

    new_owner = await room_manager.leave_room(room.room_id, "host")

    assert new_owner == "guest"
    assert (await room_manager.get_room(room.room_id)).owner_id == "guest"


@pytest.mark.asyncio
async def test_last_human_leaving_deletes_room(room_manager: RoomManager, store):
    room = await room_manager.create_room("host", "Room")
    bot = await room_manager.add_bot(room.room_id, "host", 2)

    new_owner = await room_manager.leave_room(room.room_id, "host")

    assert new_owner is None
    assert await room_manager.get_room(room.room_id) is None
    assert await store.get(PLAYERS, bot.doc_id) is None


@pytest.mark.asyncio
async def test_non_owner_leaving_keeps_owner(room_manager: RoomManager):
    room = await room_manager.create_room("host", "Room")
    await room_manager.join_room(room.room_id, "guest")

    assert await room_manager.leave_room(room.room_id, "guest") is None
    assert (await room_manager.get_room(room.room_id)).owner_id == "host"


@pytest.mark.asyncio
async def test_add_bot_sets_bot_manager(room_manager: RoomManager):
    """Test the owner becomes bot manager when adding the first bot"""
    room = await room_manager.create_room("host", "Room")

    bot = await room_manager.add_bot(room.room_id, "host", 4)

    assert bot.is_bot
    assert bot.player_id == 4
    assert (await room_manager.get_room(room.room_id)).bot_manager_id == "host"


@pytest.mark.asyncio
async def test_bot_on_taken_seat_is_not_added(room_manager: RoomManager):
    room = await room_manager.create_room("host", "Room")
    await room_manager.take_seat(room.room_id, "host", 1)

    with pytest.raises(ValueError):
        await room_manager.add_bot(room.room_id, "host", 1)

    assert [player.user_id for player in await room_manager.get_players(room.room_id)] == ["host"]


@pytest.mark.asyncio
async def test_remove_bot(room_manager: RoomManager):
    room = await room_manager.create_room("host", "Room")
    bot = await room_manager.add_bot(room.room_id, "host", 2)

    await room_manager.remove_bot(room.room_id, "host", bot.user_id)

    assert [player.user_id for player in await room_manager.get_players(room.room_id)] == ["host"]


@pytest.mark.asyncio
async def test_remove_human_as_bot_fails(room_manager: RoomManager):
    room = await room_manager.create_room("host", "Room")
    await room_manager.join_room(room.room_id, "guest")

    with pytest.raises(ValueError):
        await room_manager.remove_bot(room.room_id, "host", "guest")


@pytest.mark.asyncio
async def test_update_room_settings(room_manager: RoomManager):
    """Test only known settings are applied"""
    room = await room_manager.create_room("host", "Room")

    updated = await room_manager.update_room(room.room_id, "host", {
        "name": "Renamed",
        "has_cards_based_on_quantity": True,
        "owner_id": "someone",
    })

    assert updated.name == "Renamed"
    assert updated.has_cards_based_on_quantity is True
    assert updated.owner_id == "host"


@pytest.mark.asyncio
async def test_update_room_as_guest_fails(room_manager: RoomManager):
    room = await room_manager.create_room("host", "Room")
    await room_manager.join_room(room.room_id, "guest")

    with pytest.raises(ValueError):
        await room_manager.update_room(room.room_id, "guest", {"name": "Mine"})


@pytest.mark.asyncio
async def test_delete_room(room_manager: RoomManager, store):
    room = await room_manager.create_room("host", "Room")
    await room_manager.join_room(room.room_id, "guest")

    with pytest.raises(ValueError):
        await room_manager.delete_room(room.room_id, "guest")

    await room_manager.delete_room(room.room_id, "host")

    assert await room_manager.get_room(room.room_id) is None
    assert await store.get_all(PLAYERS) == []


@pytest.mark.asyncio
async def test_list_rooms_newest_first(room_manager: RoomManager, store):
    first = await room_manager.create_room("a", "First")
    second = await room_manager.create_room("b", "Second")
    await store.update(ROOMS, first.room_id, {"created_at": "2020-01-01T00:00:00"})

    rooms = await room_manager.list_rooms()

    assert [room.room_id for room in rooms] == [second.room_id, first.room_id]
