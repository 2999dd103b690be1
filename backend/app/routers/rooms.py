from fastapi import APIRouter, HTTPException, status
from typing import Dict, Any, Optional, List
from pydantic import BaseModel
import logging

from services.game_models import Player
from services.game_persistence import GamePersistence
from services.room_manager import RoomManager, AlreadyInRoomError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/rooms", tags=["rooms"])

# This will be initialized from main app
room_manager: Optional[RoomManager] = None


class CreateRoomRequest(BaseModel):
    user_id: str
    name: str
    username: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None


class JoinRoomRequest(BaseModel):
    user_id: str
    username: Optional[str] = None


class UserRequest(BaseModel):
    user_id: str


class SeatRequest(BaseModel):
    user_id: str
    player_id: int


class UpdateRoomRequest(BaseModel):
    user_id: str
    settings: Dict[str, Any]


class RoomResponse(BaseModel):
    room: Dict[str, Any]
    players: List[Dict[str, Any]]


def get_room_manager() -> RoomManager:
    if not room_manager:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Room manager not initialized")
    return room_manager


def serialize_player(player: Player) -> Dict[str, Any]:
    return GamePersistence.serialize_player(player)


def to_http_exception(e: Exception) -> HTTPException:
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, AlreadyInRoomError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error_type": "already_in_room",
                "message": str(e),
                "current_room": GamePersistence.serialize_room(e.current_room)
            }
        )
    if isinstance(e, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.error(f"Unexpected room error: {e}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post("/")
async def create_room(request: CreateRoomRequest):
    """Create a new room"""
    try:
        room = await get_room_manager().create_room(
            request.user_id,
            request.name,
            username=request.username,
            settings=request.settings
        )
        return {"success": True, "room": GamePersistence.serialize_room(room)}
    except Exception as e:
        raise to_http_exception(e)


@router.get("/")
async def list_rooms():
    """List all rooms, newest first"""
    rooms = await get_room_manager().list_rooms()
    return {"rooms": [GamePersistence.serialize_room(room) for room in rooms]}


@router.get("/{room_id}", response_model=RoomResponse)
async def get_room(room_id: str):
    """Get room information with its members"""
    manager = get_room_manager()
    room = await manager.get_room(room_id)

    if not room:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")

    players = await manager.get_players(room_id)
    return RoomResponse(
        room=GamePersistence.serialize_room(room),
        players=[serialize_player(player) for player in players]
    )


@router.delete("/{room_id}")
async def delete_room(room_id: str, user_id: str):
    """Delete a room (owner only)"""
    try:
        await get_room_manager().delete_room(room_id, user_id)
        return {"success": True}
    except Exception as e:
        raise to_http_exception(e)


@router.patch("/{room_id}")
async def update_room(room_id: str, request: UpdateRoomRequest):
    """Update room settings (owner only)"""
    try:
        room = await get_room_manager().update_room(room_id, request.user_id, request.settings)
        return {"success": True, "room": GamePersistence.serialize_room(room)}
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/join")
async def join_room(room_id: str, request: JoinRoomRequest):
    """Join an existing room"""
    try:
        room = await get_room_manager().join_room(room_id, request.user_id, request.username)
        return {"success": True, "room": GamePersistence.serialize_room(room)}
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/leave")
async def leave_room(room_id: str, request: UserRequest):
    """Leave the room"""
    try:
        new_owner_id = await get_room_manager().leave_room(room_id, request.user_id)
        return {"success": True, "new_owner_id": new_owner_id}
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/seats")
async def take_seat(room_id: str, request: SeatRequest):
    """Take a free seat"""
    try:
        player = await get_room_manager().take_seat(room_id, request.user_id, request.player_id)
        return {"success": True, "player": serialize_player(player)}
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/seats/release")
async def release_seat(room_id: str, request: UserRequest):
    """Release the current seat"""
    try:
        player = await get_room_manager().release_seat(room_id, request.user_id)
        return {"success": True, "player": serialize_player(player)}
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/bots")
async def add_bot(room_id: str, request: SeatRequest):
    """Seat a bot (owner only)"""
    try:
        bot = await get_room_manager().add_bot(room_id, request.user_id, request.player_id)
        return {"success": True, "player": serialize_player(bot)}
    except Exception as e:
        raise to_http_exception(e)


@router.delete("/{room_id}/bots/{bot_user_id}")
async def remove_bot(room_id: str, bot_user_id: str, user_id: str):
    """Remove a bot (owner only)"""
    try:
        await get_room_manager().remove_bot(room_id, user_id, bot_user_id)
        return {"success": True}
    except Exception as e:
        raise to_http_exception(e)


def set_room_manager(manager: RoomManager):
    """Set the room manager instance (called from main app setup)"""
    global room_manager
    room_manager = manager
