from fastapi import APIRouter, HTTPException, status
from typing import Dict, Any, Optional
from pydantic import BaseModel
import logging

from services.card_resolver import GameEngineError, GameNotFoundError, ReservationConflictError
from services.game_engine import GameEngine
from services.game_models import GameState
from services.game_persistence import GamePersistence

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/games", tags=["games"])

# This will be initialized from main app
game_engine: Optional[GameEngine] = None


class UserRequest(BaseModel):
    user_id: str


class CardRequest(BaseModel):
    user_id: str
    card_id: str


class TargetedCardRequest(BaseModel):
    user_id: str
    card_id: str
    other_player_id: Optional[int] = None


class ShowCardsRequest(BaseModel):
    user_id: str
    show_all: bool = True
    skip_showing: bool = False


class EndGameRequest(BaseModel):
    delete_data: bool = True


class QuarantineRequest(BaseModel):
    player_id: int


class LockedDoorRequest(BaseModel):
    from_player_id: int
    to_player_id: int


def get_game_engine() -> GameEngine:
    if not game_engine:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Game engine not initialized")
    return game_engine


def game_response(state: GameState) -> Dict[str, Any]:
    return {"success": True, "game": GamePersistence.serialize_game_state(state)}


def to_http_exception(e: Exception) -> HTTPException:
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, GameNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, ReservationConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, (GameEngineError, ValueError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.error(f"Unexpected game error: {e}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.get("/{room_id}")
async def get_game(room_id: str):
    """Current game document"""
    try:
        return game_response(await get_game_engine().get_game(room_id))
    except Exception as e:
        raise to_http_exception(e)


@router.get("/{room_id}/options")
async def get_card_options(room_id: str, user_id: str, card_id: str):
    """What the user may currently do with one card"""
    try:
        return await get_game_engine().get_options(room_id, user_id, card_id)
    except Exception as e:
        raise to_http_exception(e)


@router.get("/{room_id}/steps")
async def get_steps(room_id: str, limit: Optional[int] = None):
    """Step log of the room, newest first"""
    try:
        steps = await get_game_engine().get_step_log(room_id, limit)
        return {"steps": [GamePersistence.serialize_step_info(step) for step in steps]}
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/start")
async def start_game(room_id: str, request: UserRequest):
    """Deal cards and switch the room into game mode"""
    try:
        return game_response(await get_game_engine().start_game(room_id, request.user_id))
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/end")
async def end_game(room_id: str, request: EndGameRequest):
    try:
        await get_game_engine().end_game(room_id, delete_data=request.delete_data)
        return {"success": True}
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/restart")
async def restart_game(room_id: str, request: UserRequest):
    try:
        return game_response(await get_game_engine().restart_game(room_id, request.user_id))
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/take-deck-card")
async def take_deck_card(room_id: str, request: CardRequest):
    try:
        state = await get_game_engine().take_deck_card(room_id, request.user_id, request.card_id)
        return game_response(state)
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/take-hand-card")
async def take_hand_card(room_id: str, request: CardRequest):
    try:
        state = await get_game_engine().take_hand_card(room_id, request.user_id, request.card_id)
        return game_response(state)
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/play-hand-card")
async def play_hand_card(room_id: str, request: TargetedCardRequest):
    try:
        state = await get_game_engine().play_hand_card(
            room_id, request.user_id, request.card_id, request.other_player_id
        )
        return game_response(state)
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/play-table-card")
async def play_table_card(room_id: str, request: TargetedCardRequest):
    try:
        state = await get_game_engine().play_table_card(
            room_id, request.user_id, request.card_id, request.other_player_id
        )
        return game_response(state)
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/drop-hand-card")
async def drop_hand_card(room_id: str, request: CardRequest):
    try:
        state = await get_game_engine().drop_hand_card(room_id, request.user_id, request.card_id)
        return game_response(state)
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/drop-table-card")
async def drop_table_card(room_id: str, request: CardRequest):
    try:
        state = await get_game_engine().drop_table_card(room_id, request.user_id, request.card_id)
        return game_response(state)
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/give-hand-card")
async def give_hand_card(room_id: str, request: TargetedCardRequest):
    try:
        state = await get_game_engine().give_hand_card(
            room_id, request.user_id, request.card_id, request.other_player_id
        )
        return game_response(state)
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/give-table-card")
async def give_table_card(room_id: str, request: TargetedCardRequest):
    try:
        state = await get_game_engine().give_table_card(
            room_id, request.user_id, request.card_id, request.other_player_id
        )
        return game_response(state)
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/show-cards")
async def show_cards(room_id: str, request: ShowCardsRequest):
    try:
        state = await get_game_engine().show_cards(
            room_id, request.user_id, show_all=request.show_all, skip_showing=request.skip_showing
        )
        return game_response(state)
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/accept-request")
async def accept_request(room_id: str, request: UserRequest):
    try:
        return game_response(await get_game_engine().accept_request(room_id, request.user_id))
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/refill-deck")
async def refill_deck(room_id: str, request: UserRequest):
    try:
        return game_response(await get_game_engine().refill_deck(room_id, request.user_id))
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/quarantine")
async def put_on_quarantine(room_id: str, request: QuarantineRequest):
    """Admin helper: put a fresh quarantine in front of a seat"""
    try:
        return game_response(await get_game_engine().put_on_quarantine(room_id, request.player_id))
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{room_id}/locked-door")
async def set_locked_door(room_id: str, request: LockedDoorRequest):
    """Admin helper: lock the door between two seats"""
    try:
        state = await get_game_engine().set_locked_door(room_id, request.from_player_id, request.to_player_id)
        return game_response(state)
    except Exception as e:
        raise to_http_exception(e)


def set_game_engine(engine: GameEngine):
    """Set the game engine instance (called from main app setup)"""
    global game_engine
    game_engine = engine
