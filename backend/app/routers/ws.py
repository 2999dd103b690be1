from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import logging
from typing import Optional

from services.state_store import GAMES, StateStore

logger = logging.getLogger(__name__)
ws_router = APIRouter()

# This will be initialized from main app
state_store: Optional[StateStore] = None


@ws_router.websocket("/ws/games/{room_id}")
async def game_updates(websocket: WebSocket, room_id: str):
    """Stream the game document of a room on every committed change"""
    if not state_store:
        await websocket.close(code=1011, reason="State store not initialized")
        return

    await websocket.accept()
    logger.info(f"WebSocket connection accepted for room {room_id} from {websocket.client}")

    try:
        async for game in state_store.listen(GAMES, room_id):
            await websocket.send_json({"type": "game_update", "room_id": room_id, "game": game})
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for room {room_id}")


def set_state_store(store: StateStore):
    """Set the state store instance (called from main app setup)"""
    global state_store
    state_store = store
