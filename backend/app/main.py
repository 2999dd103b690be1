from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from app.core.database import check_database_connection, async_session_maker
from app.routers import rooms, game, ws
from services.game_engine import GameEngine
from services.redis_manager import RedisManager
from services.redis_state_store import RedisStateStore
from services.room_manager import RoomManager
from services.state_store import InMemoryStateStore, StateStore
from services.step_log import StepLog
from typing import Optional
import logging
import os
import sys

load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)

# Shared services, created on startup
redis_manager: Optional[RedisManager] = None
state_store: Optional[StateStore] = None


def create_state_store() -> StateStore:
    global redis_manager
    backend = os.getenv("STATE_STORE", "redis").lower()
    if backend == "memory":
        logger.info("Using in-memory state store")
        return InMemoryStateStore()
    if backend != "redis":
        raise ValueError(f"Unknown STATE_STORE: {backend}")
    redis_manager = RedisManager()
    return RedisStateStore(redis_manager)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - handles startup and shutdown"""
    global state_store

    # Startup
    state_store = create_state_store()
    if redis_manager:
        await redis_manager.connect()
        logger.info("Connected to Redis")

    engine = GameEngine(state_store, step_log=StepLog(async_session_maker))

    # Set up dependencies in routers
    rooms.set_room_manager(RoomManager(state_store))
    game.set_game_engine(engine)
    ws.set_state_store(state_store)
    logger.info("Application started successfully")

    yield

    # Shutdown
    logger.info("Application shutting down")
    if redis_manager:
        await redis_manager.disconnect()

app = FastAPI(lifespan=lifespan)

cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in cors_origins.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

# Include routers
app.include_router(rooms.router)
app.include_router(game.router)
app.include_router(ws.ws_router)


@app.get("/health-check")
async def health_check():
    """Health check endpoint with database and Redis connectivity verification"""
    db_healthy = await check_database_connection()

    if not db_healthy:
        raise HTTPException(
            status_code=500, detail="Database connection failed")

    if redis_manager is None:
        return {"database": "healthy", "redis": "disabled"}

    if not await redis_manager.is_healthy():
        raise HTTPException(
            status_code=500, detail="Redis connection failed")

    return {"database": "healthy", "redis": "healthy"}
