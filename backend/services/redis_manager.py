import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError, ConnectionError, LockError
import logging
import os
from typing import Optional, Dict, Any, List
import json
import asyncio
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 86400


class RedisManager:
    """Manages Redis connections and provides low-level document operations"""

    def __init__(self, url: Optional[str] = None, ttl_seconds: Optional[int] = None):
        self.url = url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.ttl_seconds = ttl_seconds or int(os.getenv("DOCUMENT_TTL_SECONDS", DEFAULT_TTL_SECONDS))
        self._redis: Optional[Redis] = None
        self._pool = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Initialize Redis connection pool"""
        if self._redis:
            return

        async with self._lock:
            if self._redis:  # Double-check after acquiring lock
                return

            try:
                self._pool = redis.ConnectionPool.from_url(
                    self.url,
                    max_connections=50,
                    decode_responses=True,
                    health_check_interval=30
                )
                self._redis = redis.Redis(connection_pool=self._pool)

                # Test connection
                await self._redis.ping()
                logger.info(f"Connected to Redis at {self.url}")

            except (RedisError, ConnectionError) as e:
                logger.error(f"Failed to connect to Redis: {e}")
                raise

    async def disconnect(self) -> None:
        """Close Redis connection pool"""
        if self._redis:
            await self._redis.close()
            self._redis = None
        if self._pool:
            await self._pool.disconnect()
            self._pool = None

    @property
    def redis(self) -> Redis:
        """Get Redis client instance"""
        if not self._redis:
            raise RuntimeError("Redis not connected. Call connect() first.")
        return self._redis

    async def ensure_connected(self) -> None:
        """Ensure Redis is connected, reconnect if necessary"""
        if not self._redis:
            await self.connect()
        else:
            try:
                await self._redis.ping()
            except (RedisError, ConnectionError):
                logger.warning("Redis connection lost, reconnecting...")
                await self.disconnect()
                await self.connect()

    async def is_healthy(self) -> bool:
        try:
            await self.ensure_connected()
            return True
        except (RedisError, ConnectionError) as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    @asynccontextmanager
    async def pipeline(self, transaction: bool = True):
        """Create a Redis pipeline for batch operations"""
        await self.ensure_connected()
        async with self._redis.pipeline(transaction=transaction) as pipe:
            yield pipe

    @asynccontextmanager
    async def lock(self, name: str, timeout: int = 10, blocking_timeout: float = 5):
        """Distributed lock using Redis"""
        await self.ensure_connected()
        lock = self._redis.lock(f"lock:{name}", timeout=timeout, blocking_timeout=blocking_timeout)
        if not await lock.acquire():
            raise LockError(f"Could not acquire lock {name}")
        try:
            yield lock
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning(f"Lock {name} expired before release")

    # Document keys

    @staticmethod
    def document_key(collection: str, doc_id: str) -> str:
        return f"doc:{collection}:{doc_id}"

    @staticmethod
    def index_key(collection: str) -> str:
        return f"index:{collection}"

    @staticmethod
    def channel(collection: str, doc_id: str) -> str:
        return f"updates:{collection}:{doc_id}"

    # Document operations

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Get a single JSON document"""
        await self.ensure_connected()
        raw = await self._redis.get(self.document_key(collection, doc_id))
        return json.loads(raw) if raw else None

    async def get_documents(self, collection: str) -> List[Dict[str, Any]]:
        """Get every document of a collection, dropping index entries that already expired"""
        await self.ensure_connected()
        doc_ids = sorted(await self._redis.smembers(self.index_key(collection)))
        if not doc_ids:
            return []

        raws = await self._redis.mget([self.document_key(collection, doc_id) for doc_id in doc_ids])
        stale = [doc_id for doc_id, raw in zip(doc_ids, raws) if raw is None]
        if stale:
            await self._redis.srem(self.index_key(collection), *stale)
        return [json.loads(raw) for raw in raws if raw]

    async def stage_set(self, pipe, collection: str, doc_id: str, document: Dict[str, Any]) -> None:
        """Queue a document write (with TTL, index entry and change notification) on a pipeline"""
        payload = json.dumps(document)
        await pipe.set(self.document_key(collection, doc_id), payload, ex=self.ttl_seconds)
        await pipe.sadd(self.index_key(collection), doc_id)
        await pipe.publish(self.channel(collection, doc_id), payload)

    async def stage_delete(self, pipe, collection: str, doc_id: str) -> None:
        await pipe.delete(self.document_key(collection, doc_id))
        await pipe.srem(self.index_key(collection), doc_id)
        await pipe.publish(self.channel(collection, doc_id), json.dumps(None))

    @asynccontextmanager
    async def subscribe(self, collection: str, doc_id: str):
        """Pub/sub subscription to the change channel of one document"""
        await self.ensure_connected()
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self.channel(collection, doc_id))
        try:
            yield pubsub
        finally:
            await pubsub.unsubscribe(self.channel(collection, doc_id))
            await pubsub.close()
