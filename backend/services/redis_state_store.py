import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from redis.exceptions import RedisError, ConnectionError, WatchError

from services.redis_manager import RedisManager
from services.state_store import StateStore, Write

logger = logging.getLogger(__name__)

COMMIT_ATTEMPTS = 3


class RedisStateStore(StateStore):
    """StateStore keeping one JSON string per document, written through MULTI pipelines"""

    def __init__(self, manager: RedisManager):
        self.redis = manager

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.redis.get_document(collection, doc_id)
        except (RedisError, ConnectionError) as e:
            logger.error(f"Error loading {collection}/{doc_id}: {e}")
            raise

    async def get_all(self, collection: str) -> List[Dict[str, Any]]:
        try:
            return await self.redis.get_documents(collection)
        except (RedisError, ConnectionError) as e:
            logger.error(f"Error loading collection {collection}: {e}")
            raise

    async def commit(self, writes: Sequence[Write]) -> None:
        if not writes:
            return

        for attempt in range(1, COMMIT_ATTEMPTS + 1):
            try:
                await self._commit_once(writes)
                logger.debug(f"Committed {len(writes)} document writes")
                return
            except WatchError:
                if attempt == COMMIT_ATTEMPTS:
                    logger.error(f"Giving up on {len(writes)} document writes after {attempt} conflicting attempts")
                    raise
                logger.warning(f"Merged document changed during commit, retrying (attempt {attempt})")
            except (RedisError, ConnectionError) as e:
                logger.error(f"Error committing {len(writes)} document writes: {e}")
                raise

    async def _commit_once(self, writes: Sequence[Write]) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            # Merged writes read the current document under WATCH so a concurrent change aborts the MULTI
            merge_keys = sorted({
                self.redis.document_key(write.collection, write.doc_id)
                for write in writes if not write.is_delete and write.merge
            })
            if merge_keys:
                await pipe.watch(*merge_keys)

            documents: List[Optional[Dict[str, Any]]] = []
            for write in writes:
                if write.is_delete:
                    documents.append(None)
                elif write.merge:
                    raw = await pipe.get(self.redis.document_key(write.collection, write.doc_id))
                    current = json.loads(raw) if raw else {}
                    documents.append({**current, **write.data})
                else:
                    documents.append(write.data)

            pipe.multi()
            for write, document in zip(writes, documents):
                if document is None:
                    await self.redis.stage_delete(pipe, write.collection, write.doc_id)
                else:
                    await self.redis.stage_set(pipe, write.collection, write.doc_id, document)
            await pipe.execute()

    async def listen(self, collection: str, doc_id: str) -> AsyncIterator[Optional[Dict[str, Any]]]:
        async with self.redis.subscribe(collection, doc_id) as pubsub:
            yield await self.get(collection, doc_id)
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                yield json.loads(message["data"])

    def lock(self, name: str):
        return self.redis.lock(name, timeout=10, blocking_timeout=5)
