"""
Document store used by the game engine and the room service.

Documents are plain JSON-compatible dicts grouped in collections ("games",
"rooms", "players"). Every engine action is written through a single
`commit()` call so readers never observe a half-applied step.
"""
import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

GAMES = "games"
ROOMS = "rooms"
PLAYERS = "players"

Condition = Tuple[str, str, Any]

OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda left, right: left == right,
    "!=": lambda left, right: left != right,
    "<": lambda left, right: left is not None and left < right,
    "<=": lambda left, right: left is not None and left <= right,
    ">": lambda left, right: left is not None and left > right,
    ">=": lambda left, right: left is not None and left >= right,
    "in": lambda left, right: left in right,
    "not-in": lambda left, right: left not in right,
}


class DocumentNotFoundError(Exception):
    """Raised when updating a document that does not exist"""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"Document {collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


@dataclass
class Write:
    """One document mutation inside a commit; data=None deletes the document"""
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]] = None
    merge: bool = True

    @property
    def is_delete(self) -> bool:
        return self.data is None


def matches(document: Dict[str, Any], conditions: Sequence[Condition]) -> bool:
    for field_name, operator, value in conditions:
        if operator not in OPERATORS:
            raise ValueError(f"Unsupported query operator: {operator}")
        if not OPERATORS[operator](document.get(field_name), value):
            return False
    return True


class StateStore(ABC):
    """Async document store with atomic multi-document commits, live listeners and named locks"""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_all(self, collection: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def commit(self, writes: Sequence[Write]) -> None:
        """Apply all writes atomically"""
        ...

    @abstractmethod
    def listen(self, collection: str, doc_id: str) -> AsyncIterator[Optional[Dict[str, Any]]]:
        """Yield the current document, then every committed change (None once deleted)"""
        ...

    @abstractmethod
    def lock(self, name: str):
        """Async context manager serializing work on `name`"""
        ...

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        await self.commit([Write(collection, doc_id, data, merge=False)])

    async def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge `data` into an existing document and return the result"""
        if await self.get(collection, doc_id) is None:
            raise DocumentNotFoundError(collection, doc_id)
        await self.commit([Write(collection, doc_id, data, merge=True)])
        return await self.get(collection, doc_id)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self.commit([Write(collection, doc_id)])

    async def query(self, collection: str, conditions: Sequence[Condition]) -> List[Dict[str, Any]]:
        return [document for document in await self.get_all(collection) if matches(document, conditions)]

    async def query_by_field(self, collection: str, field_name: str, operator: str,
                             value: Any) -> List[Dict[str, Any]]:
        return await self.query(collection, [(field_name, operator, value)])

    async def delete_where(self, collection: str, conditions: Sequence[Condition],
                           id_field: str = "id") -> int:
        documents = await self.query(collection, conditions)
        await self.commit([Write(collection, document[id_field]) for document in documents])
        return len(documents)

    async def update_where(self, collection: str, conditions: Sequence[Condition], data: Dict[str, Any],
                           id_field: str = "id") -> int:
        documents = await self.query(collection, conditions)
        await self.commit([Write(collection, document[id_field], data) for document in documents])
        return len(documents)


class InMemoryStateStore(StateStore):
    """Single-process store: asyncio locks per name and queue-based listeners"""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._listeners: Dict[Tuple[str, str], List[asyncio.Queue]] = defaultdict(list)

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        document = self._collections[collection].get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def get_all(self, collection: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(document) for document in self._collections[collection].values()]

    async def commit(self, writes: Sequence[Write]) -> None:
        # Build every new document first so a bad write leaves the store untouched
        staged: List[Tuple[Write, Optional[Dict[str, Any]]]] = []
        for write in writes:
            if write.is_delete:
                staged.append((write, None))
                continue
            current = self._collections[write.collection].get(write.doc_id)
            if write.merge and current is not None:
                document = {**current, **copy.deepcopy(write.data)}
            else:
                document = copy.deepcopy(write.data)
            staged.append((write, document))

        for write, document in staged:
            if document is None:
                self._collections[write.collection].pop(write.doc_id, None)
            else:
                self._collections[write.collection][write.doc_id] = document

        for write, document in staged:
            for queue in self._listeners.get((write.collection, write.doc_id), []):
                queue.put_nowait(copy.deepcopy(document))

    async def listen(self, collection: str, doc_id: str) -> AsyncIterator[Optional[Dict[str, Any]]]:
        queue: asyncio.Queue = asyncio.Queue()
        key = (collection, doc_id)
        self._listeners[key].append(queue)
        try:
            yield await self.get(collection, doc_id)
            while True:
                yield await queue.get()
        finally:
            self._listeners[key].remove(queue)

    @asynccontextmanager
    async def lock(self, name: str):
        lock = self._locks.setdefault(name, asyncio.Lock())
        async with lock:
            yield lock
