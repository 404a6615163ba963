"""Remote document store: per-user progress, leaderboard and session documents."""

import asyncio
import copy
import json
from typing import Any, Callable, Protocol

import redis.asyncio as redis
from redis.exceptions import WatchError

from readboost.core.errors import StoreUnavailable
from readboost.core.logging import get_logger

logger = get_logger(__name__)

# Remote collections
PROGRESS = "progress"
LEADERBOARD = "leaderboard"
SESSIONS = "sessions"

Document = dict[str, Any]
Mutation = Callable[[Document], Document]


class DocumentMissing(LookupError):
    """update_fields was called on a document that does not exist."""


class RemoteStore(Protocol):
    """Shared, network-backed document store. Any call may fail."""

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...

    async def get_document(self, collection: str, doc_id: str) -> Document | None: ...

    async def set_document(self, collection: str, doc_id: str, data: Document) -> None: ...

    async def update_fields(self, collection: str, doc_id: str, fields: Document) -> None: ...

    async def run_transaction(self, collection: str, doc_id: str, fn: Mutation) -> Document: ...

    async def query(self, collection: str, order_by: str, limit: int) -> list[Document]: ...


def _sort_documents(items: list[tuple[str, Document]], order_by: str, limit: int) -> list[Document]:
    """Descending by field; equal values keep document-id order."""
    items.sort(key=lambda item: (-(item[1].get(order_by) or 0), item[0]))
    return [doc for _, doc in items[:limit]]


def _merge_existing(fields: Document) -> Mutation:
    def apply(current: Document) -> Document:
        if not current:
            raise DocumentMissing("document does not exist")
        return {**current, **fields}

    return apply


class RedisRemoteStore:
    """
    RemoteStore backed by Redis.

    Documents are JSON strings at ``{prefix}:{collection}:{id}``; each
    collection keeps a set of its document ids for queries. Transactions use
    WATCH/MULTI/EXEC and retry when another writer touched the document.
    """

    def __init__(self, url: str, prefix: str = "readboost", retries: int = 5):
        self.url = url
        self.prefix = prefix
        self.retries = retries
        self._redis: redis.Redis | None = None

    def _client(self) -> redis.Redis:
        """Get Redis connection (lazy init)."""
        if self._redis is None:
            self._redis = redis.from_url(self.url, decode_responses=True)
        return self._redis

    def _key(self, collection: str, doc_id: str) -> str:
        return f"{self.prefix}:{collection}:{doc_id}"

    def _index(self, collection: str) -> str:
        return f"{self.prefix}:{collection}"

    async def ping(self) -> bool:
        return await self._client().ping()

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def get_document(self, collection: str, doc_id: str) -> Document | None:
        raw = await self._client().get(self._key(collection, doc_id))
        return json.loads(raw) if raw else None

    async def set_document(self, collection: str, doc_id: str, data: Document) -> None:
        async with self._client().pipeline(transaction=True) as pipe:
            pipe.set(self._key(collection, doc_id), json.dumps(data))
            pipe.sadd(self._index(collection), doc_id)
            await pipe.execute()

    async def update_fields(self, collection: str, doc_id: str, fields: Document) -> None:
        await self.run_transaction(collection, doc_id, _merge_existing(fields))

    async def run_transaction(self, collection: str, doc_id: str, fn: Mutation) -> Document:
        """
        Atomically read, transform and write one document.

        @param collection - Collection name
        @param doc_id - Document id
        @param fn - Receives the current document ({} when missing), returns the replacement
        @returns The document that was written
        @raises StoreUnavailable - When every retry lost the race
        """
        key = self._key(collection, doc_id)
        async with self._client().pipeline(transaction=True) as pipe:
            for attempt in range(1, self.retries + 1):
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    updated = fn(json.loads(raw) if raw else {})
                    pipe.multi()
                    pipe.set(key, json.dumps(updated))
                    pipe.sadd(self._index(collection), doc_id)
                    await pipe.execute()
                    return updated
                except WatchError:
                    logger.debug(f"Transaction on {key} conflicted (attempt {attempt}/{self.retries})")
        raise StoreUnavailable("run_transaction", key)

    async def query(self, collection: str, order_by: str, limit: int) -> list[Document]:
        r = self._client()
        ids = sorted(await r.smembers(self._index(collection)))
        if not ids:
            return []
        raws = await r.mget([self._key(collection, doc_id) for doc_id in ids])
        items = [(doc_id, json.loads(raw)) for doc_id, raw in zip(ids, raws) if raw]
        return _sort_documents(items, order_by, limit)


class MemoryRemoteStore:
    """In-process RemoteStore for development and tests."""

    def __init__(self):
        self._collections: dict[str, dict[str, Document]] = {}
        self._lock = asyncio.Lock()

    def _collection(self, name: str) -> dict[str, Document]:
        return self._collections.setdefault(name, {})

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    async def get_document(self, collection: str, doc_id: str) -> Document | None:
        doc = self._collection(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def set_document(self, collection: str, doc_id: str, data: Document) -> None:
        self._collection(collection)[doc_id] = copy.deepcopy(data)

    async def update_fields(self, collection: str, doc_id: str, fields: Document) -> None:
        await self.run_transaction(collection, doc_id, _merge_existing(fields))

    async def run_transaction(self, collection: str, doc_id: str, fn: Mutation) -> Document:
        async with self._lock:
            docs = self._collection(collection)
            updated = fn(copy.deepcopy(docs.get(doc_id, {})))
            docs[doc_id] = copy.deepcopy(updated)
            return updated

    async def query(self, collection: str, order_by: str, limit: int) -> list[Document]:
        items = [(doc_id, copy.deepcopy(doc)) for doc_id, doc in self._collection(collection).items()]
        return _sort_documents(items, order_by, limit)


def build_remote_store(settings) -> RemoteStore:
    """Create the remote store selected by settings.remote_backend."""
    from readboost.core.config import RemoteBackend

    if settings.remote_backend == RemoteBackend.MEMORY:
        logger.warning("Using in-memory remote store; progress is not shared across processes")
        return MemoryRemoteStore()
    return RedisRemoteStore(
        settings.redis_url,
        prefix=settings.redis_key_prefix,
        retries=settings.transaction_retries,
    )
