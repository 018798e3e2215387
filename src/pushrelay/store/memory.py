"""In-memory store — a ChangeStore for tests and local runs.

Writes go through insert/update/delete, which broadcast the matching
change to every open subscription on that collection.
"""

import asyncio
import copy
from collections import defaultdict
from typing import Any, AsyncIterator, Optional

from pushrelay.store.base import ChangeEvent, ChangeType, Collection


class InMemoryStore:
    def __init__(self) -> None:
        self._docs: dict[Collection, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._subscribers: dict[Collection, list[asyncio.Queue]] = defaultdict(list)

    # ─── Writes ──────────────────────────────────────────

    def seed(self, collection: Collection, *docs: dict[str, Any]) -> None:
        """Load documents without emitting changes."""
        for doc in docs:
            self._docs[collection][doc["id"]] = dict(doc)

    def insert(self, collection: Collection, doc: dict[str, Any], doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or doc["id"]
        self._docs[collection][doc_id] = dict(doc)
        self._publish(collection, ChangeEvent(ChangeType.ADDED, dict(doc), doc_id))
        return doc_id

    def update(self, collection: Collection, doc_id: str, **fields: Any) -> None:
        doc = self._docs[collection][doc_id]
        doc.update(fields)
        self._publish(collection, ChangeEvent(ChangeType.MODIFIED, dict(doc), doc_id))

    def delete(self, collection: Collection, doc_id: str) -> None:
        doc = self._docs[collection].pop(doc_id)
        self._publish(collection, ChangeEvent(ChangeType.REMOVED, doc, doc_id))

    def _publish(self, collection: Collection, change: ChangeEvent) -> None:
        for queue in self._subscribers[collection]:
            queue.put_nowait(change)

    def subscriber_count(self, collection: Collection) -> int:
        return len(self._subscribers[collection])

    # ─── ChangeStore ─────────────────────────────────────

    async def subscribe(self, collection: Collection) -> AsyncIterator[ChangeEvent]:
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._subscribers[collection].append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers[collection].remove(queue)

    async def get_by_id(
        self, collection: Collection, record_id: str
    ) -> Optional[dict[str, Any]]:
        doc = self._docs[collection].get(record_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def get_all(self, collection: Collection) -> list[dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self._docs[collection].values()]
