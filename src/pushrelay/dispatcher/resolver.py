"""Entity resolver — looks up the people and events a record points at.

Learn: Every lookup is one independent store read: no cache, no batching.
A lookup that fails for any reason (empty id, missing row, store error)
yields None, and the caller treats None as "nobody to notify". The
failure is logged here so pipelines don't have to.
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog

from pushrelay.schemas.records import EntityKind, EntityRef
from pushrelay.store.base import ChangeStore, Collection

logger = structlog.get_logger()

PUSH_TOKEN_FIELD = "userToken"
DISPLAY_NAME_FIELD = "name"


@dataclass(frozen=True)
class Entity:
    """Read-only snapshot of a user or organizer."""

    id: str
    kind: EntityKind
    push_token: Optional[str]
    display_name: str

    @property
    def deliverable(self) -> bool:
        return bool(self.push_token)

    @classmethod
    def from_document(
        cls, kind: EntityKind, doc: dict[str, Any], fallback_id: str = ""
    ) -> "Entity":
        return cls(
            id=str(doc.get("id") or fallback_id),
            kind=kind,
            push_token=doc.get(PUSH_TOKEN_FIELD) or None,
            display_name=doc.get(DISPLAY_NAME_FIELD) or "",
        )


class EntityResolver:
    def __init__(self, store: ChangeStore):
        self._store = store

    async def _read(self, collection: Collection, record_id: str) -> Optional[dict[str, Any]]:
        if not record_id:
            logger.warning("pushrelay.lookup_skipped", collection=collection.value)
            return None
        try:
            doc = await self._store.get_by_id(collection, record_id)
        except Exception:
            logger.exception(
                "pushrelay.lookup_failed", collection=collection.value, id=record_id
            )
            return None
        if doc is None:
            logger.info("pushrelay.not_found", collection=collection.value, id=record_id)
        return doc

    async def resolve(self, kind: EntityKind, entity_id: str) -> Optional[Entity]:
        doc = await self._read(kind.collection, entity_id)
        if doc is None:
            return None
        return Entity.from_document(kind, doc, fallback_id=entity_id)

    async def resolve_ref(self, ref: EntityRef) -> Optional[Entity]:
        return await self.resolve(ref.kind, ref.id)

    async def fetch_event(self, event_id: str) -> Optional[dict[str, Any]]:
        return await self._read(Collection.EVENTS, event_id)

    async def list_users(self) -> list[Entity]:
        """Every user, read once. A failed scan yields no users."""
        try:
            docs = await self._store.get_all(Collection.USERS)
        except Exception:
            logger.exception("pushrelay.user_scan_failed")
            return []
        return [Entity.from_document(EntityKind.USER, doc) for doc in docs]
