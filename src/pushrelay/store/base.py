"""Store interface — the read-only view of the data the dispatcher watches.

Learn: The dispatcher never writes. It needs three things from the store:
a change feed per collection, a lookup by id, and a full scan (for the
event_post fan-out). Anything implementing ChangeStore can back it:
PostgreSQL in production, an in-memory store in tests.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Optional, Protocol


class Collection(str, Enum):
    USERS = "users"
    ORGANIZERS = "organizers"
    EVENTS = "events"
    PAYMENTS = "payments"
    MESSAGES = "messages"
    TICKETS = "tickets"
    ATTENDANCE = "attendance"


class ChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class ChangeEvent:
    """One change on a collection, as delivered by the change feed."""
    type: ChangeType
    record: dict[str, Any] = field(default_factory=dict)
    record_id: Optional[str] = None


class StoreError(Exception):
    """Raised when the store cannot be reached or initialised."""


class ChangeStore(Protocol):
    def subscribe(self, collection: Collection) -> AsyncIterator[ChangeEvent]:
        """Yield changes on ``collection`` for as long as the caller iterates."""
        ...

    async def get_by_id(
        self, collection: Collection, record_id: str
    ) -> Optional[dict[str, Any]]: ...

    async def get_all(self, collection: Collection) -> list[dict[str, Any]]: ...
