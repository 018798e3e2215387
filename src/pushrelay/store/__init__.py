"""Store adapters — where the watched records and the recipients live."""

from pushrelay.store.base import ChangeEvent, ChangeStore, ChangeType, Collection, StoreError
from pushrelay.store.memory import InMemoryStore

__all__ = [
    "ChangeEvent",
    "ChangeStore",
    "ChangeType",
    "Collection",
    "InMemoryStore",
    "StoreError",
]
