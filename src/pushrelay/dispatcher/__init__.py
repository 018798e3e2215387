"""Notification dispatcher — change feed in, push notifications out.

Learn: The dispatcher is a long-running process that:
1. Subscribes to the change feed of each watched stream
2. On every inserted record → validates it and resolves its recipient(s)
3. Builds the notification payload and delivers it through the gateway

A bad record or a failed delivery is logged and dropped; it never stops
the watcher or holds up other records.
"""

from pushrelay.dispatcher.core import NotificationDispatcher
from pushrelay.dispatcher.resolver import Entity, EntityResolver
from pushrelay.dispatcher.stats import DispatcherStats
from pushrelay.dispatcher.watcher import StreamWatcher

__all__ = [
    "DispatcherStats",
    "Entity",
    "EntityResolver",
    "NotificationDispatcher",
    "StreamWatcher",
]
