"""Test fixtures — in-memory store, recording push transport, dispatcher.

Learn: The dispatcher only talks to its collaborators through the
ChangeStore and PushTransport interfaces, so tests swap in an in-memory
store and a transport that records every send. No database, no network.
"""

import asyncio
from typing import Callable

import pytest

from pushrelay.dispatcher.core import NotificationDispatcher
from pushrelay.push.base import PushDeliveryError
from pushrelay.push.gateway import GatewayClient
from pushrelay.store.base import Collection
from pushrelay.store.memory import InMemoryStore

FIXED_NOW_MS = 1_767_225_600_000


class RecordingTransport:
    """PushTransport fake: records sends, fails or blocks chosen tokens."""

    def __init__(self):
        self.sent: list[dict] = []
        self.failing: dict[str, str] = {}  # token → reason
        self.blocked: dict[str, asyncio.Event] = {}  # token → release event

    async def send(self, token, title, body, data):
        if token in self.blocked:
            await self.blocked[token].wait()
        if token in self.failing:
            raise PushDeliveryError(self.failing[token], status="UNREGISTERED")
        self.sent.append({"token": token, "title": title, "body": body, "data": data})
        return f"projects/test/messages/{len(self.sent)}"

    @property
    def tokens(self) -> list[str]:
        return [s["token"] for s in self.sent]


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll until predicate() holds or fail the test."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture()
def store():
    """Store seeded with two users, an organizer and an event."""
    s = InMemoryStore()
    s.seed(
        Collection.USERS,
        {"id": "u1", "name": "Ada", "userToken": "tok1"},
        {"id": "u2", "name": "Grace", "userToken": "tok2"},
        {"id": "u3", "name": "Linus"},  # no push token
    )
    s.seed(
        Collection.ORGANIZERS,
        {"id": "o1", "name": "City Arts", "userToken": "org-tok1"},
        {"id": "o2", "name": "Quiet Org"},  # no push token
    )
    s.seed(
        Collection.EVENTS,
        {"id": "e1", "organizer_id": "o1", "event_name": "Spring Fair"},
    )
    return s


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def dispatcher(store, transport):
    return NotificationDispatcher(
        store,
        GatewayClient(transport),
        resubscribe_delay=0.01,
        clock=lambda: FIXED_NOW_MS,
    )
