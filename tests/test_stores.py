"""Store adapter tests — in-memory store and the PostgreSQL change feed.

Learn: The PostgreSQL tests don't need a database. The LISTEN connection
and the pool are replaced with small fakes; the test plays the role of
the trigger by invoking the registered notify callback.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest
from conftest import wait_until

from pushrelay.dispatcher.stats import DispatcherStats
from pushrelay.dispatcher.watcher import StreamWatcher
from pushrelay.schemas.records import StreamKind
from pushrelay.store.base import ChangeEvent, ChangeType, Collection, StoreError
from pushrelay.store.memory import InMemoryStore
from pushrelay.store.postgres import PostgresStore, channel_for, parse_notification


# ═══════════════════════════════════════════════════════════
# In-memory store
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_memory_reads_return_copies():
    store = InMemoryStore()
    store.seed(Collection.USERS, {"id": "u1", "name": "Ada"})

    doc = await store.get_by_id(Collection.USERS, "u1")
    doc["name"] = "changed"

    assert (await store.get_by_id(Collection.USERS, "u1"))["name"] == "Ada"
    assert await store.get_by_id(Collection.USERS, "u2") is None
    assert await store.get_all(Collection.ORGANIZERS) == []


@pytest.mark.asyncio
async def test_memory_subscribe_sees_writes_in_order():
    store = InMemoryStore()
    feed = store.subscribe(Collection.PAYMENTS)
    first = asyncio.ensure_future(feed.__anext__())
    await asyncio.sleep(0)

    store.insert(Collection.PAYMENTS, {"id": "p1", "user_id": "u1"})
    store.update(Collection.PAYMENTS, "p1", status="approved")
    store.delete(Collection.PAYMENTS, "p1")

    changes = [await first, await feed.__anext__(), await feed.__anext__()]
    assert [c.type for c in changes] == [ChangeType.ADDED, ChangeType.MODIFIED, ChangeType.REMOVED]
    assert changes[1].record["status"] == "approved"
    assert all(c.record_id == "p1" for c in changes)

    await feed.aclose()
    assert store.subscriber_count(Collection.PAYMENTS) == 0


# ═══════════════════════════════════════════════════════════
# PostgreSQL change feed
# ═══════════════════════════════════════════════════════════


def test_parse_notification():
    assert parse_notification('{"op": "INSERT", "id": "t1"}') == (ChangeType.ADDED, "t1")
    assert parse_notification('{"op": "UPDATE", "id": 5}') == (ChangeType.MODIFIED, "5")
    assert parse_notification('{"op": "DELETE", "id": "t1"}') == (ChangeType.REMOVED, "t1")


@pytest.mark.parametrize("payload", ['{"op": "TRUNCATE", "id": "t1"}', '{"id": "t1"}', "[]", "nope"])
def test_parse_notification_rejects_garbage(payload):
    with pytest.raises(ValueError):
        parse_notification(payload)


def test_channel_names():
    assert channel_for(Collection.ATTENDANCE) == "pushrelay_attendance"


class FakeListenConn:
    def __init__(self):
        self.listeners = {}
        self.termination_listeners = []
        self.closed = False

    def add_termination_listener(self, callback):
        self.termination_listeners.append(callback)

    def is_closed(self):
        return self.closed

    async def add_listener(self, channel, callback):
        self.listeners[channel] = callback

    async def remove_listener(self, channel, callback):
        assert self.listeners.pop(channel) is callback

    async def close(self):
        self.closed = True

    def notify(self, channel, **payload):
        self.listeners[channel](self, 1234, channel, json.dumps(payload))

    def drop(self):
        """Simulate the server closing the connection."""
        self.closed = True
        for callback in self.termination_listeners:
            callback(self)


class FakeConn:
    def __init__(self, rows, unreadable=()):
        self.rows = rows
        self.unreadable = set(unreadable)
        self.queries = []

    async def fetchrow(self, query, *args):
        self.queries.append((query, args))
        if args[0] in self.unreadable:
            raise OSError("connection reset")
        return self.rows.get(args[0])

    async def fetch(self, query, *args):
        self.queries.append((query, args))
        return list(self.rows.values())


class FakePool:
    def __init__(self, rows, unreadable=()):
        self.conn = FakeConn(rows, unreadable)

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


@pytest.mark.asyncio
async def test_postgres_reads():
    pool = FakePool({"u1": {"id": "u1", "name": "Ada", "userToken": "tok1"}})
    store = PostgresStore(pool, FakeListenConn())

    assert await store.get_by_id(Collection.USERS, "u1") == {
        "id": "u1",
        "name": "Ada",
        "userToken": "tok1",
    }
    assert await store.get_by_id(Collection.USERS, "u9") is None
    assert len(await store.get_all(Collection.USERS)) == 1
    assert pool.conn.queries[0] == ("SELECT * FROM users WHERE id = $1", ("u1",))


@pytest.mark.asyncio
async def test_postgres_subscribe_fetches_inserted_rows():
    listen = FakeListenConn()
    pool = FakePool({"t1": {"id": "t1", "user_id": "u1", "event_id": "e1"}})
    store = PostgresStore(pool, listen)

    feed = store.subscribe(Collection.TICKETS)
    pending = asyncio.ensure_future(feed.__anext__())
    await asyncio.sleep(0)
    assert "pushrelay_tickets" in listen.listeners

    listen.notify("pushrelay_tickets", op="INSERT", id="gone")  # deleted before fetch
    listen.notify("pushrelay_tickets", op="INSERT", id="t1")
    listen.notify("pushrelay_tickets", op="DELETE", id="t1")

    added = await pending
    removed = await feed.__anext__()
    assert added == ChangeEvent(ChangeType.ADDED, {"id": "t1", "user_id": "u1", "event_id": "e1"}, "t1")
    assert removed == ChangeEvent(ChangeType.REMOVED, {"id": "t1"}, "t1")

    await feed.aclose()
    assert listen.listeners == {}


@pytest.mark.asyncio
async def test_postgres_feed_skips_rows_it_cannot_read():
    listen = FakeListenConn()
    pool = FakePool({"t1": {"id": "t1", "user_id": "u1", "event_id": "e1"}}, unreadable={"bad"})
    store = PostgresStore(pool, listen)

    feed = store.subscribe(Collection.TICKETS)
    pending = asyncio.ensure_future(feed.__anext__())
    await asyncio.sleep(0)

    listen.notify("pushrelay_tickets", op="INSERT", id="bad")
    listen.notify("pushrelay_tickets", op="INSERT", id="t1")

    change = await pending
    assert change.record_id == "t1"
    assert "pushrelay_tickets" in listen.listeners

    await feed.aclose()


@pytest.mark.asyncio
async def test_watcher_keeps_going_past_unreadable_row():
    listen = FakeListenConn()
    pool = FakePool({"t1": {"id": "t1", "user_id": "u1", "event_id": "e1"}}, unreadable={"bad"})
    reacted = []

    async def react(record):
        reacted.append(record.id)

    watcher = StreamWatcher(
        StreamKind.TICKET_PURCHASED,
        PostgresStore(pool, listen),
        react,
        DispatcherStats(),
        resubscribe_delay=0.01,
    )
    run = asyncio.create_task(watcher.run())
    await wait_until(lambda: "pushrelay_tickets" in listen.listeners)

    listen.notify("pushrelay_tickets", op="INSERT", id="bad")
    listen.notify("pushrelay_tickets", op="INSERT", id="t1")
    await wait_until(lambda: reacted == ["t1"])

    watcher.stop()
    run.cancel()
    await asyncio.gather(run, return_exceptions=True)
    await watcher.drain()


@pytest.mark.asyncio
async def test_postgres_feed_fails_when_listen_connection_drops():
    listen = FakeListenConn()
    store = PostgresStore(FakePool({}), listen)

    feed = store.subscribe(Collection.MESSAGES)
    pending = asyncio.ensure_future(feed.__anext__())
    await asyncio.sleep(0)

    listen.drop()

    with pytest.raises(StoreError, match="pushrelay_messages"):
        await pending


@pytest.mark.asyncio
async def test_postgres_subscribe_reopens_closed_listen_connection(monkeypatch):
    old, new = FakeListenConn(), FakeListenConn()
    connect = AsyncMock(return_value=new)
    monkeypatch.setattr("pushrelay.store.postgres.asyncpg.connect", connect)
    store = PostgresStore(FakePool({}), old, "postgresql://localhost/pushrelay")
    old.drop()

    feed = store.subscribe(Collection.EVENTS)
    pending = asyncio.ensure_future(feed.__anext__())
    await asyncio.sleep(0)

    connect.assert_awaited_once_with("postgresql://localhost/pushrelay")
    assert "pushrelay_events" in new.listeners
    assert new.termination_listeners

    # Losing the reopened connection fails the new subscription too
    new.drop()
    with pytest.raises(StoreError):
        await pending


@pytest.mark.asyncio
async def test_postgres_closed_listen_connection_without_url():
    listen = FakeListenConn()
    store = PostgresStore(FakePool({}), listen)
    listen.drop()

    with pytest.raises(StoreError, match="closed"):
        await store.subscribe(Collection.EVENTS).__anext__()
