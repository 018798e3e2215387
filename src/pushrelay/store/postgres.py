"""PostgreSQL store — asyncpg pool for reads, LISTEN/NOTIFY for changes.

Learn: Each collection is a table with a text ``id`` primary key. A row
trigger on the watched tables calls pg_notify on ``pushrelay_<table>``
with just the operation and the row id. NOTIFY payloads are capped at
8000 bytes, so the listener fetches the row itself instead of shipping
it through the notification.

Channels:
- pushrelay_events, pushrelay_payments, pushrelay_messages,
  pushrelay_tickets, pushrelay_attendance

One dedicated connection holds all LISTENs; queries go through a pool.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Optional

import asyncpg

from pushrelay.store.base import ChangeEvent, ChangeType, Collection, StoreError

logger = logging.getLogger("pushrelay.store")

CHANNEL_PREFIX = "pushrelay_"

WATCHED_TABLES = (
    Collection.EVENTS,
    Collection.PAYMENTS,
    Collection.MESSAGES,
    Collection.TICKETS,
    Collection.ATTENDANCE,
)

_OPERATIONS = {
    "INSERT": ChangeType.ADDED,
    "UPDATE": ChangeType.MODIFIED,
    "DELETE": ChangeType.REMOVED,
}

NOTIFY_FUNCTION_SQL = """
    CREATE OR REPLACE FUNCTION pushrelay_notify_change()
    RETURNS TRIGGER AS $$
    DECLARE
        row_id TEXT;
    BEGIN
        IF TG_OP = 'DELETE' THEN
            row_id := OLD.id::text;
        ELSE
            row_id := NEW.id::text;
        END IF;
        PERFORM pg_notify('pushrelay_' || TG_TABLE_NAME, json_build_object(
            'op', TG_OP,
            'id', row_id
        )::text);
        RETURN NULL;
    END;
    $$ LANGUAGE plpgsql;
"""

def channel_for(collection: Collection) -> str:
    return f"{CHANNEL_PREFIX}{collection.value}"

def parse_notification(payload: str) -> tuple[ChangeType, str]:
    """Decode a trigger notification into (change type, row id).

    Raises ValueError on payloads the trigger could not have produced.
    """
    data = json.loads(payload)
    try:
        return _OPERATIONS[data["op"]], str(data["id"])
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed change notification: {payload!r}") from e

class PostgresStore:
    """ChangeStore backed by PostgreSQL."""

    def __init__(
        self,
        pool: asyncpg.Pool,
        listen_conn: asyncpg.Connection,
        database_url: Optional[str] = None,
    ):
        self._pool = pool
        self._database_url = database_url
        self._listen_conn = listen_conn
        self._listen_lock = asyncio.Lock()
        # One queue per open subscription; None on a queue means the
        # LISTEN connection was lost.
        self._subscriptions: set[asyncio.Queue] = set()
        listen_conn.add_termination_listener(self._on_listen_conn_lost)

    @classmethod
    async def connect(cls, database_url: str) -> "PostgresStore":
        """Open the query pool and the LISTEN connection.

        Raises StoreError when the database is unreachable.
        """
        try:
            pool = await asyncpg.create_pool(database_url, min_size=1, max_size=10)
            listen_conn = await asyncpg.connect(database_url)
        except (OSError, asyncpg.PostgresError) as e:
            raise StoreError(f"Cannot connect to store: {e}") from e
        return cls(pool, listen_conn, database_url)

    async def close(self) -> None:
        if not self._listen_conn.is_closed():
            await self._listen_conn.close()
        await self._pool.close()

    async def install_triggers(self) -> None:
        """Create the notify function and one trigger per watched table."""
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(NOTIFY_FUNCTION_SQL)
                for table in WATCHED_TABLES:
                    await conn.execute(
                        f"DROP TRIGGER IF EXISTS pushrelay_notify ON {table.value};"
                    )
                    await conn.execute(f"""
                        CREATE TRIGGER pushrelay_notify
                            AFTER INSERT OR UPDATE OR DELETE ON {table.value}
                            FOR EACH ROW
                            EXECUTE FUNCTION pushrelay_notify_change();
                    """)
        logger.info("Installed change triggers on %d tables", len(WATCHED_TABLES))

    # ─── Reads ───────────────────────────────────────────

    async def get_by_id(
        self, collection: Collection, record_id: str
    ) -> Optional[dict[str, Any]]:
        # Table names come from the Collection enum, never from input.
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT * FROM {collection.value} WHERE id = $1", record_id
            )
        return dict(row) if row else None

    async def get_all(self, collection: Collection) -> list[dict[str, Any]]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(f"SELECT * FROM {collection.value}")
        return [dict(row) for row in rows]

    # ─── Change feed ─────────────────────────────────────

    def _on_listen_conn_lost(self, conn) -> None:
        if conn is not self._listen_conn:
            return
        logger.warning(
            "LISTEN connection lost, failing %d subscriptions", len(self._subscriptions)
        )
        for queue in self._subscriptions:
            queue.put_nowait(None)

    async def _listen_connection(self) -> asyncpg.Connection:
        """Return the LISTEN connection, reopening it if it was closed."""
        async with self._listen_lock:
            if not self._listen_conn.is_closed():
                return self._listen_conn
            if self._database_url is None:
                raise StoreError("LISTEN connection is closed")
            try:
                conn = await asyncpg.connect(self._database_url)
            except (OSError, asyncpg.PostgresError) as e:
                raise StoreError(f"Cannot reopen LISTEN connection: {e}") from e
            conn.add_termination_listener(self._on_listen_conn_lost)
            self._listen_conn = conn
            logger.info("Reopened LISTEN connection")
            return conn

    async def subscribe(self, collection: Collection) -> AsyncIterator[ChangeEvent]:
        """LISTEN on the collection's channel and yield its changes.

        Learn: asyncpg delivers notifications through a synchronous
        callback. The callback only queues the payload; fetching the row
        happens here, on the consumer's side of the queue. A row that
        can't be read is logged and skipped. Losing the LISTEN connection
        raises StoreError so the caller can subscribe again, which reopens
        the connection.
        """
        queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        channel = channel_for(collection)

        def _on_notify(conn, pid, channel, payload):
            queue.put_nowait(payload)

        conn = await self._listen_connection()
        await conn.add_listener(channel, _on_notify)
        self._subscriptions.add(queue)
        logger.info("Listening on %s", channel)
        try:
            while True:
                payload = await queue.get()
                if payload is None:
                    raise StoreError(f"LISTEN connection lost on {channel}")
                try:
                    change_type, row_id = parse_notification(payload)
                except ValueError:
                    logger.exception("Dropping notification on %s", channel)
                    continue

                if change_type is ChangeType.REMOVED:
                    yield ChangeEvent(change_type, {"id": row_id}, row_id)
                    continue

                try:
                    record = await self.get_by_id(collection, row_id)
                except Exception:
                    logger.exception("Failed to read %s row %s", collection.value, row_id)
                    continue
                if record is None:
                    # Row deleted before we got to it
                    logger.debug("Row %s gone from %s", row_id, collection.value)
                    continue
                yield ChangeEvent(change_type, record, row_id)
        finally:
            self._subscriptions.discard(queue)
            if not conn.is_closed():
                await conn.remove_listener(channel, _on_notify)
