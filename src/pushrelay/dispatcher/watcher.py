"""Stream watcher — one subscription, one reaction task per insertion.

Learn: The watcher reads its collection's change feed and reacts only to
'added' changes. Each reaction runs as its own asyncio task, so a slow
lookup or delivery for one record never delays picking up the next one.

Failure scopes, smallest first:
- malformed record → logged, counted as invalid, no lookup at all
- exception inside a reaction → logged with traceback, counted as error
- change feed dies → logged, resubscribe after a short delay

Nothing is carried from one change to the next; the only state is the
set of reactions still in flight.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from pushrelay.dispatcher.stats import DispatcherStats
from pushrelay.schemas.records import (
    RecordValidationError,
    StreamKind,
    StreamRecord,
    parse_record,
)
from pushrelay.store.base import ChangeEvent, ChangeStore, ChangeType

logger = structlog.get_logger()


class StreamWatcher:
    def __init__(
        self,
        kind: StreamKind,
        store: ChangeStore,
        react: Callable[[StreamRecord], Awaitable[None]],
        stats: DispatcherStats,
        *,
        resubscribe_delay: float = 5.0,
    ):
        self.kind = kind
        self._store = store
        self._react = react
        self._stats = stats
        self._resubscribe_delay = resubscribe_delay
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def run(self) -> None:
        """Consume the change feed until stopped or cancelled."""
        self._running = True
        logger.info("pushrelay.watcher_started", stream=self.kind.value)
        while self._running:
            try:
                async for change in self._store.subscribe(self.kind.collection):
                    self.dispatch(change)
                    if not self._running:
                        break
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("pushrelay.change_feed_error", stream=self.kind.value)

            if self._running:
                await asyncio.sleep(self._resubscribe_delay)
        logger.info("pushrelay.watcher_stopped", stream=self.kind.value)

    def stop(self) -> None:
        self._running = False

    async def drain(self) -> None:
        """Wait for every reaction still in flight."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def dispatch(self, change: ChangeEvent) -> Optional[asyncio.Task]:
        """Schedule the reaction for one change; returns the task, if any."""
        if change.type is not ChangeType.ADDED:
            self._stats.ignored += 1
            return None

        self._stats.received += 1
        task = asyncio.create_task(self.handle(change))
        self._tasks.add(task)
        self._stats.in_flight += 1
        task.add_done_callback(self._reaction_done)
        return task

    def _reaction_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._stats.in_flight -= 1

    async def handle(self, change: ChangeEvent) -> None:
        """React to one added change inside its own failure scope."""
        structlog.contextvars.bind_contextvars(
            stream=self.kind.value, record_id=change.record_id
        )
        try:
            record = parse_record(self.kind, change.record, change.record_id)
        except RecordValidationError as e:
            self._stats.invalid += 1
            logger.error("pushrelay.invalid_record", missing=e.fields, record=change.record)
            return

        try:
            await self._react(record)
        except Exception:
            self._stats.errors += 1
            logger.exception("pushrelay.reaction_failed")
