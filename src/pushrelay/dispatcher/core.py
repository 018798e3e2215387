"""Notification dispatcher — composition root for the stream watchers.

Learn: The dispatcher owns one StreamWatcher per configured stream and
wires each to its pipeline. The store and the push gateway are handed in
at construction; the dispatcher creates no connections of its own, which
keeps it runnable against the in-memory store in tests.

Runs as a long-lived process:
1. start() launches every watcher's run loop as a task
2. Watchers schedule one reaction task per inserted record
3. stop() cancels the run loops and waits for in-flight reactions
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

import structlog

from pushrelay.dispatcher.payloads import DEFAULT_TITLE
from pushrelay.dispatcher.pipelines import StreamPipelines
from pushrelay.dispatcher.resolver import EntityResolver
from pushrelay.dispatcher.stats import DispatcherStats
from pushrelay.dispatcher.watcher import StreamWatcher
from pushrelay.push.gateway import GatewayClient
from pushrelay.schemas.records import StreamKind
from pushrelay.store.base import ChangeStore

logger = structlog.get_logger()


class NotificationDispatcher:
    def __init__(
        self,
        store: ChangeStore,
        gateway: GatewayClient,
        *,
        streams: Iterable[StreamKind] = tuple(StreamKind),
        fanout_concurrency: int = 16,
        default_title: str = DEFAULT_TITLE,
        resubscribe_delay: float = 5.0,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.stats = DispatcherStats()
        self.resolver = EntityResolver(store)
        self.pipelines = StreamPipelines(
            self.resolver,
            gateway,
            self.stats,
            fanout_concurrency=fanout_concurrency,
            default_title=default_title,
            clock=clock,
        )
        self.watchers: dict[StreamKind, StreamWatcher] = {
            kind: StreamWatcher(
                kind,
                store,
                self.pipelines.for_stream(kind),
                self.stats,
                resubscribe_delay=resubscribe_delay,
            )
            for kind in dict.fromkeys(streams)
        }
        self._run_tasks: list[asyncio.Task] = []
        self._shutdown_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Run every watcher until stop() is called or the task is cancelled."""
        self.stats.started_at = datetime.now(timezone.utc)
        logger.info(
            "pushrelay.dispatcher_starting",
            streams=[kind.value for kind in self.watchers],
        )
        self._run_tasks = [
            asyncio.create_task(watcher.run(), name=f"watch-{kind.value}")
            for kind, watcher in self.watchers.items()
        ]
        try:
            await asyncio.gather(*self._run_tasks)
        except asyncio.CancelledError:
            # stop() cancelling the run loops is a normal exit
            if asyncio.current_task().cancelling():
                raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop consuming changes and wait for reactions already running."""
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.create_task(self._shutdown())
        await self._shutdown_task

    async def _shutdown(self) -> None:
        for watcher in self.watchers.values():
            watcher.stop()
        for task in self._run_tasks:
            task.cancel()
        if self._run_tasks:
            await asyncio.gather(*self._run_tasks, return_exceptions=True)
            self._run_tasks = []
        await asyncio.gather(*(w.drain() for w in self.watchers.values()))
        logger.info("pushrelay.dispatcher_stopped", in_flight=self.stats.in_flight)

    def get_stats(self) -> dict:
        """Return dispatcher statistics for monitoring."""
        return self.stats.as_dict()
