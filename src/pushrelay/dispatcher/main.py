"""Dispatcher entry point — run as a separate process.

Learn: Bootstrap lives here and only here: load settings, configure
logging, connect the store, build the FCM transport, then hand both to
the NotificationDispatcher. The store connection is the one fatal
failure; if it can't be opened the process exits with status 1.

Usage:
    pushrelay run                         # watch every stream
    pushrelay run --stream message_sent   # watch selected streams only
    pushrelay install-triggers            # create the NOTIFY triggers

Or:
    python -m pushrelay.dispatcher.main run
"""

import asyncio
import logging
import signal
import sys

import click
import structlog

from pushrelay import __version__
from pushrelay.config import Settings, get_settings
from pushrelay.dispatcher.core import NotificationDispatcher
from pushrelay.push.fcm import FcmTransport
from pushrelay.push.gateway import GatewayClient
from pushrelay.schemas.records import StreamKind
from pushrelay.store.base import StoreError
from pushrelay.store.postgres import PostgresStore

logger = structlog.get_logger()


def configure_logging(level: str) -> None:
    """stdlib logging for libraries, structlog on top for our own events."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )


async def _connect_store(settings: Settings) -> PostgresStore:
    try:
        return await PostgresStore.connect(settings.database_url)
    except StoreError as e:
        logger.error("pushrelay.store_unavailable", error=str(e))
        sys.exit(1)


async def run(settings: Settings, streams: tuple[StreamKind, ...]) -> None:
    """Run the dispatcher until interrupted."""
    store = await _connect_store(settings)
    if settings.install_triggers_on_start:
        await store.install_triggers()

    transport = FcmTransport.from_settings(settings)
    dispatcher = NotificationDispatcher(
        store,
        GatewayClient(transport),
        streams=streams,
        fanout_concurrency=settings.fanout_concurrency,
        default_title=settings.default_title,
        resubscribe_delay=settings.resubscribe_delay,
    )

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(dispatcher.stop()))

    logger.info(
        "pushrelay.starting",
        version=__version__,
        environment=settings.environment,
        fcm_project=settings.fcm_project_id or None,
    )
    try:
        await dispatcher.start()
    finally:
        await transport.close()
        await store.close()
        logger.info("pushrelay.stopped", **dispatcher.get_stats())


async def install_triggers(settings: Settings) -> None:
    store = await _connect_store(settings)
    try:
        await store.install_triggers()
    finally:
        await store.close()


# ─── CLI ─────────────────────────────────────────────────


@click.group()
@click.version_option(__version__, prog_name="pushrelay")
def cli():
    """pushrelay — push notifications for new event platform records."""


@cli.command("run")
@click.option(
    "--stream",
    "streams",
    multiple=True,
    type=click.Choice([kind.value for kind in StreamKind]),
    help="Stream to watch (repeatable). Defaults to all streams.",
)
def run_command(streams: tuple[str, ...]):
    """Watch the streams and deliver notifications."""
    settings = get_settings()
    configure_logging(settings.log_level)
    kinds = tuple(StreamKind(s) for s in streams) or tuple(StreamKind)
    asyncio.run(run(settings, kinds))


@cli.command("install-triggers")
def install_triggers_command():
    """Create the change NOTIFY triggers on the watched tables."""
    settings = get_settings()
    configure_logging(settings.log_level)
    asyncio.run(install_triggers(settings))
    click.secho("Triggers installed.", fg="green")


def main():
    """CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
