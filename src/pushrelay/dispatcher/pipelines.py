"""Stream pipelines — resolve → build → deliver, one method per stream.

Learn: Each pipeline receives an already validated record. It resolves
the recipient (and the event, where the body needs its name), builds the
payload, addresses it to the recipient's token and hands it to the
gateway. An unresolved reference or a recipient without a push token
ends the pipeline quietly; nothing is delivered and nothing is raised.

event_post is the only fan-out: the user set is read once per record and
every user with a token gets an independent delivery task. The tasks are
joined with gather(return_exceptions=True) under a semaphore, so one
slow or failing send never holds back the others.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

from pushrelay.dispatcher.payloads import (
    DEFAULT_TITLE,
    build_attendance_reminder,
    build_event_post,
    build_new_message,
    build_payment_status,
    build_ticket_purchase,
)
from pushrelay.dispatcher.resolver import Entity, EntityResolver
from pushrelay.dispatcher.stats import DispatcherStats
from pushrelay.push.base import DeliveryResult
from pushrelay.push.gateway import GatewayClient
from pushrelay.schemas.notifications import NotificationPayload
from pushrelay.schemas.records import (
    AttendanceRecord,
    EntityKind,
    EventRecord,
    MessageRecord,
    PaymentRecord,
    StreamKind,
    StreamRecord,
    TicketRecord,
)

logger = structlog.get_logger()

Pipeline = Callable[[StreamRecord], Awaitable[None]]


def _now_ms() -> int:
    return int(time.time() * 1000)


class StreamPipelines:
    def __init__(
        self,
        resolver: EntityResolver,
        gateway: GatewayClient,
        stats: DispatcherStats,
        *,
        fanout_concurrency: int = 16,
        default_title: str = DEFAULT_TITLE,
        clock: Optional[Callable[[], int]] = None,
    ):
        self._resolver = resolver
        self._gateway = gateway
        self._stats = stats
        self._fanout_concurrency = fanout_concurrency
        self._default_title = default_title
        self._clock = clock or _now_ms

    def for_stream(self, stream: StreamKind) -> Pipeline:
        return {
            StreamKind.EVENT_POSTED: self.event_posted,
            StreamKind.PAYMENT_UPDATED: self.payment_updated,
            StreamKind.MESSAGE_SENT: self.message_sent,
            StreamKind.TICKET_PURCHASED: self.ticket_purchased,
            StreamKind.ATTENDANCE_RECORDED: self.attendance_recorded,
        }[stream]

    # ─── Shared steps ────────────────────────────────────

    def _reachable(self, recipient: Optional[Entity]) -> bool:
        if recipient is None:
            self._stats.unresolved += 1
            return False
        if not recipient.deliverable:
            logger.info(
                "pushrelay.no_push_token",
                recipient=recipient.id,
                kind=recipient.kind.value,
            )
            self._stats.skipped += 1
            return False
        return True

    async def _event_name(self, event_id: str) -> Optional[str]:
        event = await self._resolver.fetch_event(event_id)
        if event is None:
            self._stats.unresolved += 1
            return None
        return event.get("event_name") or ""

    async def _deliver(
        self, recipient: Entity, payload: NotificationPayload
    ) -> DeliveryResult:
        result = await self._gateway.send(payload.addressed_to(recipient.push_token))
        if result.ok:
            self._stats.delivered += 1
            logger.info(
                "pushrelay.delivered",
                type=payload.type.value,
                recipient=recipient.id,
                message_id=result.message_id,
            )
        else:
            self._stats.failed += 1
            logger.warning(
                "pushrelay.delivery_failed",
                type=payload.type.value,
                recipient=recipient.id,
                reason=result.reason,
            )
        return result

    # ─── Pipelines ───────────────────────────────────────

    async def event_posted(self, record: EventRecord) -> None:
        organizer = await self._resolver.resolve(EntityKind.ORGANIZER, record.organizer_id)
        if organizer is None:
            self._stats.unresolved += 1
            return

        users = await self._resolver.list_users()
        recipients = [user for user in users if user.deliverable]
        self._stats.skipped += len(users) - len(recipients)
        if not recipients:
            logger.info("pushrelay.fanout_empty", event_id=record.id)
            return

        now_ms = self._clock()
        semaphore = asyncio.Semaphore(self._fanout_concurrency)

        async def _send_one(user: Entity) -> DeliveryResult:
            payload = build_event_post(
                record,
                organizer.display_name,
                user.id,
                now_ms=now_ms,
                default_title=self._default_title,
            )
            async with semaphore:
                return await self._deliver(user, payload)

        results = await asyncio.gather(
            *(_send_one(user) for user in recipients), return_exceptions=True
        )
        for user, result in zip(recipients, results):
            if isinstance(result, BaseException):
                self._stats.errors += 1
                logger.error(
                    "pushrelay.fanout_send_error", recipient=user.id, exc_info=result
                )

        logger.info(
            "pushrelay.fanout_done",
            event_id=record.id,
            recipients=len(recipients),
            without_token=len(users) - len(recipients),
        )

    async def payment_updated(self, record: PaymentRecord) -> None:
        user = await self._resolver.resolve(EntityKind.USER, record.user_id)
        if not self._reachable(user):
            return

        payload = build_payment_status(
            record, user.id, now_ms=self._clock(), default_title=self._default_title
        )
        await self._deliver(user, payload)

    async def message_sent(self, record: MessageRecord) -> None:
        receiver, sender = await asyncio.gather(
            self._resolver.resolve_ref(record.receiver),
            self._resolver.resolve_ref(record.sender),
        )
        if not self._reachable(receiver):
            return

        payload = build_new_message(
            record,
            receiver.id,
            sender.id if sender else "",
            now_ms=self._clock(),
            default_title=self._default_title,
        )
        await self._deliver(receiver, payload)

    async def ticket_purchased(self, record: TicketRecord) -> None:
        user = await self._resolver.resolve(EntityKind.USER, record.user_id)
        if not self._reachable(user):
            return

        event_name = await self._event_name(record.event_id)
        if event_name is None:
            return

        payload = build_ticket_purchase(
            record,
            event_name,
            user.id,
            now_ms=self._clock(),
            default_title=self._default_title,
        )
        await self._deliver(user, payload)

    async def attendance_recorded(self, record: AttendanceRecord) -> None:
        user = await self._resolver.resolve(EntityKind.USER, record.user_id)
        if not self._reachable(user):
            return

        event_name = await self._event_name(record.event_id)
        if event_name is None:
            return

        payload = build_attendance_reminder(
            record,
            event_name,
            user.id,
            now_ms=self._clock(),
            default_title=self._default_title,
        )
        await self._deliver(user, payload)
