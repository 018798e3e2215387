"""Payload builders — one pure function per stream.

Each builder takes the validated record plus whatever the pipeline
resolved, and returns an unaddressed NotificationPayload. The timestamp
is the reaction time passed in by the caller, not the record's time.
"""

from typing import Optional

from pushrelay.schemas.notifications import NotificationPayload, NotificationType
from pushrelay.schemas.records import (
    AttendanceRecord,
    EventRecord,
    MessageRecord,
    PaymentRecord,
    StreamRecord,
    TicketRecord,
)

DEFAULT_TITLE = "Notification"


def _title(record: StreamRecord, default_title: str) -> str:
    return record.title or default_title


def _correlation(**ids: Optional[str]) -> dict[str, str]:
    return {key: value for key, value in ids.items() if value is not None}


def build_event_post(
    record: EventRecord,
    organizer_name: str,
    user_id: str,
    *,
    now_ms: int,
    default_title: str = DEFAULT_TITLE,
) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationType.EVENT_POST,
        title=_title(record, default_title),
        body=f"{organizer_name} has posted a new event. Check it out!",
        timestamp=now_ms,
        correlation=_correlation(user_id=user_id, event_id=record.id),
    )


def build_payment_status(
    record: PaymentRecord,
    user_id: str,
    *,
    now_ms: int,
    default_title: str = DEFAULT_TITLE,
) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationType.PAYMENT_STATUS,
        title=_title(record, default_title),
        body=f"{record.name or ''} has {record.status or ''} your payment. Check it out!",
        timestamp=now_ms,
        correlation=_correlation(user_id=user_id, status=record.status),
    )


def build_new_message(
    record: MessageRecord,
    receiver_id: str,
    sender_id: str,
    *,
    now_ms: int,
    default_title: str = DEFAULT_TITLE,
) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationType.NEW_MESSAGE,
        title=_title(record, default_title),
        body=record.message or "",
        timestamp=now_ms,
        correlation=_correlation(user_id=receiver_id, sender_id=sender_id),
    )


def build_ticket_purchase(
    record: TicketRecord,
    event_name: str,
    user_id: str,
    *,
    now_ms: int,
    default_title: str = DEFAULT_TITLE,
) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationType.TICKET_PURCHASE,
        title=_title(record, default_title),
        body=f"Thank you for purchasing for {event_name}!",
        timestamp=now_ms,
        correlation=_correlation(user_id=user_id, event_id=record.event_id),
    )


def build_attendance_reminder(
    record: AttendanceRecord,
    event_name: str,
    user_id: str,
    *,
    now_ms: int,
    default_title: str = DEFAULT_TITLE,
) -> NotificationPayload:
    return NotificationPayload(
        type=NotificationType.EVENT_ATTENDANCE_REMINDER,
        title=_title(record, default_title),
        body=f"Make sure to attend {event_name}!",
        timestamp=now_ms,
        correlation=_correlation(
            user_id=user_id, event_id=record.event_id, event_name=event_name
        ),
    )
