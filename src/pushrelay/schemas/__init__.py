"""Pydantic schemas for stream records and outgoing notifications."""

from pushrelay.schemas.notifications import NotificationPayload, NotificationType
from pushrelay.schemas.records import (
    RECORD_SCHEMAS,
    AttendanceRecord,
    EntityKind,
    EntityRef,
    EventRecord,
    MessageRecord,
    PaymentRecord,
    RecordValidationError,
    StreamKind,
    StreamRecord,
    TicketRecord,
    parse_record,
)

__all__ = [
    "NotificationPayload",
    "NotificationType",
    "RECORD_SCHEMAS",
    "AttendanceRecord",
    "EntityKind",
    "EntityRef",
    "EventRecord",
    "MessageRecord",
    "PaymentRecord",
    "RecordValidationError",
    "StreamKind",
    "StreamRecord",
    "TicketRecord",
    "parse_record",
]
