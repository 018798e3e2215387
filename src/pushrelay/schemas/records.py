"""Pydantic schemas for the records on each watched stream.

Learn: Every stream carries raw documents owned by the store. Before the
dispatcher does any lookup, the document is validated against the schema
for its stream. A document missing one of its reference fields is
rejected here, so a pipeline never starts resolving half a record.

Streams:
- 'event_posted': an organizer posted a new event (fans out to all users)
- 'payment_updated': a payment changed status for a user
- 'message_sent': a direct message between users and/or organizers
- 'ticket_purchased': a user bought a ticket for an event
- 'attendance_recorded': a user is registered to attend an event
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from pushrelay.store.base import Collection


class StreamKind(str, Enum):
    EVENT_POSTED = "event_posted"
    PAYMENT_UPDATED = "payment_updated"
    MESSAGE_SENT = "message_sent"
    TICKET_PURCHASED = "ticket_purchased"
    ATTENDANCE_RECORDED = "attendance_recorded"

    @property
    def collection(self) -> Collection:
        return _STREAM_COLLECTIONS[self]


_STREAM_COLLECTIONS = {
    StreamKind.EVENT_POSTED: Collection.EVENTS,
    StreamKind.PAYMENT_UPDATED: Collection.PAYMENTS,
    StreamKind.MESSAGE_SENT: Collection.MESSAGES,
    StreamKind.TICKET_PURCHASED: Collection.TICKETS,
    StreamKind.ATTENDANCE_RECORDED: Collection.ATTENDANCE,
}


class EntityKind(str, Enum):
    USER = "user"
    ORGANIZER = "organizer"

    @property
    def collection(self) -> Collection:
        return Collection.USERS if self is EntityKind.USER else Collection.ORGANIZERS


class EntityRef(BaseModel):
    """Tagged reference to a user or an organizer."""
    model_config = ConfigDict(frozen=True)

    kind: EntityKind
    id: str


class RecordValidationError(Exception):
    """Raised when a stream record is missing required reference fields."""

    def __init__(self, stream: StreamKind, fields: list[str]):
        self.stream = stream
        self.fields = fields
        super().__init__(
            f"Invalid {stream.value} record: missing or invalid {', '.join(fields)}"
        )


def _id_as_str(value: Any) -> Any:
    # Stores hand back UUID or integer keys; references compare as text.
    if value is None or isinstance(value, str):
        return value
    return str(value)


# Reference ids must be present and non-empty.
RefId = Annotated[str, BeforeValidator(_id_as_str), Field(min_length=1)]


# ─── Stream records ─────────────────────────────────────


class StreamRecord(BaseModel):
    """Fields every stream record may carry."""
    model_config = ConfigDict(extra="allow")

    id: Annotated[Optional[str], BeforeValidator(_id_as_str)] = None
    title: Optional[str] = None


class EventRecord(StreamRecord):
    organizer_id: RefId
    event_name: Optional[str] = None


class PaymentRecord(StreamRecord):
    user_id: RefId
    name: Optional[str] = None
    status: Optional[str] = None


class MessageRecord(StreamRecord):
    sender_id: RefId
    receiver_id: RefId
    sender_type: Literal["user", "organizer"]
    receiver_type: Literal["user", "organizer"]
    message: Optional[str] = None

    @property
    def sender(self) -> EntityRef:
        return EntityRef(kind=EntityKind(self.sender_type), id=self.sender_id)

    @property
    def receiver(self) -> EntityRef:
        return EntityRef(kind=EntityKind(self.receiver_type), id=self.receiver_id)


class TicketRecord(StreamRecord):
    user_id: RefId
    event_id: RefId


class AttendanceRecord(StreamRecord):
    user_id: RefId
    event_id: RefId


RECORD_SCHEMAS: dict[StreamKind, type[StreamRecord]] = {
    StreamKind.EVENT_POSTED: EventRecord,
    StreamKind.PAYMENT_UPDATED: PaymentRecord,
    StreamKind.MESSAGE_SENT: MessageRecord,
    StreamKind.TICKET_PURCHASED: TicketRecord,
    StreamKind.ATTENDANCE_RECORDED: AttendanceRecord,
}


def parse_record(
    stream: StreamKind,
    data: dict[str, Any],
    record_id: Optional[str] = None,
) -> StreamRecord:
    """Validate a raw document for its stream.

    The store's document id fills in ``id`` when the document body has none.
    Raises RecordValidationError listing the offending fields.
    """
    schema = RECORD_SCHEMAS[stream]
    try:
        record = schema.model_validate(data)
    except ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        raise RecordValidationError(stream, fields) from e

    if not record.id and record_id:
        record = record.model_copy(update={"id": record_id})
    return record
