"""Outgoing push notification payload.

Learn: A payload is built once per recipient, handed to the gateway and
then dropped. Builders produce it without a push token; the pipeline
addresses it only after the recipient has been resolved, so a payload
can never point at a token nobody looked up.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class NotificationType(str, Enum):
    EVENT_POST = "event_post"
    PAYMENT_STATUS = "payment_status"
    NEW_MESSAGE = "new_message"
    TICKET_PURCHASE = "ticket_purchase"
    EVENT_ATTENDANCE_REMINDER = "event_attendance_reminder"


class NotificationPayload(BaseModel):
    """One push notification for one recipient."""
    model_config = ConfigDict(frozen=True)

    type: NotificationType
    title: str
    body: str
    timestamp: int = Field(..., description="Reaction time, epoch milliseconds")
    correlation: dict[str, str] = Field(default_factory=dict)
    token: Optional[str] = Field(None, description="Recipient push token")

    def addressed_to(self, token: str) -> "NotificationPayload":
        return self.model_copy(update={"token": token})

    def wire_data(self) -> dict[str, str]:
        """Flatten into the string-only data map push transports expect."""
        data = {
            "type": self.type.value,
            "timestamp": str(self.timestamp),
            "senderId": self.correlation.get("sender_id", ""),
        }
        for key, value in self.correlation.items():
            if key != "sender_id":
                data[key] = value
        return data
