"""Push transport base — the interface every delivery backend implements.

Learn: A transport sends one message to one device token and returns the
provider's message id. It raises PushDeliveryError when the provider
refuses the message (bad token, quota, auth) or cannot be reached.
The GatewayClient is the only caller and turns that into a result.
"""

from dataclasses import dataclass
from typing import Optional, Protocol


class PushDeliveryError(Exception):
    """Raised by a transport when a message could not be delivered."""

    def __init__(self, reason: str, *, status: Optional[str] = None):
        self.reason = reason
        self.status = status
        super().__init__(reason)


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one delivery attempt."""

    ok: bool
    message_id: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, message_id: str) -> "DeliveryResult":
        return cls(ok=True, message_id=message_id)

    @classmethod
    def failure(cls, reason: str) -> "DeliveryResult":
        return cls(ok=False, reason=reason)


class PushTransport(Protocol):
    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, str],
    ) -> str:
        """Deliver one message, returning the provider's message id."""
        ...
