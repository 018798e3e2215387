"""Notification gateway client — one payload in, one DeliveryResult out.

Learn: The gateway is the boundary between the dispatcher and the push
provider. Whatever goes wrong on the far side (network, revoked token,
quota) comes back as a failed DeliveryResult. Nothing is retried here;
the caller logs the outcome and moves on.
"""

import structlog

from pushrelay.push.base import DeliveryResult, PushDeliveryError, PushTransport
from pushrelay.schemas.notifications import NotificationPayload

logger = structlog.get_logger()


class GatewayClient:
    def __init__(self, transport: PushTransport):
        self._transport = transport

    async def send(self, payload: NotificationPayload) -> DeliveryResult:
        if not payload.token:
            return DeliveryResult.failure("payload has no recipient token")

        try:
            message_id = await self._transport.send(
                payload.token,
                payload.title,
                payload.body,
                payload.wire_data(),
            )
        except PushDeliveryError as e:
            return DeliveryResult.failure(e.reason)
        except Exception as e:  # transport bugs must not escape either
            logger.exception("pushrelay.transport_error", type=payload.type.value)
            return DeliveryResult.failure(f"{type(e).__name__}: {e}")

        return DeliveryResult.success(message_id)
