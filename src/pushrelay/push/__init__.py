"""Push delivery — gateway client and transports."""

from pushrelay.push.base import DeliveryResult, PushDeliveryError, PushTransport
from pushrelay.push.gateway import GatewayClient

__all__ = ["DeliveryResult", "GatewayClient", "PushDeliveryError", "PushTransport"]
