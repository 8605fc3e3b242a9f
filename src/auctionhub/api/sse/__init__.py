"""SSE streaming infrastructure for real-time payment notifications."""

from auctionhub.api.sse.broker import ChannelBrokerClient
from auctionhub.api.sse.channels import PaymentChannel
from auctionhub.api.sse.events import (
    ConnectedEvent,
    PaymentEvent,
    PaymentFailedEvent,
    PaymentSuccessEvent,
)
from auctionhub.api.sse.gateway import StreamConnection
from auctionhub.api.sse.publisher import PaymentEventPublisher

__all__ = [
    "ChannelBrokerClient",
    "ConnectedEvent",
    "PaymentChannel",
    "PaymentEvent",
    "PaymentEventPublisher",
    "PaymentFailedEvent",
    "PaymentSuccessEvent",
    "StreamConnection",
]
