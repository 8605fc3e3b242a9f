"""Event publisher — writes payment events to a recipient's Redis channel.

The payment webhook flow uses this module to push typed events. Stream
gateway connections subscribed to the channel relay them to browsers.
Redis pub/sub has no persistence: a recipient with no open stream at
publish time never sees the event.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from redis.exceptions import RedisError

from auctionhub.api.sse.channels import PaymentChannel
from auctionhub.api.sse.events import PaymentFailedEvent, PaymentSuccessEvent
from auctionhub.core.exceptions import PublishError, ValidationError

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from auctionhub.api.sse.events import PaymentEvent

logger = structlog.get_logger()


class PaymentEventPublisher:
    """Publishes payment events to Redis pub/sub."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def publish(self, recipient_id: str, event: PaymentEvent) -> int:
        """Publish ``event`` once to the recipient's channel.

        Returns the number of stream connections that received it (zero is
        normal when the recipient has no open tab). Raises ``PublishError``
        if Redis rejects the command.
        """
        if not isinstance(event, PaymentSuccessEvent | PaymentFailedEvent):
            raise ValidationError(
                "Only payment outcome events can be published.",
                detail={"type": getattr(event, "type", None)},
            )

        channel = PaymentChannel.for_recipient(recipient_id)
        try:
            receivers: int = await self._redis.publish(channel.pubsub_key, event.to_json())
        except RedisError as exc:
            logger.warning(
                "sse_event_publish_failed",
                channel=channel.pubsub_key,
                event_type=event.type,
                error=str(exc),
            )
            raise PublishError(detail={"channel": channel.pubsub_key}) from exc

        logger.debug(
            "sse_event_published",
            channel=channel.pubsub_key,
            event_type=event.type,
            receivers=receivers,
        )
        return receivers
