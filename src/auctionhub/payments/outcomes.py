"""Turn verified payment outcomes into recipient notifications.

The payment webhook (signature checks and provider parsing live outside
this package) calls ``publish_payment_outcome`` once per outcome. Publishing
is fire-and-forget: the webhook must acknowledge the provider even when
the bus is down, so failures are logged and swallowed unless the caller
asks otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

import structlog

from auctionhub.api.sse.dependencies import get_publisher_redis
from auctionhub.api.sse.events import PaymentEvent, PaymentFailedEvent, PaymentSuccessEvent
from auctionhub.api.sse.publisher import PaymentEventPublisher
from auctionhub.core.exceptions import PublishError

logger = structlog.get_logger()

DEFAULT_FAILURE_MESSAGE = "Unknown error"


class PaymentOutcome(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PaymentResult:
    """A verified payment outcome for one recipient."""

    recipient_id: str
    outcome: PaymentOutcome
    product_id: str | None = None
    product_title: str | None = None
    failure_message: str | None = None


def build_event(result: PaymentResult) -> PaymentEvent:
    """Map an outcome to the event variant the recipient's browser expects."""
    if result.outcome is PaymentOutcome.SUCCEEDED:
        return PaymentSuccessEvent(
            product_id=result.product_id,
            product_title=result.product_title,
        )
    return PaymentFailedEvent(
        product_id=result.product_id,
        product_title=result.product_title,
        message=result.failure_message or DEFAULT_FAILURE_MESSAGE,
    )


async def publish_payment_outcome(
    result: PaymentResult,
    publisher: PaymentEventPublisher | None = None,
    *,
    raise_on_error: bool = False,
) -> bool:
    """Publish the notification for ``result`` exactly once.

    Returns ``True`` if the bus accepted the event. Delivery to an open
    stream is not confirmed.
    """
    if publisher is None:
        publisher = PaymentEventPublisher(get_publisher_redis())

    event = build_event(result)
    log = logger.bind(
        recipient_id=result.recipient_id,
        outcome=result.outcome.value,
        product_id=result.product_id,
    )

    try:
        receivers = await publisher.publish(result.recipient_id, event)
    except PublishError:
        log.warning("payment_notification_not_published")
        if raise_on_error:
            raise
        return False

    log.info("payment_notification_published", receivers=receivers)
    return True
