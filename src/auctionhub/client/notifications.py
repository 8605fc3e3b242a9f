"""Display texts for payment notifications.

``render_notification`` is a pure mapping from event to toast content;
``log_notification`` is the default display callback for headless relays.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

import structlog

from auctionhub.api.sse.events import PaymentEvent, PaymentSuccessEvent

logger = structlog.get_logger()

NOTIFICATION_DURATION_MS = 5000


class NotificationLevel(StrEnum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Notification:
    level: NotificationLevel
    title: str
    description: str
    duration_ms: int = NOTIFICATION_DURATION_MS


def render_notification(event: PaymentEvent) -> Notification:
    if isinstance(event, PaymentSuccessEvent):
        if event.product_title:
            description = f'Your bid entry for "{event.product_title}" has been recorded.'
        else:
            description = "Your bid entry has been recorded."
        return Notification(
            level=NotificationLevel.SUCCESS,
            title="Payment successful!",
            description=description,
        )

    return Notification(
        level=NotificationLevel.ERROR,
        title="Payment failed",
        description=event.message or "Your payment could not be processed. Please try again.",
    )


def log_notification(event: PaymentEvent) -> None:
    notification = render_notification(event)
    logger.info(
        "payment_notification",
        level=notification.level.value,
        title=notification.title,
        description=notification.description,
        product_id=event.product_id,
    )
