"""Typed payment notification events.

Every event model has a ``type`` literal field used as the union
discriminant. The wire format is camelCase JSON with absent fields
omitted, e.g. ``{"type":"payment_success","productId":"P1"}``.

``ConnectedEvent`` is synthesised by the stream gateway once its
subscription is live; it is never published on the bus.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _WireEvent(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    def to_json(self) -> str:
        """Serialise to the compact wire JSON used in ``data:`` lines."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ConnectedEvent(_WireEvent):
    """Subscription confirmed live. Carries no payload."""

    type: Literal["connected"] = "connected"


class PaymentSuccessEvent(_WireEvent):
    """A payment for the recipient went through."""

    type: Literal["payment_success"] = "payment_success"
    product_id: str | None = None
    product_title: str | None = None


class PaymentFailedEvent(_WireEvent):
    """A payment for the recipient was declined or errored."""

    type: Literal["payment_failed"] = "payment_failed"
    product_id: str | None = None
    product_title: str | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Union types
# ---------------------------------------------------------------------------

PaymentEvent = PaymentSuccessEvent | PaymentFailedEvent

NotificationEvent = Annotated[
    ConnectedEvent | PaymentSuccessEvent | PaymentFailedEvent,
    Field(discriminator="type"),
]

_notification_adapter: TypeAdapter[NotificationEvent] = TypeAdapter(NotificationEvent)


def parse_event(data: str | bytes) -> ConnectedEvent | PaymentEvent:
    """Parse a ``data:`` payload into its event variant.

    Raises ``pydantic.ValidationError`` for invalid JSON, an unknown
    ``type``, or mistyped fields.
    """
    return _notification_adapter.validate_json(data)
