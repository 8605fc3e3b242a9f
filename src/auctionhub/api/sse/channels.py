"""SSE channel naming.

Channels are Redis pub/sub topics scoped to a single recipient. The
recipient id is the authenticated caller's stable identity (the JWT
``sub``), so a stream can only ever see its own payment outcomes.

Channel pattern:
    payment:{recipient_id}
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class PaymentChannel:
    """Typed, recipient-scoped payment notification channel."""

    recipient_id: str

    def __post_init__(self) -> None:
        if not self.recipient_id:
            msg = "recipient_id must be a non-empty string"
            raise ValueError(msg)

    @property
    def pubsub_key(self) -> str:
        """Redis pub/sub channel name."""
        return f"payment:{self.recipient_id}"

    @classmethod
    def for_recipient(cls, recipient_id: str) -> PaymentChannel:
        return cls(recipient_id=recipient_id)
