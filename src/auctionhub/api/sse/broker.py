"""Channel broker client — one dedicated Redis pub/sub connection per stream.

A Redis connection in subscriber mode cannot issue any other command, so
the gateway never borrows the shared publisher client for subscriptions.
Each open stream owns exactly one ``ChannelBrokerClient`` and releases it
with ``close()`` when the stream ends.

Messages are pulled by a background reader task and handed to the
``on_message`` callback registered for their channel. A bus failure after
the subscription is live, or an exception raised by a callback, is reported
once through ``on_error``.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from auctionhub.core.exceptions import BrokerSubscribeError

if TYPE_CHECKING:
    from redis.asyncio.client import PubSub

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class _Subscription:
    on_message: Callable[[str], None]
    on_error: Callable[[Exception], None] | None


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class ChannelBrokerClient:
    """Dedicated bus connection exposing subscribe / unsubscribe / close."""

    def __init__(self, redis: Redis, *, poll_interval: float = 1.0) -> None:
        self._redis = redis
        self._poll_interval = poll_interval
        self._pubsub: PubSub | None = None
        self._subscriptions: dict[str, _Subscription] = {}
        self._reader: asyncio.Task[None] | None = None
        self._closed = False

    @classmethod
    def from_url(cls, url: str, *, poll_interval: float = 1.0) -> ChannelBrokerClient:
        """Open a client with its own connection pool (not shared with the publisher)."""
        return cls(Redis.from_url(url, decode_responses=True), poll_interval=poll_interval)

    @property
    def channels(self) -> frozenset[str]:
        return frozenset(self._subscriptions)

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def subscribe(
        self,
        channel: str,
        on_message: Callable[[str], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        """Subscribe to ``channel`` and start delivering its messages.

        Raises ``BrokerSubscribeError`` if the connection cannot be
        established or the subscribe command is rejected.
        """
        if self._closed:
            raise BrokerSubscribeError("Broker client is closed.", detail={"channel": channel})

        if self._pubsub is None:
            self._pubsub = self._redis.pubsub(ignore_subscribe_messages=True)

        try:
            await self._pubsub.subscribe(channel)
        except RedisError as exc:
            logger.warning("broker_subscribe_failed", channel=channel, error=str(exc))
            raise BrokerSubscribeError(detail={"channel": channel}) from exc

        self._subscriptions[channel] = _Subscription(on_message=on_message, on_error=on_error)

        if self._reader is None or self._reader.done():
            self._reader = asyncio.create_task(self._read_messages(), name=f"broker:{channel}")

        logger.debug("broker_subscribed", channel=channel)

    async def unsubscribe(self, channel: str) -> None:
        """Stop delivery for ``channel``. A no-op if it is not subscribed."""
        if self._subscriptions.pop(channel, None) is None or self._pubsub is None:
            return
        await self._pubsub.unsubscribe(channel)
        logger.debug("broker_unsubscribed", channel=channel)

    async def close(self) -> None:
        """Stop the reader and release the dedicated connection. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._subscriptions.clear()

        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader

        try:
            if self._pubsub is not None:
                await self._pubsub.aclose()
        finally:
            await self._redis.aclose()

    async def _read_messages(self) -> None:
        assert self._pubsub is not None
        try:
            while self._subscriptions:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=self._poll_interval,
                )
                if message is None or message["type"] != "message":
                    continue

                subscription = self._subscriptions.get(_decode(message["channel"]))
                if subscription is None:
                    # Unsubscribed while the message was in flight
                    continue
                subscription.on_message(_decode(message["data"]))
        except RedisError as exc:
            logger.warning(
                "broker_connection_lost",
                channels=sorted(self._subscriptions),
                error=str(exc),
            )
            self._report_error(exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("broker_reader_failed", channels=sorted(self._subscriptions))
            self._report_error(exc)

    def _report_error(self, exc: Exception) -> None:
        for subscription in list(self._subscriptions.values()):
            if subscription.on_error is not None:
                subscription.on_error(exc)


BrokerFactory = Callable[[], ChannelBrokerClient]
