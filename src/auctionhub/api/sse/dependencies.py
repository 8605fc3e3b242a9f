"""FastAPI dependencies for SSE endpoints.

Two kinds of Redis client exist:

* The **publisher** client is process-wide: created on first use, shared by
  every publish call and only closed by the application shutdown hook.
  ``PUBLISH`` has no connection affinity, so sharing it is safe. It must
  never be used to subscribe.
* **Broker** clients are per stream. ``get_broker_factory`` hands the
  gateway a factory that opens a fresh, dedicated connection each time.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from redis.asyncio import Redis

from auctionhub.api.sse.broker import ChannelBrokerClient
from auctionhub.core.config import settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from auctionhub.api.sse.broker import BrokerFactory

# Shared publisher client, created on first use
_publisher_redis: Redis | None = None


def get_publisher_redis() -> Redis:
    """Return the shared publisher client, creating it on first call."""
    global _publisher_redis  # noqa: PLW0603
    if _publisher_redis is None:
        _publisher_redis = Redis.from_url(settings.redis_url, decode_responses=True)
    return _publisher_redis


async def get_redis() -> AsyncGenerator[Redis, None]:
    """Yield the shared publisher client."""
    yield get_publisher_redis()


async def close_redis() -> None:
    """Close the publisher client. Called on app shutdown."""
    global _publisher_redis  # noqa: PLW0603
    if _publisher_redis is not None:
        await _publisher_redis.aclose()
        _publisher_redis = None


def _open_broker() -> ChannelBrokerClient:
    return ChannelBrokerClient.from_url(
        settings.redis_url,
        poll_interval=settings.sse_broker_poll_seconds,
    )


def get_broker_factory() -> BrokerFactory:
    """Return the factory used to open one dedicated broker client per stream."""
    return _open_broker
