"""Shared test fixtures.

Uses fakeredis for a self-contained in-memory Redis that supports pub/sub.
Every ``FakeRedis`` built from the same ``FakeServer`` sees the same
channels, which lets a test hold a separate publisher client and one
dedicated broker client per stream, as production does.
"""

from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from auctionhub.api.sse.broker import ChannelBrokerClient
from auctionhub.api.sse.dependencies import get_broker_factory
from auctionhub.api.sse.publisher import PaymentEventPublisher
from auctionhub.core.auth import AuthService
from auctionhub.core.exceptions import BrokerSubscribeError


class RecordingBroker(ChannelBrokerClient):
    """Real broker client over fakeredis that records teardown calls."""

    def __init__(
        self,
        redis: FakeRedis,
        *,
        fail_subscribe: bool = False,
        drop_after_subscribe: bool = False,
    ) -> None:
        super().__init__(redis, poll_interval=0.02)
        self.fail_subscribe = fail_subscribe
        self.drop_after_subscribe = drop_after_subscribe
        self.unsubscribe_calls: list[str] = []
        self.close_calls = 0
        self.on_error = None

    async def subscribe(self, channel, on_message, on_error=None):  # type: ignore[no-untyped-def]
        if self.fail_subscribe:
            raise BrokerSubscribeError(detail={"channel": channel})
        await super().subscribe(channel, on_message, on_error)
        self.on_error = on_error
        if self.drop_after_subscribe and on_error is not None:
            asyncio.get_running_loop().call_soon(on_error, RedisConnectionError("connection lost"))

    async def unsubscribe(self, channel: str) -> None:
        self.unsubscribe_calls.append(channel)
        await super().unsubscribe(channel)

    async def close(self) -> None:
        self.close_calls += 1
        await super().close()


class BrokerFactorySpy:
    """Broker factory handing out ``RecordingBroker`` instances on a shared server."""

    def __init__(self, server: FakeServer) -> None:
        self.server = server
        self.created: list[RecordingBroker] = []
        self.fail_subscribe = False
        self.drop_after_subscribe = False

    def __call__(self) -> RecordingBroker:
        broker = RecordingBroker(
            FakeRedis(server=self.server, decode_responses=True),
            fail_subscribe=self.fail_subscribe,
            drop_after_subscribe=self.drop_after_subscribe,
        )
        self.created.append(broker)
        return broker


@pytest.fixture
def recipient_id() -> str:
    return f"kp_{uuid4().hex}"


@pytest.fixture
def auth_token(recipient_id: str) -> str:
    """Create a dev JWT for the recipient."""
    return AuthService().create_access_token(recipient_id, email="bidder@example.com")


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def fake_redis(fake_server: FakeServer) -> FakeRedis:
    return FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture
def publisher(fake_redis: FakeRedis) -> PaymentEventPublisher:
    return PaymentEventPublisher(fake_redis)  # type: ignore[arg-type]


@pytest.fixture
def broker_factory(fake_server: FakeServer) -> BrokerFactorySpy:
    return BrokerFactorySpy(fake_server)


@pytest.fixture
def app(broker_factory: BrokerFactorySpy):
    """Create a fresh FastAPI app whose streams use fakeredis brokers."""
    from auctionhub.api.main import create_app

    app = create_app()
    app.dependency_overrides[get_broker_factory] = lambda: broker_factory
    return app


@pytest.fixture
async def async_client(app) -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
