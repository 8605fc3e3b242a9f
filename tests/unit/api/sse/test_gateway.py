"""Tests for the stream gateway connection lifecycle.

The streaming tests drive ``StreamConnection.stream()`` directly; cancelling
the consuming task is what Starlette does when the peer goes away.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import aclosing

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from auctionhub.api.sse.channels import PaymentChannel
from auctionhub.api.sse.events import PaymentFailedEvent, PaymentSuccessEvent
from auctionhub.api.sse.gateway import (
    HEARTBEAT_FRAME,
    ConnectionState,
    StreamConnection,
    format_data_frame,
)
from auctionhub.api.sse.publisher import PaymentEventPublisher
from auctionhub.core.exceptions import UnauthorisedError

CONNECTED_FRAME = 'data: {"type":"connected"}\n\n'


class _Consumer:
    """Drains a connection's stream in the background, like a StreamingResponse."""

    def __init__(self, connection: StreamConnection) -> None:
        self.connection = connection
        self.frames: list[str] = []
        self.task = asyncio.create_task(self._consume())

    async def _consume(self) -> None:
        async for frame in self.connection.stream():
            self.frames.append(frame)

    @property
    def data_frames(self) -> list[str]:
        return [f for f in self.frames if f.startswith("data:")]

    async def wait_for(self, predicate, timeout: float = 2.0) -> None:
        async def _poll() -> None:
            while not predicate(self.frames):
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_poll(), timeout=timeout)

    async def abort(self) -> None:
        self.task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await self.task


def _connection(recipient_id: str, broker_factory, heartbeat: float = 30) -> StreamConnection:
    return StreamConnection(
        PaymentChannel.for_recipient(recipient_id),
        broker_factory,
        heartbeat_interval=heartbeat,
    )


# ---------------------------------------------------------------------------
# Frame formatting
# ---------------------------------------------------------------------------


def test_data_frame_format() -> None:
    assert format_data_frame('{"type":"connected"}') == CONNECTED_FRAME


def test_multiline_payload_keeps_frame_boundary() -> None:
    assert format_data_frame("a\nb") == "data: a\ndata: b\n\n"


def test_heartbeat_is_a_comment_frame() -> None:
    assert HEARTBEAT_FRAME == ": heartbeat\n\n"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


async def test_accept_rejects_before_allocating(broker_factory) -> None:
    async def _reject(_request):
        raise UnauthorisedError

    with pytest.raises(UnauthorisedError):
        await StreamConnection.accept(object(), broker_factory, authenticate=_reject)  # type: ignore[arg-type]

    assert broker_factory.created == []


async def test_accept_binds_caller_channel(broker_factory) -> None:
    class _Claims:
        recipient_id = "U1"

    async def _resolve(_request):
        return _Claims()

    connection = await StreamConnection.accept(object(), broker_factory, authenticate=_resolve)  # type: ignore[arg-type]

    assert connection.channel.pubsub_key == "payment:U1"
    assert connection.state is ConnectionState.INIT
    assert broker_factory.created == []


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


async def test_first_frame_is_connected(recipient_id, broker_factory) -> None:
    consumer = _Consumer(_connection(recipient_id, broker_factory))

    await consumer.wait_for(lambda frames: len(frames) >= 1)
    assert consumer.frames[0] == CONNECTED_FRAME
    assert consumer.connection.state is ConnectionState.STREAMING

    await consumer.abort()


async def test_published_event_forwarded_verbatim(
    recipient_id, broker_factory, publisher: PaymentEventPublisher
) -> None:
    consumer = _Consumer(_connection(recipient_id, broker_factory))
    await consumer.wait_for(lambda frames: len(frames) >= 1)

    event = PaymentSuccessEvent(product_id="P1", product_title="Widget")
    await publisher.publish(recipient_id, event)

    await consumer.wait_for(lambda frames: len(frames) >= 2)
    assert consumer.frames[1] == f"data: {event.to_json()}\n\n"
    assert json.loads(consumer.frames[1][len("data: ") :]) == {
        "type": "payment_success",
        "productId": "P1",
        "productTitle": "Widget",
    }

    await consumer.abort()


async def test_events_preserve_publish_order(
    recipient_id, broker_factory, publisher: PaymentEventPublisher
) -> None:
    consumer = _Consumer(_connection(recipient_id, broker_factory))
    await consumer.wait_for(lambda frames: len(frames) >= 1)

    for n in range(5):
        await publisher.publish(recipient_id, PaymentFailedEvent(message=f"attempt {n}"))

    await consumer.wait_for(lambda frames: len(frames) >= 6)
    messages = [json.loads(f[len("data: ") :])["message"] for f in consumer.frames[1:]]
    assert messages == [f"attempt {n}" for n in range(5)]

    await consumer.abort()


async def test_other_recipients_events_not_forwarded(
    recipient_id, broker_factory, publisher: PaymentEventPublisher
) -> None:
    consumer = _Consumer(_connection(recipient_id, broker_factory))
    await consumer.wait_for(lambda frames: len(frames) >= 1)

    await publisher.publish("someone-else", PaymentSuccessEvent(product_id="P1"))
    await asyncio.sleep(0.2)

    assert consumer.frames == [CONNECTED_FRAME]
    await consumer.abort()


async def test_heartbeat_emitted_while_idle(recipient_id, broker_factory) -> None:
    consumer = _Consumer(_connection(recipient_id, broker_factory, heartbeat=0.05))

    await consumer.wait_for(lambda frames: frames.count(HEARTBEAT_FRAME) >= 2)
    assert consumer.frames[0] == CONNECTED_FRAME
    assert consumer.data_frames == [CONNECTED_FRAME]

    await consumer.abort()


# ---------------------------------------------------------------------------
# Teardown
# ---------------------------------------------------------------------------


async def test_abort_tears_down_exactly_once(recipient_id, broker_factory) -> None:
    consumer = _Consumer(_connection(recipient_id, broker_factory, heartbeat=0.05))
    await consumer.wait_for(lambda frames: len(frames) >= 1)

    await consumer.abort()
    await consumer.connection.close()

    (broker,) = broker_factory.created
    assert broker.unsubscribe_calls == [f"payment:{recipient_id}"]
    assert broker.close_calls == 1
    assert broker.is_closed
    assert consumer.connection.state is ConnectionState.CLOSED


async def test_no_frames_after_abort(
    recipient_id, broker_factory, publisher: PaymentEventPublisher
) -> None:
    consumer = _Consumer(_connection(recipient_id, broker_factory, heartbeat=0.02))
    await consumer.wait_for(lambda frames: len(frames) >= 1)
    await consumer.abort()
    seen = len(consumer.frames)

    await publisher.publish(recipient_id, PaymentSuccessEvent())
    await asyncio.sleep(0.1)

    assert len(consumer.frames) == seen


async def test_generator_close_tears_down(recipient_id, broker_factory) -> None:
    connection = _connection(recipient_id, broker_factory)

    async with aclosing(connection.stream()) as frames:
        assert await anext(frames) == CONNECTED_FRAME

    (broker,) = broker_factory.created
    assert broker.unsubscribe_calls == [f"payment:{recipient_id}"]
    assert broker.close_calls == 1


async def test_subscribe_failure_emits_nothing(recipient_id, broker_factory) -> None:
    broker_factory.fail_subscribe = True
    connection = _connection(recipient_id, broker_factory)

    frames = [frame async for frame in connection.stream()]

    assert frames == []
    assert connection.state is ConnectionState.CLOSED
    (broker,) = broker_factory.created
    assert broker.close_calls == 1
    assert broker.is_closed


async def test_bus_error_ends_stream(recipient_id, broker_factory) -> None:
    consumer = _Consumer(_connection(recipient_id, broker_factory))
    await consumer.wait_for(lambda frames: len(frames) >= 1)

    (broker,) = broker_factory.created
    broker.on_error(RedisConnectionError("connection lost"))

    await asyncio.wait_for(consumer.task, timeout=2.0)
    assert consumer.frames == [CONNECTED_FRAME]
    assert consumer.connection.state is ConnectionState.CLOSED
    assert broker.unsubscribe_calls == [f"payment:{recipient_id}"]
    assert broker.close_calls == 1


async def test_teardown_continues_when_unsubscribe_fails(recipient_id, broker_factory) -> None:
    consumer = _Consumer(_connection(recipient_id, broker_factory))
    await consumer.wait_for(lambda frames: len(frames) >= 1)
    (broker,) = broker_factory.created

    async def _broken_unsubscribe(channel: str) -> None:
        broker.unsubscribe_calls.append(channel)
        raise RedisConnectionError("connection reset")

    broker.unsubscribe = _broken_unsubscribe  # type: ignore[method-assign]

    await consumer.abort()

    assert broker.unsubscribe_calls == [f"payment:{recipient_id}"]
    assert broker.close_calls == 1
    assert consumer.connection.state is ConnectionState.CLOSED


async def test_close_before_streaming_is_safe(recipient_id, broker_factory) -> None:
    connection = _connection(recipient_id, broker_factory)

    await connection.close()

    assert connection.state is ConnectionState.CLOSED
    assert broker_factory.created == []


# ---------------------------------------------------------------------------
# Multiple tabs
# ---------------------------------------------------------------------------


async def test_two_tabs_receive_independently(
    recipient_id, broker_factory, publisher: PaymentEventPublisher
) -> None:
    tab_a = _Consumer(_connection(recipient_id, broker_factory))
    tab_b = _Consumer(_connection(recipient_id, broker_factory))
    await tab_a.wait_for(lambda frames: len(frames) >= 1)
    await tab_b.wait_for(lambda frames: len(frames) >= 1)

    assert await publisher.publish(recipient_id, PaymentSuccessEvent(product_id="P1")) == 2
    await tab_a.wait_for(lambda frames: len(frames) >= 2)
    await tab_b.wait_for(lambda frames: len(frames) >= 2)
    assert tab_a.frames[1] == tab_b.frames[1]

    await tab_a.abort()

    await publisher.publish(recipient_id, PaymentFailedEvent(message="card declined"))
    await tab_b.wait_for(lambda frames: len(frames) >= 3)
    assert "card declined" in tab_b.frames[2]
    assert len(broker_factory.created) == 2
    assert broker_factory.created[1].close_calls == 0

    await tab_b.abort()
