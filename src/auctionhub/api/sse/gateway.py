"""SSE stream gateway — relays one recipient's Redis channel to one HTTP response.

Handles:
- Caller authentication before any resource is allocated
- A dedicated broker client per connection
- Synthetic ``connected`` frame once the subscription is live
- Heartbeat keep-alive (``: heartbeat``)
- Deterministic teardown on disconnect, bus error, or shutdown

Lifecycle per connection::

    INIT -> SUBSCRIBED -> STREAMING -> CLOSED

Authentication runs inside ``StreamConnection.accept`` before the
connection object exists, so a rejected caller never owns a broker
client, a timer or a response stream. Objects therefore start in ``INIT``
with the identity already resolved.

The heartbeat task and the broker reader never touch the response. Both
push finished frames onto the connection's queue and the ``stream()``
generator is the only writer, so frames cannot interleave.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from auctionhub.api.sse.auth import verify_sse_token
from auctionhub.api.sse.channels import PaymentChannel
from auctionhub.api.sse.events import ConnectedEvent
from auctionhub.core.config import settings
from auctionhub.core.exceptions import BrokerSubscribeError

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    from fastapi import Request

    from auctionhub.api.sse.auth import SSETokenClaims
    from auctionhub.api.sse.broker import BrokerFactory, ChannelBrokerClient

logger = structlog.get_logger()

HEARTBEAT_FRAME = ": heartbeat\n\n"

# SSE line terminators only; str.splitlines also breaks on U+2028 and friends
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class ConnectionState(StrEnum):
    INIT = "init"
    SUBSCRIBED = "subscribed"
    STREAMING = "streaming"
    CLOSED = "closed"


def format_data_frame(payload: str) -> str:
    """Format a payload as a single SSE ``data`` frame.

    Multi-line payloads are split across several ``data:`` lines so the
    frame boundary stays intact; the client re-joins them with ``\\n``.
    """
    lines = _LINE_BREAK.split(payload)
    return "".join(f"data: {line}\n" for line in lines) + "\n"


class StreamConnection:
    """One open event stream: broker client, heartbeat task and outbound frames."""

    def __init__(
        self,
        channel: PaymentChannel,
        broker_factory: BrokerFactory,
        *,
        heartbeat_interval: float | None = None,
    ) -> None:
        self.channel = channel
        self.state = ConnectionState.INIT
        self._broker_factory = broker_factory
        self._broker: ChannelBrokerClient | None = None
        self._heartbeat: asyncio.Task[None] | None = None
        self._heartbeat_interval = (
            heartbeat_interval
            if heartbeat_interval is not None
            else settings.sse_heartbeat_interval_seconds
        )
        # None marks a bus failure and ends the stream
        self._frames: asyncio.Queue[str | None] = asyncio.Queue()
        self._log = logger.bind(channel=channel.pubsub_key)

    @classmethod
    async def accept(
        cls,
        request: Request,
        broker_factory: BrokerFactory,
        *,
        authenticate: Callable[[Request], Awaitable[SSETokenClaims]] = verify_sse_token,
        heartbeat_interval: float | None = None,
    ) -> StreamConnection:
        """Authenticate the caller and bind a connection to their channel.

        Raises ``UnauthorisedError`` before anything is allocated if the
        caller has no resolvable identity.
        """
        claims = await authenticate(request)
        return cls(
            PaymentChannel.for_recipient(claims.recipient_id),
            broker_factory,
            heartbeat_interval=heartbeat_interval,
        )

    async def stream(self) -> AsyncGenerator[str, None]:
        """Async generator of SSE frames, consumed by ``StreamingResponse``.

        1. Opens a dedicated broker client and subscribes.
        2. Yields the ``connected`` frame and starts the heartbeat.
        3. Yields bus messages and heartbeats until the peer goes away or
           the bus fails.
        """
        self.state = ConnectionState.SUBSCRIBED
        self._broker = self._broker_factory()
        try:
            try:
                await self._broker.subscribe(
                    self.channel.pubsub_key, self._on_message, self._on_error
                )
            except BrokerSubscribeError as exc:
                self._log.warning("sse_subscribe_failed", error=exc.message)
                return

            self.state = ConnectionState.STREAMING
            self._log.info("sse_client_connected", recipient_id=self.channel.recipient_id)

            yield format_data_frame(ConnectedEvent().to_json())
            self._heartbeat = asyncio.create_task(self._send_heartbeats())

            while True:
                frame = await self._frames.get()
                if frame is None:
                    break
                yield frame

        except asyncio.CancelledError:
            self._log.info("sse_client_disconnected", recipient_id=self.channel.recipient_id)
            raise
        finally:
            await self.close()

    async def close(self) -> None:
        """Cancel the heartbeat, unsubscribe, then close the broker client.

        Every step runs even if an earlier one failed. Never raises.
        """
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED

        if self._heartbeat is not None:
            self._heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._heartbeat

        if self._broker is None:
            return

        try:
            await self._broker.unsubscribe(self.channel.pubsub_key)
        except Exception as exc:  # noqa: BLE001
            self._log.warning("sse_unsubscribe_failed", error=str(exc))

        try:
            await self._broker.close()
        except Exception as exc:  # noqa: BLE001
            self._log.warning("sse_broker_close_failed", error=str(exc))

        self._log.debug("sse_connection_closed")

    # ------------------------------------------------------------------
    # Producers (never write to the response directly)
    # ------------------------------------------------------------------

    def _on_message(self, payload: str) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self._frames.put_nowait(format_data_frame(payload))

    def _on_error(self, exc: Exception) -> None:
        self._log.warning("sse_bus_error", error=str(exc))
        self._frames.put_nowait(None)

    async def _send_heartbeats(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            self._frames.put_nowait(HEARTBEAT_FRAME)
