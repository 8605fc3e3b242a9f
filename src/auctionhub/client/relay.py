"""Client relay — keeps one live notification stream open and reconnects on failure.

States::

    IDLE -> CONNECTING -> CONNECTED -> RECONNECT_WAIT -> CONNECTING -> ...
                                                       (TORN_DOWN on teardown)

* ``activate()`` closes any previous handle and opens a new stream.
* A ``connected`` frame resets the retry counter. Opening the socket does
  not, because a gateway can accept the socket and still fail to
  authenticate or subscribe.
* Payment frames go to the display callback. Malformed frames are dropped.
* Any transport failure (connect error, non-200 status, read error, stream
  closed by the server) closes the handle and schedules exactly one
  reconnect after ``min(base * 2**retry_count, max)`` milliseconds.
* ``teardown()`` closes the handle and cancels the pending retry. Nothing
  reconnects afterwards.

Everything runs on one event loop; the stream handle is an ``asyncio.Task``
and the retry timer is a ``loop.call_later`` handle.
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

import httpx
import structlog
from pydantic import ValidationError

from auctionhub.api.sse.events import ConnectedEvent, parse_event
from auctionhub.client.notifications import log_notification
from auctionhub.client.sse import SSEDecoder
from auctionhub.core.config import settings

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from auctionhub.api.sse.events import PaymentEvent

logger = structlog.get_logger()

# 2**62 ms is beyond any configured cap
_MAX_BACKOFF_EXPONENT = 62


class RelayState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_WAIT = "reconnect_wait"
    TORN_DOWN = "torn_down"


class _TimerHandle(Protocol):
    def cancel(self) -> None: ...


class RelayTransportError(Exception):
    """The stream could not be opened or was cut off."""


def reconnect_delay_ms(
    retry_count: int,
    *,
    base_ms: int = 1000,
    max_ms: int = 30_000,
) -> int:
    """Capped exponential backoff: ``min(base_ms * 2**retry_count, max_ms)``."""
    if retry_count < 0:
        msg = "retry_count must be non-negative"
        raise ValueError(msg)
    return min(base_ms * 2 ** min(retry_count, _MAX_BACKOFF_EXPONENT), max_ms)


class ClientRelay:
    """Maintains the client end of a recipient's notification stream."""

    def __init__(
        self,
        on_event: Callable[[PaymentEvent], None] = log_notification,
        *,
        url: str | None = None,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        base_delay_ms: int | None = None,
        max_delay_ms: int | None = None,
        call_later: Callable[[float, Callable[[], None]], _TimerHandle] | None = None,
    ) -> None:
        self._on_event = on_event
        self._url = url or settings.relay_stream_url
        self._token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                settings.relay_read_timeout_seconds,
                connect=settings.relay_connect_timeout_seconds,
            ),
        )
        self._base_delay_ms = (
            base_delay_ms if base_delay_ms is not None else settings.relay_backoff_base_ms
        )
        self._max_delay_ms = (
            max_delay_ms if max_delay_ms is not None else settings.relay_backoff_max_ms
        )
        self._call_later = call_later

        self._state = RelayState.IDLE
        self._retry_count = 0
        self._handle: asyncio.Task[None] | None = None
        self._retry_timer: _TimerHandle | None = None
        # Bumped for every new handle so callbacks from a stale one are ignored
        self._generation = 0
        self._log = logger.bind(stream_url=self._url)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def has_live_handle(self) -> bool:
        return self._handle is not None and not self._handle.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def activate(self) -> None:
        """Open the stream, replacing any handle already held."""
        if self._state is RelayState.TORN_DOWN:
            msg = "relay has been torn down"
            raise RuntimeError(msg)
        self._cancel_retry()
        self._open()

    def teardown(self) -> None:
        """Close the stream and stop reconnecting for good."""
        if self._state is RelayState.TORN_DOWN:
            return
        self._close_handle()
        self._cancel_retry()
        self._generation += 1
        self._state = RelayState.TORN_DOWN
        self._log.info("relay_torn_down")

    async def aclose(self) -> None:
        """Tear down and wait for the stream task to finish."""
        handle = self._handle
        self.teardown()
        if handle is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await handle
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> ClientRelay:
        self.activate()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _open(self) -> None:
        self._close_handle()
        self._generation += 1
        self._state = RelayState.CONNECTING
        self._log.debug("relay_connecting", retry_count=self._retry_count)
        self._handle = asyncio.get_running_loop().create_task(
            self._run(self._generation), name="relay-stream"
        )

    def _close_handle(self) -> None:
        handle, self._handle = self._handle, None
        # The current handle is reporting its own failure and exits on return
        if handle is not None and not handle.done() and handle is not asyncio.current_task():
            handle.cancel()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _run(self, generation: int) -> None:
        try:
            async with self._client.stream("GET", self._url, headers=self._headers()) as response:
                if response.status_code != 200:
                    msg = f"unexpected status {response.status_code}"
                    raise RelayTransportError(msg)

                decoder = SSEDecoder()
                async for chunk in response.aiter_text():
                    for frame in decoder.feed(chunk):
                        self._handle_frame(generation, frame.data)
                        # torn down or replaced, possibly by the display callback
                        if generation != self._generation:
                            return
        except (httpx.HTTPError, RelayTransportError) as exc:
            self._handle_transport_error(generation, str(exc) or type(exc).__name__)
            return

        self._handle_transport_error(generation, "stream closed by server")

    def _handle_frame(self, generation: int, data: str) -> None:
        if generation != self._generation:
            return

        try:
            event = parse_event(data)
        except ValidationError:
            self._log.debug("relay_malformed_frame_discarded")
            return

        if isinstance(event, ConnectedEvent):
            self._retry_count = 0
            self._state = RelayState.CONNECTED
            self._log.info("relay_connected")
            return

        try:
            self._on_event(event)
        except Exception:
            self._log.exception("relay_display_callback_failed", event_type=event.type)

    def _handle_transport_error(self, generation: int, reason: str) -> None:
        if generation != self._generation or self._state is RelayState.TORN_DOWN:
            return

        self._close_handle()
        delay_ms = reconnect_delay_ms(
            self._retry_count,
            base_ms=self._base_delay_ms,
            max_ms=self._max_delay_ms,
        )
        self._retry_count += 1
        self._state = RelayState.RECONNECT_WAIT

        call_later = self._call_later or asyncio.get_running_loop().call_later
        self._retry_timer = call_later(delay_ms / 1000, self._reconnect)

        self._log.info(
            "relay_reconnect_scheduled",
            reason=reason,
            delay_ms=delay_ms,
            retry_count=self._retry_count,
        )

    def _reconnect(self) -> None:
        self._retry_timer = None
        if self._state is RelayState.TORN_DOWN:
            return
        self._open()

    def _cancel_retry(self) -> None:
        timer, self._retry_timer = self._retry_timer, None
        if timer is not None:
            timer.cancel()
