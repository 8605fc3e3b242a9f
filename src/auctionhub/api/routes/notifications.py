"""Payment notification streaming endpoint.

Endpoints:
    GET /api/notifications/stream   — Payment outcome events for the caller
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from auctionhub.api.sse.broker import BrokerFactory  # noqa: TCH001
from auctionhub.api.sse.dependencies import get_broker_factory
from auctionhub.api.sse.gateway import StreamConnection

logger = structlog.get_logger()

router = APIRouter()

BrokerFactoryDep = Annotated[BrokerFactory, Depends(get_broker_factory)]

# Given explicitly so Starlette does not append "; charset=utf-8"
SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("/api/notifications/stream")
async def notification_stream(
    request: Request,
    broker_factory: BrokerFactoryDep,
) -> StreamingResponse:
    """SSE stream of payment outcome events for the authenticated caller."""
    connection = await StreamConnection.accept(request, broker_factory)

    logger.info(
        "sse_notification_stream_requested",
        recipient_id=connection.channel.recipient_id,
    )

    return StreamingResponse(
        connection.stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
