"""Caller identity for the notification stream.

The recipient id is never taken from the URL: it is the ``sub`` of a
verified JWT, so a caller can only ever open their own channel. Browsers
using ``EventSource`` cannot set headers, so the token may arrive as a
``token`` query parameter instead of an ``Authorization: Bearer`` header.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from auctionhub.core.auth import AuthService
from auctionhub.core.exceptions import UnauthorisedError

if TYPE_CHECKING:
    from fastapi import Request

logger = structlog.get_logger()

_auth_service = AuthService()

_BEARER_PREFIX = "bearer "


@dataclass(frozen=True, slots=True)
class SSETokenClaims:
    sub: str

    @property
    def recipient_id(self) -> str:
        return self.sub


def _extract_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    if header[: len(_BEARER_PREFIX)].lower() == _BEARER_PREFIX:
        return header[len(_BEARER_PREFIX) :].strip() or None
    return request.query_params.get("token") or None


async def verify_sse_token(request: Request) -> SSETokenClaims:
    """Resolve the caller's recipient id, header first, then query parameter.

    Raises ``UnauthorisedError`` (HTTP 401) when no token is present or it
    fails verification.
    """
    token = _extract_token(request)
    if token is None:
        logger.info("sse_auth_missing_token", path=request.url.path)
        raise UnauthorisedError("Authentication required.")

    claims = await _auth_service.verify_token(token)
    return SSETokenClaims(sub=claims.sub)
