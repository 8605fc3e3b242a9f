"""Pydantic v2 request/response schemas shared across the API."""

from __future__ import annotations

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response body."""

    code: str
    message: str
    detail: dict[str, object] | None = None


class TokenClaims(BaseModel):
    """Verified JWT claims."""

    sub: str
    exp: int
    email: str | None = None


class HealthResponse(BaseModel):
    status: str
    redis: str
    version: str
