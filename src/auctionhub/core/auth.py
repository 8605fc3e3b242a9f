"""JWT verification for notification stream callers.

Tokens come from the marketplace's identity provider. With ``jwks_url`` set
they are RS256 and checked against the provider's published key set, which
is fetched once without blocking the event loop; otherwise an HS256 shared
secret is used, and ``create_access_token`` mints tokens for local
development and tests.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import structlog
from jose import ExpiredSignatureError, JWTError, jwt

from auctionhub.core.config import settings
from auctionhub.core.exceptions import UnauthorisedError
from auctionhub.core.schemas import TokenClaims

logger = structlog.get_logger()

_REQUIRED_CLAIMS = ("sub", "exp")
_JWKS_TIMEOUT_SECONDS = 5.0


class AuthService:
    """Resolves a bearer token to the recipient it was issued for."""

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._http_client = http_client
        self._jwks: dict[str, Any] | None = None
        self._jwks_lock = asyncio.Lock()

    async def _fetch_jwks(self) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.get(settings.jwks_url)
        async with httpx.AsyncClient(timeout=httpx.Timeout(_JWKS_TIMEOUT_SECONDS)) as client:
            return await client.get(settings.jwks_url)

    async def _key_set(self) -> dict[str, Any]:
        """Return the provider's key set. A failed fetch is retried on the next call."""
        async with self._jwks_lock:
            if self._jwks is None:
                response = await self._fetch_jwks()
                response.raise_for_status()
                jwks = response.json()
                if not isinstance(jwks, dict) or not jwks.get("keys"):
                    msg = "JWKS document has no keys"
                    raise ValueError(msg)
                self._jwks = jwks
                logger.info("auth_jwks_loaded", jwks_url=settings.jwks_url, keys=len(jwks["keys"]))
        return self._jwks

    async def _decode(self, token: str) -> dict[str, Any]:
        if not settings.jwks_url:
            return jwt.decode(
                token,
                settings.jwt_secret_key,
                algorithms=[settings.jwt_algorithm],
                options={"verify_aud": False},
            )

        try:
            key_set = await self._key_set()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("auth_jwks_unavailable", jwks_url=settings.jwks_url, error=str(exc))
            raise UnauthorisedError("Token could not be verified.") from exc

        return jwt.decode(
            token,
            key_set,
            algorithms=["RS256"],
            audience=settings.jwt_audience,
        )

    async def verify_token(self, token: str) -> TokenClaims:
        """Return verified claims for ``token``. Raises ``UnauthorisedError``."""
        try:
            payload = await self._decode(token)
        except ExpiredSignatureError as exc:
            logger.info("auth_token_expired")
            raise UnauthorisedError("Token has expired.") from exc
        except JWTError as exc:
            logger.warning("auth_token_invalid", error=str(exc))
            raise UnauthorisedError("Invalid token.") from exc

        missing = [claim for claim in _REQUIRED_CLAIMS if not payload.get(claim)]
        if missing:
            logger.warning("auth_token_claims_missing", missing=missing)
            raise UnauthorisedError("Token missing required claims.", detail={"missing": missing})

        email = payload.get("email")
        return TokenClaims(
            sub=str(payload["sub"]),
            exp=int(payload["exp"]),
            email=str(email) if email else None,
        )

    def create_access_token(
        self,
        recipient_id: str,
        email: str | None = None,
        *,
        expires_in_seconds: int | None = None,
    ) -> str:
        """Mint an HS256 token for ``recipient_id``. Local development and tests only."""
        if expires_in_seconds is None:
            expires_in_seconds = settings.jwt_access_token_expire_minutes * 60
        issued_at = int(time.time())
        claims: dict[str, object] = {
            "sub": recipient_id,
            "iat": issued_at,
            "exp": issued_at + expires_in_seconds,
        }
        if email:
            claims["email"] = email
        token: str = jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
        return token
