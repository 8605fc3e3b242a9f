"""AuctionHub notification service: app factory and ASGI entry point.

Run with ``uvicorn auctionhub.api.main:app``.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Annotated

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from redis.exceptions import RedisError

from auctionhub.api.routes.notifications import router as notifications_router
from auctionhub.api.sse.dependencies import close_redis, get_redis
from auctionhub.core.config import settings
from auctionhub.core.exceptions import AuctionHubError
from auctionhub.core.schemas import ErrorResponse, HealthResponse

logger = structlog.get_logger()

APP_VERSION = "0.1.0"

RedisDep = Annotated[Redis, Depends(get_redis)]


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Open streams own their broker clients; only the shared publisher needs closing."""
    logger.info("app_started", redis_url=settings.redis_url)
    yield
    await close_redis()
    logger.info("app_stopped")


async def handle_auctionhub_error(_request: Request, exc: AuctionHubError) -> JSONResponse:
    body = ErrorResponse(code=exc.code, message=exc.message, detail=exc.detail)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


async def health_check(redis: RedisDep) -> HealthResponse:
    """Report whether the message bus answers a PING."""
    try:
        await redis.ping()
    except (RedisError, OSError) as exc:
        logger.warning("health_redis_unreachable", error=str(exc))
        return HealthResponse(status="degraded", redis="error", version=APP_VERSION)
    return HealthResponse(status="healthy", redis="ok", version=APP_VERSION)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version=APP_VERSION,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["Authorization", "Cache-Control"],
    )

    app.add_exception_handler(AuctionHubError, handle_auctionhub_error)  # type: ignore[arg-type]

    app.include_router(notifications_router)
    app.add_api_route("/api/health", health_check, methods=["GET"], response_model=HealthResponse)

    return app


app = create_app()
