"""Settings for the notification gateway and client relay, read from ``AUCTIONHUB_*`` env vars."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Every field can be set as ``AUCTIONHUB_<FIELD_NAME>`` or in ``.env``."""

    # Application
    app_name: str = "AuctionHub"
    debug: bool = False
    cors_allow_origins: list[str] = ["http://localhost:3000"]

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Auth
    jwt_audience: str = "auctionhub-api"
    jwks_url: str = ""
    jwt_secret_key: str = "dev-secret"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60

    # SSE gateway
    sse_heartbeat_interval_seconds: float = 30
    sse_broker_poll_seconds: float = 1.0

    # Client relay
    relay_stream_url: str = "http://localhost:8000/api/notifications/stream"
    relay_backoff_base_ms: int = 1000
    relay_backoff_max_ms: int = 30_000
    relay_connect_timeout_seconds: float = 10.0
    relay_read_timeout_seconds: float = 75.0  # > heartbeat interval, detects dead streams

    model_config = {"env_prefix": "AUCTIONHUB_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
