import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel

from tickerfeed.integrations.exchange_ws import build_stream_url

DEFAULT_WS_URLS = [
    build_stream_url("wss://stream.binance.com:9443"),
    build_stream_url("wss://stream.binance.com"),
    build_stream_url("wss://data-stream.binance.com"),
]

DEFAULT_REST_FALLBACK_URLS = [
    "https://api.binance.com",
    "https://api-gcp.binance.com",
    "https://api1.binance.com",
    "https://data-api.binance.vision",
]


def _split_csv(raw: str | None, default: list[str]) -> list[str]:
    values = [s.strip() for s in (raw or "").split(",") if s.strip()]
    return values or list(default)


class Settings(BaseModel):
    TICKERFEED_WS_URLS: list[str]
    TICKERFEED_REST_BASE_URL: str
    TICKERFEED_REST_FALLBACK_URLS: list[str]
    TICKERFEED_SNAPSHOT_URL: str | None = None
    TICKERFEED_UPSTREAM_BASE_URL: str
    TICKERFEED_SNAPSHOT_TIER: Literal["hobby", "pro"]
    TICKERFEED_REST_TIMEOUT_SEC: float
    TICKERFEED_STREAM_ENABLED: bool
    TICKERFEED_LOG_LEVEL: str

    @classmethod
    def from_env(cls) -> "Settings":
        snapshot_url = os.getenv("TICKERFEED_SNAPSHOT_URL", "").strip() or None

        return cls.model_validate(
            {
                "TICKERFEED_WS_URLS": _split_csv(os.getenv("TICKERFEED_WS_URLS"), DEFAULT_WS_URLS),
                "TICKERFEED_REST_BASE_URL": os.getenv("TICKERFEED_REST_BASE_URL", "https://api.binance.com"),
                "TICKERFEED_REST_FALLBACK_URLS": _split_csv(
                    os.getenv("TICKERFEED_REST_FALLBACK_URLS"), DEFAULT_REST_FALLBACK_URLS
                ),
                "TICKERFEED_SNAPSHOT_URL": snapshot_url,
                "TICKERFEED_UPSTREAM_BASE_URL": os.getenv(
                    "TICKERFEED_UPSTREAM_BASE_URL", "https://api-gcp.binance.com"
                ),
                "TICKERFEED_SNAPSHOT_TIER": os.getenv("TICKERFEED_SNAPSHOT_TIER", "pro"),
                "TICKERFEED_REST_TIMEOUT_SEC": os.getenv("TICKERFEED_REST_TIMEOUT_SEC", "9.0"),
                "TICKERFEED_STREAM_ENABLED": os.getenv("TICKERFEED_STREAM_ENABLED", "true"),
                "TICKERFEED_LOG_LEVEL": os.getenv("TICKERFEED_LOG_LEVEL", "INFO").upper(),
            }
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
