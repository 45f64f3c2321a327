from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import colorlog
from fastapi import FastAPI

from tickerfeed.api.routes import router, snapshot_router
from tickerfeed.config.settings import get_settings
from tickerfeed.services.batch_aggregator import BatchAggregator
from tickerfeed.services.ticker_service import TickerService

logger = logging.getLogger("tickerfeed")


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not root.handlers:
        handler = colorlog.StreamHandler()
        handler.setFormatter(
            colorlog.ColoredFormatter(
                "%(log_color)s%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                log_colors={
                    "DEBUG": "cyan",
                    "INFO": "green",
                    "WARNING": "yellow",
                    "ERROR": "red",
                    "CRITICAL": "red,bg_white",
                },
            )
        )
        root.addHandler(handler)
    root.setLevel(level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.get_settings()
    service = app.state.ticker_service
    if settings.TICKERFEED_STREAM_ENABLED:
        service.connect()
        logger.info("[APP][stream_start] ws_url=%s", service.stream.rotor.current)

    try:
        yield
    finally:
        await service.aclose()
        logger.info("[APP][stream_stop]")


_settings = get_settings()
configure_logging(_settings.TICKERFEED_LOG_LEVEL)

app = FastAPI(title="Ticker Feed", version="0.1.0", lifespan=lifespan)
app.include_router(snapshot_router)
app.include_router(router, prefix="/v1")

app.state.get_settings = get_settings
app.state.ticker_service = TickerService.from_settings(_settings)
app.state.batch_aggregator = BatchAggregator.for_tier(
    _settings.TICKERFEED_UPSTREAM_BASE_URL,
    _settings.TICKERFEED_SNAPSHOT_TIER,
    timeout_sec=_settings.TICKERFEED_REST_TIMEOUT_SEC,
)


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run("tickerfeed.main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
