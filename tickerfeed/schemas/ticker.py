from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Window(str, Enum):
    H1 = "1h"
    H4 = "4h"
    H24 = "24h"


class TickerRecord(BaseModel):
    """One traded symbol. Immutable; merges produce a new record."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    symbol: str
    price: float = 0.0
    volume: float = 0.0
    change_percent_24h: float = Field(default=0.0, alias="changePercent24h")
    change_percent_1h: float | None = Field(default=None, alias="changePercent1h")
    change_percent_4h: float | None = Field(default=None, alias="changePercent4h")


class MarketStats(BaseModel):
    total: int
    up: int
    down: int


class MarketSummary(BaseModel):
    stats: MarketStats
    quote_assets: list[str]
    asset_counts: dict[str, int]


class SnapshotErrorPayload(BaseModel):
    error: str
    message: str
    logs: list[str]
