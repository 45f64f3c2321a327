from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

import httpx

from tickerfeed.errors import BatchAggregationError, UpstreamStatusError
from tickerfeed.integrations.exchange_rest import (
    ExchangeRestClient,
    normalize_24h_tickers,
    parse_change_percent,
)
from tickerfeed.schemas.ticker import TickerRecord, Window

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierProfile:
    top_n: int
    batch_size: int
    s_maxage: int
    stale_while_revalidate: int

    @property
    def cache_control(self) -> str:
        return f"s-maxage={self.s_maxage}, stale-while-revalidate={self.stale_while_revalidate}"


TIER_PROFILES: dict[str, TierProfile] = {
    "hobby": TierProfile(top_n=80, batch_size=80, s_maxage=60, stale_while_revalidate=30),
    # top_n covers every active spot pair; the 5-minute edge cache absorbs the call fan-out
    "pro": TierProfile(top_n=3000, batch_size=80, s_maxage=300, stale_while_revalidate=60),
}


class SnapshotTrace:
    """Timestamped diagnostic log kept per aggregation run."""

    def __init__(self) -> None:
        self._started = time.monotonic()
        self.entries: list[str] = []

    def log(self, message: str) -> None:
        elapsed_ms = int((time.monotonic() - self._started) * 1000)
        entry = f"[{elapsed_ms}ms] {message}"
        logger.info("[BATCH] %s", entry)
        self.entries.append(entry)


@dataclass
class BatchSnapshot:
    records: list[TickerRecord]
    partial_errors: list[str] = field(default_factory=list)
    trace: list[str] = field(default_factory=list)
    batch_count: int = 0

    @property
    def status(self) -> str:
        return "Partial" if self.partial_errors else "Success"


def chunked(items: list[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class BatchAggregator:
    """Server-side merge of 24h tickers with batched 1h/4h window lookups.

    Only the initial 24h list is fatal. Each batch x window call fails on its own
    and leaves the affected symbols with a null window field.
    """

    def __init__(
        self,
        base_url: str = "https://api-gcp.binance.com",
        *,
        profile: TierProfile = TIER_PROFILES["pro"],
        timeout_sec: float = 9.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if profile.batch_size < 1 or profile.top_n < 0:
            raise ValueError("batch_size must be >= 1 and top_n >= 0")
        self.base_url = base_url
        self.profile = profile
        self.timeout_sec = timeout_sec
        self._transport = transport

    @classmethod
    def for_tier(cls, base_url: str, tier: str, **kwargs: Any) -> "BatchAggregator":
        return cls(base_url, profile=TIER_PROFILES[tier], **kwargs)

    @property
    def cache_control(self) -> str:
        return self.profile.cache_control

    async def build(self) -> BatchSnapshot:
        trace = SnapshotTrace()
        async with ExchangeRestClient(
            self.base_url,
            timeout_sec=self.timeout_sec,
            transport=self._transport,
        ) as rest:
            trace.log("Step 1: Fetching 24hr ticker...")
            try:
                rows = await rest.get_24h_tickers()
            except Exception as exc:
                trace.log(f"FATAL ERROR: {exc}")
                logger.exception("[BATCH][fatal] base_url=%s", self.base_url)
                raise BatchAggregationError(str(exc) or type(exc).__name__, trace.entries) from exc

            tickers, skipped = normalize_24h_tickers(rows)
            if skipped:
                trace.log(f"Skipped {skipped} malformed 24hr rows")

            valid = [t for t in tickers if t["trade_count"] > 0]
            valid.sort(key=lambda t: t["volume"], reverse=True)
            subset = valid[: self.profile.top_n]
            trace.log(f"Step 2: Processing {len(subset)} of {len(valid)} live symbols")

            batches = list(chunked([t["symbol"] for t in subset], self.profile.batch_size))
            lookups: dict[Window, dict[str, float]] = {Window.H1: {}, Window.H4: {}}
            partial_errors: list[str] = []

            trace.log(f"Step 3: Firing requests for {len(batches)} batches...")
            await asyncio.gather(
                *(
                    self._process_batch(rest, batch, index, lookups, partial_errors)
                    for index, batch in enumerate(batches)
                )
            )
            trace.log(
                f"Step 3 Done. 1h Map Size: {len(lookups[Window.H1])}, "
                f"4h Map Size: {len(lookups[Window.H4])}"
            )

        records = [
            TickerRecord(
                symbol=t["symbol"],
                price=t["price"],
                volume=t["volume"],
                change_percent_24h=t["change_percent_24h"],
                change_percent_1h=lookups[Window.H1].get(t["symbol"]),
                change_percent_4h=lookups[Window.H4].get(t["symbol"]),
            )
            for t in valid
        ]
        trace.log(f"Done. records={len(records)} partial_errors={len(partial_errors)}")
        return BatchSnapshot(
            records=records,
            partial_errors=partial_errors,
            trace=trace.entries,
            batch_count=len(batches),
        )

    async def _process_batch(
        self,
        rest: ExchangeRestClient,
        symbols: list[str],
        index: int,
        lookups: dict[Window, dict[str, float]],
        partial_errors: list[str],
    ) -> None:
        windows = (Window.H1, Window.H4)
        results = await asyncio.gather(
            *(rest.get_window_tickers(symbols, window.value) for window in windows),
            return_exceptions=True,
        )

        for window, result in zip(windows, results):
            if isinstance(result, UpstreamStatusError):
                partial_errors.append(f"B{index}-{window.value}:{result.status_code}")
                continue
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                partial_errors.append(f"B{index}-{window.value}-Err:{result}")
                continue

            for row in result:
                value = parse_change_percent(row)
                if value is not None and row.get("symbol"):
                    lookups[window][str(row["symbol"])] = value
