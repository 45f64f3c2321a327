from __future__ import annotations

from typing import Iterable

from tickerfeed.schemas.ticker import MarketStats, MarketSummary, TickerRecord
from tickerfeed.services.quote_assets import get_quote_asset, split_symbol

ALL_MARKETS = "ALL"
QUOTE_PRIORITY = ("USDT", "FDUSD", "USDC", "BTC", "BNB", "ETH")


def _quote_sort_key(asset: str) -> tuple[int, str]:
    if asset in QUOTE_PRIORITY:
        return (QUOTE_PRIORITY.index(asset), "")
    return (len(QUOTE_PRIORITY), asset)


def available_quote_assets(records: Iterable[TickerRecord]) -> tuple[list[str], dict[str, int]]:
    rows = list(records)
    counts: dict[str, int] = {ALL_MARKETS: len(rows)}
    for row in rows:
        quote = get_quote_asset(row.symbol)
        if quote:
            counts[quote] = counts.get(quote, 0) + 1

    present = sorted((a for a in counts if a != ALL_MARKETS), key=_quote_sort_key)
    return [ALL_MARKETS, *present], counts


def filter_records(
    records: Iterable[TickerRecord],
    quote_assets: list[str] | None = None,
    query: str | None = None,
) -> list[TickerRecord]:
    rows = list(records)

    if quote_assets and ALL_MARKETS not in quote_assets:
        rows = [r for r in rows if any(r.symbol.endswith(asset) for asset in quote_assets)]

    if query:
        needle = query.upper()
        rows = [r for r in rows if needle in split_symbol(r.symbol)[0]]

    return rows


def market_stats(records: Iterable[TickerRecord]) -> MarketStats:
    total = up = down = 0
    for row in records:
        total += 1
        if row.change_percent_24h > 0:
            up += 1
        elif row.change_percent_24h < 0:
            down += 1
    return MarketStats(total=total, up=up, down=down)


def market_summary(records: Iterable[TickerRecord]) -> MarketSummary:
    rows = list(records)
    assets, counts = available_quote_assets(rows)
    return MarketSummary(stats=market_stats(rows), quote_assets=assets, asset_counts=counts)
