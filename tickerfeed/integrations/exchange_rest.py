from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Optional

import httpx

from tickerfeed.errors import PayloadDecodeError, UpstreamStatusError, UpstreamTimeoutError


def parse_change_percent(row: Any) -> Optional[float]:
    value = row.get("priceChangePercent") if isinstance(row, dict) else None
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_24h_ticker(row: Any) -> Dict[str, Any]:
    if not isinstance(row, dict) or not row.get("symbol"):
        raise PayloadDecodeError(f"24h ticker row without symbol: {row!r}")

    try:
        trade_count = int(row.get("count") or 0)
    except (TypeError, ValueError):
        trade_count = 0

    return {
        "symbol": str(row["symbol"]),
        "price": ExchangeRestClient._to_float(row.get("lastPrice")),
        "volume": ExchangeRestClient._to_float(row.get("quoteVolume")),
        "change_percent_24h": ExchangeRestClient._to_float(row.get("priceChangePercent")),
        "trade_count": trade_count,
    }


def normalize_24h_tickers(rows: list[Any]) -> tuple[list[Dict[str, Any]], int]:
    """Normalize every usable row. Returns (tickers, number of rows skipped)."""
    tickers: list[Dict[str, Any]] = []
    skipped = 0
    for row in rows:
        try:
            tickers.append(normalize_24h_ticker(row))
        except PayloadDecodeError:
            skipped += 1
    return tickers, skipped


class ExchangeRestClient:
    """Async public-market REST client. Every call carries a fixed abort timeout."""

    def __init__(
        self,
        base_url: str = "https://api.binance.com",
        *,
        session: Optional[httpx.AsyncClient] = None,
        timeout_sec: float = 9.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self._owns_session = session is None
        self.session = session or httpx.AsyncClient(timeout=timeout_sec, transport=transport)

    async def __aenter__(self) -> "ExchangeRestClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_session:
            await self.session.aclose()

    @staticmethod
    def _to_float(value: Any, default: float = 0.0) -> float:
        try:
            if value is None or value == "":
                return default
            return float(value)
        except (TypeError, ValueError):
            return default

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        # httpx limits each phase separately; the deadline covers the whole exchange
        try:
            response = await asyncio.wait_for(
                self.session.get(url, params=params, timeout=self.timeout_sec),
                timeout=self.timeout_sec,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeoutError(url, self.timeout_sec) from exc
        if not response.is_success:
            raise UpstreamStatusError(response.status_code, url, response.text[:100])
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise PayloadDecodeError(f"invalid JSON body from {url}") from exc

    async def get_trading_symbols(self) -> set[str]:
        payload = await self.get_json(
            f"{self.base_url}/api/v3/exchangeInfo",
            params={"permissions": "SPOT"},
        )
        if not isinstance(payload, dict):
            raise PayloadDecodeError("exchangeInfo body must be an object")

        symbols = payload.get("symbols")
        if not isinstance(symbols, list):
            return set()
        return {
            str(row["symbol"])
            for row in symbols
            if isinstance(row, dict) and row.get("symbol") and row.get("status") == "TRADING"
        }

    async def get_24h_tickers(self, base_url: Optional[str] = None) -> list[Dict[str, Any]]:
        root = (base_url or self.base_url).rstrip("/")
        payload = await self.get_json(f"{root}/api/v3/ticker/24hr")
        if not isinstance(payload, list):
            raise PayloadDecodeError("24h ticker body must be an array")
        return payload

    async def get_window_tickers(self, symbols: list[str], window: str) -> list[Dict[str, Any]]:
        payload = await self.get_json(
            f"{self.base_url}/api/v3/ticker",
            params={
                "windowSize": window,
                "symbols": json.dumps(symbols, separators=(",", ":")),
            },
        )
        if not isinstance(payload, list):
            raise PayloadDecodeError(f"{window} ticker body must be an array")
        return payload

    async def get_window_ticker(self, symbol: str, window: str) -> Dict[str, Any]:
        payload = await self.get_json(
            f"{self.base_url}/api/v3/ticker",
            params={"windowSize": window, "symbol": symbol},
        )
        if not isinstance(payload, dict):
            raise PayloadDecodeError(f"{window} ticker body must be an object")
        return payload
