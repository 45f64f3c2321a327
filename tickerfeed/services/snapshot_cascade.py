from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from tickerfeed.errors import PayloadDecodeError, SnapshotUnavailableError
from tickerfeed.integrations.exchange_rest import ExchangeRestClient, normalize_24h_tickers
from tickerfeed.schemas.ticker import TickerRecord
from tickerfeed.services.record_store import RecordStore, SubscriptionHub

logger = logging.getLogger(__name__)


class SnapshotCascade:
    """Bootstraps the store from the best available snapshot source.

    Steps, in priority order:
      aggregator  first-party batch endpoint, all three windows merged
      exchange    exchangeInfo TRADING filter + 24h tickers (24h fields only)
      minimal     24h tickers filtered on trade count, tried per API domain

    The first step that succeeds wins. Subscribers are notified exactly once per
    acquisition, whether or not any step succeeded.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        hub: SubscriptionHub,
        rest_client: ExchangeRestClient,
        aggregator_url: str | None = None,
        fallback_base_urls: list[str] | None = None,
    ) -> None:
        self.store = store
        self.hub = hub
        self.rest_client = rest_client
        self.aggregator_url = aggregator_url
        self.fallback_base_urls = list(fallback_base_urls or [rest_client.base_url])
        self.last_source: str | None = None
        self.step_failures: dict[str, str] = {}

    def _steps(self) -> list[tuple[str, Callable[[], Awaitable[int]]]]:
        return [
            ("aggregator", self._from_aggregator),
            ("exchange", self._from_exchange),
            ("minimal", self._from_minimal),
        ]

    async def acquire_initial_snapshot(self) -> str | None:
        """Run the cascade. Returns the name of the step that populated the store."""
        self.step_failures = {}
        for name, step in self._steps():
            try:
                count = await step()
            except Exception as exc:
                self.step_failures[name] = str(exc) or type(exc).__name__
                logger.warning("[SNAPSHOT][step_failed] step=%s error=%s", name, self.step_failures[name])
                continue

            self.last_source = name
            logger.info("[SNAPSHOT][step_ok] step=%s symbols=%s", name, count)
            self.hub.notify()
            return name

        self.last_source = None
        logger.error(
            "[SNAPSHOT][all_failed] waiting for stream cached_symbols=%s",
            len(self.store),
        )
        self.hub.notify()
        return None

    async def _from_aggregator(self) -> int:
        if not self.aggregator_url:
            raise SnapshotUnavailableError("aggregator endpoint not configured")

        payload = await self.rest_client.get_json(self.aggregator_url)
        if not isinstance(payload, list):
            raise PayloadDecodeError("aggregator body must be an array")

        try:
            records = [TickerRecord.model_validate(row) for row in payload]
        except ValidationError as exc:
            raise PayloadDecodeError(f"malformed aggregator record: {exc.error_count()} errors") from exc

        for record in records:
            self.store.apply_snapshot_record(record)
        return len(records)

    async def _from_exchange(self) -> int:
        trading = await self.rest_client.get_trading_symbols()
        rows = await self.rest_client.get_24h_tickers()

        tickers = self._normalize(rows)
        kept = [t for t in tickers if t["symbol"] in trading]
        self._apply_24h(kept)
        return len(kept)

    async def _from_minimal(self) -> int:
        errors: list[str] = []
        for base_url in self.fallback_base_urls:
            try:
                rows = await self.rest_client.get_24h_tickers(base_url=base_url)
            except Exception as exc:
                errors.append(f"{base_url}:{exc}")
                logger.warning("[SNAPSHOT][domain_failed] base_url=%s error=%s", base_url, exc)
                continue

            kept = [t for t in self._normalize(rows) if t["trade_count"] > 0]
            self._apply_24h(kept)
            return len(kept)

        raise SnapshotUnavailableError("; ".join(errors) or "no fallback domains configured")

    def _normalize(self, rows: list[Any]) -> list[dict[str, Any]]:
        tickers, skipped = normalize_24h_tickers(rows)
        if skipped:
            logger.warning("[SNAPSHOT][rows_skipped] malformed=%s", skipped)
        return tickers

    def _apply_24h(self, tickers: list[dict[str, Any]]) -> None:
        for ticker in tickers:
            self.store.apply_24h_ticker(
                ticker["symbol"],
                price=ticker["price"],
                volume=ticker["volume"],
                change_percent_24h=ticker["change_percent_24h"],
            )
