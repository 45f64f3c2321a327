from __future__ import annotations

import asyncio
import logging

from tickerfeed.integrations.exchange_rest import ExchangeRestClient, parse_change_percent
from tickerfeed.schemas.ticker import Window
from tickerfeed.services.record_store import RecordStore, SubscriptionHub

logger = logging.getLogger(__name__)


class LazyDetailFetcher:
    """On-demand 1h/4h fill for a single symbol, one request pair per symbol at a time."""

    def __init__(
        self,
        *,
        store: RecordStore,
        hub: SubscriptionHub,
        rest_client: ExchangeRestClient,
    ) -> None:
        self.store = store
        self.hub = hub
        self.rest_client = rest_client
        self._in_flight: set[str] = set()
        self.requests_issued = 0
        self.attached = True

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def is_in_flight(self, symbol: str) -> bool:
        return symbol in self._in_flight

    def attach(self) -> None:
        self.attached = True

    def detach(self) -> None:
        # fetches still in flight keep their store writes but no longer notify
        self.attached = False

    async def _fetch_window(self, symbol: str, window: Window) -> float | None:
        self.requests_issued += 1
        try:
            row = await self.rest_client.get_window_ticker(symbol, window.value)
        except Exception as exc:
            logger.warning("[DETAIL][window_failed] symbol=%s window=%s error=%s", symbol, window.value, exc)
            return None
        return parse_change_percent(row)

    async def fetch_details(self, symbol: str) -> bool:
        """Fill absent 1h/4h fields. Returns True when a field was filled.

        A call for a symbol that already has a fetch in flight returns False
        immediately without issuing requests.
        """
        if symbol in self._in_flight:
            logger.debug("[DETAIL][dedup] symbol=%s", symbol)
            return False

        self._in_flight.add(symbol)
        try:
            change_1h, change_4h = await asyncio.gather(
                self._fetch_window(symbol, Window.H1),
                self._fetch_window(symbol, Window.H4),
            )
            filled = self.store.fill_missing_windows(symbol, change_1h=change_1h, change_4h=change_4h)
            logger.info(
                "[DETAIL][fetched] symbol=%s change_1h=%s change_4h=%s filled=%s",
                symbol,
                change_1h,
                change_4h,
                filled,
            )
            if self.attached:
                self.hub.notify()
            return filled
        finally:
            self._in_flight.discard(symbol)
