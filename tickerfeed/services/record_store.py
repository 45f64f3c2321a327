from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Callable, Mapping

from tickerfeed.integrations.exchange_ws import StreamItem
from tickerfeed.schemas.ticker import TickerRecord, Window

logger = logging.getLogger(__name__)

Snapshot = Mapping[str, TickerRecord]
Subscriber = Callable[[Snapshot], None]


class RecordStore:
    """Canonical symbol -> TickerRecord map. Records are replaced, never mutated."""

    def __init__(self) -> None:
        self._rows: dict[str, TickerRecord] = {}

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._rows

    def get(self, symbol: str) -> TickerRecord | None:
        return self._rows.get(symbol)

    def list_all(self) -> list[TickerRecord]:
        return list(self._rows.values())

    def snapshot(self) -> Snapshot:
        return MappingProxyType(dict(self._rows))

    def _current(self, symbol: str) -> TickerRecord:
        row = self._rows.get(symbol)
        if row is None:
            row = TickerRecord(symbol=symbol)
        return row

    def _put(self, row: TickerRecord, update: dict) -> TickerRecord:
        merged = row.model_copy(update=update)
        self._rows[merged.symbol] = merged
        return merged

    def apply_stream_item(self, window: Window, item: StreamItem) -> TickerRecord:
        # price tracks whichever window reported last
        update: dict = {"price": item.price}
        if window is Window.H24:
            update["volume"] = item.quote_volume if item.quote_volume is not None else 0.0
            update["change_percent_24h"] = item.change_percent
        elif window is Window.H1:
            update["change_percent_1h"] = item.change_percent
        else:
            update["change_percent_4h"] = item.change_percent
        return self._put(self._current(item.symbol), update)

    def apply_snapshot_record(self, record: TickerRecord) -> TickerRecord:
        update: dict = {
            "price": record.price,
            "volume": record.volume,
            "change_percent_24h": record.change_percent_24h,
        }
        # null from an aggregator means "attempted, unavailable": never erase a known value
        if record.change_percent_1h is not None:
            update["change_percent_1h"] = record.change_percent_1h
        if record.change_percent_4h is not None:
            update["change_percent_4h"] = record.change_percent_4h
        return self._put(self._current(record.symbol), update)

    def apply_24h_ticker(
        self,
        symbol: str,
        *,
        price: float,
        volume: float,
        change_percent_24h: float,
    ) -> TickerRecord:
        return self._put(
            self._current(symbol),
            {"price": price, "volume": volume, "change_percent_24h": change_percent_24h},
        )

    def fill_missing_windows(
        self,
        symbol: str,
        *,
        change_1h: float | None = None,
        change_4h: float | None = None,
    ) -> bool:
        row = self._current(symbol)
        update: dict = {}
        if change_1h is not None and row.change_percent_1h is None:
            update["change_percent_1h"] = change_1h
        if change_4h is not None and row.change_percent_4h is None:
            update["change_percent_4h"] = change_4h
        if not update:
            return False
        self._put(row, update)
        return True


class SubscriptionHub:
    """Observer list handing every subscriber a read-only copy of the store."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store
        self._subscribers: list[Subscriber] = []
        self.notify_count = 0

    def __len__(self) -> int:
        return len(self._subscribers)

    def _deliver(self, callback: Subscriber, snapshot: Snapshot) -> None:
        try:
            callback(snapshot)
        except Exception:
            logger.exception("[HUB][subscriber_error] callback=%r", callback)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)
        if len(self.store) > 0:
            self._deliver(callback, self.store.snapshot())

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def notify(self) -> None:
        self.notify_count += 1
        snapshot = self.store.snapshot()
        for callback in list(self._subscribers):
            self._deliver(callback, snapshot)
