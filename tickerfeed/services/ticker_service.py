from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

import httpx

from tickerfeed.config.settings import Settings
from tickerfeed.integrations.exchange_rest import ExchangeRestClient
from tickerfeed.services.detail_fetcher import LazyDetailFetcher
from tickerfeed.services.quote_assets import split_symbol
from tickerfeed.services.reconnect import BackoffScheduler, EndpointRotor
from tickerfeed.services.record_store import RecordStore, Snapshot, Subscriber, SubscriptionHub
from tickerfeed.services.snapshot_cascade import SnapshotCascade
from tickerfeed.services.stream_aggregator import StreamAggregator

logger = logging.getLogger(__name__)


class TickerService:
    """Display-layer entry point: connect, subscribe, disconnect, lazy fill."""

    split_symbol = staticmethod(split_symbol)

    def __init__(
        self,
        *,
        store: RecordStore,
        hub: SubscriptionHub,
        stream: StreamAggregator,
        cascade: SnapshotCascade,
        detail_fetcher: LazyDetailFetcher,
        rest_client: ExchangeRestClient,
    ) -> None:
        self.store = store
        self.hub = hub
        self.stream = stream
        self.cascade = cascade
        self.detail_fetcher = detail_fetcher
        self.rest_client = rest_client
        self._snapshot_task: asyncio.Task | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        connect_factory: Optional[Callable[[str], Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        call_later: Optional[Callable[..., Any]] = None,
    ) -> "TickerService":
        store = RecordStore()
        hub = SubscriptionHub(store)
        rest_client = ExchangeRestClient(
            settings.TICKERFEED_REST_BASE_URL,
            timeout_sec=settings.TICKERFEED_REST_TIMEOUT_SEC,
            transport=transport,
        )
        stream = StreamAggregator(
            store=store,
            hub=hub,
            rotor=EndpointRotor(settings.TICKERFEED_WS_URLS),
            backoff=BackoffScheduler(call_later=call_later),
            connect_factory=connect_factory,
        )
        cascade = SnapshotCascade(
            store=store,
            hub=hub,
            rest_client=rest_client,
            aggregator_url=settings.TICKERFEED_SNAPSHOT_URL,
            fallback_base_urls=settings.TICKERFEED_REST_FALLBACK_URLS,
        )
        detail_fetcher = LazyDetailFetcher(store=store, hub=hub, rest_client=rest_client)
        return cls(
            store=store,
            hub=hub,
            stream=stream,
            cascade=cascade,
            detail_fetcher=detail_fetcher,
            rest_client=rest_client,
        )

    @property
    def snapshot_task(self) -> asyncio.Task | None:
        return self._snapshot_task

    def connect(self) -> None:
        # snapshot and stream run concurrently; the stream does not wait for the snapshot
        if self._snapshot_task is None:
            self._snapshot_task = asyncio.get_running_loop().create_task(
                self.cascade.acquire_initial_snapshot()
            )
        self.detail_fetcher.attach()
        self.stream.connect()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self.hub.subscribe(callback)

    def snapshot(self) -> Snapshot:
        return self.store.snapshot()

    async def fetch_details(self, symbol: str) -> bool:
        return await self.detail_fetcher.fetch_details(symbol)

    def disconnect(self) -> list[asyncio.Task]:
        pending: list[asyncio.Task] = []
        self.detail_fetcher.detach()
        task, self._snapshot_task = self._snapshot_task, None
        if task is not None and not task.done():
            task.cancel()
            pending.append(task)

        session_task = self.stream.disconnect()
        if session_task is not None:
            pending.append(session_task)
        return pending

    async def aclose(self) -> None:
        pending = self.disconnect()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.warning("[SERVICE][shutdown_task_error] error=%s", exc)
        await self.rest_client.aclose()
        logger.info("[SERVICE][closed] cached_symbols=%s", len(self.store))

    def metrics(self) -> dict:
        payload = self.stream.metrics()
        payload.update(
            {
                "cached_symbols": len(self.store),
                "subscribers": len(self.hub),
                "notify_count": self.hub.notify_count,
                "snapshot_source": self.cascade.last_source,
                "detail_in_flight": self.detail_fetcher.in_flight_count,
                "detail_requests": self.detail_fetcher.requests_issued,
            }
        )
        return payload
