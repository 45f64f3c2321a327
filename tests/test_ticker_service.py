import asyncio
import json
import unittest

import httpx

from tickerfeed.config.settings import Settings
from tickerfeed.services.stream_aggregator import SessionState
from tickerfeed.services.ticker_service import TickerService


def make_settings():
    return Settings.model_validate(
        {
            "TICKERFEED_WS_URLS": ["wss://a.test/stream", "wss://b.test/stream"],
            "TICKERFEED_REST_BASE_URL": "https://api.example.test",
            "TICKERFEED_REST_FALLBACK_URLS": ["https://api.example.test"],
            "TICKERFEED_SNAPSHOT_URL": "https://board.example.test/api/snapshot",
            "TICKERFEED_UPSTREAM_BASE_URL": "https://api.example.test",
            "TICKERFEED_SNAPSHOT_TIER": "pro",
            "TICKERFEED_REST_TIMEOUT_SEC": 2.0,
            "TICKERFEED_STREAM_ENABLED": True,
            "TICKERFEED_LOG_LEVEL": "INFO",
        }
    )


class _QueueConnection:
    """Fake socket fed from the test through an asyncio.Queue."""

    def __init__(self):
        self.inbox = asyncio.Queue()
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        return await self.inbox.get()


def snapshot_handler(request):
    if request.url.host == "board.example.test":
        return httpx.Response(
            200,
            json=[
                {"symbol": "BTCUSDT", "price": 50000, "volume": 1e9, "changePercent24h": 2.5,
                 "changePercent1h": 0.2, "changePercent4h": 0.8},
            ],
        )
    if request.url.path == "/api/v3/ticker":
        return httpx.Response(200, json={"symbol": request.url.params["symbol"], "priceChangePercent": "1.0"})
    return httpx.Response(404)


async def _drain(turns=20):
    for _ in range(turns):
        await asyncio.sleep(0)


class TickerServiceTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.connections = []
        self.timers = []
        self.service = TickerService.from_settings(
            make_settings(),
            connect_factory=self._connect,
            transport=httpx.MockTransport(snapshot_handler),
            call_later=self._call_later,
        )

    async def asyncTearDown(self):
        await self.service.aclose()

    def _connect(self, url):
        connection = _QueueConnection()
        self.connections.append((url, connection))
        return connection

    def _call_later(self, delay_sec, callback):
        self.timers.append((delay_sec, callback))
        return asyncio.get_running_loop().call_later(3600, callback)

    async def test_connect_merges_snapshot_and_stream(self):
        received = []
        self.service.subscribe(received.append)

        self.service.connect()
        await self.service.snapshot_task
        await _drain()

        self.assertEqual(self.service.cascade.last_source, "aggregator")
        self.assertEqual(self.service.stream.state, SessionState.OPEN)
        self.assertEqual(received[-1]["BTCUSDT"].change_percent_4h, 0.8)

        _, connection = self.connections[0]
        connection.inbox.put_nowait(
            json.dumps({"stream": "!ticker_1h@arr", "data": [{"s": "BTCUSDT", "c": "50100", "P": "0.4"}]})
        )
        await _drain()

        row = self.service.snapshot()["BTCUSDT"]
        self.assertEqual(row.price, 50100.0)
        self.assertEqual(row.change_percent_1h, 0.4)
        self.assertEqual(row.change_percent_4h, 0.8)
        self.assertEqual(row.volume, 1e9)

    async def test_connect_twice_starts_one_snapshot_and_one_session(self):
        self.service.connect()
        first = self.service.snapshot_task
        self.service.connect()
        await _drain()

        self.assertIs(self.service.snapshot_task, first)
        self.assertEqual(len(self.connections), 1)

    async def test_late_subscriber_gets_current_state(self):
        self.service.connect()
        await self.service.snapshot_task

        received = []
        self.service.subscribe(received.append)

        self.assertEqual(len(received), 1)
        self.assertIn("BTCUSDT", received[0])

    async def test_unsubscribe_stops_delivery(self):
        received = []
        unsubscribe = self.service.subscribe(received.append)
        unsubscribe()

        self.service.connect()
        await self.service.snapshot_task

        self.assertEqual(received, [])

    async def test_disconnect_is_silent(self):
        received = []
        self.service.subscribe(received.append)
        self.service.connect()
        await _drain()

        pending = self.service.disconnect()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
        notified = self.service.hub.notify_count
        await _drain()

        self.assertEqual(self.service.hub.notify_count, notified)
        self.assertEqual(self.service.stream.state, SessionState.IDLE)
        self.assertEqual(self.timers, [])
        self.assertTrue(self.connections[0][1].closed)

    async def test_detail_fetch_finishing_after_disconnect_does_not_notify(self):
        release = asyncio.Event()

        async def gated(request):
            if request.url.path == "/api/v3/ticker":
                await release.wait()
            return snapshot_handler(request)

        await self.service.aclose()
        self.service = TickerService.from_settings(
            make_settings(),
            connect_factory=self._connect,
            transport=httpx.MockTransport(gated),
            call_later=self._call_later,
        )
        self.service.connect()
        await self.service.snapshot_task
        await _drain()

        fetch = asyncio.create_task(self.service.fetch_details("ETHUSDT"))
        await _drain()
        self.assertTrue(self.service.detail_fetcher.is_in_flight("ETHUSDT"))

        for task in self.service.disconnect():
            try:
                await task
            except asyncio.CancelledError:
                pass
        notified = self.service.hub.notify_count
        release.set()
        filled = await fetch
        await _drain()

        self.assertTrue(filled)
        self.assertEqual(self.service.snapshot()["ETHUSDT"].change_percent_4h, 1.0)
        self.assertEqual(self.service.hub.notify_count, notified)
        self.assertEqual(self.timers, [])

    async def test_reconnect_resumes_detail_notifications(self):
        self.service.connect()
        self.service.disconnect()
        self.service.connect()
        await self.service.snapshot_task
        notified = self.service.hub.notify_count

        await self.service.fetch_details("ETHUSDT")

        self.assertEqual(self.service.hub.notify_count, notified + 1)

    async def test_fetch_details_goes_through_lazy_fetcher(self):
        filled = await self.service.fetch_details("ETHUSDT")

        self.assertTrue(filled)
        self.assertEqual(self.service.snapshot()["ETHUSDT"].change_percent_1h, 1.0)
        self.assertEqual(self.service.metrics()["detail_requests"], 2)

    async def test_aclose_closes_rest_session(self):
        self.service.connect()
        await _drain()

        await self.service.aclose()

        self.assertTrue(self.service.rest_client.session.is_closed)
        self.assertIsNone(self.service.snapshot_task)
        self.assertIsNone(self.service.stream.session_task)

    async def test_metrics_combine_stream_and_store(self):
        self.service.connect()
        await self.service.snapshot_task
        await _drain()

        metrics = self.service.metrics()

        self.assertEqual(metrics["ws_state"], "OPEN")
        self.assertEqual(metrics["cached_symbols"], 1)
        self.assertEqual(metrics["snapshot_source"], "aggregator")
        self.assertEqual(metrics["detail_in_flight"], 0)
        self.assertGreaterEqual(metrics["notify_count"], 1)

    def test_split_symbol(self):
        self.assertEqual(TickerService.split_symbol("BTCUSDT"), ("BTC", "USDT"))
        self.assertEqual(TickerService.split_symbol("ABCXYZ"), ("ABCXYZ", None))


if __name__ == "__main__":
    unittest.main()
