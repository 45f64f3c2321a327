from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional

from tickerfeed.integrations.exchange_ws import default_connect_factory, parse_frame
from tickerfeed.services.reconnect import BackoffScheduler, EndpointRotor
from tickerfeed.services.record_store import RecordStore, SubscriptionHub

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    ERRORED = "ERRORED"


class StreamAggregator:
    """Owns one multiplexed ticker connection and merges its frames into the store.

    The session runs as a single asyncio task. Inbound frames are merged
    synchronously between suspension points and each frame triggers exactly one
    notify pass. When the session ends (clean close or error) the rotor moves to
    the next endpoint and the backoff scheduler arms one retry timer.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        hub: SubscriptionHub,
        rotor: EndpointRotor,
        backoff: Optional[BackoffScheduler] = None,
        connect_factory: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.store = store
        self.hub = hub
        self.rotor = rotor
        self.backoff = backoff or BackoffScheduler()
        self._connect_factory = connect_factory or default_connect_factory
        self._session_task: asyncio.Task | None = None
        self.state = SessionState.IDLE
        self.ws_messages = 0
        self.decode_errors = 0
        self.reconnect_count = 0
        self.last_error: str | None = None
        self.last_message_ts: int | None = None
        self._first_message_logged = False

    @property
    def connected(self) -> bool:
        return self.state is SessionState.OPEN

    @property
    def session_task(self) -> asyncio.Task | None:
        return self._session_task

    def connect(self) -> None:
        if self.state in (SessionState.CONNECTING, SessionState.OPEN):
            return

        self.backoff.cancel()
        url = self.rotor.current
        logger.info("[WS][ws_connect] url=%s attempt=%s", url, self.backoff.attempt)
        self.state = SessionState.CONNECTING
        self._session_task = asyncio.get_running_loop().create_task(self._run_session(url))

    def disconnect(self) -> asyncio.Task | None:
        """Silent teardown. Returns the cancelled session task, if any, for awaiting."""
        self.backoff.cancel()
        task, self._session_task = self._session_task, None
        if task is not None and not task.done():
            # cancellation unwinds the session without reaching the reconnect path
            task.cancel()
        self.state = SessionState.IDLE
        self._first_message_logged = False
        logger.info("[WS][ws_disconnect] url=%s", self.rotor.current)
        return task

    async def _run_session(self, url: str) -> None:
        try:
            async with self._connect_factory(url) as ws:
                self._on_open(url)
                async for raw_message in ws:
                    self.handle_raw_message(raw_message)
            self.state = SessionState.CLOSED
            logger.info("[WS][ws_close] url=%s", url)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.state = SessionState.ERRORED
            self.last_error = str(exc) or type(exc).__name__
            logger.warning("[WS][ws_error] url=%s error=%s", url, self.last_error)

        if self._session_task is asyncio.current_task():
            self._session_task = None
        self.schedule_reconnect()

    def _on_open(self, url: str) -> None:
        self.state = SessionState.OPEN
        self.backoff.reset()
        logger.info("[WS][ws_connect_result] status=open url=%s", url)

    def handle_raw_message(self, raw_message: Any) -> bool:
        """Merge one frame into the store. Returns True when subscribers were notified."""
        if not self._first_message_logged:
            logger.info("[WS][ws_first_message] received=1")
            self._first_message_logged = True
        self.ws_messages += 1

        try:
            frame = parse_frame(raw_message)
        except ValueError as exc:
            self.decode_errors += 1
            logger.warning("[WS][ws_message_skip] reason=%s", exc)
            return False

        if frame is None or not frame.items:
            return False

        for item in frame.items:
            self.store.apply_stream_item(frame.window, item)
        self.last_message_ts = int(time.time())
        self.hub.notify()
        return True

    def schedule_reconnect(self) -> float:
        url = self.rotor.advance()
        delay_ms = self.backoff.schedule(self.connect)
        self.reconnect_count += 1
        self.state = SessionState.IDLE
        logger.info("[WS][ws_reconnect_scheduled] delay_ms=%s url=%s", delay_ms, url)
        return delay_ms

    def metrics(self) -> dict:
        return {
            "ws_state": self.state.value,
            "ws_url": self.rotor.current,
            "ws_connected": self.connected,
            "ws_messages": self.ws_messages,
            "ws_decode_errors": self.decode_errors,
            "ws_reconnect_count": self.reconnect_count,
            "ws_last_error": self.last_error,
            "last_ws_message_ts": self.last_message_ts,
            "reconnect_attempt": self.backoff.attempt,
            "reconnect_pending": self.backoff.pending,
        }
