from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

CallLater = Callable[[float, Callable[[], None]], Any]


class EndpointRotor:
    """Equivalent feed endpoints, rotated round-robin after each failure."""

    def __init__(self, endpoints: list[str]) -> None:
        if not endpoints:
            raise ValueError("at least one endpoint is required")
        self._endpoints = list(endpoints)
        self.index = 0

    def __len__(self) -> int:
        return len(self._endpoints)

    @property
    def current(self) -> str:
        return self._endpoints[self.index]

    def advance(self) -> str:
        self.index = (self.index + 1) % len(self._endpoints)
        return self.current


class BackoffScheduler:
    """Capped exponential reconnect delay; owns at most one pending retry timer."""

    def __init__(
        self,
        *,
        base_delay_ms: float = 1000.0,
        growth: float = 1.5,
        max_delay_ms: float = 10000.0,
        call_later: Optional[CallLater] = None,
    ) -> None:
        self.base_delay_ms = base_delay_ms
        self.growth = growth
        self.max_delay_ms = max_delay_ms
        self.attempt = 0
        self._call_later = call_later
        self._handle: Any = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay_ms * (self.growth**attempt), self.max_delay_ms)

    def reset(self) -> None:
        self.attempt = 0

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def schedule(self, callback: Callable[[], None]) -> float:
        """Arm a one-shot retry. Returns the delay in milliseconds."""
        delay_ms = self.delay_for(self.attempt)
        self.attempt += 1
        self.cancel()

        def _fire() -> None:
            self._handle = None
            callback()

        call_later = self._call_later or asyncio.get_running_loop().call_later
        self._handle = call_later(delay_ms / 1000.0, _fire)
        return delay_ms
