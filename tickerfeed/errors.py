from __future__ import annotations


class TickerFeedError(Exception):
    pass


class UpstreamStatusError(TickerFeedError):
    def __init__(self, status_code: int, url: str, detail: str = "") -> None:
        self.status_code = status_code
        self.url = url
        self.detail = detail
        message = f"upstream {url} failed: {status_code}"
        if detail:
            message = f"{message} - {detail}"
        super().__init__(message)


class PayloadDecodeError(TickerFeedError, ValueError):
    pass


class SnapshotUnavailableError(TickerFeedError):
    pass


class BatchAggregationError(TickerFeedError):
    def __init__(self, message: str, trace: list[str] | None = None) -> None:
        super().__init__(message)
        self.trace = list(trace or [])


class UpstreamTimeoutError(TickerFeedError):
    def __init__(self, url: str, timeout_sec: float) -> None:
        self.url = url
        self.timeout_sec = timeout_sec
        super().__init__(f"upstream {url} timed out after {timeout_sec}s")
