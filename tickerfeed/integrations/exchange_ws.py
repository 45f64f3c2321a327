from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from tickerfeed.schemas.ticker import Window

STREAM_NAMES = ("!ticker@arr", "!ticker_1h@arr", "!ticker_4h@arr")

# full-market arrays routinely exceed the 1 MiB library default
MAX_FRAME_BYTES = 16 * 1024 * 1024


@dataclass(frozen=True)
class StreamItem:
    symbol: str
    price: float
    change_percent: float
    quote_volume: float | None = None


@dataclass(frozen=True)
class StreamFrame:
    stream: str
    window: Window
    items: tuple[StreamItem, ...]


def _to_float(value: Any, *, field_name: str) -> float:
    try:
        if value is None or value == "":
            raise ValueError(f"missing value for {field_name}")
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid numeric value for {field_name}: {value!r}") from exc


def classify_window(stream_name: str | None) -> Window:
    name = stream_name or ""
    if "1h" in name:
        return Window.H1
    if "4h" in name:
        return Window.H4
    return Window.H24


def _parse_item(raw: Any, window: Window) -> StreamItem:
    if not isinstance(raw, dict):
        raise ValueError("stream item must be an object")

    symbol = raw.get("s")
    if not symbol:
        raise ValueError("missing symbol in stream item")

    quote_volume = None
    if window is Window.H24:
        quote_volume = _to_float(raw.get("q"), field_name="q")

    return StreamItem(
        symbol=str(symbol),
        price=_to_float(raw.get("c"), field_name="c"),
        change_percent=_to_float(raw.get("P"), field_name="P"),
        quote_volume=quote_volume,
    )


def parse_frame(payload: dict | str | bytes) -> StreamFrame | None:
    """Decode a combined-stream envelope. Returns None when it carries no data."""
    envelope: dict[str, Any]

    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValueError("payload is not valid utf-8") from exc

    if isinstance(payload, str):
        try:
            decoded = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError("payload must be valid JSON string or dict") from exc
        if not isinstance(decoded, dict):
            raise ValueError("decoded payload must be an object")
        envelope = decoded
    elif isinstance(payload, dict):
        envelope = payload
    else:
        raise ValueError("payload must be dict, bytes or JSON string")

    data = envelope.get("data")
    if data is None:
        return None

    stream = str(envelope.get("stream") or "")
    window = classify_window(stream)
    raw_items = data if isinstance(data, list) else [data]

    return StreamFrame(
        stream=stream,
        window=window,
        items=tuple(_parse_item(item, window) for item in raw_items),
    )


def build_stream_url(host: str) -> str:
    return f"{host.rstrip('/')}/stream?streams={'/'.join(STREAM_NAMES)}"


def default_connect_factory(url: str) -> Any:
    from websockets.asyncio.client import connect

    return connect(url, open_timeout=10, ping_interval=20, max_size=MAX_FRAME_BYTES)
