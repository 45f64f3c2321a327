from __future__ import annotations

# Priority order for suffix detection: first match wins.
KNOWN_QUOTE_ASSETS: tuple[str, ...] = (
    # stablecoins
    "USDT", "FDUSD", "USDC", "TUSD", "BUSD", "USDP", "DAI", "EURI", "AEUR", "VAI", "IDRT",
    # crypto quotes
    "BTC", "ETH", "BNB", "SOL", "XRP", "TRX", "DOGE", "DOT",
    # fiats
    "EUR", "TRY", "BRL", "JPY", "ZAR", "IDR", "RUB", "GBP", "AUD", "COP", "MXN", "ARS",
    "NGN", "UAH", "PLN", "RON", "KZT", "VND",
)


def get_quote_asset(symbol: str, catalog: tuple[str, ...] = KNOWN_QUOTE_ASSETS) -> str | None:
    for asset in catalog:
        if symbol.endswith(asset):
            return asset
    return None


def split_symbol(symbol: str, catalog: tuple[str, ...] = KNOWN_QUOTE_ASSETS) -> tuple[str, str | None]:
    """Return (base, quote). A symbol with no known quote suffix is all base."""
    quote = get_quote_asset(symbol, catalog)
    if quote is None:
        return symbol, None
    return symbol[: len(symbol) - len(quote)], quote
