"""
Symbol Normalizer — canonical BASEQUOTE symbols to/from each exchange's spelling.
Pure string transforms, no state.
"""

from __future__ import annotations
import re
from typing import Tuple
from exchange.errors import UnsupportedSymbolError
from exchange.models import Exchange, MarketType

# Longest first so "FDUSD" wins over "USD"
QUOTE_ASSETS: Tuple[str, ...] = tuple(sorted(
    ("USDT", "USDC", "FDUSD", "BUSD", "USD", "BTC", "ETH", "EUR"),
    key=len,
    reverse=True,
))

_CANONICAL_RE = re.compile(r"^[A-Z0-9]+$")
OKX_SWAP_SUFFIX = "-SWAP"


def split_symbol(symbol: str) -> Tuple[str, str]:
    """
    Split a canonical symbol into (base, quote).
    BTCUSDT -> ("BTC", "USDT")
    """
    symbol = _validate(symbol)
    for quote in QUOTE_ASSETS:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return symbol[: -len(quote)], quote
    raise UnsupportedSymbolError(f"Cannot determine quote asset of {symbol}")


def to_wire(exchange: Exchange, symbol: str, market_type: MarketType = MarketType.FUTURES) -> str:
    """Canonical symbol -> exchange wire symbol."""
    if exchange is Exchange.OKX:
        base, quote = split_symbol(symbol)
        wire = f"{base}-{quote}"
        return wire + OKX_SWAP_SUFFIX if market_type is MarketType.FUTURES else wire

    if exchange is Exchange.GATE or (exchange is Exchange.MEXC and market_type is MarketType.FUTURES):
        base, quote = split_symbol(symbol)
        return f"{base}_{quote}"

    # Binance, Bybit, Bitget, MEXC spot: plain concatenation
    return _validate(symbol)


def from_wire(exchange: Exchange, wire_symbol: str, market_type: MarketType = MarketType.FUTURES) -> str:
    """Exchange wire symbol -> canonical symbol."""
    wire = wire_symbol.strip().upper()

    if exchange is Exchange.OKX:
        if wire.endswith(OKX_SWAP_SUFFIX):
            wire = wire[: -len(OKX_SWAP_SUFFIX)]
        parts = wire.split("-")
    elif exchange is Exchange.GATE or (exchange is Exchange.MEXC and market_type is MarketType.FUTURES):
        parts = wire.split("_")
    else:
        return _validate(wire)

    if len(parts) != 2 or not all(parts):
        raise UnsupportedSymbolError(f"Unexpected {exchange.value} symbol: {wire_symbol}")
    return _validate("".join(parts))


def _validate(symbol: str) -> str:
    symbol = symbol.strip().upper()
    if not _CANONICAL_RE.match(symbol):
        raise UnsupportedSymbolError(f"Unsupported symbol: {symbol!r}")
    return symbol
