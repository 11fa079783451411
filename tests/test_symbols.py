"""Symbol normalizer tests."""

import pytest

from exchange.errors import UnsupportedSymbolError
from exchange.models import Exchange, MarketType
from exchange.symbols import from_wire, split_symbol, to_wire


@pytest.mark.parametrize("exchange,market_type,expected", [
    (Exchange.BINANCE, MarketType.SPOT, "BTCUSDT"),
    (Exchange.BINANCE, MarketType.FUTURES, "BTCUSDT"),
    (Exchange.BYBIT, MarketType.FUTURES, "BTCUSDT"),
    (Exchange.OKX, MarketType.SPOT, "BTC-USDT"),
    (Exchange.OKX, MarketType.FUTURES, "BTC-USDT-SWAP"),
    (Exchange.GATE, MarketType.SPOT, "BTC_USDT"),
    (Exchange.GATE, MarketType.FUTURES, "BTC_USDT"),
    (Exchange.BITGET, MarketType.FUTURES, "BTCUSDT"),
    (Exchange.MEXC, MarketType.SPOT, "BTCUSDT"),
    (Exchange.MEXC, MarketType.FUTURES, "BTC_USDT"),
])
def test_to_wire_spellings(exchange, market_type, expected):
    assert to_wire(exchange, "BTCUSDT", market_type) == expected


@pytest.mark.parametrize("exchange", list(Exchange))
@pytest.mark.parametrize("market_type", list(MarketType))
@pytest.mark.parametrize("symbol", ["BTCUSDT", "ETHBTC", "SOLUSDC", "PEPEFDUSD", "1000SHIBUSDT"])
def test_round_trip(exchange, market_type, symbol):
    assert from_wire(exchange, to_wire(exchange, symbol, market_type), market_type) == symbol


def test_lowercase_input_is_normalized():
    assert to_wire(Exchange.OKX, "ethusdt", MarketType.FUTURES) == "ETH-USDT-SWAP"
    assert from_wire(Exchange.GATE, "eth_usdt", MarketType.SPOT) == "ETHUSDT"


def test_longest_quote_wins():
    assert split_symbol("BTCFDUSD") == ("BTC", "FDUSD")
    assert split_symbol("BTCUSD") == ("BTC", "USD")


@pytest.mark.parametrize("symbol", ["BTC/USDT", "BTC-USDT", "", "BTC USDT"])
def test_rejects_non_alphanumeric(symbol):
    with pytest.raises(UnsupportedSymbolError):
        to_wire(Exchange.BINANCE, symbol, MarketType.SPOT)


def test_separator_exchange_needs_known_quote():
    with pytest.raises(UnsupportedSymbolError):
        to_wire(Exchange.OKX, "BTCXYZ", MarketType.SPOT)
    # Plain-concatenation exchanges do not need to know the quote
    assert to_wire(Exchange.BYBIT, "BTCXYZ", MarketType.FUTURES) == "BTCXYZ"


def test_empty_base_rejected():
    with pytest.raises(UnsupportedSymbolError):
        to_wire(Exchange.GATE, "USDT", MarketType.FUTURES)


def test_malformed_wire_symbol_rejected():
    with pytest.raises(UnsupportedSymbolError):
        from_wire(Exchange.OKX, "BTC-USDT-EXTRA", MarketType.SPOT)
    with pytest.raises(UnsupportedSymbolError):
        from_wire(Exchange.GATE, "BTCUSDT", MarketType.FUTURES)
