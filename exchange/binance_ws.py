"""
Binance kline streams.
The stream is selected by URL (<symbol>@kline_<interval>), so there is no
subscribe envelope and the transport opening counts as confirmation.
Server pings are answered at the protocol level by the websockets client.
"""

from __future__ import annotations
from typing import Optional
from exchange.base import ProtocolTranslator, RawMessage, build_candle, parse_json
from exchange.errors import ProtocolError
from exchange.models import (
    CandleUpdate,
    DecodedMessage,
    Exchange,
    Interval,
    MarketType,
    SubscriptionConfirmed,
    SubscriptionFailed,
    Unrecognized,
)

FUTURES_WS_URL = "wss://fstream.binance.com/ws"
SPOT_WS_URL = "wss://stream.binance.com:9443/ws"


class BinanceTranslator(ProtocolTranslator):
    exchange = Exchange.BINANCE
    interval_map = {
        Interval.M1: "1m",
        Interval.M5: "5m",
        Interval.M15: "15m",
        Interval.M30: "30m",
        Interval.H1: "1h",
        Interval.H4: "4h",
        Interval.D1: "1d",
    }

    def connection_url(self, symbol: str, interval: Interval, market_type: MarketType) -> str:
        base_url = FUTURES_WS_URL if market_type is MarketType.FUTURES else SPOT_WS_URL
        stream = f"{self.wire_symbol(symbol, market_type).lower()}@kline_{self.wire_interval(interval)}"
        return f"{base_url}/{stream}"

    def encode_subscribe(self, symbol: str, interval: Interval, market_type: MarketType) -> Optional[str]:
        return None

    def encode_unsubscribe(self, symbol: str, interval: Interval, market_type: MarketType) -> Optional[str]:
        return None

    def parse(self, raw: RawMessage, market_type: MarketType) -> DecodedMessage:
        data = parse_json(raw)
        if not isinstance(data, dict):
            return Unrecognized(data)

        # Replies to SUBSCRIBE requests: {"result": null, "id": 1} / {"error": {...}}
        if "error" in data:
            error = data["error"]
            reason = error.get("msg") if isinstance(error, dict) else str(error)
            return SubscriptionFailed(reason or "subscription refused")
        if "result" in data and "id" in data:
            return SubscriptionConfirmed()

        k = data.get("k")
        if k is None:
            return Unrecognized(data)
        if not isinstance(k, dict):
            raise ProtocolError(f"[BINANCE] Bad kline payload: {str(data)[:200]}")

        # Binance kline: {t, T, s, i, o, c, h, l, v, x, ...}
        candle = build_candle(
            time=k.get("t"),
            open=k.get("o"),
            high=k.get("h"),
            low=k.get("l"),
            close=k.get("c"),
            volume=k.get("v"),
            closed=k.get("x") is True,
        )
        symbol = self.canonical_symbol(k["s"], market_type) if k.get("s") else None
        return CandleUpdate(candle, symbol)
