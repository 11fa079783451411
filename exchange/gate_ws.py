"""
Gate.io v4 candlestick channels (spot.candlesticks / futures.candlesticks).
Every envelope carries a unix timestamp; ping every 15s.
"""

from __future__ import annotations
import json
import time
from typing import Callable, Optional
from exchange.base import ProtocolTranslator, RawMessage, build_candle, parse_json
from exchange.errors import ProtocolError
from exchange.models import (
    CandleUpdate,
    DecodedMessage,
    Exchange,
    Interval,
    KeepAlive,
    KeepAliveResponse,
    MarketType,
    SubscriptionConfirmed,
    SubscriptionFailed,
    Unrecognized,
)

FUTURES_WS_URL = "wss://fx-ws.gateio.ws/v4/ws/usdt"
SPOT_WS_URL = "wss://api.gateio.ws/ws/v4/"
PING_INTERVAL_SEC = 15


class GateTranslator(ProtocolTranslator):
    exchange = Exchange.GATE
    interval_map = {
        Interval.M1: "1m",
        Interval.M5: "5m",
        Interval.M15: "15m",
        Interval.M30: "30m",
        Interval.H1: "1h",
        Interval.H4: "4h",
        Interval.D1: "1d",
    }

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    @staticmethod
    def _prefix(market_type: MarketType) -> str:
        return "futures" if market_type is MarketType.FUTURES else "spot"

    def connection_url(self, symbol: str, interval: Interval, market_type: MarketType) -> str:
        return FUTURES_WS_URL if market_type is MarketType.FUTURES else SPOT_WS_URL

    def _envelope(self, event: str, symbol: str, interval: Interval, market_type: MarketType) -> str:
        return json.dumps({
            "time": int(self._clock()),
            "channel": f"{self._prefix(market_type)}.candlesticks",
            "event": event,
            "payload": [self.wire_interval(interval), self.wire_symbol(symbol, market_type)],
        })

    def encode_subscribe(self, symbol: str, interval: Interval, market_type: MarketType) -> Optional[str]:
        return self._envelope("subscribe", symbol, interval, market_type)

    def encode_unsubscribe(self, symbol: str, interval: Interval, market_type: MarketType) -> Optional[str]:
        return self._envelope("unsubscribe", symbol, interval, market_type)

    def keepalive(self, market_type: MarketType) -> Optional[KeepAlive]:
        message = json.dumps({"time": int(self._clock()), "channel": f"{self._prefix(market_type)}.ping"})
        return KeepAlive(message, PING_INTERVAL_SEC)

    def parse(self, raw: RawMessage, market_type: MarketType) -> DecodedMessage:
        data = parse_json(raw)
        if not isinstance(data, dict):
            return Unrecognized(data)

        channel = str(data.get("channel", ""))
        event = data.get("event")

        if channel.endswith(".pong") or event == "pong":
            return KeepAliveResponse()

        if event == "subscribe":
            error = data.get("error")
            if error:
                reason = error.get("message") if isinstance(error, dict) else str(error)
                return SubscriptionFailed(reason or "subscription refused")
            return SubscriptionConfirmed()

        if event == "update" and channel.endswith(".candlesticks"):
            result = data.get("result")
            # Futures send a list of candles, spot a single object
            k = result[0] if isinstance(result, list) and result else result
            if not isinstance(k, dict) or not k.get("t"):
                raise ProtocolError(f"[GATE] Invalid candlestick result: {str(data)[:200]}")

            # Gate candle: {t (seconds), v, c, h, l, o, n: "1m_BTC_USDT", a, w (closed)}
            candle = build_candle(
                time=k.get("t"),
                open=k.get("o"),
                high=k.get("h"),
                low=k.get("l"),
                close=k.get("c"),
                volume=k.get("v", k.get("a", 0)),
                closed=k.get("w") is True,
            )
            symbol = None
            name = k.get("n")
            if name and "_" in name:
                symbol = self.canonical_symbol(name.split("_", 1)[1], market_type)
            return CandleUpdate(candle, symbol)

        if data.get("error"):
            return SubscriptionFailed(str(data["error"]))

        return Unrecognized(data)
