"""
Bybit V5 public WebSocket protocol.
Category-specific endpoints, topic subscriptions, JSON ping every 20s.
"""

from __future__ import annotations
import json
from typing import Optional
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

FUTURES_WS_URL = "wss://stream.bybit.com/v5/public/linear"
SPOT_WS_URL = "wss://stream.bybit.com/v5/public/spot"
PING_INTERVAL_SEC = 20


class BybitTranslator(ProtocolTranslator):
    exchange = Exchange.BYBIT
    interval_map = {
        Interval.M1: "1",
        Interval.M5: "5",
        Interval.M15: "15",
        Interval.M30: "30",
        Interval.H1: "60",
        Interval.H4: "240",
        Interval.D1: "D",
    }

    def connection_url(self, symbol: str, interval: Interval, market_type: MarketType) -> str:
        return FUTURES_WS_URL if market_type is MarketType.FUTURES else SPOT_WS_URL

    def topic(self, symbol: str, interval: Interval, market_type: MarketType) -> str:
        """E.g. kline.1.BTCUSDT"""
        return f"kline.{self.wire_interval(interval)}.{self.wire_symbol(symbol, market_type)}"

    def encode_subscribe(self, symbol: str, interval: Interval, market_type: MarketType) -> Optional[str]:
        return json.dumps({"op": "subscribe", "args": [self.topic(symbol, interval, market_type)]})

    def encode_unsubscribe(self, symbol: str, interval: Interval, market_type: MarketType) -> Optional[str]:
        return json.dumps({"op": "unsubscribe", "args": [self.topic(symbol, interval, market_type)]})

    def keepalive(self, market_type: MarketType) -> Optional[KeepAlive]:
        return KeepAlive(json.dumps({"op": "ping"}), PING_INTERVAL_SEC)

    def parse(self, raw: RawMessage, market_type: MarketType) -> DecodedMessage:
        data = parse_json(raw)
        if not isinstance(data, dict):
            return Unrecognized(data)

        op = data.get("op")
        # Linear replies {"op":"pong"}, spot replies {"op":"ping","ret_msg":"pong"}
        if op == "pong" or (op == "ping" and data.get("ret_msg") == "pong"):
            return KeepAliveResponse()

        if op == "subscribe":
            if data.get("success"):
                return SubscriptionConfirmed()
            return SubscriptionFailed(data.get("ret_msg") or "subscription refused")

        if op is not None:
            return Unrecognized(data)

        topic = data.get("topic")
        if not isinstance(topic, str) or not topic.startswith("kline."):
            return Unrecognized(data)

        klines = data.get("data")
        if not isinstance(klines, list) or not klines:
            raise ProtocolError(f"[BYBIT] Kline message without data: {str(data)[:200]}")

        k = klines[0]
        if not isinstance(k, dict):
            raise ProtocolError(f"[BYBIT] Invalid kline entry: {k!r}")
        # Bybit kline: {start, end, interval, open, close, high, low, volume, turnover, confirm}
        candle = build_candle(
            time=k.get("start"),
            open=k.get("open"),
            high=k.get("high"),
            low=k.get("low"),
            close=k.get("close"),
            volume=k.get("volume"),
            closed=k.get("confirm") is True,
        )
        return CandleUpdate(candle, self.canonical_symbol(topic.split(".")[-1], market_type))
