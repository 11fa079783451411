"""
OKX V5 candle channels. Candles live on the business endpoint, not public.
OKX drops idle connections after 30s without traffic; a text "ping" keeps it open.
"""

from __future__ import annotations
import json
from typing import Optional
from exchange.base import ProtocolTranslator, RawMessage, build_candle, parse_json, raw_text
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

WS_URL = "wss://ws.okx.com:8443/ws/v5/business"
PING_INTERVAL_SEC = 25


class OkxTranslator(ProtocolTranslator):
    exchange = Exchange.OKX
    interval_map = {
        Interval.M1: "1m",
        Interval.M5: "5m",
        Interval.M15: "15m",
        Interval.M30: "30m",
        Interval.H1: "1H",
        Interval.H4: "4H",
        Interval.D1: "1D",
    }

    def connection_url(self, symbol: str, interval: Interval, market_type: MarketType) -> str:
        return WS_URL

    def _args(self, symbol: str, interval: Interval, market_type: MarketType) -> list:
        return [{
            "channel": f"candle{self.wire_interval(interval)}",
            "instId": self.wire_symbol(symbol, market_type),
        }]

    def encode_subscribe(self, symbol: str, interval: Interval, market_type: MarketType) -> Optional[str]:
        return json.dumps({"op": "subscribe", "args": self._args(symbol, interval, market_type)})

    def encode_unsubscribe(self, symbol: str, interval: Interval, market_type: MarketType) -> Optional[str]:
        return json.dumps({"op": "unsubscribe", "args": self._args(symbol, interval, market_type)})

    def keepalive(self, market_type: MarketType) -> Optional[KeepAlive]:
        return KeepAlive("ping", PING_INTERVAL_SEC)

    def parse(self, raw: RawMessage, market_type: MarketType) -> DecodedMessage:
        if raw_text(raw).strip() == "pong":
            return KeepAliveResponse()

        data = parse_json(raw)
        if not isinstance(data, dict):
            return Unrecognized(data)

        event = data.get("event")
        if event == "subscribe":
            return SubscriptionConfirmed()
        if event == "error":
            return SubscriptionFailed(f"{data.get('code')}: {data.get('msg')}")
        if event is not None:
            return Unrecognized(data)

        arg = data.get("arg") or {}
        if not isinstance(arg, dict):
            raise ProtocolError(f"[OKX] Invalid arg: {arg!r}")
        rows = data.get("data")
        if not str(arg.get("channel", "")).startswith("candle") or rows is None:
            return Unrecognized(data)
        if not isinstance(rows, list) or not rows:
            raise ProtocolError(f"[OKX] Candle message without data: {str(data)[:200]}")

        row = rows[0]
        # OKX candle: [ts, o, h, l, c, vol, volCcy, volCcyQuote, confirm]
        if not isinstance(row, list) or len(row) < 9:
            raise ProtocolError(f"[OKX] Invalid candle row: {row!r}")

        candle = build_candle(
            time=row[0],
            open=row[1],
            high=row[2],
            low=row[3],
            close=row[4],
            volume=row[5],
            closed=row[8] == "1",
        )
        symbol = self.canonical_symbol(arg["instId"], market_type) if arg.get("instId") else None
        return CandleUpdate(candle, symbol)
