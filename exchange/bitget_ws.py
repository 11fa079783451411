"""
Bitget V2 public candle channels.
Single endpoint for spot and futures; text "ping" every 30s.
Candle rows carry no closed flag, so closure is inferred by the session.
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

WS_URL = "wss://ws.bitget.com/v2/ws/public"
PING_INTERVAL_SEC = 30


class BitgetTranslator(ProtocolTranslator):
    exchange = Exchange.BITGET
    infers_closure = True
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
            "instType": "USDT-FUTURES" if market_type is MarketType.FUTURES else "SPOT",
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
        if event == "error" or data.get("code"):
            return SubscriptionFailed(f"{data.get('code')}: {data.get('msg')}")
        if event is not None:
            return Unrecognized(data)

        rows = data.get("data")
        if rows is None:
            return Unrecognized(data)
        if not isinstance(rows, list) or not rows:
            raise ProtocolError(f"[BITGET] Candle message without data: {str(data)[:200]}")

        action = data.get("action")
        if action == "snapshot":
            # Snapshot replays recent history; only the latest row is live
            row = rows[-1]
        elif action == "update":
            row = rows[0]
        else:
            return Unrecognized(data)

        # Bitget candle: [ts_ms, o, h, l, c, baseVolume, quoteVolume, usdtVolume]
        if not isinstance(row, list) or len(row) < 6:
            raise ProtocolError(f"[BITGET] Invalid candle row: {row!r}")

        candle = build_candle(
            time=row[0],
            open=row[1],
            high=row[2],
            low=row[3],
            close=row[4],
            volume=row[5],
            closed=False,
        )
        arg = data.get("arg") or {}
        symbol = self.canonical_symbol(arg["instId"], market_type) if arg.get("instId") else None
        return CandleUpdate(candle, symbol)
