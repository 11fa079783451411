"""
MEXC kline channels.
Futures: JSON contract stream. Spot: JSON control messages, protobuf kline pushes.
Neither feed carries a closed flag; closure is inferred by the session.
"""

from __future__ import annotations
import json
from typing import Optional
from google.protobuf.message import DecodeError
from exchange.base import ProtocolTranslator, RawMessage, build_candle, parse_json
from exchange.errors import ProtocolError
from exchange.mexc_proto import PushDataV3ApiWrapper
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

FUTURES_WS_URL = "wss://contract.mexc.com/edge"
SPOT_WS_URL = "wss://wbs-api.mexc.com/ws"
SPOT_KLINE_CHANNEL = "spot@public.kline.v3.api.pb"
PING_INTERVAL_SEC = 15


class MexcTranslator(ProtocolTranslator):
    exchange = Exchange.MEXC
    infers_closure = True
    interval_map = {
        Interval.M1: "Min1",
        Interval.M5: "Min5",
        Interval.M15: "Min15",
        Interval.M30: "Min30",
        Interval.H1: "Min60",
        Interval.H4: "Hour4",
        Interval.D1: "Day1",
    }

    def connection_url(self, symbol: str, interval: Interval, market_type: MarketType) -> str:
        return SPOT_WS_URL if market_type is MarketType.SPOT else FUTURES_WS_URL

    def spot_channel(self, symbol: str, interval: Interval) -> str:
        wire = self.wire_symbol(symbol, MarketType.SPOT)
        return f"{SPOT_KLINE_CHANNEL}@{wire}@{self.wire_interval(interval)}"

    def _envelope(self, method: str, symbol: str, interval: Interval, market_type: MarketType) -> str:
        return json.dumps({
            "method": method,
            "param": {
                "symbol": self.wire_symbol(symbol, market_type),
                "interval": self.wire_interval(interval),
            },
        })

    def encode_subscribe(self, symbol: str, interval: Interval, market_type: MarketType) -> Optional[str]:
        if market_type is MarketType.SPOT:
            return json.dumps({"method": "SUBSCRIPTION", "params": [self.spot_channel(symbol, interval)]})
        return self._envelope("sub.kline", symbol, interval, market_type)

    def encode_unsubscribe(self, symbol: str, interval: Interval, market_type: MarketType) -> Optional[str]:
        if market_type is MarketType.SPOT:
            return json.dumps({"method": "UNSUBSCRIPTION", "params": [self.spot_channel(symbol, interval)]})
        return self._envelope("unsub.kline", symbol, interval, market_type)

    def keepalive(self, market_type: MarketType) -> Optional[KeepAlive]:
        if market_type is MarketType.SPOT:
            return KeepAlive(json.dumps({"method": "PING"}), PING_INTERVAL_SEC)
        return KeepAlive(json.dumps({"method": "ping"}), PING_INTERVAL_SEC)

    def parse(self, raw: RawMessage, market_type: MarketType) -> DecodedMessage:
        if market_type is MarketType.SPOT:
            if isinstance(raw, bytes) and not raw.lstrip().startswith(b"{"):
                return self._parse_spot_push(raw, market_type)
            return self._parse_spot_control(raw)
        return self._parse_futures(raw, market_type)

    # ==================== Spot ====================

    def _parse_spot_control(self, raw: RawMessage) -> DecodedMessage:
        # {"id":0,"code":0,"msg":"spot@public.kline.v3.api.pb@BTCUSDT@Min1"}
        data = parse_json(raw)
        if not isinstance(data, dict):
            return Unrecognized(data)

        msg = str(data.get("msg") or "")
        if msg == "PONG":
            return KeepAliveResponse()
        if data.get("code") not in (None, 0) or msg.startswith("Not Subscribed"):
            return SubscriptionFailed(msg or str(data.get("code")))
        if msg.startswith(SPOT_KLINE_CHANNEL):
            return SubscriptionConfirmed()
        return Unrecognized(data)

    def _parse_spot_push(self, raw: bytes, market_type: MarketType) -> DecodedMessage:
        try:
            wrapper = PushDataV3ApiWrapper.FromString(raw)
        except DecodeError as e:
            raise ProtocolError(f"[MEXC] Undecodable spot frame: {e}") from e

        if wrapper.WhichOneof("body") != "publicSpotKline":
            return Unrecognized(wrapper.channel)

        k = wrapper.publicSpotKline
        if not k.windowStart:
            raise ProtocolError(f"[MEXC] Spot kline without window start on {wrapper.channel}")

        candle = build_candle(
            time=k.windowStart,
            open=k.openingPrice,
            high=k.highestPrice,
            low=k.lowestPrice,
            close=k.closingPrice,
            volume=k.volume or 0,
            closed=False,
        )
        symbol = self.canonical_symbol(wrapper.symbol, market_type) if wrapper.symbol else None
        return CandleUpdate(candle, symbol)

    # ==================== Futures ====================

    def _parse_futures(self, raw: RawMessage, market_type: MarketType) -> DecodedMessage:
        data = parse_json(raw)
        if not isinstance(data, dict):
            return Unrecognized(data)

        channel = data.get("channel", "")
        if channel == "pong":
            return KeepAliveResponse()

        if channel == "rs.sub.kline":
            if data.get("data") == "success":
                return SubscriptionConfirmed()
            return SubscriptionFailed(str(data.get("data") or "subscription refused"))

        if channel == "rs.error" or (data.get("code") not in (None, 0)):
            return SubscriptionFailed(str(data.get("data") or data.get("msg") or data.get("code")))

        if channel != "push.kline":
            return Unrecognized(data)

        k = data.get("data")
        if not isinstance(k, dict) or k.get("t") is None:
            raise ProtocolError(f"[MEXC] Invalid kline push: {str(data)[:200]}")

        # MEXC contract kline: {symbol, interval, t, o, c, h, l, a (amount), q (volume)}
        candle = build_candle(
            time=k.get("t"),
            open=k.get("o"),
            high=k.get("h"),
            low=k.get("l"),
            close=k.get("c"),
            volume=k.get("a", 0),
            closed=False,
        )
        wire_symbol = data.get("symbol") or k.get("symbol")
        symbol = self.canonical_symbol(wire_symbol, market_type) if wire_symbol else None
        return CandleUpdate(candle, symbol)
