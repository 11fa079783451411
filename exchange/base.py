"""
Protocol Translator base class.
One subclass per exchange: URLs, subscribe/unsubscribe envelopes,
keepalive messages and raw-message decoding. No I/O happens here;
the ConnectionSession does all network work.
"""

from __future__ import annotations
import json
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union
from exchange import symbols
from exchange.errors import ProtocolError
from exchange.models import (
    Candle,
    DecodedMessage,
    Exchange,
    Interval,
    KeepAlive,
    MarketType,
)

RawMessage = Union[str, bytes]


class ProtocolTranslator(ABC):
    """Exchange-specific wire protocol, expressed as pure functions."""

    exchange: Exchange
    # Exchange interval spelling for every streamable (non sub-minute) interval
    interval_map: Dict[Interval, str] = {}
    # Feed carries no closed flag; the session infers closure from bucket rollover
    infers_closure: bool = False

    # ==================== Capabilities ====================

    @abstractmethod
    def connection_url(self, symbol: str, interval: Interval, market_type: MarketType) -> str:
        """WebSocket address for a canonical symbol/interval/market."""

    @abstractmethod
    def encode_subscribe(self, symbol: str, interval: Interval, market_type: MarketType) -> Optional[str]:
        """
        Subscribe envelope, or None when the stream is selected by URL.
        A None subscribe means the transport opening is the confirmation.
        """

    @abstractmethod
    def encode_unsubscribe(self, symbol: str, interval: Interval, market_type: MarketType) -> Optional[str]:
        """Unsubscribe envelope, or None when closing the socket is enough."""

    @abstractmethod
    def parse(self, raw: RawMessage, market_type: MarketType) -> DecodedMessage:
        """Exchange-specific decoding. Called through decode()."""

    def decode(self, raw: RawMessage, market_type: MarketType) -> DecodedMessage:
        """
        Decode one raw frame into a tagged variant.
        Raises ProtocolError for malformed payloads, including valid JSON
        whose nested fields have the wrong shape.
        """
        try:
            return self.parse(raw, market_type)
        except ProtocolError:
            raise
        except (AttributeError, TypeError, KeyError, IndexError, ValueError) as e:
            raise ProtocolError(
                f"[{self.exchange.value.upper()}] Malformed frame ({type(e).__name__}: {e}): {raw_text(raw)[:200]}"
            ) from e

    def keepalive(self, market_type: MarketType) -> Optional[KeepAlive]:
        """Application-level ping, rebuilt on every tick. None when not needed."""
        return None

    def supports(self, market_type: MarketType) -> bool:
        return True

    # ==================== Helpers ====================

    def wire_symbol(self, symbol: str, market_type: MarketType) -> str:
        return symbols.to_wire(self.exchange, symbol, market_type)

    def canonical_symbol(self, wire_symbol: str, market_type: MarketType) -> str:
        return symbols.from_wire(self.exchange, wire_symbol, market_type)

    def wire_interval(self, interval: Interval) -> str:
        try:
            return self.interval_map[interval.wire]
        except KeyError:
            raise ProtocolError(f"{self.exchange.value} has no stream for interval {interval.value}")


# ==================== Decoding Utilities ====================

def parse_json(raw: RawMessage) -> Any:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Non UTF-8 frame: {e}") from e
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {raw[:100]}") from e


def raw_text(raw: RawMessage) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


def to_decimal(value: Any, name: str = "value") -> Decimal:
    if value is None or value == "":
        raise ProtocolError(f"Missing {name}")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ProtocolError(f"Bad {name}: {value!r}") from e
    if not number.is_finite():
        raise ProtocolError(f"Bad {name}: {value!r}")
    return number


def to_seconds(value: Any) -> int:
    """Exchange timestamps arrive as ms or s, numbers or strings."""
    try:
        ts = int(value)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Bad timestamp: {value!r}") from e
    return ts // 1000 if ts > 10_000_000_000 else ts


def build_candle(
    time: Any,
    open: Any,
    high: Any,
    low: Any,
    close: Any,
    volume: Any,
    closed: bool,
) -> Candle:
    return Candle(
        time=to_seconds(time),
        open=to_decimal(open, "open"),
        high=to_decimal(high, "high"),
        low=to_decimal(low, "low"),
        close=to_decimal(close, "close"),
        volume=to_decimal(volume if volume is not None else 0, "volume"),
        closed=closed,
    )
