"""
Data models for the kline ingestion layer.
Uses Decimal for all price/volume values — no floating point errors.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, NamedTuple, Optional, Union
from exchange.errors import UnsupportedExchangeError


class Exchange(Enum):
    BINANCE = "binance"
    BYBIT = "bybit"
    OKX = "okx"
    GATE = "gate"
    BITGET = "bitget"
    MEXC = "mexc"


class MarketType(Enum):
    SPOT = "spot"
    FUTURES = "futures"


class Interval(Enum):
    S1 = "1s"
    S5 = "5s"
    S15 = "15s"
    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"

    @property
    def seconds(self) -> int:
        return _INTERVAL_SECONDS[self]

    @property
    def is_sub_minute(self) -> bool:
        return self.seconds < 60

    @property
    def wire(self) -> "Interval":
        """Interval actually streamed by the exchange for this interval."""
        return Interval.M1 if self.is_sub_minute else self


_INTERVAL_SECONDS = {
    Interval.S1: 1,
    Interval.S5: 5,
    Interval.S15: 15,
    Interval.M1: 60,
    Interval.M5: 300,
    Interval.M15: 900,
    Interval.M30: 1800,
    Interval.H1: 3600,
    Interval.H4: 14400,
    Interval.D1: 86400,
}


@dataclass(frozen=True)
class Candle:
    """Canonical OHLCV candle. `time` is the bucket start in unix seconds."""
    time: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    closed: bool = False

    def is_valid(self) -> bool:
        return (
            self.low <= min(self.open, self.close)
            and max(self.open, self.close) <= self.high
            and self.volume >= 0
        )

    def differs_from(self, other: Optional["Candle"]) -> bool:
        """Change detection used by the pending 1m cache."""
        if other is None:
            return True
        return (
            self.time != other.time
            or self.close != other.close
            or self.closed != other.closed
        )


class CacheKey(NamedTuple):
    exchange: Exchange
    symbol: str
    market_type: MarketType


@dataclass(frozen=True)
class WireKey:
    """Identity of one physical exchange stream."""
    exchange: Exchange
    symbol: str
    interval: Interval
    market_type: MarketType

    @property
    def cache_key(self) -> CacheKey:
        return CacheKey(self.exchange, self.symbol, self.market_type)

    def __str__(self) -> str:
        return f"{self.exchange.value}:{self.symbol}:{self.interval.value}:{self.market_type.value}"


@dataclass(frozen=True)
class SubscriptionKey:
    """Identity of one logical subscription."""
    exchange: Exchange
    symbol: str
    interval: Interval
    market_type: MarketType

    @classmethod
    def create(
        cls,
        exchange: Union[str, Exchange],
        symbol: str,
        interval: Union[str, Interval],
        market_type: Union[str, MarketType] = MarketType.FUTURES,
    ) -> "SubscriptionKey":
        """Build a key from loose caller input. Raises ValueError on unknown names."""
        try:
            exchange = Exchange(exchange.lower() if isinstance(exchange, str) else exchange)
        except ValueError:
            raise UnsupportedExchangeError(f"Unsupported exchange: {exchange}")
        interval = Interval(interval) if isinstance(interval, str) else interval
        if isinstance(market_type, str):
            market_type = MarketType(market_type.lower())
        return cls(exchange, symbol.strip().upper(), interval, market_type)

    @property
    def wire_key(self) -> WireKey:
        return WireKey(self.exchange, self.symbol, self.interval.wire, self.market_type)

    @property
    def cache_key(self) -> CacheKey:
        return CacheKey(self.exchange, self.symbol, self.market_type)

    def __str__(self) -> str:
        return f"{self.exchange.value}:{self.symbol}:{self.interval.value}:{self.market_type.value}"


# ==================== Decoded Wire Messages ====================

@dataclass(frozen=True)
class SubscriptionConfirmed:
    pass


@dataclass(frozen=True)
class SubscriptionFailed:
    reason: str


@dataclass(frozen=True)
class KeepAliveResponse:
    pass


@dataclass(frozen=True)
class CandleUpdate:
    candle: Candle
    symbol: Optional[str] = None    # Canonical symbol, when the payload carries one


@dataclass(frozen=True)
class Unrecognized:
    payload: Any = None


DecodedMessage = Union[
    SubscriptionConfirmed,
    SubscriptionFailed,
    KeepAliveResponse,
    CandleUpdate,
    Unrecognized,
]


class KeepAlive(NamedTuple):
    """Application-level ping: message to send and period in seconds."""
    message: str
    interval: float


# ==================== Emitted Events ====================

@dataclass(frozen=True)
class KlineEvent:
    key: SubscriptionKey
    candle: Candle


@dataclass(frozen=True)
class SubscriptionAbandoned:
    key: SubscriptionKey
    reason: str


StreamEvent = Union[KlineEvent, SubscriptionAbandoned]
