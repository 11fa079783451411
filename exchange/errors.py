"""
Error taxonomy for kline streaming.

Transport-level failures and exchange rejections are retried by the session;
only ReconnectCeilingExceeded is terminal and reaches the caller.
"""


class KlineStreamError(Exception):
    """Base exception for the ingestion layer."""


class TransportError(KlineStreamError):
    """Socket open/read/write failure. Triggers a reconnect."""


class ConfirmationTimeout(TransportError):
    """No subscription confirmation within the allowed window."""


class ProtocolError(KlineStreamError):
    """Malformed or undecodable exchange message. Logged and dropped."""


class SubscriptionRejected(KlineStreamError):
    """Exchange explicitly refused the subscription. Triggers a reconnect."""


class ReconnectCeilingExceeded(KlineStreamError):
    """Session gave up after too many consecutive failures."""


class InvalidCandleError(KlineStreamError, ValueError):
    """Candle violates the OHLC invariant."""


class UnsupportedSymbolError(KlineStreamError, ValueError):
    """Symbol cannot be expressed in the exchange's wire spelling."""


class UnsupportedMarketError(KlineStreamError, ValueError):
    """Exchange does not stream candles for the requested market type."""


class UnsupportedExchangeError(KlineStreamError, ValueError):
    pass


class RegistryClosedError(KlineStreamError):
    """Subscribe called after shutdown."""
