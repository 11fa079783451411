"""
Connection Session — one physical exchange stream and its lifecycle.

    IDLE -> CONNECTING -> AWAITING_CONFIRMATION -> ACTIVE -> CLOSING -> IDLE
    any failure -> RECONNECTING(n) -> CONNECTING ... -> ABANDONED

The session owns every timer it starts (confirmation, keepalive, reconnect).
Each connection attempt gets a new generation number; callbacks from an older
generation are ignored, so a superseded timer can never act on a new socket.
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set
import websockets
from config import SessionConfig
from core.candle_cache import PendingCandleCache
from core.emitter import KlineEmitter
from core.resampler import resample
from exchange.base import ProtocolTranslator, RawMessage
from exchange.errors import (
    ConfirmationTimeout,
    InvalidCandleError,
    KlineStreamError,
    ProtocolError,
    ReconnectCeilingExceeded,
    SubscriptionRejected,
    TransportError,
)
from exchange.models import (
    Candle,
    CandleUpdate,
    Interval,
    KeepAliveResponse,
    SubscriptionConfirmed,
    SubscriptionFailed,
    SubscriptionKey,
    WireKey,
)

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    ACTIVE = "active"
    CLOSING = "closing"
    RECONNECTING = "reconnecting"
    ABANDONED = "abandoned"


AbandonCallback = Callable[["ConnectionSession", KlineStreamError], None]


def backoff_delay(attempt: int, base: float, cap: int) -> float:
    """Linear backoff: base * min(attempt, cap)."""
    return base * min(attempt, cap)


class ConnectionSession:
    """Owns one WebSocket and fans its candles out to logical intervals."""

    def __init__(
        self,
        wire_key: WireKey,
        translator: ProtocolTranslator,
        emitter: KlineEmitter,
        cache: PendingCandleCache,
        config: Optional[SessionConfig] = None,
        on_abandoned: Optional[AbandonCallback] = None,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.wire_key = wire_key
        self.translator = translator
        self.emitter = emitter
        self.cache = cache
        self.config = config if config is not None else SessionConfig()
        self._on_abandoned = on_abandoned
        self._connect = connect

        self.state = SessionState.IDLE
        self.intervals: Set[Interval] = set()
        self.reconnect_attempts = 0
        self.next_retry_delay: Optional[float] = None
        self.last_error: Optional[str] = None
        self.candles_received = 0

        self._generation = 0
        self._ws: Any = None
        self._reader_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._confirm_timer: Optional[asyncio.TimerHandle] = None
        self._reconnect_timer: Optional[asyncio.TimerHandle] = None
        self._last_candle: Optional[Candle] = None

    @property
    def tag(self) -> str:
        return f"[SESSION {self.wire_key}]"

    # ==================== Logical Intervals ====================

    def add_interval(self, interval: Interval):
        if interval.wire != self.wire_key.interval:
            raise ValueError(f"{interval.value} cannot be served by a {self.wire_key.interval.value} stream")
        self.intervals.add(interval)

    def remove_interval(self, interval: Interval):
        self.intervals.discard(interval)
        if not any(i.is_sub_minute for i in self.intervals):
            self.cache.discard(self.wire_key.cache_key)

    def key_for(self, interval: Interval) -> SubscriptionKey:
        return SubscriptionKey(self.wire_key.exchange, self.wire_key.symbol, interval, self.wire_key.market_type)

    # ==================== Lifecycle ====================

    def start(self):
        """Begin connecting in the background. Never blocks the caller."""
        if self.state is not SessionState.IDLE:
            return
        self._open()

    async def close(self):
        """
        Tear down for good: best-effort unsubscribe, cancel every timer and
        task, clear the pending candle. Safe in any state, including backoff.
        """
        if self.state is SessionState.CLOSING:
            return
        was = self.state
        ws = self._ws
        reader = self._reader_task

        if was is not SessionState.ABANDONED:
            self.state = SessionState.CLOSING
        self._teardown(cancel_reader=False)
        self.cache.discard(self.wire_key.cache_key)
        self._last_candle = None

        if ws is not None and was in (SessionState.AWAITING_CONFIRMATION, SessionState.ACTIVE):
            await self._send_unsubscribe(ws)

        if reader is not None and not reader.done():
            if reader is asyncio.current_task():
                # Closed by a consumer callback inside the reader; ending the socket ends the loop
                await self._close_socket(ws)
            else:
                reader.cancel()
                await asyncio.gather(reader, return_exceptions=True)
        self._reader_task = None

        if was is not SessionState.ABANDONED:
            self.state = SessionState.IDLE
        logger.info(f"{self.tag} Closed")

    def describe(self) -> Dict[str, Any]:
        return {
            "exchange": self.wire_key.exchange.value,
            "symbol": self.wire_key.symbol,
            "market_type": self.wire_key.market_type.value,
            "wire_interval": self.wire_key.interval.value,
            "intervals": sorted(i.value for i in self.intervals),
            "state": self.state.value,
            "reconnect_attempts": self.reconnect_attempts,
            "next_retry_delay": self.next_retry_delay,
            "last_error": self.last_error,
            "candles_received": self.candles_received,
        }

    # ==================== Connection ====================

    def _open(self):
        self._generation += 1
        gen = self._generation
        self.state = SessionState.CONNECTING
        self._reader_task = asyncio.get_running_loop().create_task(self._run(gen))

    async def _run(self, gen: int):
        key = self.wire_key
        try:
            url = self.translator.connection_url(key.symbol, key.interval, key.market_type)
            async with self._connect(
                url,
                ping_interval=self.config.ws_ping_interval,
                ping_timeout=self.config.ws_ping_timeout,
                close_timeout=self.config.ws_close_timeout,
            ) as ws:
                if gen != self._generation:
                    return
                self._ws = ws
                logger.info(f"{self.tag} Connected to {url}")
                await self._on_open(ws, gen)

                async for raw in ws:
                    if gen != self._generation:
                        return
                    await self._handle_message(raw)
        except KlineStreamError as e:
            error = e
        except websockets.ConnectionClosed as e:
            error = TransportError(f"Connection closed: {e}")
        except Exception as e:
            error = TransportError(f"{type(e).__name__}: {e}")
        else:
            error = TransportError("Connection closed by exchange")

        self._fail(gen, error)

    async def _on_open(self, ws: Any, gen: int):
        key = self.wire_key
        if self.translator.keepalive(key.market_type) is not None:
            self._keepalive_task = asyncio.get_running_loop().create_task(self._keepalive_loop(ws, gen))

        message = self.translator.encode_subscribe(key.symbol, key.interval, key.market_type)
        if message is None:
            # Stream selected by URL: an open socket is the confirmation
            self._activate()
            return

        self.state = SessionState.AWAITING_CONFIRMATION
        self._confirm_timer = asyncio.get_running_loop().call_later(
            self.config.confirmation_timeout_sec, self._on_confirm_timeout, gen,
        )
        await ws.send(message)
        logger.debug(f"{self.tag} Subscribe sent: {message}")

    def _activate(self):
        self._cancel_timer("_confirm_timer")
        self.state = SessionState.ACTIVE
        self.reconnect_attempts = 0
        self.next_retry_delay = None
        logger.info(f"{self.tag} Subscription active")

    async def _keepalive_loop(self, ws: Any, gen: int):
        market_type = self.wire_key.market_type
        while gen == self._generation:
            keepalive = self.translator.keepalive(market_type)
            if keepalive is None:
                return
            await asyncio.sleep(keepalive.interval)
            if gen != self._generation:
                return
            # Rebuilt each tick, some pings embed a timestamp
            keepalive = self.translator.keepalive(market_type)
            try:
                await ws.send(keepalive.message)
            except Exception as e:
                # The reader task sees the broken socket and reconnects
                logger.debug(f"{self.tag} Keepalive send failed: {e}")
                return

    async def _send_unsubscribe(self, ws: Any):
        key = self.wire_key
        try:
            message = self.translator.encode_unsubscribe(key.symbol, key.interval, key.market_type)
            if message is not None:
                await asyncio.wait_for(ws.send(message), timeout=self.config.ws_close_timeout)
        except Exception as e:
            logger.debug(f"{self.tag} Unsubscribe not sent: {e}")

    async def _close_socket(self, ws: Any):
        if ws is None:
            return
        try:
            await asyncio.wait_for(ws.close(), timeout=self.config.ws_close_timeout)
        except Exception as e:
            logger.debug(f"{self.tag} Socket close failed: {e}")

    # ==================== Failure & Backoff ====================

    def _on_confirm_timeout(self, gen: int):
        self._confirm_timer = None
        if gen != self._generation or self.state is not SessionState.AWAITING_CONFIRMATION:
            return
        self._fail(gen, ConfirmationTimeout(
            f"No subscription confirmation within {self.config.confirmation_timeout_sec}s"
        ))

    def _fail(self, gen: int, error: KlineStreamError):
        if gen != self._generation or self.state in (
            SessionState.IDLE, SessionState.CLOSING, SessionState.ABANDONED,
        ):
            return
        self.last_error = str(error)
        logger.warning(f"{self.tag} {type(error).__name__}: {error}")
        self._teardown(cancel_reader=True)
        self._schedule_reconnect(error)

    def _schedule_reconnect(self, error: KlineStreamError):
        self.reconnect_attempts += 1
        n = self.reconnect_attempts
        limit = self.config.max_reconnect_attempts

        if n > limit:
            self.state = SessionState.ABANDONED
            self.next_retry_delay = None
            self.cache.discard(self.wire_key.cache_key)
            reason = ReconnectCeilingExceeded(
                f"Gave up after {limit} reconnect attempts (last error: {error})"
            )
            logger.error(f"{self.tag} {reason}")
            if self._on_abandoned is not None:
                self._on_abandoned(self, reason)
            return

        delay = backoff_delay(n, self.config.reconnect_base_delay_sec, self.config.backoff_cap)
        self.state = SessionState.RECONNECTING
        self.next_retry_delay = delay
        logger.info(f"{self.tag} Reconnecting in {delay}s (attempt {n}/{limit})")
        self._reconnect_timer = asyncio.get_running_loop().call_later(
            delay, self._on_reconnect_timer, self._generation,
        )

    def _on_reconnect_timer(self, gen: int):
        self._reconnect_timer = None
        if gen != self._generation or self.state is not SessionState.RECONNECTING:
            return
        self._open()

    def _teardown(self, cancel_reader: bool):
        """Invalidate the current connection and everything it started."""
        self._generation += 1
        self._cancel_timer("_confirm_timer")
        self._cancel_timer("_reconnect_timer")
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            self._keepalive_task = None
        reader = self._reader_task
        if cancel_reader and reader is not None and not reader.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if reader is not current:
                reader.cancel()
        self._ws = None

    def _cancel_timer(self, attr: str):
        timer = getattr(self, attr)
        if timer is not None:
            timer.cancel()
            setattr(self, attr, None)

    # ==================== Messages ====================

    async def _handle_message(self, raw: RawMessage):
        key = self.wire_key
        try:
            message = self.translator.decode(raw, key.market_type)
        except (ProtocolError, ValueError) as e:
            logger.warning(f"{self.tag} Dropped frame: {e}")
            return

        if isinstance(message, SubscriptionConfirmed):
            if self.state is SessionState.AWAITING_CONFIRMATION:
                self._activate()
        elif isinstance(message, SubscriptionFailed):
            raise SubscriptionRejected(message.reason)
        elif isinstance(message, CandleUpdate):
            if self.state is not SessionState.ACTIVE:
                return
            if message.symbol is not None and message.symbol != key.symbol:
                logger.debug(f"{self.tag} Ignoring candle for {message.symbol}")
                return
            await self._handle_candle(message.candle)
        elif isinstance(message, KeepAliveResponse):
            pass
        else:
            logger.debug(f"{self.tag} Unrecognized message: {str(message.payload)[:200]}")

    async def _handle_candle(self, candle: Candle):
        if not candle.is_valid():
            logger.warning(f"{self.tag} Dropping invalid candle at {candle.time}")
            return

        last = self._last_candle
        if last is not None and candle.time < last.time:
            logger.debug(f"{self.tag} Dropping stale candle {candle.time} < {last.time}")
            return

        if self.translator.infers_closure and last is not None and candle.time > last.time and not last.closed:
            await self._fan_out(replace(last, closed=True))

        self._last_candle = candle
        self.candles_received += 1
        await self._fan_out(candle)

    async def _fan_out(self, candle: Candle):
        intervals = sorted(self.intervals, key=lambda i: i.seconds)
        for interval in intervals:
            if interval is self.wire_key.interval:
                await self.emitter.publish(self.key_for(interval), candle)

        sub_minute = [i for i in intervals if i.is_sub_minute]
        if not sub_minute:
            return
        if not self.cache.update_if_changed(self.wire_key.cache_key, candle):
            return

        for interval in sub_minute:
            try:
                children = resample(candle, interval.seconds)
            except InvalidCandleError as e:
                logger.warning(f"{self.tag} Resample skipped: {e}")
                return
            key = self.key_for(interval)
            for child in children:
                await self.emitter.publish(key, child)
