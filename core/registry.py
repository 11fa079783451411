"""
Subscription Registry — de-duplicates logical subscriptions onto physical streams.

Identical keys share one session and a reference count. 1s/5s/15s/1m keys for
the same (exchange, symbol, market) share one 1m session. A session is torn
down when its last interval goes away, or removed when it is abandoned.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set, Union
import websockets
from config import SessionConfig
from core.candle_cache import PendingCandleCache
from core.emitter import KlineEmitter, SubscriptionHandle
from core.session import ConnectionSession
from exchange import symbols
from exchange.base import ProtocolTranslator
from exchange.errors import KlineStreamError, RegistryClosedError, UnsupportedMarketError
from exchange.models import Exchange, Interval, MarketType, SubscriptionKey, WireKey
from exchange.translators import get_translator

logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    """Entry point for subscribe / unsubscribe / shutdown."""

    def __init__(
        self,
        emitter: KlineEmitter,
        config: Optional[SessionConfig] = None,
        cache: Optional[PendingCandleCache] = None,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.emitter = emitter
        self.config = config if config is not None else SessionConfig()
        self.cache = cache if cache is not None else PendingCandleCache()
        self._connect = connect

        self._sessions: Dict[WireKey, ConnectionSession] = {}
        self._refcounts: Dict[SubscriptionKey, int] = {}
        self._handles: Dict[int, SubscriptionHandle] = {}
        self._clients: Dict[str, Set[int]] = {}
        self._translators: Dict[Exchange, ProtocolTranslator] = {}
        self._lock = asyncio.Lock()
        self._closed = False
        self.abandoned_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def subscribe(
        self,
        exchange: Union[str, Exchange],
        symbol: str,
        interval: Union[str, Interval],
        market_type: Union[str, MarketType] = MarketType.FUTURES,
        client_id: Optional[str] = None,
    ) -> SubscriptionHandle:
        """
        Subscribe to a kline stream and return a fresh handle on it.
        Raises UnsupportedExchangeError / UnsupportedMarketError /
        UnsupportedSymbolError / ValueError for bad input and
        RegistryClosedError after shutdown.
        """
        if self._closed:
            raise RegistryClosedError("Registry is shut down")

        key = SubscriptionKey.create(exchange, symbol, interval, market_type)
        translator = self._translator(key.exchange)
        if not translator.supports(key.market_type):
            raise UnsupportedMarketError(
                f"{key.exchange.value} does not stream {key.market_type.value} klines"
            )
        symbols.to_wire(key.exchange, key.symbol, key.market_type)

        async with self._lock:
            if self._closed:
                raise RegistryClosedError("Registry is shut down")

            wire_key = key.wire_key
            session = self._sessions.get(wire_key)
            created = session is None
            if created:
                session = ConnectionSession(
                    wire_key,
                    translator,
                    self.emitter,
                    self.cache,
                    self.config,
                    on_abandoned=self._on_session_abandoned,
                    connect=self._connect,
                )
                self._sessions[wire_key] = session

            session.add_interval(key.interval)
            self._refcounts[key] = self._refcounts.get(key, 0) + 1
            handle = self.emitter.create_handle(key, client_id)
            self._handles[handle.id] = handle
            if client_id is not None:
                self._clients.setdefault(client_id, set()).add(handle.id)

            if created:
                session.start()

        logger.info(
            f"[REGISTRY] Subscribed {key} (refs={self._refcounts.get(key, 0)}, "
            f"{'new' if created else 'shared'} session)"
        )
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle):
        """Release one handle. Releasing an already released handle is a no-op."""
        to_close: Optional[ConnectionSession] = None

        async with self._lock:
            if self._handles.pop(handle.id, None) is None:
                return
            self._forget_client(handle)
            self.emitter.detach(handle)

            key = handle.key
            remaining = self._refcounts.get(key, 0) - 1
            if remaining > 0:
                self._refcounts[key] = remaining
            else:
                self._refcounts.pop(key, None)
                session = self._sessions.get(key.wire_key)
                if session is not None:
                    session.remove_interval(key.interval)
                    if not session.intervals:
                        del self._sessions[key.wire_key]
                        to_close = session

        logger.info(f"[REGISTRY] Unsubscribed {handle.key}")
        if to_close is not None:
            await to_close.close()

    async def release_client(self, client_id: str) -> int:
        """Unsubscribe every handle opened for a client. Returns how many were released."""
        async with self._lock:
            handle_ids = list(self._clients.get(client_id, ()))
            handles = [self._handles[h] for h in handle_ids if h in self._handles]

        for handle in handles:
            await self.unsubscribe(handle)
        if handles:
            logger.info(f"[REGISTRY] Released {len(handles)} subscriptions for client {client_id}")
        return len(handles)

    async def shutdown(self):
        """Close every session and handle. Idempotent."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            sessions = list(self._sessions.values())
            handles = list(self._handles.values())
            self._sessions.clear()
            self._refcounts.clear()
            self._handles.clear()
            self._clients.clear()

        results = await asyncio.gather(*(s.close() for s in sessions), return_exceptions=True)
        for session, result in zip(sessions, results):
            if isinstance(result, Exception):
                logger.error(f"[REGISTRY] Error closing {session.wire_key}: {result}")

        self.cache.clear()
        for handle in handles:
            self.emitter.detach(handle)
        await self.emitter.flush()
        logger.info(f"[REGISTRY] Shut down ({len(sessions)} sessions closed)")

    # ==================== Introspection ====================

    def get_session(self, key: SubscriptionKey) -> Optional[ConnectionSession]:
        return self._sessions.get(key.wire_key)

    def refcount(self, key: SubscriptionKey) -> int:
        return self._refcounts.get(key, 0)

    def stats(self) -> Dict[str, Any]:
        by_exchange: Dict[str, int] = {}
        details: List[Dict[str, Any]] = []
        for wire_key, session in self._sessions.items():
            name = wire_key.exchange.value
            by_exchange[name] = by_exchange.get(name, 0) + 1
            detail = session.describe()
            detail["refcounts"] = {
                key.interval.value: count
                for key, count in self._refcounts.items()
                if key.wire_key == wire_key
            }
            details.append(detail)

        return {
            "total_clients": len(self._clients),
            "total_subscriptions": len(self._handles),
            "unique_keys": len(self._refcounts),
            "total_sessions": len(self._sessions),
            "abandoned_sessions": self.abandoned_count,
            "pending_candles": len(self.cache),
            "sessions_by_exchange": by_exchange,
            "sessions": details,
        }

    # ==================== Internals ====================

    def _translator(self, exchange: Exchange) -> ProtocolTranslator:
        translator = self._translators.get(exchange)
        if translator is None:
            translator = get_translator(exchange)
            self._translators[exchange] = translator
        return translator

    def _forget_client(self, handle: SubscriptionHandle):
        if handle.client_id is None:
            return
        ids = self._clients.get(handle.client_id)
        if ids is not None:
            ids.discard(handle.id)
            if not ids:
                del self._clients[handle.client_id]

    def _on_session_abandoned(self, session: ConnectionSession, error: KlineStreamError):
        # Runs synchronously on the event loop; no await between reads and writes
        if self._sessions.get(session.wire_key) is not session:
            return
        del self._sessions[session.wire_key]
        self.abandoned_count += 1

        keys = [k for k in self._refcounts if k.wire_key == session.wire_key]
        for key in keys:
            del self._refcounts[key]
            for handle in self.emitter.handles_for(key):
                self._handles.pop(handle.id, None)
                self._forget_client(handle)
            self.emitter.abandon(key, str(error))
        logger.error(f"[REGISTRY] Session {session.wire_key} abandoned; {len(keys)} subscriptions ended")
