"""
Kline Event Emitter — the single exit point for canonical events.

Every subscription gets its own SubscriptionHandle: an async iterator over a
bounded queue. A full queue drops its oldest event so a slow consumer never
stalls a connection. Callbacks registered with on() see every event.
"""

from __future__ import annotations
import asyncio
import itertools
import logging
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set
from exchange.models import Candle, KlineEvent, StreamEvent, SubscriptionAbandoned, SubscriptionKey

logger = logging.getLogger(__name__)

# Type for async callback: receives one KlineEvent or SubscriptionAbandoned
EventCallback = Callable[[StreamEvent], Coroutine[Any, Any, None]]

DEFAULT_QUEUE_SIZE = 1000

_CLOSED = object()
_handle_ids = itertools.count(1)


class SubscriptionHandle:
    """
    Consumer side of one subscribe() call.

        async for event in handle:
            ...

    Iteration ends after the handle is closed (unsubscribe, abandonment or
    shutdown) and its buffered events are drained.
    """

    def __init__(self, key: SubscriptionKey, client_id: Optional[str] = None, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.id = next(_handle_ids)
        self.key = key
        self.client_id = client_id
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(queue_size, 1))
        self._closed = False
        self._exhausted = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: StreamEvent):
        if self._closed:
            return
        self._put(event)

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._put(_CLOSED)

    def _put(self, item: Any):
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self.dropped += 1

    async def get(self, timeout: Optional[float] = None) -> Optional[StreamEvent]:
        """
        Next event, or None once the handle is closed and drained.
        Raises asyncio.TimeoutError if nothing arrives within timeout.
        """
        if self._exhausted:
            return None
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            self._exhausted = True
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> StreamEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def __repr__(self) -> str:
        return f"SubscriptionHandle(id={self.id}, key={self.key}, closed={self._closed})"


class KlineEmitter:
    """Fans canonical events out to handles and callbacks."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self.events_published = 0
        self._handles: Dict[SubscriptionKey, Dict[int, SubscriptionHandle]] = {}
        self._callbacks: List[EventCallback] = []
        self._pending: Set[asyncio.Task] = set()

    def on(self, callback: EventCallback):
        """Register a callback for every emitted event."""
        self._callbacks.append(callback)

    # ==================== Handles ====================

    def create_handle(self, key: SubscriptionKey, client_id: Optional[str] = None) -> SubscriptionHandle:
        handle = SubscriptionHandle(key, client_id, self.queue_size)
        self.attach(handle)
        return handle

    def attach(self, handle: SubscriptionHandle):
        self._handles.setdefault(handle.key, {})[handle.id] = handle

    def detach(self, handle: SubscriptionHandle):
        """Stop delivering to a handle and close it."""
        handles = self._handles.get(handle.key)
        if handles is not None:
            handles.pop(handle.id, None)
            if not handles:
                del self._handles[handle.key]
        handle.close()

    def handles_for(self, key: SubscriptionKey) -> List[SubscriptionHandle]:
        return list(self._handles.get(key, {}).values())

    # ==================== Emission ====================

    async def publish(self, key: SubscriptionKey, candle: Candle):
        event = KlineEvent(key, candle)
        self.events_published += 1
        for handle in self.handles_for(key):
            handle.deliver(event)
        await self._dispatch(event)

    def abandon(self, key: SubscriptionKey, reason: str):
        """Deliver the terminal event for a key and close its handles."""
        event = SubscriptionAbandoned(key, reason)
        for handle in self.handles_for(key):
            handle.deliver(event)
            self.detach(handle)
        logger.warning(f"[EMITTER] {key} abandoned: {reason}")

        if self._callbacks:
            task = asyncio.get_running_loop().create_task(self._dispatch(event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def flush(self):
        """Wait for callback notifications still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _dispatch(self, event: StreamEvent):
        for callback in self._callbacks:
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"[EMITTER] Callback error for {event.key}: {e}", exc_info=True)
