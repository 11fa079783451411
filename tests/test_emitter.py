"""Event emitter, handle streams and pending-candle cache tests."""

import asyncio
import pytest
from dataclasses import replace
from decimal import Decimal
from unittest.mock import AsyncMock

from core.candle_cache import PendingCandleCache
from core.emitter import KlineEmitter
from exchange.models import CacheKey, Exchange, KlineEvent, MarketType, SubscriptionAbandoned, SubscriptionKey

KEY = SubscriptionKey.create("bybit", "BTCUSDT", "1m", "futures")
OTHER = SubscriptionKey.create("okx", "ETHUSDT", "5s", "spot")


@pytest.mark.asyncio
async def test_publish_reaches_matching_handles_only(parent_candle):
    emitter = KlineEmitter()
    a = emitter.create_handle(KEY)
    b = emitter.create_handle(KEY)
    c = emitter.create_handle(OTHER)

    await emitter.publish(KEY, parent_candle)

    assert await a.get(timeout=1) == KlineEvent(KEY, parent_candle)
    assert await b.get(timeout=1) == KlineEvent(KEY, parent_candle)
    with pytest.raises(asyncio.TimeoutError):
        await c.get(timeout=0.05)


@pytest.mark.asyncio
async def test_full_queue_drops_oldest(parent_candle):
    emitter = KlineEmitter(queue_size=2)
    handle = emitter.create_handle(KEY)

    for i in range(3):
        await emitter.publish(KEY, replace(parent_candle, time=1000 + 60 * i))

    assert handle.dropped == 1
    first = await handle.get(timeout=1)
    assert first.candle.time == 1060


@pytest.mark.asyncio
async def test_iteration_ends_after_close(parent_candle):
    emitter = KlineEmitter()
    handle = emitter.create_handle(KEY)
    await emitter.publish(KEY, parent_candle)
    emitter.detach(handle)
    await emitter.publish(KEY, parent_candle)

    events = [event async for event in handle]
    assert events == [KlineEvent(KEY, parent_candle)]
    assert await handle.get() is None


@pytest.mark.asyncio
async def test_callbacks_receive_events_and_errors_are_isolated(parent_candle):
    emitter = KlineEmitter()
    failing = AsyncMock(side_effect=RuntimeError("boom"))
    received = AsyncMock()
    emitter.on(failing)
    emitter.on(received)

    await emitter.publish(KEY, parent_candle)

    failing.assert_awaited_once()
    received.assert_awaited_once_with(KlineEvent(KEY, parent_candle))


@pytest.mark.asyncio
async def test_abandon_delivers_terminal_event_and_closes():
    emitter = KlineEmitter()
    callback = AsyncMock()
    emitter.on(callback)
    handle = emitter.create_handle(KEY)

    emitter.abandon(KEY, "gave up")
    await emitter.flush()

    events = [event async for event in handle]
    assert events == [SubscriptionAbandoned(KEY, "gave up")]
    assert handle.closed
    assert emitter.handles_for(KEY) == []
    callback.assert_awaited_once_with(SubscriptionAbandoned(KEY, "gave up"))


@pytest.mark.asyncio
async def test_close_marker_survives_full_queue(parent_candle):
    emitter = KlineEmitter(queue_size=1)
    handle = emitter.create_handle(KEY)
    await emitter.publish(KEY, parent_candle)
    emitter.detach(handle)

    assert [event async for event in handle] == []
    assert handle.dropped == 1


# ─── Pending candle cache ───

CACHE_KEY = CacheKey(Exchange.BYBIT, "BTCUSDT", MarketType.FUTURES)


def test_cache_change_detection(parent_candle):
    cache = PendingCandleCache()
    assert cache.update_if_changed(CACHE_KEY, parent_candle)
    assert not cache.update_if_changed(CACHE_KEY, parent_candle)
    # Volume alone does not count as a change
    assert not cache.update_if_changed(CACHE_KEY, replace(parent_candle, volume=Decimal("61")))
    assert cache.update_if_changed(CACHE_KEY, replace(parent_candle, close=Decimal("106")))
    assert cache.update_if_changed(CACHE_KEY, replace(parent_candle, close=Decimal("106"), closed=False))
    assert cache.update_if_changed(CACHE_KEY, replace(parent_candle, time=1060))
    assert cache.get(CACHE_KEY).time == 1060


def test_cache_discard_and_clear(parent_candle):
    cache = PendingCandleCache()
    other = CacheKey(Exchange.OKX, "BTCUSDT", MarketType.FUTURES)
    cache.update_if_changed(CACHE_KEY, parent_candle)
    cache.update_if_changed(other, parent_candle)
    assert len(cache) == 2

    cache.discard(CACHE_KEY)
    assert CACHE_KEY not in cache
    assert other in cache

    cache.clear()
    assert len(cache) == 0
