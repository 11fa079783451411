"""Subscription registry tests: de-duplication, teardown, shutdown and abandonment."""

import asyncio
import pytest
from decimal import Decimal

from core.registry import SubscriptionRegistry
from core.session import SessionState
from exchange.errors import (
    RegistryClosedError,
    UnsupportedExchangeError,
    UnsupportedMarketError,
    UnsupportedSymbolError,
)
from exchange.mexc_ws import MexcTranslator
from exchange.models import Interval, KlineEvent, MarketType, SubscriptionAbandoned
from fakes import BYBIT_SUBSCRIBED, bybit_kline, wait_for

T0 = 1_700_000_040


async def confirm(session, ws, ack=BYBIT_SUBSCRIBED):
    await wait_for(lambda: session.state is SessionState.AWAITING_CONFIRMATION)
    ws.feed(ack)
    await wait_for(lambda: session.state is SessionState.ACTIVE)


@pytest.mark.asyncio
async def test_identical_keys_share_session(registry, connector):
    a = await registry.subscribe("bybit", "BTCUSDT", "1m", "futures")
    b = await registry.subscribe("BYBIT", "btcusdt", Interval.M1)

    assert a.id != b.id
    assert a.key == b.key
    assert registry.refcount(a.key) == 2
    assert registry.get_session(a.key) is registry.get_session(b.key)
    await wait_for(lambda: connector.attempts == 1)
    assert registry.stats()["total_sessions"] == 1


@pytest.mark.asyncio
async def test_sub_minute_keys_share_minute_stream(registry, connector):
    one = await registry.subscribe("bybit", "BTCUSDT", "1s")
    minute = await registry.subscribe("bybit", "BTCUSDT", "1m")
    five_min = await registry.subscribe("bybit", "BTCUSDT", "5m")

    session = registry.get_session(one.key)
    assert session is registry.get_session(minute.key)
    assert session is not registry.get_session(five_min.key)
    assert session.intervals == {Interval.S1, Interval.M1}
    await wait_for(lambda: len(connector.sockets) == 2)


@pytest.mark.asyncio
async def test_scenario_shared_minute_session_teardown(registry, connector, cache):
    five = await registry.subscribe("bybit", "BTCUSDT", "5s", "futures")
    fifteen = await registry.subscribe("bybit", "BTCUSDT", "15s", "futures")
    session = registry.get_session(five.key)
    assert session is registry.get_session(fifteen.key)

    await wait_for(lambda: len(connector.sockets) == 1)
    ws = connector.last
    await confirm(session, ws)
    ws.feed(bybit_kline(T0))
    await wait_for(lambda: session.wire_key.cache_key in cache)

    await registry.unsubscribe(five)
    assert registry.get_session(fifteen.key) is session
    assert session.intervals == {Interval.S15}
    assert session.wire_key.cache_key in cache
    assert not ws.closed

    await registry.unsubscribe(fifteen)
    assert registry.get_session(fifteen.key) is None
    assert session.wire_key.cache_key not in cache
    assert ws.closed
    assert session.state is SessionState.IDLE
    assert len(connector.sockets) == 1


@pytest.mark.asyncio
async def test_minute_consumer_keeps_stream_but_cache_cleared(registry, connector, cache):
    five = await registry.subscribe("bybit", "BTCUSDT", "5s")
    minute = await registry.subscribe("bybit", "BTCUSDT", "1m")
    session = registry.get_session(minute.key)
    await wait_for(lambda: len(connector.sockets) == 1)
    await confirm(session, connector.last)
    connector.last.feed(bybit_kline(T0))
    await wait_for(lambda: session.wire_key.cache_key in cache)

    await registry.unsubscribe(five)

    assert registry.get_session(minute.key) is session
    assert session.wire_key.cache_key not in cache


@pytest.mark.asyncio
async def test_unsubscribe_twice_is_noop(registry, connector):
    a = await registry.subscribe("bybit", "BTCUSDT", "1m")
    b = await registry.subscribe("bybit", "BTCUSDT", "1m")

    await registry.unsubscribe(a)
    await registry.unsubscribe(a)

    assert registry.refcount(b.key) == 1
    assert registry.get_session(b.key) is not None
    assert a.closed and not b.closed


@pytest.mark.asyncio
@pytest.mark.parametrize("args,error", [
    (("kraken", "BTCUSDT", "1m"), UnsupportedExchangeError),
    (("okx", "BTC/USDT", "1m"), UnsupportedSymbolError),
    (("gate", "BTCXYZ", "1m"), UnsupportedSymbolError),
    (("binance", "BTCUSDT", "2m"), ValueError),
    (("binance", "BTCUSDT", "1m", "margin"), ValueError),
])
async def test_invalid_subscriptions_rejected(registry, connector, args, error):
    with pytest.raises(error):
        await registry.subscribe(*args)
    assert registry.stats()["total_sessions"] == 0
    assert connector.attempts == 0


@pytest.mark.asyncio
async def test_shutdown_during_backoff(registry, connector, cache):
    connector.fail_with = OSError("connection refused")
    registry.config.reconnect_base_delay_sec = 0.1
    handle = await registry.subscribe("okx", "BTCUSDT", "5s")
    session = registry.get_session(handle.key)
    await wait_for(lambda: session.state is SessionState.RECONNECTING)

    await registry.shutdown()
    await registry.shutdown()
    await asyncio.sleep(0.3)

    assert connector.attempts == 1
    assert session.state is SessionState.IDLE
    assert len(cache) == 0
    assert await handle.get(timeout=1) is None
    with pytest.raises(RegistryClosedError):
        await registry.subscribe("okx", "BTCUSDT", "5s")


@pytest.mark.asyncio
async def test_release_client(registry, connector):
    await registry.subscribe("bybit", "BTCUSDT", "1m", client_id="web-1")
    await registry.subscribe("bybit", "ETHUSDT", "5s", client_id="web-1")
    kept = await registry.subscribe("bybit", "BTCUSDT", "1m", client_id="web-2")

    released = await registry.release_client("web-1")

    assert released == 2
    stats = registry.stats()
    assert stats["total_clients"] == 1
    assert stats["total_subscriptions"] == 1
    assert stats["total_sessions"] == 1
    assert registry.refcount(kept.key) == 1
    assert await registry.release_client("web-1") == 0


@pytest.mark.asyncio
async def test_abandonment_surfaces_to_every_handle(registry, connector, emitter):
    connector.fail_with = OSError("connection refused")
    seen = []

    async def on_event(event):
        seen.append(event)

    emitter.on(on_event)
    minute = await registry.subscribe("bybit", "BTCUSDT", "1m", client_id="c1")
    five = await registry.subscribe("bybit", "BTCUSDT", "5s")

    minute_events = [event async for event in minute]
    five_events = [event async for event in five]
    await emitter.flush()

    assert minute_events == [SubscriptionAbandoned(minute.key, minute_events[0].reason)]
    assert isinstance(five_events[0], SubscriptionAbandoned)
    assert "Gave up" in minute_events[0].reason
    assert {e.key for e in seen} == {minute.key, five.key}
    assert connector.attempts == 11

    stats = registry.stats()
    assert stats["total_sessions"] == 0
    assert stats["total_subscriptions"] == 0
    assert stats["total_clients"] == 0
    assert stats["abandoned_sessions"] == 1
    await registry.unsubscribe(minute)

    # A fresh subscribe starts over with a new session
    again = await registry.subscribe("bybit", "BTCUSDT", "1m")
    assert registry.get_session(again.key).state is not SessionState.ABANDONED


@pytest.mark.asyncio
async def test_scenario_fifteen_second_end_to_end(registry, connector):
    handle = await registry.subscribe("gate", "BTCUSDT", "15s", "futures")
    session = registry.get_session(handle.key)
    await wait_for(lambda: len(connector.sockets) == 1)
    ws = connector.last
    assert ws.url == "wss://fx-ws.gateio.ws/v4/ws/usdt"

    await confirm(session, ws, ack={
        "time": 1, "channel": "futures.candlesticks", "event": "subscribe", "result": {"status": "success"},
    })
    ws.feed({
        "time": 1061, "channel": "futures.candlesticks", "event": "update",
        "result": [{"t": 1000, "o": "100", "h": "110", "l": "95", "c": "105", "v": "60",
                    "n": "1m_BTC_USDT", "w": True}],
    })

    events = [await handle.get(timeout=1) for _ in range(4)]
    assert all(isinstance(e, KlineEvent) and e.key == handle.key for e in events)
    candles = [e.candle for e in events]
    assert [c.time for c in candles] == [1000, 1015, 1030, 1045]
    assert candles[0].open == Decimal("100")
    assert candles[-1].close == Decimal("105")
    assert sum(c.volume for c in candles) == Decimal("60")
    assert sum(1 for c in candles if c.high == Decimal("110")) == 1
    assert sum(1 for c in candles if c.low == Decimal("95")) == 1
    assert [c.closed for c in candles] == [False, False, False, True]


@pytest.mark.asyncio
async def test_stats_detail(registry, connector):
    await registry.subscribe("bybit", "BTCUSDT", "1m", client_id="a")
    await registry.subscribe("bybit", "BTCUSDT", "5s", client_id="a")
    await registry.subscribe("bybit", "BTCUSDT", "5s", client_id="b")
    await registry.subscribe("okx", "ETHUSDT", "1h", "spot")

    stats = registry.stats()
    assert stats["total_clients"] == 2
    assert stats["total_subscriptions"] == 4
    assert stats["unique_keys"] == 3
    assert stats["sessions_by_exchange"] == {"bybit": 1, "okx": 1}
    bybit = next(s for s in stats["sessions"] if s["exchange"] == "bybit")
    assert bybit["intervals"] == ["1m", "5s"]
    assert bybit["refcounts"] == {"1m": 1, "5s": 2}


@pytest.mark.asyncio
async def test_injected_empty_cache_and_config_are_used(emitter, session_config, cache, connector):
    assert len(cache) == 0
    registry = SubscriptionRegistry(emitter, session_config, cache=cache, connect=connector)

    assert registry.cache is cache
    assert registry.config is session_config
    handle = await registry.subscribe("bybit", "BTCUSDT", "5s")
    assert registry.get_session(handle.key).cache is cache
    await registry.shutdown()


@pytest.mark.asyncio
async def test_unsupported_market_rejected_before_connecting(registry, connector, monkeypatch):
    monkeypatch.setattr(MexcTranslator, "supports", lambda self, market_type: market_type is MarketType.FUTURES)

    with pytest.raises(UnsupportedMarketError):
        await registry.subscribe("mexc", "BTCUSDT", "1m", "spot")
    assert connector.attempts == 0


@pytest.mark.asyncio
async def test_mexc_spot_subscription_connects(registry, connector):
    handle = await registry.subscribe("mexc", "BTCUSDT", "15s", "spot")
    session = registry.get_session(handle.key)

    await wait_for(lambda: session.state is SessionState.AWAITING_CONFIRMATION)
    assert connector.last.url == "wss://wbs-api.mexc.com/ws"
    assert connector.last.sent_json()[0] == {
        "method": "SUBSCRIPTION",
        "params": ["spot@public.kline.v3.api.pb@BTCUSDT@Min1"],
    }
    connector.last.feed({"id": 0, "code": 0, "msg": "spot@public.kline.v3.api.pb@BTCUSDT@Min1"})
    await wait_for(lambda: session.state is SessionState.ACTIVE)
