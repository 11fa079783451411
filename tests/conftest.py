"""Pytest configuration and shared fixtures."""

import pytest
import pytest_asyncio
from decimal import Decimal

from config import SessionConfig
from core.candle_cache import PendingCandleCache
from core.emitter import KlineEmitter
from core.registry import SubscriptionRegistry
from exchange.models import Candle
from fakes import FakeConnector


@pytest.fixture
def session_config() -> SessionConfig:
    """Short timers so reconnect paths finish in milliseconds."""
    return SessionConfig(
        confirmation_timeout_sec=0.2,
        reconnect_base_delay_sec=0.01,
        backoff_cap=5,
        max_reconnect_attempts=10,
    )


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def emitter() -> KlineEmitter:
    return KlineEmitter(queue_size=1000)


@pytest.fixture
def cache() -> PendingCandleCache:
    return PendingCandleCache()


@pytest_asyncio.fixture
async def registry(emitter, session_config, cache, connector):
    reg = SubscriptionRegistry(emitter, session_config, cache=cache, connect=connector)
    yield reg
    await reg.shutdown()


@pytest.fixture
def parent_candle() -> Candle:
    return Candle(
        time=1000,
        open=Decimal("100"),
        high=Decimal("110"),
        low=Decimal("95"),
        close=Decimal("105"),
        volume=Decimal("60"),
        closed=True,
    )
