"""Configuration loading tests."""

import pytest

from config import AppConfig, SubscriptionConfig


def test_defaults():
    config = AppConfig()
    assert config.session.confirmation_timeout_sec == 10.0
    assert config.session.reconnect_base_delay_sec == 5.0
    assert config.session.backoff_cap == 5
    assert config.session.max_reconnect_attempts == 10
    assert config.subscriptions.startup == []


def test_from_env(monkeypatch):
    monkeypatch.setenv("KLINE_SUBSCRIPTIONS", "binance:BTCUSDT:1m:spot, okx:ETHUSDT:5s")
    monkeypatch.setenv("MAX_RECONNECT_ATTEMPTS", "3")
    monkeypatch.setenv("DASHBOARD_ENABLED", "false")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "token")

    config = AppConfig.from_env()

    assert config.subscriptions.startup == [
        ("binance", "BTCUSDT", "1m", "spot"),
        ("okx", "ETHUSDT", "5s", "futures"),
    ]
    assert config.session.max_reconnect_attempts == 3
    assert config.dashboard.enabled is False
    assert config.notifications.telegram_bot_token == "token"


@pytest.mark.parametrize("entry", ["binance:BTCUSDT", "binance::1m", "a:b:c:d:e"])
def test_bad_subscription_entry(entry):
    with pytest.raises(ValueError):
        SubscriptionConfig.parse(entry)


def test_empty_subscription_list():
    assert SubscriptionConfig.parse(" , ") == []
