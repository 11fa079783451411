"""
Kline Stream — Configuration
All tunable parameters in one place.
"""

import os
from dataclasses import dataclass, field
from typing import List, Tuple


@dataclass
class SessionConfig:
    confirmation_timeout_sec: float = 10.0  # Subscribe ack deadline
    reconnect_base_delay_sec: float = 5.0   # Delay = base * min(attempt, cap)
    backoff_cap: int = 5
    max_reconnect_attempts: int = 10        # 11th consecutive failure abandons
    ws_ping_interval: float = 20.0          # websockets protocol-level pings
    ws_ping_timeout: float = 10.0
    ws_close_timeout: float = 5.0


@dataclass
class StreamConfig:
    queue_size: int = 1000              # Per-handle buffer; oldest dropped when full


@dataclass
class SubscriptionConfig:
    # (exchange, symbol, interval, market_type) subscribed at startup
    startup: List[Tuple[str, str, str, str]] = field(default_factory=list)

    @staticmethod
    def parse(raw: str) -> List[Tuple[str, str, str, str]]:
        """
        Parse "binance:BTCUSDT:1m:futures,okx:ETHUSDT:5s" into tuples.
        Market type defaults to futures.
        """
        entries = []
        for item in raw.split(","):
            item = item.strip()
            if not item:
                continue
            parts = [p.strip() for p in item.split(":")]
            if len(parts) == 3:
                parts.append("futures")
            if len(parts) != 4 or not all(parts):
                raise ValueError(f"Bad subscription entry: {item!r}")
            entries.append(tuple(parts))
        return entries


@dataclass
class NotificationConfig:
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    enabled: bool = True


@dataclass
class DashboardConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class AppConfig:
    session: SessionConfig = field(default_factory=SessionConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    subscriptions: SubscriptionConfig = field(default_factory=SubscriptionConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    log_level: str = "INFO"
    log_file: str = "./data/kline.log"

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load config with environment variable overrides."""
        config = cls()
        config.session.confirmation_timeout_sec = float(os.getenv("CONFIRMATION_TIMEOUT_SEC", "10"))
        config.session.reconnect_base_delay_sec = float(os.getenv("RECONNECT_BASE_DELAY_SEC", "5"))
        config.session.max_reconnect_attempts = int(os.getenv("MAX_RECONNECT_ATTEMPTS", "10"))
        config.stream.queue_size = int(os.getenv("STREAM_QUEUE_SIZE", "1000"))
        config.subscriptions.startup = SubscriptionConfig.parse(os.getenv("KLINE_SUBSCRIPTIONS", ""))
        config.notifications.telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN", "")
        config.notifications.telegram_chat_id = os.getenv("TELEGRAM_CHAT_ID", "")
        config.dashboard.enabled = os.getenv("DASHBOARD_ENABLED", "true").lower() == "true"
        config.dashboard.host = os.getenv("DASHBOARD_HOST", "0.0.0.0")
        config.dashboard.port = int(os.getenv("DASHBOARD_PORT", "8080"))
        config.log_level = os.getenv("LOG_LEVEL", "INFO")
        config.log_file = os.getenv("LOG_FILE", "./data/kline.log")
        return config
