"""
Kline Stream Service — Main Orchestrator.
Ties all components together: startup subscriptions, consumers, status server, shutdown.
"""

from __future__ import annotations
import asyncio
import os
import sys
import signal
from typing import List, Optional
import logging
from dotenv import load_dotenv

from config import AppConfig
from core.emitter import KlineEmitter, SubscriptionHandle
from core.registry import SubscriptionRegistry
from dashboard import Dashboard
from exchange.errors import KlineStreamError
from exchange.models import KlineEvent, StreamEvent, SubscriptionAbandoned
from notifications.telegram import TelegramNotifier

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Console + optional file logging in one format."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        # Create log dir before FileHandler
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )
    # websockets logs every frame at DEBUG
    logging.getLogger("websockets").setLevel(logging.WARNING)


class KlineService:
    """Main service orchestrator."""

    def __init__(self, config: AppConfig):
        self.config = config
        self._running = False
        self._stopped = asyncio.Event()
        self._consumers: List[asyncio.Task] = []

        self.emitter = KlineEmitter(queue_size=config.stream.queue_size)
        self.registry = SubscriptionRegistry(self.emitter, config.session)
        self.notifier = TelegramNotifier(
            bot_token=config.notifications.telegram_bot_token,
            chat_id=config.notifications.telegram_chat_id,
            enabled=config.notifications.enabled,
        )
        self.dashboard: Optional[Dashboard] = None
        if config.dashboard.enabled:
            self.dashboard = Dashboard(self.registry, config.dashboard.host, config.dashboard.port)

        self.emitter.on(self._on_event)

    async def start(self):
        """Full startup sequence; returns after stop()."""
        logger.info("=" * 60)
        logger.info("   KLINE STREAM SERVICE — STARTING")
        logger.info("=" * 60)
        self._running = True

        if self.dashboard is not None:
            await self.dashboard.start()

        for exchange, symbol, interval, market_type in self.config.subscriptions.startup:
            try:
                handle = await self.registry.subscribe(exchange, symbol, interval, market_type, client_id="startup")
            except (KlineStreamError, ValueError) as e:
                logger.error(f"[BOOT] Cannot subscribe {exchange}:{symbol}:{interval}:{market_type}: {e}")
                continue
            self._consumers.append(asyncio.create_task(self._consume(handle)))

        if not self._consumers:
            logger.warning("[BOOT] No startup subscriptions. Set KLINE_SUBSCRIPTIONS to stream klines.")

        await self.notifier.send_status(f"Started ✅\nSubscriptions: {len(self._consumers)}")

        logger.info("[BOOT] ✅ All systems go. Running...")
        await self._stopped.wait()

    async def stop(self):
        """Graceful shutdown."""
        if not self._running:
            return
        logger.info("[SHUTDOWN] Stopping service...")
        self._running = False

        await self.registry.shutdown()
        # Handles are closed, consumers drain and exit
        await asyncio.gather(*self._consumers, return_exceptions=True)
        if self.dashboard is not None:
            await self.dashboard.stop()
        await self.notifier.send_status("Stopped 🔴")
        await self.notifier.close()

        self._stopped.set()
        logger.info("[SHUTDOWN] Complete.")

    async def _consume(self, handle: SubscriptionHandle):
        """Log closed candles of one subscription until its handle closes."""
        async for event in handle:
            if isinstance(event, KlineEvent) and event.candle.closed:
                c = event.candle
                logger.info(
                    f"[KLINE] {event.key} t={c.time} O={c.open} H={c.high} "
                    f"L={c.low} C={c.close} V={c.volume}"
                )
        if handle.dropped:
            logger.warning(f"[KLINE] {handle.key} dropped {handle.dropped} events (slow consumer)")

    async def _on_event(self, event: StreamEvent):
        if isinstance(event, SubscriptionAbandoned):
            await self.notifier.send_abandoned(str(event.key), event.reason)


async def main():
    """Entry point."""
    load_dotenv()
    config = AppConfig.from_env()
    setup_logging(config.log_level, config.log_file)

    service = KlineService(config)

    # Graceful shutdown handler
    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        def handle_signal(sig):
            logger.info(f"Received signal {sig}. Initiating shutdown...")
            asyncio.create_task(service.stop())

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    try:
        await service.start()
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        await service.stop()
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
