"""
Telegram Notifier — Sends stream abandonment alerts and service status updates.
"""

from __future__ import annotations
import aiohttp
import html
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Sends messages via Telegram Bot API."""

    def __init__(self, bot_token: str, chat_id: str, enabled: bool = True):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.enabled = enabled and bool(bot_token) and bool(chat_id)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def send(self, message: str, parse_mode: str = "HTML"):
        """Send a message to the configured chat."""
        if not self.enabled:
            logger.debug(f"[TG] (disabled) Would send: {message[:100]}...")
            return

        try:
            session = await self._get_session()
            url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
            payload = {
                "chat_id": self.chat_id,
                "text": message,
                "parse_mode": parse_mode,
                "disable_web_page_preview": True,
            }

            async with session.post(url, json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    logger.warning(f"[TG] Send failed ({resp.status}): {body[:200]}")
                else:
                    logger.debug(f"[TG] Sent: {message[:80]}...")

        except Exception as e:
            logger.warning(f"[TG] Error sending message: {e}")

    async def send_abandoned(self, subscription: str, reason: str):
        """A stream exceeded its reconnect ceiling and will not be retried."""
        msg = (
            f"🚨 <b>STREAM ABANDONED</b>\n\n"
            f"Subscription: <code>{html.escape(subscription)}</code>\n"
            f"Reason: {html.escape(reason)}"
        )
        await self.send(msg)

    async def send_status(self, status: str):
        """Send service lifecycle status."""
        await self.send(f"📡 <b>KLINE</b>: {status}")
