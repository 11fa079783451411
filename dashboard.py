"""
Dashboard — Lightweight status server for the kline service.
Uses aiohttp.web to serve a health probe and registry stats as JSON.
"""

from __future__ import annotations
import json
from decimal import Decimal
from datetime import datetime
from typing import Optional
from aiohttp import web
import logging
from core.registry import SubscriptionRegistry

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types."""
    def default(self, o):
        if isinstance(o, Decimal):
            return float(o)
        if isinstance(o, datetime):
            return o.isoformat()
        return super().default(o)


def json_response(data, status=200):
    return web.Response(
        text=json.dumps(data, cls=DecimalEncoder),
        content_type="application/json",
        status=status,
    )


class Dashboard:
    """Status web server."""

    def __init__(self, registry: SubscriptionRegistry, host: str = "0.0.0.0", port: int = 8080):
        self.registry = registry
        self.host = host
        self.port = port
        self.started_at = datetime.utcnow()
        self.app = web.Application()
        self._runner: Optional[web.AppRunner] = None
        self._setup_routes()

    def _setup_routes(self):
        self.app.router.add_get("/health", self._health)
        self.app.router.add_get("/api/stats", self._api_stats)

    async def start(self):
        """Start the dashboard web server."""
        self._runner = web.AppRunner(self.app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"[DASHBOARD] Running on http://{self.host}:{self.port}")

    async def stop(self):
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    # ─── Routes ───

    async def _health(self, request: web.Request) -> web.Response:
        if self.registry.closed:
            return json_response({"status": "stopped"}, status=503)
        return json_response({
            "status": "ok",
            "started_at": self.started_at,
            "uptime_seconds": int((datetime.utcnow() - self.started_at).total_seconds()),
        })

    async def _api_stats(self, request: web.Request) -> web.Response:
        try:
            stats = self.registry.stats()
            stats["events_published"] = self.registry.emitter.events_published
            return json_response(stats)
        except Exception as e:
            logger.error(f"[DASHBOARD] Stats error: {e}", exc_info=True)
            return json_response({"error": str(e)}, status=500)
