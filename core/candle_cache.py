"""
Pending 1-Minute Candle Cache — latest 1m candle per (exchange, symbol, market).
Input to sub-minute resampling. An entry is replaced only when the candle
actually changed, so duplicate pushes never trigger a second resample.
"""

from __future__ import annotations
import threading
from typing import Dict, Optional
from exchange.models import CacheKey, Candle


class PendingCandleCache:
    """Lock-guarded map of CacheKey -> most recent 1m candle."""

    def __init__(self):
        self._candles: Dict[CacheKey, Candle] = {}
        self._lock = threading.Lock()

    def update_if_changed(self, key: CacheKey, candle: Candle) -> bool:
        """
        Store the candle if time, close or closed flag differ from the cached one.
        Returns True when the caller should resample.
        """
        with self._lock:
            if not candle.differs_from(self._candles.get(key)):
                return False
            self._candles[key] = candle
            return True

    def get(self, key: CacheKey) -> Optional[Candle]:
        with self._lock:
            return self._candles.get(key)

    def discard(self, key: CacheKey):
        with self._lock:
            self._candles.pop(key, None)

    def clear(self):
        with self._lock:
            self._candles.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._candles)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._candles
