"""
Candle Resampler — synthesizes 1s/5s/15s candles from one 1-minute candle.

Exchanges do not stream sub-minute history, so the interior price path is a
display heuristic. What is guaranteed:
  - N = 60 / span contiguous candles starting at parent.time
  - first open == parent.open, last close == parent.close
  - parent high and low each attained by one sub-candle
  - volumes sum exactly to parent.volume
  - only the last sub-candle can be closed, and only if the parent is
  - same parent + span -> same output (seeded from time and span)
"""

from __future__ import annotations
import math
import random
from decimal import ROUND_CEILING, ROUND_DOWN, ROUND_FLOOR, ROUND_HALF_EVEN, Decimal
from typing import List, Tuple
from exchange.errors import InvalidCandleError
from exchange.models import Candle

PARENT_SPAN_SEC = 60
SUB_MINUTE_SPANS = (1, 5, 15)

PULL_STRENGTH = 0.85
PULL_WIDTH = 5.0
NOISE_FRACTION = 0.08
# Interior path points stay this fraction of the range away from high/low
EDGE_MARGIN = Decimal("0.02")


def resample(parent: Candle, span: int) -> List[Candle]:
    """
    Split a 1-minute candle into 60/span synthetic candles.
    Raises InvalidCandleError if the parent violates the OHLC invariant.
    """
    if span not in SUB_MINUTE_SPANS:
        raise ValueError(f"Unsupported sub-minute span: {span}")
    if not parent.is_valid():
        raise InvalidCandleError(
            f"Invalid parent candle at {parent.time}: O={parent.open} H={parent.high} "
            f"L={parent.low} C={parent.close} V={parent.volume}"
        )

    n = PARENT_SPAN_SEC // span
    volumes = split_volume(parent.volume, n)
    last = n - 1

    if parent.high == parent.low:
        return [
            Candle(
                time=parent.time + i * span,
                open=parent.open,
                high=parent.high,
                low=parent.low,
                close=parent.close,
                volume=volumes[i],
                closed=parent.closed and i == last,
            )
            for i in range(n)
        ]

    rng = random.Random(f"{parent.time}:{span}")
    quantum = price_quantum(parent)
    high_idx, low_idx = _extreme_slots(parent, n, rng)
    path = _price_path(parent, n, high_idx, low_idx, rng, quantum)
    price_range = parent.high - parent.low

    candles: List[Candle] = []
    for i in range(n):
        sub_open, sub_close = path[i], path[i + 1]
        body_hi = max(sub_open, sub_close)
        body_lo = min(sub_open, sub_close)

        if i == high_idx:
            sub_high = parent.high
        else:
            wick = price_range * _fraction(0.002 + rng.random() * 0.014)
            # Never reach the parent high outside its designated slot
            sub_high = min(body_hi + wick, body_hi + (parent.high - body_hi) / 2)
            sub_high = sub_high.quantize(quantum, rounding=ROUND_FLOOR)

        if i == low_idx:
            sub_low = parent.low
        else:
            wick = price_range * _fraction(0.002 + rng.random() * 0.014)
            sub_low = max(body_lo - wick, body_lo - (body_lo - parent.low) / 2)
            sub_low = sub_low.quantize(quantum, rounding=ROUND_CEILING)

        candles.append(Candle(
            time=parent.time + i * span,
            open=sub_open,
            high=sub_high,
            low=sub_low,
            close=sub_close,
            volume=volumes[i],
            closed=parent.closed and i == last,
        ))

    return candles


def split_volume(volume: Decimal, n: int) -> List[Decimal]:
    """Even split; the last share absorbs the rounding remainder so the sum is exact."""
    exponent = volume.as_tuple().exponent
    quantum = Decimal(1).scaleb(min(exponent, 0) - 6)
    share = (volume / n).quantize(quantum, rounding=ROUND_DOWN)
    return [share] * (n - 1) + [volume - share * (n - 1)]


def price_quantum(parent: Candle) -> Decimal:
    """Two digits finer than the parent's own price precision."""
    exponent = min(p.as_tuple().exponent for p in (parent.open, parent.high, parent.low, parent.close))
    return Decimal(1).scaleb(min(exponent, 0) - 2)


def _extreme_slots(parent: Candle, n: int, rng: random.Random) -> Tuple[int, int]:
    """
    Pick which sub-candle carries the parent high and which the parent low.
    Green candles dip early and peak late, red ones the reverse.
    A sub-candle whose open/close already sits on an extreme must carry it.
    """
    half = n // 2
    early = rng.randrange(0, half)
    late = rng.randrange(half, n)
    green = parent.close >= parent.open

    high_forced = low_forced = True
    if parent.open == parent.high:
        high_idx = 0
    elif parent.close == parent.high:
        high_idx = n - 1
    else:
        high_idx = late if green else early
        high_forced = False

    if parent.open == parent.low:
        low_idx = 0
    elif parent.close == parent.low:
        low_idx = n - 1
    else:
        low_idx = early if green else late
        low_forced = False

    if high_idx == low_idx:
        # At most one of them is forced when high != low
        other = late if high_idx == early else early
        if low_forced:
            high_idx = other
        else:
            low_idx = other

    return high_idx, low_idx


def _price_path(
    parent: Candle,
    n: int,
    high_idx: int,
    low_idx: int,
    rng: random.Random,
    quantum: Decimal,
) -> List[Decimal]:
    """
    N+1 boundary prices. Linear open->close drift with Gaussian pulls toward
    the high/low slots plus seeded noise; interior points stay strictly
    inside (low, high).
    """
    price_range = parent.high - parent.low
    margin = price_range * EDGE_MARGIN
    ceiling = parent.high - margin
    floor = parent.low + margin
    t_high = (high_idx + 0.5) / n
    t_low = (low_idx + 0.5) / n

    path = [parent.open]
    for i in range(1, n):
        t = i / n
        price = parent.open + (parent.close - parent.open) * _fraction(t)
        price += (parent.high - price) * _fraction(_pull(t, t_high))
        price -= (price - parent.low) * _fraction(_pull(t, t_low))
        price += price_range * _fraction((rng.random() - 0.5) * NOISE_FRACTION)
        price = min(ceiling, max(floor, price))
        path.append(price.quantize(quantum, rounding=ROUND_HALF_EVEN))
    path.append(parent.close)
    return path


def _pull(t: float, center: float) -> float:
    return math.exp(-(((t - center) * PULL_WIDTH) ** 2)) * PULL_STRENGTH


def _fraction(x: float) -> Decimal:
    return Decimal(str(round(x, 6)))
