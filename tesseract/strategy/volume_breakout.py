"""Volume Breakout — consolidation breakouts confirmed by a volume surge.

Implements ``StrategyProtocol``.  The module computes its own EMA and
ATR series (first-value seeded) instead of reading the shared
indicator snapshot.
"""

import math
from typing import NamedTuple, Optional, Sequence

from tesseract.market.models import Candle
from tesseract.risk.levels import build_signal, target_from_risk
from tesseract.strategy.base import fault_tolerant
from tesseract.strategy.models import Signal, StrategyInput, neutral

CONSOLIDATION_LOOKBACK = 20
MIN_CONSOLIDATION_BARS = 5


def seeded_ema(values: Sequence[float], period: int) -> list[float]:
    """EMA series seeded with the first value (same length as *values*)."""
    k = 2 / (period + 1)
    out: list[float] = []
    for i, v in enumerate(values):
        out.append(v if i == 0 else v * k + out[-1] * (1 - k))
    return out


def atr_series(candles: Sequence[Candle], period: int = 14) -> list[float]:
    """Raw true range until *period* bars, Wilder-smoothed after."""
    out: list[float] = []
    for i, c in enumerate(candles):
        if i == 0:
            out.append(c.high - c.low)
            continue
        prev_close = candles[i - 1].close
        tr = max(c.high - c.low, abs(c.high - prev_close), abs(c.low - prev_close))
        out.append(tr if i < period else (out[-1] * (period - 1) + tr) / period)
    return out


class Consolidation(NamedTuple):
    high: float
    low: float
    range: float
    range_pct: float
    duration: int
    atr_squeeze: bool


class Breakout(NamedTuple):
    direction: str  # "up" | "down"
    strength: float
    volume_ratio: float
    close_position: float


def detect_consolidation(candles: Sequence[Candle], atr: Sequence[float]) -> Optional[Consolidation]:
    """Range of the bars preceding the current one, if it is tight enough."""
    lookback = CONSOLIDATION_LOOKBACK
    if len(candles) < lookback + 5:
        return None
    zone = candles[-lookback - 1:-1]
    high = max(c.high for c in zone)
    low = min(c.low for c in zone)
    rng = high - low
    range_pct = rng / ((high + low) / 2) * 100

    recent, older = atr[-5:], atr[-lookback:-5]
    atr_squeeze = sum(recent) / len(recent) < sum(older) / len(older) * 0.8

    tolerance = rng * 0.1
    duration = 0
    for c in reversed(zone):
        if c.high <= high + tolerance and c.low >= low - tolerance:
            duration += 1
        else:
            break

    if range_pct < 8 and duration >= MIN_CONSOLIDATION_BARS and (atr_squeeze or range_pct < 4):
        return Consolidation(high, low, rng, range_pct, duration, atr_squeeze)
    return None


def detect_breakout(candles: Sequence[Candle], zone: Consolidation) -> tuple[Optional[Breakout], float]:
    """Return ``(breakout, volume_ratio)``; the previous close must sit inside the zone."""
    cur, prev = candles[-1], candles[-2]
    volumes = [c.volume for c in candles[-21:-1]]
    avg_volume = sum(volumes) / len(volumes)
    volume_ratio = cur.volume / avg_volume if avg_volume > 0 else 1.0
    bar_range = cur.high - cur.low
    close_position = (cur.close - cur.low) / bar_range if bar_range > 0 else 0.5
    prev_inside = zone.low <= prev.close <= zone.high

    if cur.close > zone.high and prev_inside:
        strength = (cur.close - zone.high) / zone.range * 100 if zone.range else math.inf
        return Breakout("up", strength, volume_ratio, close_position), volume_ratio
    if cur.close < zone.low and prev_inside:
        strength = (zone.low - cur.close) / zone.range * 100 if zone.range else math.inf
        return Breakout("down", strength, volume_ratio, close_position), volume_ratio
    return None, volume_ratio


def trend_strength(closes: Sequence[float], direction: str) -> Optional[int]:
    """0-100 EMA alignment with *direction*, or None when price is on the wrong side of EMA21."""
    if len(closes) < 50:
        return None
    e9 = seeded_ema(closes, 9)[-1]
    e21 = seeded_ema(closes, 21)[-1]
    e50 = seeded_ema(closes, 50)[-1]
    price = closes[-1]
    if direction == "up":
        if price <= e21:
            return None
        if e21 > e50:
            return 100
        return 75 if price > e9 > e21 else 50
    if price >= e21:
        return None
    if e21 < e50:
        return 100
    return 75 if price < e9 < e21 else 50


class VolumeBreakoutStrategy:
    """Trade the first close outside a tight range, only on 2x+ volume."""

    id = "volume-breakout"
    name = "Volume Breakout"
    description = "Consolidation breakouts with volume confirmation"
    category = "breakout"
    timeframes = ("1h", "4h")

    MIN_CANDLES: int = 50
    MIN_VOLUME_RATIO: float = 2.0
    STRONG_THRESHOLD: float = 75.0
    ENTRY_THRESHOLD: float = 55.0
    STOP_ATR_BUFFER: float = 0.3
    RR_RATIO: float = 2.5

    @fault_tolerant
    def evaluate(self, data: StrategyInput) -> Signal:
        price = data.price
        candles = data.candles
        if len(candles) < self.MIN_CANDLES:
            return neutral("Insufficient data")

        atr = atr_series(candles)
        zone = detect_consolidation(candles, atr)
        if zone is None:
            return neutral("No consolidation detected")

        brk, volume_ratio = detect_breakout(candles, zone)
        if brk is None:
            return neutral(f"Consolidation zone: {zone.range_pct:.1f}% range, waiting for breakout")
        if volume_ratio < self.MIN_VOLUME_RATIO:
            return neutral(f"Breakout rejected: Volume {volume_ratio:.1f}x (need 2x+)")

        up = brk.direction == "up"
        score = 55.0
        reasons = [
            f"{'Upside' if up else 'Downside'} breakout from {zone.duration}-bar consolidation",
            f"Volume: {volume_ratio:.1f}x average",
        ]

        if brk.strength >= 50:
            score += 15
            reasons.append("Strong breakout extension")
        elif brk.strength >= 25:
            score += 10
            reasons.append("Solid breakout")
        else:
            score += 5
            reasons.append("Marginal breakout")

        if up and brk.close_position >= 0.7:
            score += 10
            reasons.append("Bullish close near highs")
        elif not up and brk.close_position <= 0.3:
            score += 10
            reasons.append("Bearish close near lows")
        elif (up and brk.close_position < 0.5) or (not up and brk.close_position > 0.5):
            score -= 10
            reasons.append("Weak candle close")

        trend = trend_strength([c.close for c in candles], brk.direction)
        if trend is None:
            score -= 15
            reasons.append("Against EMA trend")
        else:
            score += round(trend / 10)
            if trend >= 75:
                reasons.append("EMAs aligned")

        if zone.atr_squeeze:
            score += 10
            reasons.append("ATR squeeze detected")

        if score < self.ENTRY_THRESHOLD:
            return build_signal("NEUTRAL", score, reasons)

        # stop sits just beyond the far side of the range
        buffer = atr[-1] * self.STOP_ATR_BUFFER
        strong = score >= self.STRONG_THRESHOLD
        if up:
            stop = zone.low - buffer
            target = target_from_risk(price, stop, self.RR_RATIO)
            signal_type = "STRONG_LONG" if strong else "LONG"
        else:
            stop = zone.high + buffer
            target = target_from_risk(price, stop, self.RR_RATIO)
            signal_type = "STRONG_SHORT" if strong else "SHORT"
        rr = abs(target - price) / abs(price - stop) if price != stop else 0.0
        reasons.append(f"R:R {rr:.1f}:1")
        return build_signal(signal_type, score, reasons, price, stop, target)
