"""Dynamic Bounce — scalp bounces off EMA21/EMA50 in a trending market.

Implements ``StrategyProtocol``.  Trend comes from price versus EMA200
(beyond ±2 %); only bounces with the trend are traded.
"""

from typing import Optional, Sequence

from tesseract.market.models import Candle
from tesseract.risk.levels import build_signal
from tesseract.strategy.base import fault_tolerant
from tesseract.strategy.models import Signal, StrategyInput, neutral


def detect_trend(price: float, ema200: Optional[float]) -> str:
    """``"up"``, ``"down"`` or ``"neutral"`` from distance to EMA200."""
    if not ema200:
        return "neutral"
    distance = (price - ema200) / ema200 * 100
    if distance > 2:
        return "up"
    if distance < -2:
        return "down"
    return "neutral"


def bounce_zone(
    price: float,
    ema_values: dict[int, Optional[float]],
    trend: str,
) -> tuple[bool, float, int, float]:
    """Find the EMA that price is currently testing.

    Returns ``(in_zone, level, ema_period, distance_pct)``.  In an uptrend
    price may sit 0.5 % below to 1 % above the EMA; in a downtrend the
    band is mirrored.
    """
    ema21, ema50 = ema_values.get(21), ema_values.get(50)
    if not ema21 or not ema50:
        return False, 0.0, 0, 100.0

    d21 = (price - ema21) / ema21 * 100
    d50 = (price - ema50) / ema50 * 100
    lo, hi = (-0.5, 1.0) if trend == "up" else (-1.0, 0.5)

    if lo <= d21 <= hi:
        return True, ema21, 21, d21
    if lo <= d50 <= hi:
        return True, ema50, 50, d50
    return False, 0.0, 0, min(abs(d21), abs(d50))


def bounce_pattern(candles: Sequence[Candle], trend: str) -> tuple[int, str]:
    """Score the latest bar as a bounce candle in the trend direction.

    Returns ``(strength, pattern)``; strength 0 means no pattern.
    """
    if len(candles) < 3:
        return 0, "insufficient data"

    current, prev = candles[-1], candles[-2]
    body = current.close - current.open
    prev_body = prev.close - prev.open
    rng = current.high - current.low
    body_ratio = abs(body) / rng if rng else 0.0
    lower_wick = min(current.open, current.close) - current.low
    upper_wick = current.high - max(current.open, current.close)

    if trend == "up":
        if body > 0 and prev_body < 0 and body > abs(prev_body):
            return 90, "Bullish engulfing"
        if lower_wick > 2 * abs(body) and lower_wick > upper_wick * 2:
            return 80, "Hammer"
        if body > 0 and prev_body < 0:
            return 60, "Bullish reversal candle"
        if body > 0 and body_ratio > 0.6:
            return 50, "Strong bullish candle"
    elif trend == "down":
        if body < 0 and prev_body > 0 and abs(body) > prev_body:
            return 90, "Bearish engulfing"
        if upper_wick > 2 * abs(body) and upper_wick > lower_wick * 2:
            return 80, "Shooting star"
        if body < 0 and prev_body > 0:
            return 60, "Bearish reversal candle"
        if body < 0 and body_ratio > 0.6:
            return 50, "Strong bearish candle"

    return 0, "No pattern"


def rsi_filter(rsi: Optional[float], trend: str) -> float:
    """Room-to-run score: longs avoid overbought RSI, shorts avoid oversold."""
    if rsi is None:
        return 50.0
    if trend == "up":
        if 30 <= rsi <= 55:
            return 100.0
        if 55 < rsi <= 65:
            return 70.0
        if 65 < rsi <= 70:
            return 40.0
        if rsi > 70:
            return 10.0
        return 60.0
    if 45 <= rsi <= 70:
        return 100.0
    if 35 <= rsi < 45:
        return 70.0
    if 30 <= rsi < 35:
        return 40.0
    if rsi < 30:
        return 10.0
    return 60.0


class DynamicBounceStrategy:
    """Trade bounces off EMA support/resistance in trending markets."""

    id = "dynamic-bounce"
    name = "Dynamic Bounce"
    description = "Scalp strategy: Trade bounces off EMA support/resistance in trending markets"
    category = "scalp"
    timeframes = ("5m", "15m", "1h")

    STRONG_THRESHOLD: float = 70.0
    ENTRY_THRESHOLD: float = 50.0
    ATR_STOP_MULT: float = 0.8
    FALLBACK_STOP_PCT: float = 0.01

    @fault_tolerant
    def evaluate(self, data: StrategyInput) -> Signal:
        price = data.price
        ind = data.indicators

        trend = detect_trend(price, ind.emas.values.get(200))
        if trend == "neutral":
            return neutral("No clear trend - Dynamic Bounce requires trending market")

        in_zone, level, period, distance = bounce_zone(price, ind.emas.values, trend)
        if not in_zone:
            return neutral(f"Price not at EMA bounce zone ({distance:.1f}% away)")

        up = trend == "up"
        pattern_strength, pattern = bounce_pattern(data.candles, trend)
        rsi_pts = rsi_filter(ind.rsi, trend)

        reasons = [
            "Uptrend detected" if up else "Downtrend detected",
            f"Price at EMA{period} {'support' if up else 'resistance'}",
        ]
        if not pattern_strength:
            reasons.append("Waiting for bounce confirmation candle")
            return build_signal("NEUTRAL", rsi_pts * 0.3, reasons)
        reasons.append(f"Pattern: {pattern}")

        zone_pts = 100 - abs(distance) * 20
        score = zone_pts * 0.3 + pattern_strength * 0.4 + rsi_pts * 0.3
        atr_stop = ind.atr * self.ATR_STOP_MULT if ind.atr else price * self.FALLBACK_STOP_PCT

        if score >= self.STRONG_THRESHOLD:
            if up:
                stop = max(price - atr_stop, level * 0.995)
                return build_signal("STRONG_LONG", score, reasons, price, stop, price + atr_stop * 1.5)
            stop = min(price + atr_stop, level * 1.005)
            return build_signal("STRONG_SHORT", score, reasons, price, stop, price - atr_stop * 1.5)

        if score >= self.ENTRY_THRESHOLD:
            if up:
                stop = max(price - atr_stop, level * 0.99)
                return build_signal("LONG", score, reasons, price, stop, price + atr_stop)
            stop = min(price + atr_stop, level * 1.01)
            return build_signal("SHORT", score, reasons, price, stop, price - atr_stop)

        return build_signal("NEUTRAL", score, reasons)
