"""Crossover Cascade — fresh EMA 9/21/50 crossover cascades with fixed R:R.

Implements ``StrategyProtocol``.  Indicators are computed locally from
the candle history rather than taken from the shared snapshot.  Stops
are 1.5 × ATR and targets 1.5 × the stop distance.
"""

from typing import Optional, Sequence

from tesseract.risk.levels import build_signal
from tesseract.strategy.base import fault_tolerant
from tesseract.strategy.indicators import atr, ema_series
from tesseract.strategy.models import Signal, StrategyInput, neutral


def detect_crossover(
    fast: Sequence[float],
    slow: Sequence[float],
    lookback: int = 10,
) -> tuple[bool, int, str]:
    """Most recent cross of *fast* over *slow* within *lookback* bars.

    Both series are indexed from their first value over the length of
    the shorter one, so a longer series is read at its early bars.
    Returns ``(crossed, bars_ago, "bull" | "bear")``.
    """
    if len(fast) < lookback + 1 or len(slow) < lookback + 1:
        return False, 0, "bull"

    n = min(len(fast), len(slow))
    for i in range(1, lookback + 1):
        idx = n - i
        prev = idx - 1
        if prev < 0:
            break
        fast_now, fast_prev = fast[idx], fast[prev]
        slow_now, slow_prev = slow[idx], slow[prev]
        if fast_prev <= slow_prev and fast_now > slow_now:
            return True, i, "bull"
        if fast_prev >= slow_prev and fast_now < slow_now:
            return True, i, "bear"
    return False, 0, "bull"


def analyze_cascade(
    s9: Sequence[float],
    s21: Sequence[float],
    s50: Sequence[float],
    price: float,
) -> tuple[Optional[str], bool, float, float]:
    """Classify the current EMA stack and how fresh its crossovers are.

    Returns ``(direction, is_cascade, score, freshness)``; *direction* is
    None when the stack is not aligned with price.
    """
    if not s9 or not s21 or not s50:
        return None, False, 0.0, 0.0
    ema9, ema21, ema50 = s9[-1], s21[-1], s50[-1]

    if ema9 > ema21 > ema50 and price > ema9:
        direction = "bull"
    elif ema9 < ema21 < ema50 and price < ema9:
        direction = "bear"
    else:
        return None, False, 0.0, 0.0

    c1, bars1, dir1 = detect_crossover(s9, s21, 8)
    c2, bars2, dir2 = detect_crossover(s21, s50, 8)
    is_cascade = c1 and c2 and dir1 == direction and dir2 == direction
    single = c1 and dir1 == direction

    freshness = 0.0
    score = 0.0
    if is_cascade:
        freshness = max(0.0, 100 - (bars1 + bars2) / 2 * 15)
        score = 45 + freshness * 0.5
    elif single:
        freshness = max(0.0, 100 - bars1 * 15)
        score = 35 + freshness * 0.3
    return direction, is_cascade, score, freshness


def momentum_score(s9: Sequence[float], s21: Sequence[float], direction: str) -> float:
    """Slope agreement of EMA9 and EMA21 over the last four bars."""
    if len(s9) < 5 or len(s21) < 5:
        return 0.0
    slope9 = (s9[-1] - s9[-5]) / s9[-5] * 100
    slope21 = (s21[-1] - s21[-5]) / s21[-5] * 100
    sign = 1 if direction == "bull" else -1
    slope9 *= sign
    slope21 *= sign
    if slope9 > 0.5 and slope21 > 0.3:
        return 100.0
    if slope9 > 0.2 and slope21 > 0.1:
        return 70.0
    if slope9 > 0:
        return 40.0
    return 0.0


class CrossoverCascadeStrategy:
    """Multi-EMA crossover cascades with ATR stops and a 1.5 R:R target."""

    id = "crossover-cascade"
    name = "Crossover Cascade"
    description = "Multi-EMA crossover cascades with fixed R:R"
    category = "swing"
    timeframes = ("1h", "4h")

    MIN_CANDLES: int = 60
    STRONG_THRESHOLD: float = 70.0
    ENTRY_THRESHOLD: float = 45.0
    ATR_STOP_MULT: float = 1.5
    RR_RATIO: float = 1.5

    @fault_tolerant
    def evaluate(self, data: StrategyInput) -> Signal:
        price = data.price
        candles = data.candles
        if len(candles) < self.MIN_CANDLES:
            return neutral("Insufficient data")

        closes = [c.close for c in candles]
        s9, s21, s50 = ema_series(closes, 9), ema_series(closes, 21), ema_series(closes, 50)
        atr_value = atr(candles, 14)
        if not atr_value:
            return neutral("Insufficient data for ATR")

        direction, is_cascade, score, freshness = analyze_cascade(s9, s21, s50, price)
        if direction is None:
            return neutral("No EMA alignment - waiting")

        bull = direction == "bull"
        reasons = [
            f"{direction.upper()} cascade confirmed" if is_cascade
            else f"{direction.upper()} crossover (9/21)",
            f"Freshness: {freshness:.0f}%",
        ]

        momentum = momentum_score(s9, s21, direction)
        if momentum < 40:
            score -= 15
            reasons.append("Weak momentum")
        elif momentum >= 70:
            score += 10
            reasons.append("Strong momentum")

        prior = [c.volume for c in candles[-21:-1]]
        avg_volume = sum(prior) / len(prior)
        ratio = candles[-1].volume / avg_volume if avg_volume > 0 else 1.0
        if ratio >= 1.3:
            score += 10
            reasons.append(f"Volume: {ratio:.1f}x")

        if score < self.ENTRY_THRESHOLD:
            return build_signal("NEUTRAL", score, reasons)

        distance = atr_value * self.ATR_STOP_MULT
        stop = price - distance if bull else price + distance
        target = price + distance * self.RR_RATIO if bull else price - distance * self.RR_RATIO
        reasons.append(f"R:R {self.RR_RATIO:.1f}:1")

        if score >= self.STRONG_THRESHOLD:
            signal_type = "STRONG_LONG" if bull else "STRONG_SHORT"
        else:
            signal_type = "LONG" if bull else "SHORT"
        return build_signal(signal_type, score, reasons, price, stop, target)
