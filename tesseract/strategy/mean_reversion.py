"""Mean Reversion Sniper — overextended moves snapping back to EMA21.

Implements ``StrategyProtocol``.  Four gates must pass before any
scoring happens: a ≥3 % extension from EMA21, a non-trending ribbon,
nearby EMA100/EMA200 support or resistance, and a strong reversal
candle pattern in the expected direction.
"""

from typing import NamedTuple, Optional, Sequence

from tesseract.market.models import Candle
from tesseract.risk.levels import build_signal
from tesseract.strategy.base import fault_tolerant
from tesseract.strategy.models import EMAData, Signal, StrategyInput, neutral

EXTENSION_THRESHOLD_PCT = 3.0


class Deviation(NamedTuple):
    pct: float
    direction: str  # "overbought" | "oversold" | "normal"
    extension: float

    @property
    def is_extended(self) -> bool:
        return self.direction != "normal"


class Pattern(NamedTuple):
    name: str
    strength: float


def analyze_deviation(price: float, ema21: Optional[float]) -> Deviation:
    if not ema21:
        return Deviation(0.0, "normal", 0.0)
    pct = (price - ema21) / ema21 * 100
    if pct > EXTENSION_THRESHOLD_PCT:
        return Deviation(pct, "overbought", pct - EXTENSION_THRESHOLD_PCT)
    if pct < -EXTENSION_THRESHOLD_PCT:
        return Deviation(pct, "oversold", abs(pct) - EXTENSION_THRESHOLD_PCT)
    return Deviation(pct, "normal", 0.0)


def reversal_pattern(candles: Sequence[Candle], bullish: bool) -> Optional[Pattern]:
    """Return the strongest-matching reversal pattern on the last bars, or None.

    Only engulfing, hammer/shooting star and morning/evening star count.
    """
    if len(candles) < 3:
        return None
    cur, prev, prev2 = candles[-1], candles[-2], candles[-3]
    body = cur.close - cur.open
    prev_body = prev.close - prev.open
    prev2_body = prev2.close - prev2.open
    rng = cur.high - cur.low
    body_size = abs(body)
    lower_wick = min(cur.open, cur.close) - cur.low
    upper_wick = cur.high - max(cur.open, cur.close)

    if bullish:
        if (body > 0 and prev_body < 0 and cur.open <= prev.close
                and cur.close >= prev.open and body > abs(prev_body)):
            return Pattern("Bullish Engulfing", 85)
        if (rng > 0 and lower_wick >= body_size * 2 and upper_wick < body_size * 0.5
                and lower_wick / rng > 0.65):
            return Pattern("Hammer", 80)
        if (prev2_body < 0 and abs(prev_body) < abs(prev2_body) * 0.25
                and body > 0 and body > abs(prev2_body) * 0.5):
            return Pattern("Morning Star", 90)
        return None

    if (body < 0 and prev_body > 0 and cur.open >= prev.close
            and cur.close <= prev.open and abs(body) > prev_body):
        return Pattern("Bearish Engulfing", 85)
    if (rng > 0 and upper_wick >= body_size * 2 and lower_wick < body_size * 0.5
            and upper_wick / rng > 0.65):
        return Pattern("Shooting Star", 80)
    if (prev2_body > 0 and abs(prev_body) < prev2_body * 0.25
            and body < 0 and abs(body) > prev2_body * 0.5):
        return Pattern("Evening Star", 90)
    return None


def is_trending(emas: EMAData) -> bool:
    """True when the short ribbon is stacked with confirming slopes, or EMA9 is steep."""
    ema9, ema21, ema50 = emas.values.get(9), emas.values.get(21), emas.values.get(50)
    if not ema9 or not ema21 or not ema50:
        return False
    s9, s21 = emas.slopes.get(9), emas.slopes.get(21)
    have_slopes = s9 is not None and s21 is not None
    bull = ema9 > ema21 > ema50 and have_slopes and s9 > 0.3 and s21 > 0.2
    bear = ema9 < ema21 < ema50 and have_slopes and s9 < -0.3 and s21 < -0.2
    if bull or bear:
        return True
    return s9 is not None and abs(s9) > 1.5


def has_ema_support(price: float, emas: EMAData, bullish: bool) -> bool:
    ema100, ema200 = emas.values.get(100), emas.values.get(200)
    if not ema100 and not ema200:
        return True
    if bullish:
        if ema200 and price < ema200 * 0.95:
            return False
        if ema100 and price < ema100 * 0.92:
            return False
    else:
        if ema200 and price > ema200 * 1.05:
            return False
        if ema100 and price > ema100 * 1.08:
            return False
    return True


def has_exhaustion(candles: Sequence[Candle], bullish: bool) -> bool:
    """Three same-colour bodies against the trade, each smaller than the last."""
    if len(candles) < 3:
        return False
    bodies = [c.close - c.open for c in candles[-3:]]
    if bullish:
        return all(b < 0 for b in bodies) and abs(bodies[2]) < abs(bodies[1]) < abs(bodies[0])
    return all(b > 0 for b in bodies) and bodies[2] < bodies[1] < bodies[0]


class MeanReversionStrategy:
    id = "mean-reversion"
    name = "Mean Reversion Sniper"
    description = "Catch overextended moves snapping back to EMA21 with strict reversal confirmation"
    category = "reversal"
    timeframes = ("1h", "4h")

    STRONG_THRESHOLD: float = 80.0
    ENTRY_THRESHOLD: float = 55.0
    ATR_STOP_MULT: float = 0.8
    FALLBACK_STOP_PCT: float = 0.012
    FALLBACK_TARGET_PCT: float = 0.025

    @fault_tolerant
    def evaluate(self, data: StrategyInput) -> Signal:
        price = data.price
        candles = data.candles
        ind = data.indicators
        ema21 = ind.emas.values.get(21)

        dev = analyze_deviation(price, ema21)
        if not dev.is_extended:
            return neutral("Price within normal range of EMA21")
        if is_trending(ind.emas):
            return neutral("Trending market - mean reversion disabled")

        is_long = dev.direction == "oversold"
        if not has_ema_support(price, ind.emas, is_long):
            return neutral("Too far from major EMA support/resistance")

        pattern = reversal_pattern(candles, is_long)
        if pattern is None:
            return neutral(f"Extended {dev.pct:.1f}% but no reversal pattern yet")

        reasons = [
            f"Price {dev.pct:.1f}% from EMA21 ({dev.direction})",
            f"{pattern.name} confirmed",
        ]
        score = min(dev.extension * 8, 25) + pattern.strength * 0.4

        rsi = ind.rsi
        if rsi is not None:
            if is_long and rsi < 25:
                score += 25
                reasons.append(f"RSI extreme oversold ({rsi:.0f})")
            elif not is_long and rsi > 75:
                score += 25
                reasons.append(f"RSI extreme overbought ({rsi:.0f})")
            elif is_long and rsi < 35:
                score += 12
                reasons.append(f"RSI oversold ({rsi:.0f})")
            elif not is_long and rsi > 65:
                score += 12
                reasons.append(f"RSI overbought ({rsi:.0f})")
            else:
                score -= 10
                reasons.append(f"RSI not extreme ({rsi:.0f})")

        if ind.volume.ratio > 1.5:
            score += 15
            reasons.append("High volume confirms reversal")
        elif ind.volume.ratio > 1.2:
            score += 8
            reasons.append("Above-average volume")

        if has_exhaustion(candles, is_long):
            score += 10
            reasons.append("Exhaustion pattern visible")

        if score < self.ENTRY_THRESHOLD:
            return build_signal("NEUTRAL", score, reasons + ["Signal not strong enough"])

        # the mean itself is the target
        if ema21:
            target = ema21
        else:
            target = price * (1 + self.FALLBACK_TARGET_PCT) if is_long else price * (1 - self.FALLBACK_TARGET_PCT)
        atr_stop = ind.atr * self.ATR_STOP_MULT if ind.atr else price * self.FALLBACK_STOP_PCT
        recent = candles[-5:]
        strong = score >= self.STRONG_THRESHOLD
        if is_long:
            stop = min(min(c.low for c in recent) * 0.997, price - atr_stop)
            return build_signal("STRONG_LONG" if strong else "LONG", score, reasons, price, stop, target)
        stop = max(max(c.high for c in recent) * 1.003, price + atr_stop)
        return build_signal("STRONG_SHORT" if strong else "SHORT", score, reasons, price, stop, target)
