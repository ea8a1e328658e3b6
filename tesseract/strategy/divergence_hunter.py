"""Divergence Hunter — price versus EMA21-slope divergences at RSI extremes.

Implements ``StrategyProtocol``.

Regular divergences (reversal) require RSI at an extreme; hidden
divergences (continuation) are accepted with RSI mid-range.  Stops are
ATR-based and targets keep at least 2:1 reward to risk.
"""

from typing import NamedTuple, Optional, Sequence

from tesseract.risk.levels import build_signal
from tesseract.strategy.base import fault_tolerant
from tesseract.strategy.models import Signal, StrategyInput, neutral

SLOPE_WINDOW = 5


class Pivot(NamedTuple):
    value: float
    bars_ago: int


class Divergence(NamedTuple):
    kind: Optional[str]  # "bullish", "bearish", "hidden_bullish", "hidden_bearish"
    strength: float
    description: str


def find_pivots(data: Sequence[float], peaks: bool, lookback: int = 20) -> list[Pivot]:
    """Up to two most recent local peaks (or troughs), newest first.

    Scanning starts two bars back so the pivot has a confirmed right side.
    """
    found: list[Pivot] = []
    for i in range(2, min(len(data), lookback)):
        idx = len(data) - 1 - i
        if idx < 1:
            break
        v = data[idx]
        if peaks and v > data[idx - 1] and v > data[idx + 1]:
            found.append(Pivot(v, i))
        elif not peaks and v < data[idx - 1] and v < data[idx + 1]:
            found.append(Pivot(v, i))
        if len(found) >= 2:
            break
    return found


def slope_series(ema21: Sequence[float], window: int = SLOPE_WINDOW) -> list[float]:
    """Rolling percent change of EMA21 over *window* bars."""
    out: list[float] = []
    for i in range(window, len(ema21)):
        prev = ema21[i - window]
        if prev > 0:
            out.append((ema21[i] - prev) / prev * 100)
    return out


def _bullish_from_troughs(
    price_lows: list[Pivot], slope_lows: list[Pivot], rsi: Optional[float], allow_hidden: bool,
) -> Optional[Divergence]:
    if len(price_lows) < 2 or len(slope_lows) < 2:
        return None
    recent_p, prev_p = price_lows
    recent_s, prev_s = slope_lows
    if recent_p.value < prev_p.value and recent_s.value > prev_s.value:
        bonus = 20 if rsi is not None and rsi < 35 else 0
        return Divergence("bullish", 70 + bonus, "Price lower low but momentum higher low")
    if allow_hidden and recent_p.value > prev_p.value and recent_s.value < prev_s.value:
        return Divergence("hidden_bullish", 55, "Hidden bullish - trend continuation likely")
    return None


def detect_divergence(
    prices: Sequence[float],
    slopes: Sequence[float],
    rsi: Optional[float],
) -> Divergence:
    """Compare the last two price pivots with the last two slope pivots.

    Peaks are examined first (bearish cases); troughs are the fallback
    (bullish cases).  Hidden bullish is only considered when there are
    not two peaks to compare.
    """
    if len(prices) < 20 or len(slopes) < 20:
        return Divergence(None, 0, "Insufficient data")

    price_highs = find_pivots(prices, peaks=True)
    slope_highs = find_pivots(slopes, peaks=True)
    price_lows = find_pivots(prices, peaks=False)
    slope_lows = find_pivots(slopes, peaks=False)

    if len(price_highs) < 2 or len(slope_highs) < 2:
        found = _bullish_from_troughs(price_lows, slope_lows, rsi, allow_hidden=True)
        return found or Divergence(None, 0, "No clear divergence pattern")

    recent_p, prev_p = price_highs
    recent_s, prev_s = slope_highs
    if recent_p.value > prev_p.value and recent_s.value < prev_s.value:
        bonus = 20 if rsi is not None and rsi > 65 else 0
        return Divergence("bearish", 70 + bonus, "Price higher high but momentum lower high")
    if recent_p.value < prev_p.value and recent_s.value > prev_s.value:
        return Divergence("hidden_bearish", 55, "Hidden bearish - downtrend continuation likely")

    found = _bullish_from_troughs(price_lows, slope_lows, rsi, allow_hidden=False)
    return found or Divergence(None, 0, "No divergence detected")


def confirmation_score(
    divergence: Divergence, rsi: Optional[float], volume_ratio: float,
) -> tuple[float, bool]:
    """Add RSI and volume confirmation; returns ``(score, rsi_confirmed)``."""
    if divergence.kind is None:
        return 0.0, False

    score = divergence.strength
    confirmed = False
    if rsi is not None:
        kind = divergence.kind
        if (kind == "bearish" and rsi > 65) or (kind == "bullish" and rsi < 35):
            score += 20
            confirmed = True
        elif (kind == "hidden_bearish" and 40 < rsi < 70) or (
            kind == "hidden_bullish" and 30 < rsi < 60
        ):
            score += 15
            confirmed = True
    if volume_ratio < 0.8:
        score += 10
    return min(score, 100.0), confirmed


class DivergenceHunterStrategy:
    """Detect price/momentum divergences at extremes."""

    id = "divergence-hunter"
    name = "Divergence Hunter"
    description = "Reversal strategy: Detect price/momentum divergences at extremes"
    category = "reversal"
    timeframes = ("1h", "4h", "1d")

    STRONG_THRESHOLD: float = 85.0
    HIGH_THRESHOLD: float = 75.0
    ENTRY_THRESHOLD: float = 60.0
    FALLBACK_ATR_PCT: float = 0.02

    @fault_tolerant
    def evaluate(self, data: StrategyInput) -> Signal:
        price = data.price
        ind = data.indicators
        rsi = ind.rsi

        prices = [c.close for c in data.candles]
        slopes = slope_series(ind.emas.series.get(21, ()))
        divergence = detect_divergence(prices, slopes, rsi)
        if divergence.kind is None:
            return neutral("No divergence detected - momentum and price aligned")

        score, rsi_confirmed = confirmation_score(divergence, rsi, ind.volume.ratio)
        if not rsi_confirmed and divergence.kind in ("bullish", "bearish"):
            shown = f"{rsi:.0f}" if rsi is not None else "?"
            return neutral(f"Divergence detected but RSI ({shown}) not extreme enough")

        reasons = [divergence.description]
        if rsi is not None:
            if rsi > 65:
                reasons.append(f"RSI overbought ({rsi:.0f})")
            if rsi < 35:
                reasons.append(f"RSI oversold ({rsi:.0f})")

        bull = divergence.kind in ("bullish", "hidden_bullish")
        atr_value = ind.atr or price * self.FALLBACK_ATR_PCT
        ema21 = ind.emas.values.get(21)

        if score >= self.HIGH_THRESHOLD:
            distance = atr_value * 1.5
            if bull:
                signal_type = "STRONG_LONG" if score >= self.STRONG_THRESHOLD else "LONG"
                stop = price - distance
                target = price + distance * 2.0
                if ema21 and ema21 > target:
                    target = ema21
            else:
                signal_type = "STRONG_SHORT" if score >= self.STRONG_THRESHOLD else "SHORT"
                stop = price + distance
                target = price - distance * 2.0
                if ema21 and ema21 < target:
                    target = ema21
        elif score >= self.ENTRY_THRESHOLD:
            signal_type = "LONG" if bull else "SHORT"
            if bull:
                stop, target = price - atr_value * 1.2, price + atr_value * 2.4
            else:
                stop, target = price + atr_value * 1.2, price - atr_value * 2.4
        else:
            return build_signal("NEUTRAL", score, reasons)

        reasons.append(f"R:R {abs(target - price) / abs(price - stop):.1f}:1")
        return build_signal(signal_type, score, reasons, price, stop, target)
