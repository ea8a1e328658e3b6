"""Compression Cannon — breakout entries after EMA ribbon compression.

Implements ``StrategyProtocol``.  Bandwidth is the EMA9–EMA200 gap as a
percentage of EMA200; a tight and tightening bandwidth marks a coiled
market, and a push through recent extremes picks the direction.
"""

from typing import Optional, Sequence

from tesseract.market.models import Candle
from tesseract.risk.levels import build_signal
from tesseract.strategy.base import fault_tolerant
from tesseract.strategy.models import Signal, StrategyInput, neutral

COMPRESSION_LOOKBACK = 10


def bandwidth(ema9: Optional[float], ema200: Optional[float]) -> Optional[float]:
    if not ema9 or not ema200:
        return None
    return abs(ema9 - ema200) / ema200 * 100


def compression_score(
    current: Optional[float],
    ema9_series: Sequence[float],
    ema200_series: Sequence[float],
) -> tuple[float, bool, float]:
    """Score tightness (0–60) plus compression rate (0–40).

    Returns ``(score, is_compressing, rate)`` where *rate* is the drop in
    bandwidth since ten bars before the end of the shorter series
    (positive means tightening); both series are indexed from their first
    value.  Without ten bars of both series, only the current bandwidth
    is scored.
    """
    if current is None:
        return 0.0, False, 0.0

    if len(ema9_series) < COMPRESSION_LOOKBACK or len(ema200_series) < COMPRESSION_LOOKBACK:
        if current < 2:
            score = 100.0
        elif current < 3:
            score = 80.0
        elif current < 5:
            score = 50.0
        else:
            score = 0.0
        return score, current < 5, 0.0

    n = min(len(ema9_series), len(ema200_series))
    old = bandwidth(ema9_series[n - COMPRESSION_LOOKBACK], ema200_series[n - COMPRESSION_LOOKBACK])
    rate = (old - current) if old is not None else 0.0

    score = 0.0
    if current < 1.5:
        score += 60
    elif current < 2.5:
        score += 50
    elif current < 4:
        score += 30
    elif current < 6:
        score += 15

    if rate > 2:
        score += 40
    elif rate > 1:
        score += 30
    elif rate > 0.5:
        score += 20
    elif rate > 0:
        score += 10

    return score, rate > 0.5, rate


def breakout_direction(
    price: float,
    ema_values: dict[int, Optional[float]],
    candles: Sequence[Candle],
) -> tuple[Optional[str], float]:
    """Detect a push through the last five bars' extremes.

    Returns ``("bull" | "bear" | None, strength)`` with strength in 0–100.
    """
    ema9, ema21, ema200 = ema_values.get(9), ema_values.get(21), ema_values.get(200)
    if not ema9 or not ema21 or not ema200:
        return None, 0.0

    recent = candles[-5:]
    if len(recent) < 3:
        return None, 0.0
    max_high = max(c.high for c in recent)
    min_low = min(c.low for c in recent)

    if price > ema9 and price > ema21 and price >= max_high * 0.998:
        pct = (price - ema9) / ema9 * 100
        return "bull", min(pct * 20, 100.0)
    if price < ema200 and price < ema21 and price <= min_low * 1.002:
        pct = (ema200 - price) / ema200 * 100
        return "bear", min(pct * 20, 100.0)
    return None, 0.0


def volume_score(ratio: float) -> float:
    if ratio >= 2.0:
        return 100.0
    if ratio >= 1.5:
        return 80.0
    if ratio >= 1.2:
        return 60.0
    if ratio >= 1.0:
        return 40.0
    return 20.0


class CompressionCannonStrategy:
    """Detect EMA compression, enter on the expansion breakout."""

    id = "compression-cannon"
    name = "Compression Cannon"
    description = "Breakout strategy: Detect EMA compression, enter on explosive expansion"
    category = "breakout"
    timeframes = ("15m", "1h", "4h")

    MIN_COMPRESSION_SCORE: float = 30.0
    STRONG_THRESHOLD: float = 70.0
    ENTRY_THRESHOLD: float = 50.0
    ATR_STOP_MULT: float = 1.2
    FALLBACK_STOP_PCT: float = 0.015

    @fault_tolerant
    def evaluate(self, data: StrategyInput) -> Signal:
        price = data.price
        ind = data.indicators
        values = ind.emas.values

        bw = bandwidth(values.get(9), values.get(200))
        c_score, compressing, rate = compression_score(
            bw, ind.emas.series.get(9, ()), ind.emas.series.get(200, ()),
        )
        if c_score < self.MIN_COMPRESSION_SCORE:
            return neutral("EMAs not compressed - no setup")

        reasons: list[str] = []
        if bw is not None:
            reasons.append(f"EMA bandwidth: {bw:.1f}%")
        if compressing:
            reasons.append(f"Compression rate: {rate:.2f}%/period")

        direction, b_strength = breakout_direction(price, values, data.candles)
        if direction is None:
            reasons.append("Compression detected - breakout imminent, wait for direction")
            return build_signal("NEUTRAL", c_score * 0.5, reasons)

        bull = direction == "bull"
        reasons.append("Bullish breakout" if bull else "Bearish breakout")
        if ind.volume.ratio >= 1.5:
            reasons.append(f"Volume surge: {ind.volume.ratio:.1f}x average")

        score = c_score * 0.4 + b_strength * 0.4 + volume_score(ind.volume.ratio) * 0.2
        atr_stop = ind.atr * self.ATR_STOP_MULT if ind.atr else price * self.FALLBACK_STOP_PCT
        ema21 = values.get(21)

        if score >= self.STRONG_THRESHOLD:
            if bull:
                stop = max(price - atr_stop, ema21 * 0.995 if ema21 else 0.0)
                return build_signal("STRONG_LONG", score, reasons, price, stop, price + atr_stop * 3)
            stop = min(price + atr_stop, ema21 * 1.005 if ema21 else float("inf"))
            return build_signal("STRONG_SHORT", score, reasons, price, stop, price - atr_stop * 3)

        if score >= self.ENTRY_THRESHOLD:
            if bull:
                return build_signal("LONG", score, reasons, price,
                                    price - atr_stop, price + atr_stop * 2)
            return build_signal("SHORT", score, reasons, price,
                                price + atr_stop, price - atr_stop * 2)

        return build_signal("NEUTRAL", score, reasons)
