"""Bollinger Squeeze — volatility squeeze (BB inside KC) and its release.

Implements ``StrategyProtocol``.

Bollinger Bands are SMA(20) ± 2σ (population); Keltner Channels are
EMA21 ± 1.5 × ATR(10), with ATR(10) a plain mean of the last ten true
ranges.  The squeeze length is counted back from the current bar using
SMA-centred channels, capped at 50 bars.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from tesseract.market.models import Candle
from tesseract.risk.levels import build_signal
from tesseract.strategy.base import fault_tolerant
from tesseract.strategy.indicators import sma, std_dev
from tesseract.strategy.models import Signal, StrategyInput, neutral

BB_PERIOD = 20
KC_ATR_PERIOD = 10
MAX_SQUEEZE_LOOKBACK = 50


def mean_true_range(candles: Sequence[Candle], period: int, end: Optional[int] = None) -> Optional[float]:
    """Simple mean of the *period* true ranges ending at bar ``end - 1``."""
    end = len(candles) if end is None else end
    if end < period + 1:
        return None
    total = 0.0
    for i in range(end - period, end):
        c, prev_close = candles[i], candles[i - 1].close
        total += max(c.high - c.low, abs(c.high - prev_close), abs(c.low - prev_close))
    return total / period


@dataclass(frozen=True)
class SqueezeState:
    is_squeezing: bool = False
    length: int = 0
    momentum: float = 0.0
    momentum_increasing: bool = False
    bb_width: float = 0.0
    kc_width: float = 0.0


def analyze_squeeze(candles: Sequence[Candle], ema20: Optional[float]) -> SqueezeState:
    closes = [c.close for c in candles]
    mid = sma(closes, BB_PERIOD)
    sd = std_dev(closes, BB_PERIOD)
    atr10 = mean_true_range(candles, KC_ATR_PERIOD)
    if not mid or not sd or not atr10 or not ema20:
        return SqueezeState()

    bb_upper, bb_lower = mid + 2 * sd, mid - 2 * sd
    kc_upper, kc_lower = ema20 + 1.5 * atr10, ema20 - 1.5 * atr10
    bb_width = (bb_upper - bb_lower) / mid * 100
    kc_width = (kc_upper - kc_lower) / ema20 * 100
    is_squeezing = bb_lower > kc_lower and bb_upper < kc_upper

    length = 0
    i = len(closes) - 1
    while i >= BB_PERIOD and length < MAX_SQUEEZE_LOOKBACK:
        h_mid = sma(closes, BB_PERIOD, end=i + 1)
        h_sd = std_dev(closes, BB_PERIOD, end=i + 1)
        h_atr = mean_true_range(candles, KC_ATR_PERIOD, end=i + 1)
        if not h_mid or not h_sd or not h_atr:
            break
        if h_mid - 2 * h_sd > h_mid - 1.5 * h_atr and h_mid + 2 * h_sd < h_mid + 1.5 * h_atr:
            length += 1
        else:
            break
        i -= 1

    momentum = (closes[-1] - mid) / mid * 100
    prev_momentum = (closes[-2] - mid) / mid * 100
    return SqueezeState(
        is_squeezing=is_squeezing,
        length=length,
        momentum=momentum,
        momentum_increasing=abs(momentum) > abs(prev_momentum),
        bb_width=bb_width,
        kc_width=kc_width,
    )


class BollingerSqueezeStrategy:
    """Enter when a BB-inside-KC squeeze builds directional momentum or fires."""

    id = "bollinger-squeeze"
    name = "Bollinger Squeeze"
    description = "Volatility squeeze detection: Enter when BB contracts inside KC, exit on expansion"
    category = "breakout"
    timeframes = ("15m", "1h", "4h")

    MIN_CANDLES: int = 30
    STRONG_THRESHOLD: float = 70.0
    ENTRY_THRESHOLD: float = 50.0
    ATR_STOP_MULT: float = 1.5
    FALLBACK_STOP_PCT: float = 0.02
    RR_RATIO: float = 3.0

    @fault_tolerant
    def evaluate(self, data: StrategyInput) -> Signal:
        price = data.price
        ind = data.indicators
        if len(data.candles) < self.MIN_CANDLES:
            return neutral("Insufficient data for squeeze analysis")

        sq = analyze_squeeze(data.candles, ind.emas.values.get(21))
        reasons: list[str] = []
        score = 0.0
        direction = "neutral"

        if sq.is_squeezing:
            reasons.append(f"Squeeze active ({sq.length} bars)")
            if sq.length >= 10:
                score += 20
                reasons.append("Extended squeeze - high energy buildup")
            elif sq.length >= 5:
                score += 10
            if sq.momentum > 0.3 and sq.momentum_increasing:
                direction = "long"
                score += 30
                reasons.append("Bullish momentum building")
            elif sq.momentum < -0.3 and sq.momentum_increasing:
                direction = "short"
                score += 30
                reasons.append("Bearish momentum building")
            else:
                reasons.append("Squeeze active - waiting for momentum direction")
        elif sq.length == 0 and sq.bb_width > sq.kc_width:
            if sq.momentum > 0.5:
                direction = "long"
                score += 50
                reasons.append("Squeeze FIRED - Bullish breakout")
            elif sq.momentum < -0.5:
                direction = "short"
                score += 50
                reasons.append("Squeeze FIRED - Bearish breakout")
            if ind.volume.ratio > 1.5:
                score += 20
                reasons.append(f"Volume surge: {ind.volume.ratio * 100:.0f}% of avg")
        else:
            return neutral("No squeeze detected")

        ema50 = ind.emas.values.get(50)
        if ema50:
            if direction == "long" and price > ema50:
                score += 15
                reasons.append("Aligned with uptrend (above EMA50)")
            elif direction == "short" and price < ema50:
                score += 15
                reasons.append("Aligned with downtrend (below EMA50)")

        if direction == "neutral" or score < self.ENTRY_THRESHOLD:
            return build_signal("NEUTRAL", score, reasons)

        atr_stop = ind.atr * self.ATR_STOP_MULT if ind.atr else price * self.FALLBACK_STOP_PCT
        strong = score >= self.STRONG_THRESHOLD
        if direction == "long":
            return build_signal("STRONG_LONG" if strong else "LONG", score, reasons,
                                price, price - atr_stop, price + atr_stop * self.RR_RATIO)
        return build_signal("STRONG_SHORT" if strong else "SHORT", score, reasons,
                            price, price + atr_stop, price - atr_stop * self.RR_RATIO)
