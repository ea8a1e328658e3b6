"""Ribbon Rider — swing entries on pullbacks into a stacked EMA ribbon.

Implements ``StrategyProtocol``.  A perfect bull ribbon is
``EMA9 > EMA21 > EMA50 > EMA100 > EMA200``; entries come when price
pulls back toward EMA21 while holding EMA50, with RSI not overextended.

Score = 0.4 × stack + 0.4 × pullback + 0.2 × RSI.
"""

from typing import Optional

from tesseract.risk.levels import build_signal
from tesseract.strategy.base import fault_tolerant
from tesseract.strategy.indicators import EMA_PERIODS
from tesseract.strategy.models import Signal, StrategyInput, neutral


def stack_score(ema_values: dict[int, Optional[float]], bullish: bool) -> float:
    """Ribbon ordering quality (0–80) plus a spacing bonus (0–20).

    Needs at least four of the five EMAs; returns 0 otherwise.
    """
    values = [ema_values.get(p) for p in EMA_PERIODS]
    values = [v for v in values if v is not None]
    if len(values) < 4:
        return 0.0

    pairs = len(values) - 1
    ordered = 0
    for a, b in zip(values, values[1:]):
        if (bullish and a > b) or (not bullish and a < b):
            ordered += 1

    spacing = abs(values[0] - values[-1]) / values[-1] * 100 if values[-1] else 0.0
    spacing_bonus = min(spacing / 5, 1.0) * 20
    return ordered / pairs * 80 + spacing_bonus


def pullback_score(
    price: float,
    ema21: Optional[float],
    ema50: Optional[float],
    bullish: bool,
) -> float:
    """How cleanly price sits in the EMA21 pullback zone without losing EMA50."""
    if not ema21 or not ema50:
        return 0.0

    to_21 = (price - ema21) / ema21 * 100
    to_50 = (price - ema50) / ema50 * 100

    if bullish:
        if to_50 < 0 or to_21 > 3:
            return 0.0
        if 0 <= to_21 <= 1.5:
            return 100.0
        if 1.5 < to_21 <= 3:
            return 70.0
        if -1 <= to_21 < 0:
            return 80.0
        return 30.0

    if to_50 > 0 or to_21 < -3:
        return 0.0
    if -1.5 <= to_21 <= 0:
        return 100.0
    if -3 <= to_21 < -1.5:
        return 70.0
    if 0 < to_21 <= 1:
        return 80.0
    return 30.0


def rsi_score(rsi: Optional[float], bullish: bool) -> float:
    if rsi is None:
        return 50.0
    if 40 <= rsi <= 60:
        return 100.0
    if bullish:
        if 30 <= rsi < 40:
            return 80.0
        if 60 < rsi <= 70:
            return 60.0
        if rsi > 70:
            return 20.0
        return 40.0
    if 60 < rsi <= 70:
        return 80.0
    if 30 <= rsi < 40:
        return 60.0
    if rsi < 30:
        return 20.0
    return 40.0


class RibbonRiderStrategy:
    """Enter on pullbacks to EMA21 when the ribbon is cleanly stacked."""

    id = "ribbon-rider"
    name = "Ribbon Rider"
    description = "Swing strategy: Enter on pullbacks to EMA21 when ribbon is perfectly stacked"
    category = "swing"
    timeframes = ("1h", "4h", "1d")

    MIN_STACK_SCORE: float = 60.0
    STRONG_THRESHOLD: float = 75.0
    ENTRY_THRESHOLD: float = 55.0
    ATR_STOP_MULT: float = 1.5
    FALLBACK_STOP_PCT: float = 0.02

    @fault_tolerant
    def evaluate(self, data: StrategyInput) -> Signal:
        price = data.price
        ind = data.indicators
        values = ind.emas.values

        bull = stack_score(values, True)
        bear = stack_score(values, False)
        is_bull = bull > bear and bull > self.MIN_STACK_SCORE
        is_bear = bear > bull and bear > self.MIN_STACK_SCORE
        if not is_bull and not is_bear:
            return neutral("No clear EMA ribbon formation")

        side = "bullish" if is_bull else "bearish"
        stack = bull if is_bull else bear
        pullback = pullback_score(price, values.get(21), values.get(50), is_bull)
        rsi_pts = rsi_score(ind.rsi, is_bull)
        score = stack * 0.4 + pullback * 0.4 + rsi_pts * 0.2

        reasons: list[str] = []
        if stack >= 80:
            reasons.append(f"Perfect {side} ribbon")
        elif stack >= 60:
            reasons.append(f"Good {side} ribbon alignment")
        if pullback >= 80:
            reasons.append("Price at EMA21 pullback zone")
        elif pullback >= 50:
            reasons.append("Price near EMA21")
        if rsi_pts >= 80:
            reasons.append("RSI in optimal zone")
        if ind.volume.ratio > 1.3:
            reasons.append(f"Volume {(ind.volume.ratio - 1) * 100:.0f}% above average")

        atr_stop = ind.atr * self.ATR_STOP_MULT if ind.atr else price * self.FALLBACK_STOP_PCT
        ema50 = values.get(50)

        if score >= self.STRONG_THRESHOLD:
            if is_bull:
                return build_signal("STRONG_LONG", score, reasons, price,
                                    price - atr_stop, price + atr_stop * 2.5)
            return build_signal("STRONG_SHORT", score, reasons, price,
                                price + atr_stop, price - atr_stop * 2.5)

        if score >= self.ENTRY_THRESHOLD:
            if is_bull:
                anchor = ema50 * 0.995 if ema50 else price * 0.98
                return build_signal("LONG", score, reasons, price,
                                    max(price - atr_stop, anchor), price + atr_stop * 2)
            anchor = ema50 * 1.005 if ema50 else price * 1.02
            return build_signal("SHORT", score, reasons, price,
                                min(price + atr_stop, anchor), price - atr_stop * 2)

        return build_signal("NEUTRAL", score, reasons)
