"""MACD Momentum — signal-line crossovers confirmed by trend, volume and RSI.

Implements ``StrategyProtocol``.
"""

from tesseract.risk.levels import build_signal
from tesseract.strategy.base import fault_tolerant
from tesseract.strategy.models import Signal, StrategyInput, neutral


class MACDMomentumStrategy:
    """Momentum strategy using MACD crossovers with histogram confirmation.

    A crossover scores 30 base points, then earns points for histogram
    expansion, proximity to the zero line, EMA21/EMA50 alignment, volume
    and a non-exhausted RSI.  Without a crossover, an established MACD
    trend scores a flat 30 (never enough to trade on its own).
    """

    id = "macd-momentum"
    name = "MACD Momentum"
    description = "Momentum strategy using MACD crossovers with histogram confirmation"
    category = "swing"
    timeframes = ("1h", "4h", "1d")

    STRONG_THRESHOLD: float = 75.0
    ENTRY_THRESHOLD: float = 50.0
    ATR_STOP_MULT: float = 1.5
    FALLBACK_STOP_PCT: float = 0.02
    RR_RATIO: float = 2.5

    @fault_tolerant
    def evaluate(self, data: StrategyInput) -> Signal:
        price = data.price
        ind = data.indicators
        m = ind.macd
        if m is None:
            return neutral("MACD data not available")

        ema21 = ind.emas.values.get(21)
        ema50 = ind.emas.values.get(50)
        above21 = price > ema21 if ema21 else None
        above50 = price > ema50 if ema50 else None
        rsi = ind.rsi
        vol_ratio = ind.volume.ratio

        hist_bullish = m.histogram > 0
        near_zero = abs(m.macd) < price * 0.005
        above_zero = m.macd > 0

        reasons: list[str] = []
        score = 0.0
        direction = "neutral"

        if m.macd > m.signal and m.histogram > 0:
            direction = "long"
            score += 30
            reasons.append("MACD bullish crossover")
            if hist_bullish:
                score += 15
                reasons.append("Histogram expanding")
            if near_zero or not above_zero:
                score += 15
                reasons.append("Fresh momentum from zero line")
            if above21:
                score += 10
                reasons.append("Price above EMA21")
            if above50:
                score += 10
                reasons.append("Price above EMA50 (trend aligned)")
            if vol_ratio > 1.2:
                score += 10
                reasons.append(f"Volume {vol_ratio * 100 - 100:.0f}% above average")
            if rsi is not None and rsi < 70:
                score += 5
            elif rsi is not None and rsi > 75:
                score -= 15
                reasons.append("RSI overbought warning")

        elif m.macd < m.signal and m.histogram < 0:
            direction = "short"
            score += 30
            reasons.append("MACD bearish crossover")
            if not hist_bullish:
                score += 15
                reasons.append("Histogram contracting")
            if near_zero or above_zero:
                score += 15
                reasons.append("Fresh downward momentum from zero")
            if above21 is False:
                score += 10
                reasons.append("Price below EMA21")
            if above50 is False:
                score += 10
                reasons.append("Price below EMA50 (trend aligned)")
            if vol_ratio > 1.2:
                score += 10
                reasons.append(f"Selling volume {vol_ratio * 100 - 100:.0f}% above average")
            if rsi is not None and rsi > 30:
                score += 5
            elif rsi is not None and rsi < 25:
                score -= 15
                reasons.append("RSI oversold warning")

        elif m.trend == "bullish" and hist_bullish and above21:
            direction = "long"
            score = 30
            reasons.append("MACD bullish trend (waiting for entry)")
        elif m.trend == "bearish" and not hist_bullish and above21 is False:
            direction = "short"
            score = 30
            reasons.append("MACD bearish trend (waiting for entry)")

        if not reasons:
            reasons.append("No MACD signal")

        if direction == "neutral" or score < self.ENTRY_THRESHOLD:
            return build_signal("NEUTRAL", score, reasons)

        atr_stop = ind.atr * self.ATR_STOP_MULT if ind.atr else price * self.FALLBACK_STOP_PCT
        strong = score >= self.STRONG_THRESHOLD
        if direction == "long":
            return build_signal("STRONG_LONG" if strong else "LONG", score, reasons,
                                price, price - atr_stop, price + atr_stop * self.RR_RATIO)
        return build_signal("STRONG_SHORT" if strong else "SHORT", score, reasons,
                            price, price + atr_stop, price - atr_stop * self.RR_RATIO)
