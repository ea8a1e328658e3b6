"""Technical indicators — EMA, RSI, ATR, MACD, slope, volume. Pure functions, no I/O.

Every function returns ``None`` (or an empty list for series) when the input
is shorter than the indicator's minimum window.  Nothing here raises on short
or flat input.
"""

import math
from typing import Optional, Sequence

from tesseract.market.models import Candle
from tesseract.strategy.models import EMAData, IndicatorSet, MACDData, VolumeData

EMA_PERIODS: tuple[int, ...] = (9, 21, 50, 100, 200)


# ── Moving averages ──────────────────────────────────────────────────────


def ema_series(prices: Sequence[float], period: int) -> list[float]:
    """Exponential Moving Average series.

    The first value is seeded with the SMA of the first *period* prices;
    each later value is ``(price - prev) * k + prev`` with
    ``k = 2 / (period + 1)``.

    Returns ``len(prices) - period + 1`` values, or ``[]`` when fewer
    than *period* prices are supplied.
    """
    if period <= 0 or len(prices) < period:
        return []
    k = 2.0 / (period + 1)
    value = sum(prices[:period]) / period
    series = [value]
    for i in range(period, len(prices)):
        value = (prices[i] - value) * k + value
        series.append(value)
    return series


def ema(prices: Sequence[float], period: int) -> Optional[float]:
    """Latest EMA value (last element of :func:`ema_series`)."""
    series = ema_series(prices, period)
    return series[-1] if series else None


def sma(values: Sequence[float], period: int, end: Optional[int] = None) -> Optional[float]:
    """Simple average of the *period* values ending just before index *end*.

    *end* defaults to ``len(values)``; passing it avoids slicing copies in
    rolling loops.
    """
    end = len(values) if end is None else end
    if period <= 0 or end < period:
        return None
    return sum(values[end - period:end]) / period


def std_dev(values: Sequence[float], period: int, end: Optional[int] = None) -> Optional[float]:
    """Population standard deviation over the same window as :func:`sma`."""
    mean = sma(values, period, end)
    if mean is None:
        return None
    end = len(values) if end is None else end
    window = values[end - period:end]
    return math.sqrt(sum((v - mean) ** 2 for v in window) / period)


def slope(series: Sequence[float], lookback: int = 5) -> Optional[float]:
    """Percent change between the last value and the one *lookback* bars back."""
    if len(series) < lookback + 1:
        return None
    curr = series[-1]
    prev = series[-1 - lookback]
    if not prev:
        return None
    return (curr - prev) / prev * 100


# ── RSI ──────────────────────────────────────────────────────────────────


def rsi_series(prices: Sequence[float], period: int = 14) -> list[float]:
    """Wilder-smoothed Relative Strength Index series.

    Seed averages are the simple means of the first *period* gains and
    losses; later values use ``avg = (prev * (period - 1) + x) / period``.
    An average loss of zero yields 100.

    Returns ``len(prices) - period`` values, or ``[]`` on short input.
    """
    if period <= 0 or len(prices) < period + 1:
        return []

    avg_gain = 0.0
    avg_loss = 0.0
    for i in range(1, period + 1):
        change = prices[i] - prices[i - 1]
        if change > 0:
            avg_gain += change
        else:
            avg_loss -= change
    avg_gain /= period
    avg_loss /= period

    series = [_rsi_from_averages(avg_gain, avg_loss)]
    for i in range(period + 1, len(prices)):
        change = prices[i] - prices[i - 1]
        gain = change if change > 0 else 0.0
        loss = -change if change < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        series.append(_rsi_from_averages(avg_gain, avg_loss))
    return series


def rsi(prices: Sequence[float], period: int = 14) -> Optional[float]:
    """Latest RSI value."""
    series = rsi_series(prices, period)
    return series[-1] if series else None


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    return 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)


# ── ATR ──────────────────────────────────────────────────────────────────


def true_ranges(candles: Sequence[Candle]) -> list[float]:
    """True range of every bar after the first.

    ``TR = max(high - low, |high - prev_close|, |low - prev_close|)``
    """
    out: list[float] = []
    for i in range(1, len(candles)):
        high = candles[i].high
        low = candles[i].low
        prev_close = candles[i - 1].close
        out.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))
    return out


def atr(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    """Average True Range: SMA seed over *period* TRs, then Wilder smoothing.

    Requires at least ``period + 1`` candles.
    """
    if period <= 0 or len(candles) < period + 1:
        return None
    trs = true_ranges(candles)
    value = sum(trs[:period]) / period
    for tr in trs[period:]:
        value = (value * (period - 1) + tr) / period
    return value


# ── MACD ─────────────────────────────────────────────────────────────────


def macd(
    prices: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> Optional[MACDData]:
    """Moving Average Convergence Divergence.

    The fast and slow EMA series are aligned at their most recent value
    (the longer fast series is trimmed to the slow series' length); the
    signal line is the EMA of the resulting MACD line.

    Requires at least ``slow + signal`` prices.
    """
    if len(prices) < slow + signal:
        return None

    fast_series = ema_series(prices, fast)
    slow_series = ema_series(prices, slow)
    if len(fast_series) < signal or len(slow_series) < signal:
        return None

    length = min(len(fast_series), len(slow_series))
    macd_line = [
        f - s for f, s in zip(fast_series[-length:], slow_series[-length:])
    ]
    signal_line = ema_series(macd_line, signal)
    if not signal_line:
        return None

    current = macd_line[-1]
    current_signal = signal_line[-1]
    histogram = current - current_signal

    trend = "neutral"
    if histogram > 0 and current > 0:
        trend = "bullish"
    elif histogram < 0 and current < 0:
        trend = "bearish"

    return MACDData(
        macd=current, signal=current_signal, histogram=histogram, trend=trend,
    )


# ── Volume ───────────────────────────────────────────────────────────────


def volume_analysis(volumes: Sequence[float], lookback: int = 20) -> VolumeData:
    """Current volume against the mean of the last *lookback* bars.

    The average includes the current bar.  Ratio is 1 when the average
    is zero or the series is empty.
    """
    if not volumes:
        return VolumeData(current=0.0, average=0.0, ratio=1.0)
    current = volumes[-1] or 0.0
    window = volumes[-lookback:]
    average = sum(window) / len(window)
    ratio = current / average if average > 0 else 1.0
    return VolumeData(current=current, average=average, ratio=ratio)


def volume_ratio(volumes: Sequence[float], lookback: int = 20) -> float:
    """Shorthand for ``volume_analysis(volumes, lookback).ratio``."""
    return volume_analysis(volumes, lookback).ratio


# ── Snapshot ─────────────────────────────────────────────────────────────


def build_ema_data(prices: Sequence[float]) -> EMAData:
    values: dict[int, Optional[float]] = {}
    series: dict[int, tuple[float, ...]] = {}
    slopes: dict[int, Optional[float]] = {}
    for period in EMA_PERIODS:
        s = ema_series(prices, period)
        series[period] = tuple(s)
        values[period] = s[-1] if s else None
        slopes[period] = slope(s)
    return EMAData(values=values, series=series, slopes=slopes)


def build_indicators(candles: Sequence[Candle]) -> IndicatorSet:
    """Compute the shared indicator snapshot for a candle series."""
    closes = [c.close for c in candles]
    volumes = [c.volume for c in candles]
    rsis = rsi_series(closes)
    return IndicatorSet(
        emas=build_ema_data(closes),
        rsi=rsis[-1] if rsis else None,
        rsi_series=tuple(rsis),
        atr=atr(candles),
        macd=macd(closes),
        volume=volume_analysis(volumes),
    )
