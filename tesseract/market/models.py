"""Market data models — typed candle representation and series validation."""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence


@dataclass(frozen=True)
class Candle:
    """A single OHLCV bar.  ``time`` is the bar open in epoch milliseconds."""

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float


class MalformedCandleError(ValueError):
    """Raised when a candle series cannot be simulated meaningfully."""


# ── Validation ───────────────────────────────────────────────────────────


def validate_candles(candles: Sequence[Candle], label: str = "candles") -> None:
    """Fail fast on a series that would produce nonsensical statistics.

    Checks strictly increasing timestamps, finite positive prices,
    non-negative volume, and ``high >= low`` on every bar.

    Raises:
        MalformedCandleError: naming the series and the offending index.
    """
    if not candles:
        raise MalformedCandleError(f"{label}: empty candle series")

    prev_time = None
    for i, c in enumerate(candles):
        prices = (c.open, c.high, c.low, c.close)
        if not all(math.isfinite(p) for p in prices):
            raise MalformedCandleError(f"{label}[{i}]: non-finite price")
        if min(prices) <= 0:
            raise MalformedCandleError(f"{label}[{i}]: non-positive price")
        if c.high < c.low:
            raise MalformedCandleError(
                f"{label}[{i}]: high {c.high} below low {c.low}"
            )
        if not math.isfinite(c.volume) or c.volume < 0:
            raise MalformedCandleError(f"{label}[{i}]: invalid volume {c.volume}")
        if prev_time is not None and c.time <= prev_time:
            raise MalformedCandleError(
                f"{label}[{i}]: time {c.time} does not increase "
                f"(previous {prev_time})"
            )
        prev_time = c.time


def to_iso(ms: int) -> str:
    """Format epoch milliseconds as an ISO-8601 UTC string (``...Z``)."""
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


# ── Timeframes ───────────────────────────────────────────────────────────

TIMEFRAME_MS: dict[str, int] = {
    "1m": 60_000,
    "5m": 5 * 60_000,
    "15m": 15 * 60_000,
    "1h": 3_600_000,
    "4h": 4 * 3_600_000,
    "1d": 24 * 3_600_000,
}


def timeframe_ms(timeframe: str) -> int:
    """Bar duration of *timeframe* in milliseconds.

    Raises ``ValueError`` for an unsupported timeframe.
    """
    try:
        return TIMEFRAME_MS[timeframe]
    except KeyError:
        raise ValueError(
            f"Unsupported timeframe '{timeframe}'. "
            f"Available: {', '.join(TIMEFRAME_MS)}"
        ) from None
