"""Strategy data models — signals, indicator snapshots, and strategy inputs."""

from dataclasses import dataclass, field
from typing import Literal, Optional

from tesseract.market.models import Candle

SignalType = Literal["STRONG_LONG", "LONG", "NEUTRAL", "SHORT", "STRONG_SHORT"]
Direction = Literal["long", "short", "neutral"]
Category = Literal["swing", "scalp", "breakout", "reversal", "confluence"]

STRONG_LONG: SignalType = "STRONG_LONG"
LONG: SignalType = "LONG"
NEUTRAL: SignalType = "NEUTRAL"
SHORT: SignalType = "SHORT"
STRONG_SHORT: SignalType = "STRONG_SHORT"


def direction_of(signal_type: str) -> Direction:
    """Map a signal type onto its direction family."""
    if signal_type in (LONG, STRONG_LONG):
        return "long"
    if signal_type in (SHORT, STRONG_SHORT):
        return "short"
    return "neutral"


@dataclass(frozen=True)
class Signal:
    """A strategy verdict for one market snapshot.

    ``entry``, ``stop`` and ``target`` are set only on directional
    signals.  Use :func:`tesseract.risk.levels.build_signal` to construct
    one with the level invariants enforced.
    """

    type: SignalType
    strength: int
    reasons: tuple[str, ...] = ()
    entry: Optional[float] = None
    stop: Optional[float] = None
    target: Optional[float] = None

    @property
    def direction(self) -> Direction:
        return direction_of(self.type)

    @property
    def is_neutral(self) -> bool:
        return self.type == NEUTRAL

    @property
    def has_levels(self) -> bool:
        return None not in (self.entry, self.stop, self.target)

    def to_dict(self) -> dict:
        out: dict = {"type": self.type, "strength": self.strength}
        if self.has_levels:
            out["entry"] = self.entry
            out["stop"] = self.stop
            out["target"] = self.target
        out["reasons"] = list(self.reasons)
        return out


def neutral(reason: str, strength: int = 0) -> Signal:
    """Shorthand for a NEUTRAL signal with a single reason."""
    return Signal(type=NEUTRAL, strength=strength, reasons=(reason,))


# ── Indicator snapshot ───────────────────────────────────────────────────


@dataclass(frozen=True)
class EMAData:
    """EMA values, full series and slopes keyed by period."""

    values: dict[int, Optional[float]]
    series: dict[int, tuple[float, ...]]
    slopes: dict[int, Optional[float]]


@dataclass(frozen=True)
class MACDData:
    macd: float
    signal: float
    histogram: float
    trend: Literal["bullish", "bearish", "neutral"]


@dataclass(frozen=True)
class VolumeData:
    current: float
    average: float
    ratio: float


@dataclass(frozen=True)
class IndicatorSet:
    """Read-only indicator snapshot for one candle series."""

    emas: EMAData
    rsi: Optional[float]
    rsi_series: tuple[float, ...]
    atr: Optional[float]
    macd: Optional[MACDData]
    volume: VolumeData


@dataclass(frozen=True)
class StrategyInput:
    """Everything a strategy may look at for one evaluation."""

    symbol: str
    price: float
    candles: tuple[Candle, ...]
    indicators: IndicatorSet
    timeframe: str


@dataclass(frozen=True)
class StrategyResult:
    """One strategy's signal for one snapshot."""

    id: str
    name: str
    category: Category
    signal: Signal
    timestamp: int = field(default=0, compare=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "signal": self.signal.to_dict(),
            "timestamp": self.timestamp,
        }
