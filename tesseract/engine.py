"""Tesseract — Strategy engine.

Runs every enabled strategy against one market snapshot, tallies a
consensus and combines the results into a meta-signal.  The engine
holds no state; the backtest simulator calls it once per bar and
timeframe.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from tesseract.market.models import Candle
from tesseract.strategy.base import run_strategy
from tesseract.strategy.indicators import build_indicators
from tesseract.strategy.models import (
    LONG,
    NEUTRAL,
    SHORT,
    STRONG_LONG,
    STRONG_SHORT,
    Signal,
    StrategyInput,
    StrategyResult,
)
from tesseract.strategy.registry import DEFAULT_REGISTRY, Registry

logger = logging.getLogger("tesseract.engine")

Clock = Callable[[], int]


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


@dataclass(frozen=True)
class EngineConfig:
    """Which strategies to run and the minimum strength to report.

    An empty ``enabled_strategies`` runs the whole registry.
    """

    enabled_strategies: tuple[str, ...] = ()
    min_strength: int = 0


@dataclass(frozen=True)
class Consensus:
    bullish: int = 0
    bearish: int = 0
    neutral: int = 0
    strongest_signal: Optional[StrategyResult] = None

    def to_dict(self) -> dict:
        return {
            "bullish": self.bullish,
            "bearish": self.bearish,
            "neutral": self.neutral,
            "strongestSignal": self.strongest_signal.to_dict() if self.strongest_signal else None,
        }


@dataclass(frozen=True)
class EngineResult:
    symbol: str
    timeframe: str
    timestamp: int
    strategies: tuple[StrategyResult, ...] = ()
    consensus: Consensus = field(default_factory=Consensus)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "timestamp": self.timestamp,
            "strategies": [r.to_dict() for r in self.strategies],
            "consensus": self.consensus.to_dict(),
        }


def build_input(
    symbol: str,
    candles: Sequence[Candle],
    timeframe: str,
    price: Optional[float] = None,
) -> StrategyInput:
    """Assemble a :class:`StrategyInput`; *price* defaults to the last close."""
    candles = tuple(candles)
    if price is None:
        price = candles[-1].close
    return StrategyInput(
        symbol=symbol,
        price=price,
        candles=candles,
        indicators=build_indicators(candles),
        timeframe=timeframe,
    )


def evaluate_strategies(
    data: StrategyInput,
    config: EngineConfig = EngineConfig(),
    registry: Registry = DEFAULT_REGISTRY,
    clock: Optional[Clock] = None,
) -> EngineResult:
    """Run enabled strategies against *data* and tally the consensus.

    Every produced signal counts toward the consensus; only signals at
    or above ``config.min_strength`` are reported.  A strategy that
    raises is logged and skipped.
    """
    clock = clock or _now_ms
    enabled = set(config.enabled_strategies)
    strategies = [s for s in registry if not enabled or s.id in enabled]

    results: list[StrategyResult] = []
    bullish = bearish = neutral_count = 0
    strongest: Optional[StrategyResult] = None

    for strategy in strategies:
        outcome = run_strategy(strategy, data)
        if not outcome.ok:
            logger.warning(
                "Strategy %s failed on %s %s: %s",
                strategy.id, data.symbol, data.timeframe, outcome.fault.error,
            )
            continue

        signal = outcome.signal
        if signal.direction == "long":
            bullish += 1
        elif signal.direction == "short":
            bearish += 1
        else:
            neutral_count += 1

        if signal.strength < config.min_strength:
            continue

        result = StrategyResult(
            id=strategy.id,
            name=strategy.name,
            category=strategy.category,
            signal=signal,
            timestamp=clock(),
        )
        results.append(result)

        if not signal.is_neutral and (strongest is None or signal.strength > strongest.signal.strength):
            strongest = result

    return EngineResult(
        symbol=data.symbol,
        timeframe=data.timeframe,
        timestamp=clock(),
        strategies=tuple(results),
        consensus=Consensus(bullish, bearish, neutral_count, strongest),
    )


_VOTE_WEIGHT = {STRONG_LONG: 2.0, LONG: 1.0, SHORT: -1.0, STRONG_SHORT: -2.0}


def calculate_meta_signal(results: Sequence[StrategyResult]) -> Signal:
    """Combine strategy results into one directional read.

    STRONG votes count double; every vote is weighted by strength/100.
    The meta-signal never carries levels.
    """
    if not results:
        return Signal(type=NEUTRAL, strength=0, reasons=("No strategy signals",))

    bull = bear = 0.0
    reasons = []
    for result in results:
        sig = result.signal
        vote = _VOTE_WEIGHT.get(sig.type)
        if vote is None:
            continue
        weighted = abs(vote) * sig.strength / 100
        if vote > 0:
            bull += weighted
        else:
            bear += weighted
        reasons.append(f"{result.name}: {sig.type} ({sig.strength}%)")

    net = bull - bear
    total = bull + bear
    strength = int(abs(net) / total * 100 + 0.5) if total > 0 else 0

    if net >= 2:
        signal_type = STRONG_LONG
    elif net >= 0.5:
        signal_type = LONG
    elif net <= -2:
        signal_type = STRONG_SHORT
    elif net <= -0.5:
        signal_type = SHORT
    else:
        signal_type = NEUTRAL
    return Signal(type=signal_type, strength=strength, reasons=tuple(reasons))
