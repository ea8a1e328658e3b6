"""Ultimate Strategy — weighted confluence vote across the other modules.

Implements ``StrategyProtocol``.  Every constituent is evaluated on the
same input; each directional vote adds ``weight * strength / 100`` to
its side.  A side wins when it clears ``SIGNAL_THRESHOLD`` and beats the
other side.  Levels come from the agreeing votes: the tightest stop and
the most conservative target, with the target widened to at least
1.5R.
"""

import logging
from typing import NamedTuple, Optional, Sequence

from tesseract.risk.levels import build_signal, target_from_risk
from tesseract.strategy.base import StrategyProtocol, fault_tolerant, run_strategy
from tesseract.strategy.bollinger_squeeze import BollingerSqueezeStrategy
from tesseract.strategy.compression_cannon import CompressionCannonStrategy
from tesseract.strategy.crossover_cascade import CrossoverCascadeStrategy
from tesseract.strategy.divergence_hunter import DivergenceHunterStrategy
from tesseract.strategy.dynamic_bounce import DynamicBounceStrategy
from tesseract.strategy.macd_momentum import MACDMomentumStrategy
from tesseract.strategy.mean_reversion import MeanReversionStrategy
from tesseract.strategy.models import Signal, StrategyInput
from tesseract.strategy.ribbon_rider import RibbonRiderStrategy
from tesseract.strategy.volume_breakout import VolumeBreakoutStrategy

logger = logging.getLogger("tesseract.strategy")

# Voting power per module id; unknown ids vote with weight 1.
STRATEGY_WEIGHTS: dict[str, float] = {
    "macd-momentum": 3.5,
    "bollinger-squeeze": 2.7,
    "ribbon-rider": 1.6,
    "mean-reversion": 0.75,
    "divergence-hunter": 0.75,
    "compression-cannon": 0.2,
    "crossover-cascade": 0.2,
    "dynamic-bounce": 0.15,
    "volume-breakout": 0.1,
}


def default_constituents() -> tuple[StrategyProtocol, ...]:
    return (
        MACDMomentumStrategy(),
        BollingerSqueezeStrategy(),
        RibbonRiderStrategy(),
        MeanReversionStrategy(),
        DivergenceHunterStrategy(),
        CompressionCannonStrategy(),
        CrossoverCascadeStrategy(),
        DynamicBounceStrategy(),
        VolumeBreakoutStrategy(),
    )


class Vote(NamedTuple):
    name: str
    direction: str
    strength: int
    weight: float
    stop: Optional[float]
    target: Optional[float]

    @property
    def effective_weight(self) -> float:
        return self.weight * self.strength / 100


class ConfluenceStrategy:
    """Weighted confluence: top-performing modules carry more voting power."""

    id = "ultimate"
    name = "Ultimate Strategy"
    description = "Weighted confluence - top strategies have more voting power"
    category = "confluence"
    timeframes = ("1h", "4h")

    SIGNAL_THRESHOLD: float = 2.0
    STRONG_THRESHOLD: float = 4.0
    MIN_RR: float = 1.5

    def __init__(
        self,
        constituents: Optional[Sequence[StrategyProtocol]] = None,
        weights: Optional[dict[str, float]] = None,
    ):
        self.constituents = tuple(constituents) if constituents is not None else default_constituents()
        self.weights = dict(STRATEGY_WEIGHTS if weights is None else weights)

    def collect_votes(self, data: StrategyInput) -> list[Vote]:
        votes = []
        for strategy in self.constituents:
            outcome = run_strategy(strategy, data)
            if not outcome.ok:
                logger.debug("Confluence skipped %s: %s", strategy.id, outcome.fault.error)
                continue
            sig = outcome.signal
            votes.append(Vote(
                name=strategy.name,
                direction=sig.direction,
                strength=sig.strength,
                weight=self.weights.get(strategy.id, 1.0),
                stop=sig.stop,
                target=sig.target,
            ))
        return votes

    @fault_tolerant
    def evaluate(self, data: StrategyInput) -> Signal:
        price = data.price
        votes = self.collect_votes(data)
        longs = [v for v in votes if v.direction == "long"]
        shorts = [v for v in votes if v.direction == "short"]
        long_score = sum(v.effective_weight for v in longs)
        short_score = sum(v.effective_weight for v in shorts)

        reasons = [f"Weighted: LONG {long_score:.1f} | SHORT {short_score:.1f}"]
        if long_score >= self.SIGNAL_THRESHOLD and long_score > short_score:
            is_long, agreeing, score = True, longs, long_score
            reasons.append(f"LONG confirmed ({len(longs)} strategies)")
        elif short_score >= self.SIGNAL_THRESHOLD and short_score > long_score:
            is_long, agreeing, score = False, shorts, short_score
            reasons.append(f"SHORT confirmed ({len(shorts)} strategies)")
        else:
            if long_score > 0 or short_score > 0:
                reasons.append(f"Need >{self.SIGNAL_THRESHOLD} weighted score")
            return build_signal("NEUTRAL", 0, reasons)

        top = sorted(agreeing, key=lambda v: v.weight * v.strength, reverse=True)[:3]
        reasons.append("Top: " + ", ".join(v.name for v in top))

        stops = [v.stop for v in agreeing if v.stop is not None]
        targets = [v.target for v in agreeing if v.target is not None]
        stop = target = None
        if stops:
            stop = max(stops) if is_long else min(stops)
        if targets:
            target = min(targets) if is_long else max(targets)

        if stop is not None and target is not None:
            risk = abs(price - stop)
            if risk > 0 and abs(target - price) / risk < self.MIN_RR:
                target = target_from_risk(price, stop, self.MIN_RR)
            if risk > 0:
                reasons.append(f"R:R {abs(target - price) / risk:.1f}:1")

        strength = score / 10 * 100
        if score >= self.STRONG_THRESHOLD:
            signal_type = "STRONG_LONG" if is_long else "STRONG_SHORT"
            reasons.append(f"HIGH conviction ({score:.1f})")
        else:
            signal_type = "LONG" if is_long else "SHORT"
        return build_signal(signal_type, strength, reasons, price, stop, target)
