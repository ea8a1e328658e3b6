"""Strategy registry — the ordered, immutable set of strategy modules.

Used by the strategy engine and the backtest simulator.  Registry order
is evaluation order, and the simulator opens positions in that order.
"""

from dataclasses import dataclass
from typing import Optional

from tesseract.strategy.base import StrategyProtocol
from tesseract.strategy.bollinger_squeeze import BollingerSqueezeStrategy
from tesseract.strategy.compression_cannon import CompressionCannonStrategy
from tesseract.strategy.confluence import ConfluenceStrategy
from tesseract.strategy.crossover_cascade import CrossoverCascadeStrategy
from tesseract.strategy.divergence_hunter import DivergenceHunterStrategy
from tesseract.strategy.dynamic_bounce import DynamicBounceStrategy
from tesseract.strategy.macd_momentum import MACDMomentumStrategy
from tesseract.strategy.mean_reversion import MeanReversionStrategy
from tesseract.strategy.ribbon_rider import RibbonRiderStrategy
from tesseract.strategy.volume_breakout import VolumeBreakoutStrategy


@dataclass(frozen=True)
class Registry:
    strategies: tuple[StrategyProtocol, ...]

    def __post_init__(self):
        ids = [s.id for s in self.strategies]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"Duplicate strategy ids: {', '.join(dupes)}")

    def __iter__(self):
        return iter(self.strategies)

    def __len__(self) -> int:
        return len(self.strategies)

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(s.id for s in self.strategies)

    def find(self, strategy_id: str) -> Optional[StrategyProtocol]:
        for s in self.strategies:
            if s.id == strategy_id:
                return s
        return None

    def get(self, strategy_id: str) -> StrategyProtocol:
        """Look up a strategy by id.

        Raises ``KeyError`` if the id is not registered.
        """
        strategy = self.find(strategy_id)
        if strategy is None:
            raise KeyError(
                f"Unknown strategy '{strategy_id}'. "
                f"Available: {', '.join(self.ids)}"
            )
        return strategy

    def by_category(self, category: str) -> "Registry":
        return Registry(tuple(s for s in self.strategies if s.category == category))

    def for_timeframe(self, timeframe: str) -> "Registry":
        return Registry(tuple(s for s in self.strategies if timeframe in s.timeframes))

    def with_strategies(self, *strategies: StrategyProtocol) -> "Registry":
        """Return a new registry with *strategies* appended."""
        return Registry(self.strategies + tuple(strategies))


DEFAULT_REGISTRY = Registry((
    RibbonRiderStrategy(),
    CompressionCannonStrategy(),
    DynamicBounceStrategy(),
    CrossoverCascadeStrategy(),
    DivergenceHunterStrategy(),
    MACDMomentumStrategy(),
    BollingerSqueezeStrategy(),
    MeanReversionStrategy(),
    VolumeBreakoutStrategy(),
))

# The confluence module sits outside the default set; add it explicitly
# with ``DEFAULT_REGISTRY.with_strategies(CONFLUENCE)``.
CONFLUENCE = ConfluenceStrategy()


def get_strategy(strategy_id: str) -> StrategyProtocol:
    """Look up a strategy by id across the default set and the confluence module."""
    if strategy_id == CONFLUENCE.id:
        return CONFLUENCE
    return DEFAULT_REGISTRY.get(strategy_id)
