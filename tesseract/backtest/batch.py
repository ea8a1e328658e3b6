"""Multi-symbol batch runs and cross-symbol aggregation.

Symbols are independent, so jobs fan out over a process pool; results
come back in job order.
"""

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Sequence

from tesseract.backtest.engine import BacktestEngine
from tesseract.backtest.models import BacktestOptions, BacktestResult
from tesseract.market.models import Candle
from tesseract.strategy.registry import DEFAULT_REGISTRY, Registry

logger = logging.getLogger("tesseract.backtest")


@dataclass(frozen=True)
class BacktestJob:
    symbol: str
    candles_1h: tuple[Candle, ...]
    candles_4h: tuple[Candle, ...]


def _run_job(args: tuple[BacktestJob, BacktestOptions, Registry]) -> BacktestResult:
    job, options, registry = args
    return BacktestEngine(options, registry).run(job.symbol, job.candles_1h, job.candles_4h)


def run_batch(
    jobs: Sequence[BacktestJob],
    options: Optional[BacktestOptions] = None,
    max_workers: int = 1,
    registry: Registry = DEFAULT_REGISTRY,
) -> list[BacktestResult]:
    """Backtest every job, in parallel when ``max_workers > 1``.

    Jobs with too little primary data are dropped (and logged) rather
    than returned as empty results.  A malformed series raises.
    """
    options = options or BacktestOptions()
    runnable = []
    for job in jobs:
        if len(job.candles_1h) < options.min_candles:
            logger.warning(
                "Skipping %s: %d candles, need %d",
                job.symbol, len(job.candles_1h), options.min_candles,
            )
            continue
        runnable.append((job, options, registry))

    if not runnable:
        return []
    if max_workers <= 1 or len(runnable) == 1:
        return [_run_job(args) for args in runnable]

    logger.info("Running %d backtests on %d workers", len(runnable), max_workers)
    with ProcessPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(_run_job, runnable))


# ── Aggregation ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StrategyRanking:
    strategy_id: str
    strategy_name: str
    total_trades: int
    win_rate: float
    total_pnl_percent: float

    def to_dict(self) -> dict:
        return {
            "strategyId": self.strategy_id,
            "strategyName": self.strategy_name,
            "totalTrades": self.total_trades,
            "winRate": self.win_rate,
            "totalPnlPercent": self.total_pnl_percent,
        }


@dataclass(frozen=True)
class AggregatedStats:
    total_symbols: int = 0
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    total_pnl_percent: float = 0.0
    avg_pnl_per_trade: float = 0.0
    best_strategy: str = "N/A"
    strategy_rankings: tuple[StrategyRanking, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "totalSymbols": self.total_symbols,
            "totalTrades": self.total_trades,
            "wins": self.wins,
            "losses": self.losses,
            "winRate": self.win_rate,
            "totalPnlPercent": self.total_pnl_percent,
            "avgPnlPerTrade": self.avg_pnl_per_trade,
            "bestStrategy": self.best_strategy,
            "strategyRankings": [r.to_dict() for r in self.strategy_rankings],
        }


def aggregate_results(results: Sequence[BacktestResult]) -> AggregatedStats:
    """Pool trades across symbols and rank strategies by summed P&L %."""
    if not results:
        return AggregatedStats()

    trades = [t for r in results for t in r.trades]
    wins = sum(1 for t in trades if t.outcome == "win")
    total_pnl = sum(t.pnl_percent for t in trades)

    # strategy_id -> [name, trades, wins, pnl]
    pooled: dict[str, list] = {}
    for result in results:
        for stat in result.strategy_stats:
            entry = pooled.setdefault(stat.strategy_id, [stat.strategy_name, 0, 0, 0.0])
            entry[1] += stat.total_trades
            entry[2] += stat.wins
            entry[3] += stat.total_pnl_percent

    rankings = sorted(
        (
            StrategyRanking(
                strategy_id=sid,
                strategy_name=name,
                total_trades=n,
                win_rate=w / n * 100 if n else 0.0,
                total_pnl_percent=pnl,
            )
            for sid, (name, n, w, pnl) in pooled.items()
        ),
        key=lambda r: r.total_pnl_percent,
        reverse=True,
    )

    return AggregatedStats(
        total_symbols=len(results),
        total_trades=len(trades),
        wins=wins,
        losses=sum(1 for t in trades if t.outcome == "loss"),
        win_rate=wins / len(trades) * 100 if trades else 0.0,
        total_pnl_percent=total_pnl,
        avg_pnl_per_trade=total_pnl / len(trades) if trades else 0.0,
        best_strategy=rankings[0].strategy_name if rankings else "N/A",
        strategy_rankings=tuple(rankings),
    )
