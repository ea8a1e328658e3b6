"""Backtest data models — options, closed trades, statistics and results.

All result types are frozen dataclasses.  ``to_dict()`` emits the
camelCase wire shape served by the API and written by the CLI.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Literal

Outcome = Literal["win", "loss"]
Direction = Literal["long", "short"]


@dataclass(frozen=True)
class BacktestOptions:
    """Simulation parameters.

    Raises ``ValueError`` on construction if any value is out of range.
    """

    start_equity: float = 10_000.0
    position_size_percent: float = 2.0
    max_open_positions: int = 5
    min_signal_strength: int = 50
    warmup_period: int = 200
    min_bars_after_warmup: int = 50
    min_confirmation_candles: int = 50
    equity_sample_every: int = 4
    primary_timeframe: str = "1h"
    confirmation_timeframe: str = "4h"

    def __post_init__(self) -> None:
        if self.start_equity <= 0:
            raise ValueError(f"start_equity must be positive, got {self.start_equity}")
        if not 0 < self.position_size_percent <= 100:
            raise ValueError(
                f"position_size_percent must be in (0, 100], got {self.position_size_percent}"
            )
        if self.max_open_positions < 1:
            raise ValueError(f"max_open_positions must be >= 1, got {self.max_open_positions}")
        if not 0 <= self.min_signal_strength <= 100:
            raise ValueError(
                f"min_signal_strength must be in [0, 100], got {self.min_signal_strength}"
            )
        if self.warmup_period < 1:
            raise ValueError(f"warmup_period must be >= 1, got {self.warmup_period}")
        if self.min_bars_after_warmup < 0:
            raise ValueError(
                f"min_bars_after_warmup must be >= 0, got {self.min_bars_after_warmup}"
            )
        if self.min_confirmation_candles < 0:
            raise ValueError(
                f"min_confirmation_candles must be >= 0, got {self.min_confirmation_candles}"
            )
        if self.equity_sample_every < 1:
            raise ValueError(f"equity_sample_every must be >= 1, got {self.equity_sample_every}")

    @property
    def min_candles(self) -> int:
        """Primary candles required before a run is attempted."""
        return self.warmup_period + self.min_bars_after_warmup


@dataclass(frozen=True)
class BacktestTrade:
    id: str
    symbol: str
    strategy_id: str
    strategy_name: str
    direction: Direction
    entry_time: int
    entry_price: float
    exit_time: int
    exit_price: float
    stop_loss: float
    take_profit: float
    outcome: Outcome
    pnl_percent: float
    holding_period_hours: float

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "strategyId": self.strategy_id,
            "strategyName": self.strategy_name,
            "direction": self.direction,
            "entryTime": self.entry_time,
            "entryPrice": self.entry_price,
            "exitTime": self.exit_time,
            "exitPrice": self.exit_price,
            "stopLoss": self.stop_loss,
            "takeProfit": self.take_profit,
            "outcome": self.outcome,
            "pnlPercent": self.pnl_percent,
            "holdingPeriodHours": self.holding_period_hours,
        }


@dataclass(frozen=True)
class StrategyStats:
    strategy_id: str
    strategy_name: str
    total_trades: int
    wins: int
    losses: int
    win_rate: float
    avg_win_percent: float
    avg_loss_percent: float
    total_pnl_percent: float
    profit_factor: float
    max_consecutive_losses: int
    avg_holding_hours: float
    expectancy: float

    def to_dict(self) -> dict:
        return {
            "strategyId": self.strategy_id,
            "strategyName": self.strategy_name,
            "totalTrades": self.total_trades,
            "wins": self.wins,
            "losses": self.losses,
            "winRate": self.win_rate,
            "avgWinPercent": self.avg_win_percent,
            "avgLossPercent": self.avg_loss_percent,
            "totalPnlPercent": self.total_pnl_percent,
            "profitFactor": self.profit_factor,
            "maxConsecutiveLosses": self.max_consecutive_losses,
            "avgHoldingHours": self.avg_holding_hours,
            "expectancy": self.expectancy,
        }


@dataclass(frozen=True)
class OverallStats:
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    total_pnl_percent: float = 0.0
    max_drawdown_percent: float = 0.0
    sharpe_ratio: float = 0.0
    best_strategy: str = "N/A"
    worst_strategy: str = "N/A"

    def to_dict(self) -> dict:
        return {
            "totalTrades": self.total_trades,
            "wins": self.wins,
            "losses": self.losses,
            "winRate": self.win_rate,
            "totalPnlPercent": self.total_pnl_percent,
            "maxDrawdownPercent": self.max_drawdown_percent,
            "sharpeRatio": self.sharpe_ratio,
            "bestStrategy": self.best_strategy,
            "worstStrategy": self.worst_strategy,
        }


@dataclass(frozen=True)
class EquityPoint:
    time: int
    equity: float

    def to_dict(self) -> dict:
        return {"time": self.time, "equity": self.equity}


@dataclass(frozen=True)
class BacktestResult:
    symbol: str
    period: str
    start_date: str
    end_date: str
    total_candles: int
    trades: tuple[BacktestTrade, ...] = ()
    strategy_stats: tuple[StrategyStats, ...] = ()
    overall: OverallStats = field(default_factory=OverallStats)
    equity_curve: tuple[EquityPoint, ...] = ()
    final_equity: float = 0.0

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "period": self.period,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "totalCandles": self.total_candles,
            "trades": [t.to_dict() for t in self.trades],
            "strategyStats": [s.to_dict() for s in self.strategy_stats],
            "overall": self.overall.to_dict(),
            "equityCurve": [p.to_dict() for p in self.equity_curve],
            "finalEquity": self.final_equity,
        }


def json_safe(value: Any) -> Any:
    """Recursively replace non-finite floats with ``None`` for JSON output."""
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        return {k: json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    return value
