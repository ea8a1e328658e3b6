"""Backtest statistics — pure functions for trade-series analysis."""

import math
from typing import Sequence

from tesseract.backtest.models import BacktestTrade, OverallStats, StrategyStats


def calculate_strategy_stats(trades: Sequence[BacktestTrade]) -> list[StrategyStats]:
    """Per-strategy statistics, sorted by total P&L % (best first).

    Strategies appear in order of their first trade before sorting, so
    ties keep that order.  ``avg_loss_percent`` is a magnitude.
    ``profit_factor`` is ``inf`` with wins and no losses, 0 with no wins.
    """
    groups: dict[str, list[BacktestTrade]] = {}
    for trade in trades:
        groups.setdefault(trade.strategy_id, []).append(trade)

    result = []
    for strategy_id, group in groups.items():
        wins = losses = 0
        win_pnl = loss_pnl = 0.0
        streak = max_streak = 0
        holding = 0.0
        for t in group:
            holding += t.holding_period_hours
            if t.outcome == "win":
                wins += 1
                win_pnl += t.pnl_percent
                streak = 0
            else:
                losses += 1
                loss_pnl += abs(t.pnl_percent)
                streak += 1
                max_streak = max(max_streak, streak)

        total = len(group)
        total_pnl = win_pnl - loss_pnl
        if loss_pnl > 0:
            profit_factor = win_pnl / loss_pnl
        else:
            profit_factor = math.inf if win_pnl > 0 else 0.0

        result.append(StrategyStats(
            strategy_id=strategy_id,
            strategy_name=group[0].strategy_name,
            total_trades=total,
            wins=wins,
            losses=losses,
            win_rate=wins / total * 100,
            avg_win_percent=win_pnl / wins if wins else 0.0,
            avg_loss_percent=loss_pnl / losses if losses else 0.0,
            total_pnl_percent=total_pnl,
            profit_factor=profit_factor,
            max_consecutive_losses=max_streak,
            avg_holding_hours=holding / total,
            expectancy=total_pnl / total,
        ))

    return sorted(result, key=lambda s: s.total_pnl_percent, reverse=True)


def calculate_overall_stats(
    trades: Sequence[BacktestTrade],
    strategy_stats: Sequence[StrategyStats],
    max_drawdown_percent: float = 0.0,
) -> OverallStats:
    """Whole-run summary.  *strategy_stats* must already be sorted best first."""
    wins = sum(1 for t in trades if t.outcome == "win")
    total = len(trades)
    return OverallStats(
        total_trades=total,
        wins=wins,
        losses=sum(1 for t in trades if t.outcome == "loss"),
        win_rate=wins / total * 100 if total else 0.0,
        total_pnl_percent=sum(t.pnl_percent for t in trades),
        max_drawdown_percent=max_drawdown_percent,
        sharpe_ratio=_sharpe([t.pnl_percent for t in trades]),
        best_strategy=strategy_stats[0].strategy_name if strategy_stats else "N/A",
        worst_strategy=strategy_stats[-1].strategy_name if strategy_stats else "N/A",
    )


# ── Helpers ──────────────────────────────────────────────────────────────


def _sharpe(returns: Sequence[float]) -> float:
    """Annualised Sharpe ratio from per-trade returns.

    Uses sample standard deviation (n − 1).  Returns 0.0 when the series
    has fewer than 2 observations or zero variance.
    """
    n = len(returns)
    if n < 2:
        return 0.0
    mean = sum(returns) / n
    variance = sum((r - mean) ** 2 for r in returns) / (n - 1)
    std = math.sqrt(variance)
    if std == 0:
        return 0.0
    return (mean / std) * math.sqrt(252)
