"""Backtest engine — replays historical candles through the strategy engine.

Iterates primary-timeframe candles chronologically after a warm-up,
confirms each bar's signals against the completed higher-timeframe
candles, and simulates trades with virtual equity.  No real orders are
placed.
"""

import bisect
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from tesseract.backtest.models import (
    BacktestOptions,
    BacktestResult,
    BacktestTrade,
    EquityPoint,
)
from tesseract.backtest.stats import calculate_overall_stats, calculate_strategy_stats
from tesseract.confirmation import apply_confirmation
from tesseract.engine import EngineConfig, build_input, evaluate_strategies
from tesseract.market.models import Candle, timeframe_ms, to_iso, validate_candles
from tesseract.risk.drawdown import DrawdownTracker
from tesseract.risk.position_sizer import apply_return
from tesseract.strategy.models import StrategyResult
from tesseract.strategy.registry import DEFAULT_REGISTRY, Registry

logger = logging.getLogger("tesseract.backtest")

_MS_PER_HOUR = 3_600_000
_REPORT_ALL = EngineConfig(min_strength=0)


@dataclass(frozen=True)
class OpenPosition:
    strategy_id: str
    strategy_name: str
    direction: str
    entry_time: int
    entry_price: float
    stop_loss: float
    take_profit: float
    signal_strength: int


class BacktestEngine:
    """Simulates every registered strategy on historical candle data.

    Args:
        options: Simulation parameters.
        registry: Strategies to run, in position-opening priority order.
    """

    def __init__(
        self,
        options: Optional[BacktestOptions] = None,
        registry: Registry = DEFAULT_REGISTRY,
    ) -> None:
        self._options = options or BacktestOptions()
        self._registry = registry

    @property
    def options(self) -> BacktestOptions:
        return self._options

    # ── Public API ───────────────────────────────────────────────────────

    def run(
        self,
        symbol: str,
        primary_candles: Sequence[Candle],
        confirmation_candles: Sequence[Candle],
    ) -> BacktestResult:
        """Execute a full backtest.

        Args:
            symbol: Label carried onto every trade.
            primary_candles: Candles iterated bar by bar (1h by default).
            confirmation_candles: Higher-timeframe candles (4h by default).

        Returns:
            A :class:`BacktestResult`.  Too little primary data yields a
            zero-valued result instead of raising.

        Raises:
            MalformedCandleError: If either series is malformed.
        """
        opts = self._options
        candles = tuple(primary_candles)
        n = len(candles)
        if n < opts.min_candles:
            logger.info(
                "Backtest %s skipped: %d candles, need %d",
                symbol, n, opts.min_candles,
            )
            return self.empty_result(symbol, candles)

        validate_candles(candles, f"{symbol} {opts.primary_timeframe}")
        confirmation = tuple(confirmation_candles)
        if confirmation:
            validate_candles(confirmation, f"{symbol} {opts.confirmation_timeframe}")

        primary_ms = timeframe_ms(opts.primary_timeframe)
        confirmation_ms = timeframe_ms(opts.confirmation_timeframe)
        confirmation_closes = [c.time + confirmation_ms for c in confirmation]

        trades: list[BacktestTrade] = []
        positions: dict[tuple[str, str], OpenPosition] = {}
        equity = opts.start_equity
        tracker = DrawdownTracker(opts.start_equity)
        curve: list[EquityPoint] = []

        for i in range(opts.warmup_period, n):
            bar = candles[i]

            # 1. Exits: stop before target
            for key, pos in list(positions.items()):
                hit = self._check_exit(pos, bar)
                if hit is None:
                    continue
                exit_price, outcome = hit
                trade = self._close(symbol, len(trades), pos, bar.time, exit_price, outcome)
                trades.append(trade)
                equity = apply_return(equity, opts.position_size_percent, trade.pnl_percent)
                del positions[key]

            # 2. Sampled equity curve and drawdown
            if i % opts.equity_sample_every == 0:
                curve.append(EquityPoint(bar.time, equity))
                tracker.update(equity)

            # 3. Entries
            if len(positions) >= opts.max_open_positions:
                continue
            completed = bisect.bisect_right(confirmation_closes, bar.time + primary_ms)
            if completed < opts.min_confirmation_candles:
                continue

            try:
                results = self._evaluate_bar(
                    symbol, candles[: i + 1], confirmation[:completed], bar.close,
                )
            except Exception as exc:  # noqa: BLE001
                logger.debug("Bar %d of %s skipped: %s", i, symbol, exc)
                continue

            for result in results:
                if len(positions) >= opts.max_open_positions:
                    break
                sig = result.signal
                if sig.is_neutral or sig.strength < opts.min_signal_strength or not sig.has_levels:
                    continue
                key = (result.id, sig.direction)
                if key in positions:
                    continue
                positions[key] = OpenPosition(
                    strategy_id=result.id,
                    strategy_name=result.name,
                    direction=sig.direction,
                    entry_time=bar.time,
                    entry_price=sig.entry,
                    stop_loss=sig.stop,
                    take_profit=sig.target,
                    signal_strength=sig.strength,
                )
                logger.debug(
                    "%s %s opened %s at %.6g (stop %.6g, target %.6g, strength %d)",
                    symbol, result.id, sig.direction, sig.entry, sig.stop, sig.target, sig.strength,
                )

        # Close any remaining positions at the last close
        last = candles[-1]
        for pos in positions.values():
            pnl = self._calc_pnl(pos, last.close)
            trade = self._close(
                symbol, len(trades), pos, last.time, last.close,
                "win" if pnl >= 0 else "loss",
            )
            trades.append(trade)
            equity = apply_return(equity, opts.position_size_percent, trade.pnl_percent)

        strategy_stats = calculate_strategy_stats(trades)
        overall = calculate_overall_stats(trades, strategy_stats, tracker.max_drawdown_pct)
        logger.info(
            "Backtest %s: %d trades over %d candles, win rate %.1f%%, final equity %.2f",
            symbol, overall.total_trades, n - opts.warmup_period, overall.win_rate, equity,
        )
        return BacktestResult(
            symbol=symbol,
            period=opts.primary_timeframe,
            start_date=to_iso(candles[opts.warmup_period].time),
            end_date=to_iso(last.time),
            total_candles=n - opts.warmup_period,
            trades=tuple(trades),
            strategy_stats=tuple(strategy_stats),
            overall=overall,
            equity_curve=tuple(curve),
            final_equity=equity,
        )

    def empty_result(self, symbol: str, candles: Sequence[Candle]) -> BacktestResult:
        """Zero-valued result for a series too short to simulate."""
        return BacktestResult(
            symbol=symbol,
            period=self._options.primary_timeframe,
            start_date=to_iso(candles[0].time) if candles else "",
            end_date=to_iso(candles[-1].time) if candles else "",
            total_candles=len(candles),
            final_equity=self._options.start_equity,
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    def _evaluate_bar(
        self,
        symbol: str,
        primary: Sequence[Candle],
        confirmation: Sequence[Candle],
        price: float,
    ) -> list[StrategyResult]:
        """Primary-timeframe results with confirmation applied, in registry order.

        The confirmation read is blended in only once the history holds more
        than ``min_confirmation_candles`` bars; at exactly the minimum the
        primary results are returned unchanged.
        """
        opts = self._options
        primary_result = evaluate_strategies(
            build_input(symbol, primary, opts.primary_timeframe, price),
            _REPORT_ALL, self._registry,
        )
        if len(confirmation) <= opts.min_confirmation_candles:
            return list(primary_result.strategies)
        confirmation_result = evaluate_strategies(
            build_input(symbol, confirmation, opts.confirmation_timeframe, price),
            _REPORT_ALL, self._registry,
        )
        return apply_confirmation(primary_result.strategies, confirmation_result.strategies)

    @staticmethod
    def _check_exit(pos: OpenPosition, candle: Candle) -> Optional[tuple[float, str]]:
        """Check if *candle* triggers a stop or target exit.

        Returns ``(exit_price, outcome)`` or ``None``.  When both are hit
        in the same candle, the stop is assumed first (conservative).
        """
        if pos.direction == "long":
            sl_hit = candle.low <= pos.stop_loss
            tp_hit = candle.high >= pos.take_profit
        else:
            sl_hit = candle.high >= pos.stop_loss
            tp_hit = candle.low <= pos.take_profit

        if sl_hit:
            return pos.stop_loss, "loss"
        if tp_hit:
            return pos.take_profit, "win"
        return None

    @staticmethod
    def _calc_pnl(pos: OpenPosition, exit_price: float) -> float:
        """Percent return of *pos* exiting at *exit_price*."""
        if pos.direction == "long":
            return (exit_price - pos.entry_price) / pos.entry_price * 100
        return (pos.entry_price - exit_price) / pos.entry_price * 100

    @staticmethod
    def _close(
        symbol: str,
        seq: int,
        pos: OpenPosition,
        exit_time: int,
        exit_price: float,
        outcome: str,
    ) -> BacktestTrade:
        return BacktestTrade(
            id=f"bt_{seq}",
            symbol=symbol,
            strategy_id=pos.strategy_id,
            strategy_name=pos.strategy_name,
            direction=pos.direction,
            entry_time=pos.entry_time,
            entry_price=pos.entry_price,
            exit_time=exit_time,
            exit_price=exit_price,
            stop_loss=pos.stop_loss,
            take_profit=pos.take_profit,
            outcome=outcome,
            pnl_percent=BacktestEngine._calc_pnl(pos, exit_price),
            holding_period_hours=(exit_time - pos.entry_time) / _MS_PER_HOUR,
        )


def run_backtest(
    symbol: str,
    candles_1h: Sequence[Candle],
    candles_4h: Sequence[Candle],
    options: Optional[BacktestOptions] = None,
    registry: Registry = DEFAULT_REGISTRY,
) -> BacktestResult:
    """Convenience wrapper: ``BacktestEngine(options, registry).run(...)``."""
    return BacktestEngine(options, registry).run(symbol, candles_1h, candles_4h)
