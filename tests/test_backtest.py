"""Tests for the backtest simulator and its statistics.

Covers the bar loop (warm-up, completed confirmation candles, exits,
capacity, forced closes), run guards, options validation and the
per-strategy / overall statistics.
"""

import math
import random

import pytest

from tesseract.backtest.engine import BacktestEngine, OpenPosition, run_backtest
from tesseract.backtest.models import BacktestOptions, BacktestTrade, json_safe
from tesseract.backtest.stats import (
    _sharpe,
    calculate_overall_stats,
    calculate_strategy_stats,
)
from tesseract.market.models import Candle, MalformedCandleError
from tesseract.risk.levels import build_signal
from tesseract.strategy.models import neutral
from tesseract.strategy.registry import Registry

HOUR = 3_600_000


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_candle(time, o, h, l, c, vol=1000.0):
    return Candle(time=time, open=o, high=h, low=l, close=c, volume=vol)


def _hourly(n=250):
    """Flat 1h series: close 100, range 99.5–100.5."""
    return [_make_candle(i * HOUR, 100, 100.5, 99.5, 100) for i in range(n)]


def _four_hourly(n=63):
    return [_make_candle(j * 4 * HOUR, 100, 100.5, 99.5, 100) for j in range(n)]


class _AlwaysLong:
    """Fires LONG on every evaluation with very wide levels."""

    description = "test stub"
    category = "swing"
    timeframes = ("1h", "4h")

    def __init__(self, strategy_id):
        self.id = strategy_id
        self.name = strategy_id.title()

    def evaluate(self, data):
        p = data.price
        return build_signal("LONG", 80, ["always"], p, p * 0.5, p * 2)


class _OneShot:
    """Fires LONG 90 once, on the 1h bar with exactly 201 candles."""

    id = "one-shot"
    name = "One Shot"
    description = "test stub"
    category = "swing"
    timeframes = ("1h",)

    def evaluate(self, data):
        if data.timeframe == "1h" and len(data.candles) == 201:
            return build_signal("LONG", 90, ["now"], 100.0, 95.0, 110.0)
        return neutral("waiting")


class _Recorder:
    """Records the series lengths it is shown on each timeframe."""

    id = "recorder"
    name = "Recorder"
    description = "test stub"
    category = "swing"
    timeframes = ("1h", "4h")

    def __init__(self):
        self.seen_1h = []
        self.seen_4h = []

    def evaluate(self, data):
        if data.timeframe == "4h":
            self.seen_4h.append(len(data.candles))
        else:
            self.seen_1h.append(len(data.candles))
        return neutral("observing")


def _trade(strategy_id, outcome, pnl, hours=4.0, name=None):
    return BacktestTrade(
        id="t", symbol="BTC", strategy_id=strategy_id,
        strategy_name=name or strategy_id.upper(), direction="long",
        entry_time=0, entry_price=100.0, exit_time=int(hours * HOUR),
        exit_price=100.0 + pnl, stop_loss=90.0, take_profit=120.0,
        outcome=outcome, pnl_percent=pnl, holding_period_hours=hours,
    )


# ── Bar loop ─────────────────────────────────────────────────────────────


class TestBacktestEngine:
    def test_capacity_respects_registry_order(self):
        registry = Registry((_AlwaysLong("first"), _AlwaysLong("second")))
        result = run_backtest(
            "BTC", _hourly(), _four_hourly(),
            BacktestOptions(max_open_positions=1), registry,
        )
        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.strategy_id == "first"
        assert trade.entry_time == 200 * HOUR
        # never stopped out; force-closed flat at the last candle
        assert trade.exit_time == 249 * HOUR
        assert trade.pnl_percent == 0
        assert trade.outcome == "win"
        assert trade.holding_period_hours == 49
        assert result.final_equity == pytest.approx(10_000.0)

    def test_one_position_per_strategy_and_direction(self):
        registry = Registry((_AlwaysLong("first"), _AlwaysLong("second")))
        result = run_backtest("BTC", _hourly(), _four_hourly(), registry=registry)
        assert sorted(t.strategy_id for t in result.trades) == ["first", "second"]
        assert all(t.entry_time == 200 * HOUR for t in result.trades)

    def test_stop_checked_before_target(self):
        pos = OpenPosition("x", "X", "long", 0, 100.0, 95.0, 110.0, 90)
        both = _make_candle(HOUR, 100, 111, 94, 100)
        assert BacktestEngine._check_exit(pos, both) == (95.0, "loss")
        target_only = _make_candle(HOUR, 100, 111, 99, 100)
        assert BacktestEngine._check_exit(pos, target_only) == (110.0, "win")
        assert BacktestEngine._check_exit(pos, _make_candle(HOUR, 100, 105, 96, 100)) is None

    def test_short_exits(self):
        pos = OpenPosition("x", "X", "short", 0, 100.0, 104.0, 90.0, 90)
        assert BacktestEngine._check_exit(pos, _make_candle(HOUR, 100, 104, 95, 100)) == (104.0, "loss")
        assert BacktestEngine._check_exit(pos, _make_candle(HOUR, 100, 101, 89, 100)) == (90.0, "win")
        assert BacktestEngine._calc_pnl(pos, 90.0) == pytest.approx(10.0)

    def test_stop_loss_trade_updates_equity(self):
        candles = _hourly()
        candles[201] = _make_candle(201 * HOUR, 100, 111, 94, 100)
        result = run_backtest("BTC", candles, _four_hourly(), registry=Registry((_OneShot(),)))

        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.outcome == "loss"
        assert trade.exit_price == 95.0
        assert trade.pnl_percent == pytest.approx(-5.0)
        assert trade.exit_time == 201 * HOUR
        assert trade.holding_period_hours == 1
        # 2 % of 10,000 notional losing 5 %
        assert result.final_equity == pytest.approx(9_990.0)
        assert result.overall.max_drawdown_percent == pytest.approx(0.1)

    def test_only_completed_confirmation_candles(self):
        recorder = _Recorder()
        run_backtest("BTC", _hourly(), _four_hourly(), registry=Registry((recorder,)))
        # the 4h bar opening at 200h closes at 204h, i.e. after 1h bar 203
        assert recorder.seen_4h[:5] == [51, 51, 51, 51, 52]

    def test_confirmation_needs_more_than_minimum(self):
        recorder = _Recorder()
        run_backtest("BTC", _hourly(), _four_hourly(), registry=Registry((recorder,)))
        # bars 200-202 see exactly 50 completed 4h candles: 1h only
        assert recorder.seen_1h[:4] == [201, 202, 203, 204]
        assert len(recorder.seen_4h) == len(recorder.seen_1h) - 3

    def test_unblended_signal_at_minimum_confirmation(self):
        # raw LONG 90 at bar 200; the 4h neutral penalty would leave 70
        result = run_backtest(
            "BTC", _hourly(), _four_hourly(),
            BacktestOptions(min_signal_strength=75), Registry((_OneShot(),)),
        )
        assert len(result.trades) == 1
        assert result.trades[0].entry_time == 200 * HOUR

    def test_confirmation_boost_after_minimum(self):
        # 80 alone misses the bar; 80 + 15 agreement boost clears it from bar 203
        result = run_backtest(
            "BTC", _hourly(), _four_hourly(),
            BacktestOptions(min_signal_strength=90), Registry((_AlwaysLong("first"),)),
        )
        assert len(result.trades) == 1
        assert result.trades[0].entry_time == 203 * HOUR

    def test_equity_curve_sampled(self):
        registry = Registry((_Recorder(),))
        result = run_backtest("BTC", _hourly(), _four_hourly(), registry=registry)
        assert [p.time for p in result.equity_curve] == [i * HOUR for i in range(200, 250, 4)]
        assert all(p.equity == 10_000.0 for p in result.equity_curve)
        assert result.total_candles == 50
        assert result.start_date == "1970-01-09T08:00:00.000Z"
        assert result.period == "1h"

    def test_too_few_confirmation_candles_opens_nothing(self):
        registry = Registry((_AlwaysLong("first"),))
        result = run_backtest("BTC", _hourly(), _four_hourly(10), registry=registry)
        assert result.trades == ()
        assert result.final_equity == 10_000.0

    def test_insufficient_primary_data(self):
        result = run_backtest("BTC", _hourly(249), _four_hourly())
        assert result.total_candles == 249
        assert result.trades == ()
        assert result.overall.best_strategy == "N/A"
        assert result.final_equity == 10_000.0

    def test_empty_primary_series(self):
        result = run_backtest("BTC", [], [])
        assert result.total_candles == 0
        assert result.start_date == ""

    def test_malformed_series_raises(self):
        candles = _hourly()
        candles[120] = _make_candle(119 * HOUR, 100, 100.5, 99.5, 100)
        with pytest.raises(MalformedCandleError, match=r"BTC 1h\[120\]"):
            run_backtest("BTC", candles, _four_hourly())

    def test_malformed_confirmation_raises(self):
        four = _four_hourly()
        four[3] = _make_candle(3 * 4 * HOUR, 100, 99, 101, 100)
        with pytest.raises(MalformedCandleError, match="high 99"):
            run_backtest("BTC", _hourly(), four)

    def test_to_dict_wire_shape(self):
        registry = Registry((_AlwaysLong("first"),))
        out = run_backtest("BTC", _hourly(), _four_hourly(), registry=registry).to_dict()
        assert set(out) >= {"symbol", "period", "startDate", "endDate", "totalCandles",
                            "trades", "strategyStats", "overall", "equityCurve"}
        assert out["trades"][0]["strategyId"] == "first"
        assert out["overall"]["bestStrategy"] == "First"
        assert out["finalEquity"] == 10_000.0


class TestDefaultRegistryRun:
    """Full runs of the built-in strategies on a seeded random walk."""

    @staticmethod
    def _walk(n=300, seed=11):
        rng = random.Random(seed)
        price = 100.0
        hourly = []
        for i in range(n):
            o = price
            price *= 1 + rng.gauss(0, 0.012)
            hi = max(o, price) * (1 + abs(rng.gauss(0, 0.003)))
            lo = min(o, price) * (1 - abs(rng.gauss(0, 0.003)))
            hourly.append(_make_candle(i * HOUR, o, hi, lo, price, rng.uniform(500, 2500)))
        four = []
        for j in range(0, n - 3, 4):
            block = hourly[j:j + 4]
            four.append(_make_candle(
                block[0].time, block[0].open, max(c.high for c in block),
                min(c.low for c in block), block[-1].close, sum(c.volume for c in block),
            ))
        return hourly, four

    def test_counts_are_consistent(self):
        result = run_backtest("BTC", *self._walk())
        assert result.overall.total_trades == len(result.trades)
        assert sum(s.total_trades for s in result.strategy_stats) == len(result.trades)
        assert result.overall.wins + result.overall.losses == len(result.trades)
        for t in result.trades:
            assert t.entry_time <= t.exit_time
            assert t.id.startswith("bt_")

    def test_deterministic(self):
        hourly, four = self._walk()
        assert run_backtest("BTC", hourly, four) == run_backtest("BTC", hourly, four)


# ── Options ──────────────────────────────────────────────────────────────


class TestBacktestOptions:
    def test_defaults(self):
        opts = BacktestOptions()
        assert opts.start_equity == 10_000.0
        assert opts.min_candles == 250

    @pytest.mark.parametrize("kwargs,name", [
        ({"start_equity": 0}, "start_equity"),
        ({"position_size_percent": 0}, "position_size_percent"),
        ({"position_size_percent": 150}, "position_size_percent"),
        ({"max_open_positions": 0}, "max_open_positions"),
        ({"min_signal_strength": 101}, "min_signal_strength"),
        ({"equity_sample_every": 0}, "equity_sample_every"),
    ])
    def test_rejects_out_of_range(self, kwargs, name):
        with pytest.raises(ValueError, match=name):
            BacktestOptions(**kwargs)

    def test_unknown_timeframe_rejected_at_run(self):
        engine = BacktestEngine(BacktestOptions(primary_timeframe="2h"))
        with pytest.raises(ValueError, match="Unsupported timeframe"):
            engine.run("BTC", _hourly(), _four_hourly())


# ── Stats ────────────────────────────────────────────────────────────────


class TestStats:
    def test_strategy_stats(self):
        trades = [
            _trade("a", "win", 4.0),
            _trade("a", "loss", -2.0),
            _trade("a", "loss", -1.0),
            _trade("a", "win", 3.0, hours=8.0),
        ]
        (s,) = calculate_strategy_stats(trades)
        assert s.total_trades == 4
        assert s.win_rate == 50.0
        assert s.avg_win_percent == pytest.approx(3.5)
        assert s.avg_loss_percent == pytest.approx(1.5)
        assert s.total_pnl_percent == pytest.approx(4.0)
        assert s.profit_factor == pytest.approx(7 / 3)
        assert s.max_consecutive_losses == 2
        assert s.avg_holding_hours == pytest.approx(5.0)
        assert s.expectancy == pytest.approx(1.0)

    def test_profit_factor_edges(self):
        stats = calculate_strategy_stats([_trade("w", "win", 2.0), _trade("l", "loss", -2.0)])
        by_id = {s.strategy_id: s for s in stats}
        assert math.isinf(by_id["w"].profit_factor)
        assert by_id["l"].profit_factor == 0.0

    def test_sorted_best_first(self):
        trades = [_trade("a", "loss", -1.0), _trade("b", "win", 5.0), _trade("c", "win", 1.0)]
        stats = calculate_strategy_stats(trades)
        assert [s.strategy_id for s in stats] == ["b", "c", "a"]
        overall = calculate_overall_stats(trades, stats, 3.5)
        assert overall.best_strategy == "B"
        assert overall.worst_strategy == "A"
        assert overall.total_pnl_percent == pytest.approx(5.0)
        assert overall.win_rate == pytest.approx(200 / 3)
        assert overall.max_drawdown_percent == 3.5

    def test_overall_empty(self):
        overall = calculate_overall_stats([], [])
        assert overall.total_trades == 0
        assert overall.win_rate == 0.0
        assert overall.best_strategy == "N/A"
        assert overall.sharpe_ratio == 0.0

    def test_sharpe(self):
        assert _sharpe([]) == 0.0
        assert _sharpe([1.0]) == 0.0
        assert _sharpe([2.0, 2.0, 2.0]) == 0.0
        # mean 2, sample std 1
        assert _sharpe([1.0, 2.0, 3.0]) == pytest.approx(2 * math.sqrt(252))
        assert _sharpe([-1.0, -2.0, -3.0]) < 0


class TestJsonSafe:
    def test_replaces_non_finite(self):
        data = {"a": math.inf, "b": [1.5, -math.inf, math.nan], "c": ("x", 2)}
        assert json_safe(data) == {"a": None, "b": [1.5, None, None], "c": ["x", 2]}
