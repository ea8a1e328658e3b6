"""Tests for multi-symbol batch runs and aggregation."""

import logging

import pytest

from tesseract.backtest.batch import BacktestJob, aggregate_results, run_batch
from tesseract.backtest.models import BacktestOptions, BacktestResult, BacktestTrade
from tesseract.backtest.stats import calculate_overall_stats, calculate_strategy_stats
from tesseract.market.models import Candle
from tesseract.strategy.models import neutral
from tesseract.strategy.registry import Registry

HOUR = 3_600_000


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_candle(time, price=100.0):
    return Candle(time=time, open=price, high=price + 0.5, low=price - 0.5, close=price, volume=1000.0)


def _job(symbol, n_1h=250, n_4h=63):
    return BacktestJob(
        symbol=symbol,
        candles_1h=tuple(_make_candle(i * HOUR) for i in range(n_1h)),
        candles_4h=tuple(_make_candle(j * 4 * HOUR) for j in range(n_4h)),
    )


class _Quiet:
    id = "quiet"
    name = "Quiet"
    description = "never trades"
    category = "swing"
    timeframes = ("1h",)

    def evaluate(self, data):
        return neutral("nothing")


def _trade(symbol, strategy_id, outcome, pnl):
    return BacktestTrade(
        id="t", symbol=symbol, strategy_id=strategy_id, strategy_name=strategy_id.title(),
        direction="long", entry_time=0, entry_price=100.0, exit_time=HOUR,
        exit_price=100.0 + pnl, stop_loss=90.0, take_profit=120.0,
        outcome=outcome, pnl_percent=pnl, holding_period_hours=1.0,
    )


def _result(symbol, trades):
    stats = calculate_strategy_stats(trades)
    return BacktestResult(
        symbol=symbol, period="1h", start_date="", end_date="", total_candles=50,
        trades=tuple(trades), strategy_stats=tuple(stats),
        overall=calculate_overall_stats(trades, stats),
    )


# ── run_batch ────────────────────────────────────────────────────────────


class TestRunBatch:
    def test_sequential_keeps_job_order(self):
        results = run_batch(
            [_job("ETH"), _job("BTC")], registry=Registry((_Quiet(),)),
        )
        assert [r.symbol for r in results] == ["ETH", "BTC"]
        assert all(r.total_candles == 50 for r in results)

    def test_short_jobs_skipped(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tesseract.backtest"):
            results = run_batch(
                [_job("ETH", n_1h=100), _job("BTC")], registry=Registry((_Quiet(),)),
            )
        assert [r.symbol for r in results] == ["BTC"]
        assert "Skipping ETH" in caplog.text

    def test_all_skipped(self):
        assert run_batch([_job("ETH", n_1h=10)]) == []

    def test_custom_options_threshold(self):
        opts = BacktestOptions(warmup_period=50, min_bars_after_warmup=10, min_confirmation_candles=5)
        results = run_batch([_job("SOL", n_1h=60, n_4h=20)], opts, registry=Registry((_Quiet(),)))
        assert len(results) == 1
        assert results[0].total_candles == 10

    def test_parallel_matches_sequential(self):
        jobs = [_job("BTC"), _job("ETH")]
        sequential = run_batch(jobs, max_workers=1)
        parallel = run_batch(jobs, max_workers=2)
        assert parallel == sequential


# ── Aggregation ──────────────────────────────────────────────────────────


class TestAggregateResults:
    def test_empty(self):
        agg = aggregate_results([])
        assert agg.total_symbols == 0
        assert agg.best_strategy == "N/A"
        assert agg.to_dict()["strategyRankings"] == []

    def test_pools_trades_and_ranks(self):
        btc = _result("BTC", [
            _trade("BTC", "alpha", "win", 4.0),
            _trade("BTC", "beta", "loss", -2.0),
        ])
        eth = _result("ETH", [
            _trade("ETH", "beta", "win", 1.0),
            _trade("ETH", "alpha", "loss", -1.0),
            _trade("ETH", "alpha", "loss", -1.0),
        ])
        agg = aggregate_results([btc, eth])

        assert agg.total_symbols == 2
        assert agg.total_trades == 5
        assert (agg.wins, agg.losses) == (2, 3)
        assert agg.win_rate == pytest.approx(40.0)
        assert agg.total_pnl_percent == pytest.approx(1.0)
        assert agg.avg_pnl_per_trade == pytest.approx(0.2)
        assert agg.best_strategy == "Alpha"

        alpha, beta = agg.strategy_rankings
        assert (alpha.strategy_id, alpha.total_trades) == ("alpha", 3)
        assert alpha.win_rate == pytest.approx(100 / 3)
        assert alpha.total_pnl_percent == pytest.approx(2.0)
        assert (beta.total_trades, beta.total_pnl_percent) == (2, pytest.approx(-1.0))

    def test_to_dict_camel_case(self):
        out = aggregate_results([_result("BTC", [_trade("BTC", "alpha", "win", 1.0)])]).to_dict()
        assert out["totalSymbols"] == 1
        assert out["avgPnlPerTrade"] == 1.0
        assert out["strategyRankings"][0]["strategyName"] == "Alpha"
