"""Tests for the strategy engine, the meta-signal and the registry."""

import logging

import pytest

from tesseract.engine import (
    EngineConfig,
    build_input,
    calculate_meta_signal,
    evaluate_strategies,
)
from tesseract.market.models import Candle
from tesseract.risk.levels import build_signal
from tesseract.strategy.models import NEUTRAL, StrategyResult, neutral
from tesseract.strategy.registry import CONFLUENCE, DEFAULT_REGISTRY, Registry, get_strategy

HOUR = 3_600_000


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_candle(i, price=100.0):
    return Candle(time=i * HOUR, open=price, high=price + 0.5, low=price - 0.5, close=price, volume=1000.0)


class _Stub:
    description = "stub"
    timeframes = ("1h",)

    def __init__(self, strategy_id, signal, category="swing"):
        self.id = strategy_id
        self.name = strategy_id.upper()
        self.category = category
        self._signal = signal

    def evaluate(self, data):
        return self._signal


class _Raising(_Stub):
    def evaluate(self, data):
        raise RuntimeError("kaput")


def _data():
    return build_input("BTC", [_make_candle(i) for i in range(40)], "1h")


def _clock():
    return 1_700_000_000_000


LONG_80 = build_signal("LONG", 80, ["a"], 100, 95, 110)
SHORT_40 = build_signal("SHORT", 40, ["b"], 100, 105, 90)
STRONG_LONG_80 = build_signal("STRONG_LONG", 80, ["c"], 100, 95, 110)


# ── Engine ───────────────────────────────────────────────────────────────


class TestEvaluateStrategies:
    def _registry(self):
        return Registry((
            _Stub("one", LONG_80),
            _Stub("two", SHORT_40),
            _Stub("three", neutral("flat", strength=10)),
            _Stub("four", STRONG_LONG_80),
        ))

    def test_results_in_registry_order(self):
        result = evaluate_strategies(_data(), registry=self._registry(), clock=_clock)
        assert [r.id for r in result.strategies] == ["one", "two", "three", "four"]
        assert result.symbol == "BTC"
        assert result.timeframe == "1h"
        assert result.timestamp == _clock()
        assert all(r.timestamp == _clock() for r in result.strategies)

    def test_consensus_tally(self):
        consensus = evaluate_strategies(_data(), registry=self._registry(), clock=_clock).consensus
        assert (consensus.bullish, consensus.bearish, consensus.neutral) == (2, 1, 1)

    def test_strongest_is_first_on_tie(self):
        consensus = evaluate_strategies(_data(), registry=self._registry(), clock=_clock).consensus
        assert consensus.strongest_signal.id == "one"

    def test_min_strength_filters_reports_not_tally(self):
        result = evaluate_strategies(
            _data(), EngineConfig(min_strength=50), registry=self._registry(), clock=_clock,
        )
        assert [r.id for r in result.strategies] == ["one", "four"]
        assert result.consensus.bearish == 1
        assert result.consensus.neutral == 1

    def test_enabled_strategies_subset(self):
        result = evaluate_strategies(
            _data(), EngineConfig(enabled_strategies=("two", "three")),
            registry=self._registry(), clock=_clock,
        )
        assert [r.id for r in result.strategies] == ["two", "three"]
        assert result.consensus.strongest_signal.id == "two"

    def test_all_neutral_has_no_strongest(self):
        registry = Registry((_Stub("x", neutral("flat", strength=60)),))
        result = evaluate_strategies(_data(), registry=registry, clock=_clock)
        assert result.consensus.strongest_signal is None

    def test_raising_strategy_skipped_and_logged(self, caplog):
        registry = Registry((_Raising("bad", LONG_80), _Stub("good", SHORT_40)))
        with caplog.at_level(logging.WARNING, logger="tesseract.engine"):
            result = evaluate_strategies(_data(), registry=registry, clock=_clock)
        assert [r.id for r in result.strategies] == ["good"]
        assert result.consensus.bullish == 0
        assert "bad" in caplog.text

    def test_to_dict_camel_case(self):
        out = evaluate_strategies(_data(), registry=self._registry(), clock=_clock).to_dict()
        assert out["consensus"]["strongestSignal"]["id"] == "one"
        assert out["strategies"][2]["signal"] == {"type": NEUTRAL, "strength": 10, "reasons": ["flat"]}
        assert out["strategies"][0]["signal"]["stop"] == 95

    def test_default_registry_runs(self):
        result = evaluate_strategies(_data(), clock=_clock)
        assert len(result.strategies) == len(DEFAULT_REGISTRY)
        c = result.consensus
        assert c.bullish + c.bearish + c.neutral == len(DEFAULT_REGISTRY)


# ── Meta-signal ──────────────────────────────────────────────────────────


def _res(name, signal):
    return StrategyResult(id=name, name=name, category="swing", signal=signal)


class TestMetaSignal:
    def test_empty(self):
        sig = calculate_meta_signal([])
        assert sig.type == NEUTRAL
        assert sig.strength == 0
        assert sig.reasons == ("No strategy signals",)

    def test_strong_votes_count_double(self):
        # 2·0.8 + 1·0.8 = 2.4 bullish, no bearish
        sig = calculate_meta_signal([_res("a", STRONG_LONG_80), _res("b", LONG_80)])
        assert sig.type == "STRONG_LONG"
        assert sig.strength == 100
        assert not sig.has_levels
        assert sig.reasons == ("a: STRONG_LONG (80%)", "b: LONG (80%)")

    def test_mixed_votes(self):
        # bull 0.8, bear 0.4 → net 0.4 < 0.5
        sig = calculate_meta_signal([_res("a", LONG_80), _res("b", SHORT_40)])
        assert sig.type == NEUTRAL
        assert sig.strength == 33

    def test_neutral_results_ignored(self):
        sig = calculate_meta_signal([_res("a", neutral("x", 90)), _res("b", SHORT_40)])
        assert sig.type == NEUTRAL
        assert sig.strength == 100
        assert sig.reasons == ("b: SHORT (40%)",)

    def test_short_side(self):
        strong_short = build_signal("STRONG_SHORT", 60, [], 100, 105, 90)
        sig = calculate_meta_signal([_res("a", strong_short)])
        assert sig.type == "SHORT"


# ── Registry ─────────────────────────────────────────────────────────────


class TestRegistry:
    def test_default_order(self):
        assert DEFAULT_REGISTRY.ids == (
            "ribbon-rider",
            "compression-cannon",
            "dynamic-bounce",
            "crossover-cascade",
            "divergence-hunter",
            "macd-momentum",
            "bollinger-squeeze",
            "mean-reversion",
            "volume-breakout",
        )

    def test_get_unknown_lists_available(self):
        with pytest.raises(KeyError, match="Available: ribbon-rider"):
            DEFAULT_REGISTRY.get("nope")

    def test_find(self):
        assert DEFAULT_REGISTRY.find("macd-momentum").name
        assert DEFAULT_REGISTRY.find("nope") is None

    def test_get_strategy_resolves_confluence(self):
        assert get_strategy("ultimate") is CONFLUENCE
        assert get_strategy("ribbon-rider").id == "ribbon-rider"

    def test_by_category(self):
        breakout = DEFAULT_REGISTRY.by_category("breakout")
        assert set(breakout.ids) == {"compression-cannon", "bollinger-squeeze", "volume-breakout"}

    def test_for_timeframe(self):
        daily = DEFAULT_REGISTRY.for_timeframe("1d")
        assert "ribbon-rider" in daily.ids
        assert "volume-breakout" not in daily.ids

    def test_with_strategies_appends(self):
        extended = DEFAULT_REGISTRY.with_strategies(CONFLUENCE)
        assert extended.ids[-1] == "ultimate"
        assert len(extended) == len(DEFAULT_REGISTRY) + 1
        assert len(DEFAULT_REGISTRY) == 9

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValueError, match="Duplicate strategy ids: one"):
            Registry((_Stub("one", LONG_80), _Stub("one", SHORT_40)))
