"""Tests for the risk module.

Covers strength clamping, stop/target helpers, notional sizing and
drawdown tracking.
"""

import pytest

from tesseract.risk.drawdown import DrawdownTracker
from tesseract.risk.levels import clamp_strength, levels_valid, target_from_risk
from tesseract.risk.position_sizer import apply_return, notional_size


# ── Levels ───────────────────────────────────────────────────────────────


class TestLevels:
    def test_clamp_strength_rounds_half_up(self):
        assert clamp_strength(44.5) == 45
        assert clamp_strength(44.49) == 44
        assert clamp_strength(float("nan")) == 0
        assert clamp_strength(250) == 100

    def test_target_from_risk_long(self):
        # risk 5, 2R above entry
        assert target_from_risk(100.0, 95.0, 2.0) == pytest.approx(110.0)

    def test_target_from_risk_short(self):
        assert target_from_risk(100.0, 104.0, 2.5) == pytest.approx(90.0)

    def test_levels_valid(self):
        assert levels_valid("long", 100, 95, 110)
        assert not levels_valid("long", 100, 100, 110)
        assert levels_valid("short", 100, 105, 90)
        assert not levels_valid("short", 100, 95, 110)
        assert not levels_valid("neutral", 100, 95, 110)


# ── Position sizing ──────────────────────────────────────────────────────


class TestPositionSizing:
    def test_notional_size(self):
        """$10,000 equity at 2% → $200 notional."""
        assert notional_size(10_000.0, 2.0) == pytest.approx(200.0)

    def test_rejects_zero_equity(self):
        with pytest.raises(ValueError, match="equity"):
            notional_size(0, 2.0)

    def test_rejects_zero_size(self):
        with pytest.raises(ValueError, match="size_pct"):
            notional_size(10_000, 0)

    def test_apply_return(self):
        # 200 notional losing 5 % → -10
        assert apply_return(10_000.0, 2.0, -5.0) == pytest.approx(9_990.0)
        assert apply_return(10_000.0, 2.0, 10.0) == pytest.approx(10_020.0)


# ── Drawdown ─────────────────────────────────────────────────────────────


class TestDrawdown:
    def test_initial_state(self):
        dd = DrawdownTracker(10_000.0)
        assert dd.peak_equity == 10_000.0
        assert dd.drawdown_pct == 0.0
        assert dd.max_drawdown_pct == 0.0

    def test_tracks_peak_and_max(self):
        dd = DrawdownTracker(10_000.0)
        dd.update(11_000.0)
        dd.update(9_900.0)
        assert dd.peak_equity == 11_000.0
        assert dd.drawdown_pct == pytest.approx(10.0)
        dd.update(10_450.0)
        assert dd.drawdown_pct == pytest.approx(5.0)
        assert dd.max_drawdown_pct == pytest.approx(10.0)

    def test_rejects_non_positive_equity(self):
        with pytest.raises(ValueError, match="initial_equity"):
            DrawdownTracker(0)
