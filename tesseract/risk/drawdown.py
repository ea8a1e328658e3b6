"""Drawdown tracking — pure math, no I/O.

Tracks peak equity and the deepest peak-to-trough decline seen so far.
The backtest simulator feeds it only the sampled equity points, so the
reported maximum reflects the sampled curve.
"""


class DrawdownTracker:
    """Tracks equity peaks and computes drawdown metrics.

    Args:
        initial_equity: Starting account equity; also the initial peak.
    """

    def __init__(self, initial_equity: float) -> None:
        if initial_equity <= 0:
            raise ValueError(
                f"initial_equity must be positive, got {initial_equity}"
            )
        self._peak_equity: float = initial_equity
        self._current_equity: float = initial_equity
        self._max_drawdown_pct: float = 0.0

    # ── Mutation ─────────────────────────────────────────────────────────

    def update(self, equity: float) -> None:
        """Record the latest equity value, raising the peak if exceeded."""
        self._current_equity = equity
        if equity > self._peak_equity:
            self._peak_equity = equity
        dd = self.drawdown_pct
        if dd > self._max_drawdown_pct:
            self._max_drawdown_pct = dd

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def peak_equity(self) -> float:
        return self._peak_equity

    @property
    def current_equity(self) -> float:
        return self._current_equity

    @property
    def drawdown_pct(self) -> float:
        """Current drawdown as a percentage of peak equity."""
        return (
            (self._peak_equity - self._current_equity) / self._peak_equity
        ) * 100.0

    @property
    def max_drawdown_pct(self) -> float:
        """Largest drawdown recorded by :meth:`update`."""
        return self._max_drawdown_pct
