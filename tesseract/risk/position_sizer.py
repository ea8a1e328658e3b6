"""Position sizing — pure math, no I/O.

Backtest positions are sized as a fixed percentage of current equity
(notional sizing); the stop distance does not affect size.
"""


def notional_size(equity: float, size_pct: float) -> float:
    """Notional allocated to one position.

    Formula::

        size = equity × (size_pct / 100)

    Raises:
        ValueError: If *equity* or *size_pct* is non-positive.
    """
    if equity <= 0:
        raise ValueError(f"equity must be positive, got {equity}")
    if size_pct <= 0:
        raise ValueError(f"size_pct must be positive, got {size_pct}")
    return equity * (size_pct / 100.0)


def apply_return(equity: float, size_pct: float, pnl_pct: float) -> float:
    """Equity after one closed position returning *pnl_pct* percent on its notional."""
    return equity + notional_size(equity, size_pct) * (pnl_pct / 100.0)
