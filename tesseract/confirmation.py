"""Multi-timeframe confirmation — blend a higher-timeframe read into primary signals."""

from dataclasses import replace
from typing import Optional, Sequence

from tesseract.strategy.models import NEUTRAL, Signal, StrategyResult

AGREEMENT_BOOST = 15
NEUTRAL_PENALTY = 20


def confirm(primary: StrategyResult, confirmation: Optional[StrategyResult]) -> StrategyResult:
    """Adjust *primary* by the same strategy's verdict on the confirmation timeframe.

    - Same direction: strength +15 (capped at 100).
    - Opposite directions: NEUTRAL, strength 0, levels dropped.
    - Confirmation neutral: strength -20 (floored at 0).
    - Otherwise unchanged.
    """
    if confirmation is None:
        return primary
    sig = primary.signal
    ours, theirs = sig.direction, confirmation.signal.direction
    if ours == "neutral":
        return primary

    if ours == theirs:
        return replace(primary, signal=replace(sig, strength=min(sig.strength + AGREEMENT_BOOST, 100)))
    if theirs == "neutral":
        return replace(primary, signal=replace(sig, strength=max(sig.strength - NEUTRAL_PENALTY, 0)))
    return replace(primary, signal=Signal(type=NEUTRAL, strength=0, reasons=sig.reasons))


def apply_confirmation(
    primary_results: Sequence[StrategyResult],
    confirmation_results: Sequence[StrategyResult],
) -> list[StrategyResult]:
    """Apply :func:`confirm` to each primary result, matching by strategy id."""
    by_id = {r.id: r for r in confirmation_results}
    return [confirm(r, by_id.get(r.id)) for r in primary_results]
