"""Signal levels — strength clamping and stop/target construction. Pure math, no I/O."""

import logging
import math
from typing import Optional, Sequence

from tesseract.strategy.models import NEUTRAL, Signal, SignalType, direction_of

logger = logging.getLogger("tesseract.strategy")


def clamp_strength(score: float) -> int:
    """Round *score* half-up and clamp it into ``[0, 100]``."""
    if math.isnan(score):
        return 0
    return int(math.floor(max(0.0, min(100.0, score)) + 0.5))


def target_from_risk(entry: float, stop: float, rr_ratio: float) -> float:
    """Target placed ``rr_ratio`` stop-distances beyond *entry*.

    Works for both directions: the target lands on the opposite side of
    *entry* from *stop*.
    """
    return entry + (entry - stop) * rr_ratio


def levels_valid(direction: str, entry: float, stop: float, target: float) -> bool:
    """Check ``stop < entry < target`` (long) or ``target < entry < stop`` (short)."""
    if direction == "long":
        return stop < entry < target
    if direction == "short":
        return target < entry < stop
    return False


def build_signal(
    signal_type: SignalType,
    score: float,
    reasons: Sequence[str],
    entry: Optional[float] = None,
    stop: Optional[float] = None,
    target: Optional[float] = None,
) -> Signal:
    """Construct a :class:`Signal` with strength and level invariants enforced.

    - NEUTRAL signals never carry levels (any passed in are dropped).
    - A directional signal whose levels are missing or mis-ordered is
      downgraded to NEUTRAL with strength 0.

    Args:
        signal_type: One of the five signal types.
        score: Raw score; rounded and clamped to ``[0, 100]``.
        reasons: Human-readable reasons, in order.
        entry: Suggested entry price.
        stop: Suggested stop-loss price.
        target: Suggested take-profit price.
    """
    strength = clamp_strength(score)
    reasons = tuple(reasons)

    if signal_type == NEUTRAL:
        return Signal(type=NEUTRAL, strength=strength, reasons=reasons)

    direction = direction_of(signal_type)
    if (
        entry is None or stop is None or target is None
        or not levels_valid(direction, entry, stop, target)
    ):
        logger.debug(
            "Degrading %s signal: invalid levels entry=%s stop=%s target=%s",
            signal_type, entry, stop, target,
        )
        return Signal(
            type=NEUTRAL,
            strength=0,
            reasons=reasons + ("Invalid stop/target geometry",),
        )

    return Signal(
        type=signal_type,
        strength=strength,
        reasons=reasons,
        entry=entry,
        stop=stop,
        target=target,
    )
