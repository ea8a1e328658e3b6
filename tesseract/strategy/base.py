"""Strategy protocol, fault guard and evaluation outcome.

Defines the interface that all strategies must implement and the
``Outcome`` value the engine aggregates instead of relying on exceptions.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, runtime_checkable

from tesseract.strategy.models import Signal, StrategyInput, neutral

logger = logging.getLogger("tesseract.strategy")


@runtime_checkable
class StrategyProtocol(Protocol):
    """Interface that all strategy modules must satisfy."""

    id: str
    name: str
    description: str
    category: str
    timeframes: tuple[str, ...]

    def evaluate(self, data: StrategyInput) -> Signal:
        """Score one market snapshot and return a signal."""
        ...


def fault_tolerant(
    evaluate: Callable[[object, StrategyInput], Signal],
) -> Callable[[object, StrategyInput], Signal]:
    """Degrade computational faults inside ``evaluate`` to a NEUTRAL signal.

    Arithmetic, lookup and type errors become ``NEUTRAL`` with strength 0
    and an ``"Evaluation error: ..."`` reason.
    """

    @functools.wraps(evaluate)
    def wrapper(self, data: StrategyInput) -> Signal:
        try:
            return evaluate(self, data)
        except (ArithmeticError, ValueError, IndexError, KeyError, TypeError) as exc:
            logger.debug(
                "Strategy %s faulted on %s %s: %s",
                getattr(self, "id", type(self).__name__),
                data.symbol, data.timeframe, exc,
            )
            return neutral(f"Evaluation error: {exc}")

    return wrapper


# ── Outcome ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StrategyFault:
    """A strategy that raised instead of returning a signal."""

    strategy_id: str
    error: str


@dataclass(frozen=True)
class Outcome:
    """Either a signal or a fault; exactly one is set."""

    signal: Optional[Signal] = None
    fault: Optional[StrategyFault] = None

    @property
    def ok(self) -> bool:
        return self.fault is None


def run_strategy(strategy: StrategyProtocol, data: StrategyInput) -> Outcome:
    """Evaluate *strategy* and capture any exception as a fault."""
    try:
        return Outcome(signal=strategy.evaluate(data))
    except Exception as exc:  # noqa: BLE001
        return Outcome(
            fault=StrategyFault(
                strategy_id=strategy.id, error=f"{type(exc).__name__}: {exc}",
            )
        )
