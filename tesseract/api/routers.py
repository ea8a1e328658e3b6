"""API routers — /backtest endpoints.

No simulation logic here. Fetches candles from the injected candle
source and hands CPU-bound runs to worker threads (single symbol) or
the batch runner (several symbols).  Every response uses the
``{success, data | error}`` envelope.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from tesseract.backtest.batch import BacktestJob, aggregate_results, run_batch
from tesseract.backtest.engine import run_backtest
from tesseract.backtest.models import BacktestOptions, json_safe
from tesseract.config import Config
from tesseract.market.models import MalformedCandleError, validate_candles
from tesseract.strategy.registry import DEFAULT_REGISTRY, Registry

logger = logging.getLogger("tesseract")
router = APIRouter()

DEFAULT_BATCH_SYMBOLS = ["BTC", "ETH", "SOL"]
INSUFFICIENT_DATA = "Insufficient historical data for backtest"

# ── Shared state (set during app startup) ────────────────────────────────

_candle_source = None  # Set via configure_routers()
_config: Optional[Config] = None  # Set via configure_routers()
_registry: Registry = DEFAULT_REGISTRY


def configure_routers(
    candle_source,
    config: Optional[Config] = None,
    registry: Optional[Registry] = None,
) -> None:
    """Inject dependencies from the application startup.

    Args:
        candle_source: A ``BinanceClient`` (or duck-type for tests) with
            ``fetch_backtest_history(symbol, days)``.
        config: Application config; supplies backtest options and limits.
        registry: Strategies to backtest; defaults to the built-in set.
    """
    global _candle_source, _config, _registry  # noqa: PLW0603
    _candle_source = candle_source
    _config = config
    _registry = registry or DEFAULT_REGISTRY


def _options() -> BacktestOptions:
    if _config is not None:
        return _config.backtest_options()
    return BacktestOptions(max_open_positions=3, min_signal_strength=45)


def _ok(data) -> JSONResponse:
    return JSONResponse(content={"success": True, "data": json_safe(data)})


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


# ── Backtest ─────────────────────────────────────────────────────────────


@router.get("/backtest")
async def get_backtest(
    symbol: str = Query("BTC"),
    days: int = Query(30, ge=1, le=365),
):
    """Backtest every registered strategy on one symbol."""
    if _candle_source is None:
        return _error(503, "Candle source not configured")
    options = _options()
    try:
        candles_1h, candles_4h = await _candle_source.fetch_backtest_history(symbol, days)
        if len(candles_1h) < options.min_candles:
            return _error(400, INSUFFICIENT_DATA)
        result = await asyncio.to_thread(
            run_backtest, symbol, candles_1h, candles_4h, options, _registry,
        )
    except Exception as exc:  # noqa: BLE001
        logger.error("Backtest %s failed: %s", symbol, exc)
        return _error(500, str(exc) or "Backtest failed")
    return _ok(result.to_dict())


@router.post("/backtest")
async def post_backtest(body: dict):
    """Backtest several symbols and aggregate across them.

    Symbols that fail to fetch, are malformed, or have too little data
    are skipped.
    """
    if _candle_source is None:
        return _error(503, "Candle source not configured")
    options = _options()
    max_symbols = _config.max_batch_symbols if _config else 5
    workers = _config.max_workers if _config else 1
    try:
        symbols = list(body.get("symbols") or DEFAULT_BATCH_SYMBOLS)[:max_symbols]
        days = int(body.get("days", 30))

        jobs = []
        for symbol in symbols:
            try:
                candles_1h, candles_4h = await _candle_source.fetch_backtest_history(symbol, days)
                if len(candles_1h) < options.min_candles:
                    logger.warning("Skipping %s: only %d candles", symbol, len(candles_1h))
                    continue
                validate_candles(candles_1h, f"{symbol} 1h")
                if candles_4h:
                    validate_candles(candles_4h, f"{symbol} 4h")
            except MalformedCandleError as exc:
                logger.warning("Skipping %s: %s", symbol, exc)
                continue
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to fetch %s: %s", symbol, exc)
                continue
            jobs.append(BacktestJob(symbol, tuple(candles_1h), tuple(candles_4h)))

        results = await asyncio.to_thread(run_batch, jobs, options, workers, _registry)
    except Exception as exc:  # noqa: BLE001
        logger.error("Batch backtest failed: %s", exc)
        return _error(500, str(exc) or "Batch backtest failed")

    return _ok({
        "individual": [r.to_dict() for r in results],
        "aggregated": aggregate_results(results).to_dict(),
    })
