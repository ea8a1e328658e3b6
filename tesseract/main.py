"""Tesseract — application entry point.

Boots the FastAPI server and provides the CLI entry point for serve,
backtest and collect modes.
"""

import logging

from fastapi import FastAPI

from tesseract.api.routers import router

app = FastAPI(title="Tesseract Backtest API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("tesseract")


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse

    from tesseract.config import load_config

    parser = argparse.ArgumentParser(description="Tesseract strategy backtester")
    parser.add_argument(
        "--mode",
        choices=["serve", "backtest", "collect"],
        default="serve",
        help="Run the API server, a one-off backtest, or download candles to Parquet "
             "(default: serve)",
    )
    parser.add_argument("--symbol", default="BTC", help="Symbol to backtest or collect (default: BTC)")
    parser.add_argument("--symbols", help="Comma-separated symbols; overrides --symbol")
    parser.add_argument("--days", type=int, default=30, help="Days of history (default: 30)")
    parser.add_argument(
        "--data-dir",
        help="Backtest: load candles from Parquet files instead of fetching. "
             "Collect: where to write them (default: DATA_DIR)",
    )
    parser.add_argument("--workers", type=int, help="Worker processes for multi-symbol runs")
    parser.add_argument("--output", help="Write the result JSON to this path")
    args = parser.parse_args(argv)

    config = load_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    symbols = (
        [s.strip().upper() for s in args.symbols.split(",") if s.strip()]
        if args.symbols else [args.symbol.upper()]
    )
    if args.mode == "backtest":
        _run_backtest(config, symbols, args.days, args.data_dir, args.workers, args.output)
    elif args.mode == "collect":
        _run_collect(config, symbols, args.days, args.data_dir or config.data_dir)
    else:
        _run_server(config)


def _run_server(config) -> None:
    """Serve the API with a Binance candle source."""
    import uvicorn

    from tesseract.api.routers import configure_routers
    from tesseract.market.binance_client import BinanceClient

    configure_routers(candle_source=BinanceClient(config), config=config)
    logger.info("Starting Tesseract API on port %d", config.api_port)
    uvicorn.run(app, host="0.0.0.0", port=config.api_port, log_level="info")


def _load_jobs(config, symbols, days, data_dir):
    """Candles per symbol, from Parquet files or from Binance."""
    import asyncio

    from tesseract.backtest.batch import BacktestJob
    from tesseract.market.binance_client import BinanceClient
    from tesseract.market.store import load_candles

    if data_dir:
        jobs = []
        for symbol in symbols:
            try:
                candles_1h = load_candles(data_dir, symbol, "1h")
                candles_4h = load_candles(data_dir, symbol, "4h")
            except FileNotFoundError as exc:
                logger.error("Skipping %s: %s", symbol, exc)
                continue
            jobs.append(BacktestJob(symbol, tuple(candles_1h), tuple(candles_4h)))
        return jobs

    client = BinanceClient(config)

    async def _fetch_all():
        histories = await asyncio.gather(
            *(client.fetch_backtest_history(s, days) for s in symbols),
            return_exceptions=True,
        )
        jobs = []
        for symbol, history in zip(symbols, histories):
            if isinstance(history, Exception):
                logger.error("Failed to fetch %s: %s", symbol, history)
                continue
            candles_1h, candles_4h = history
            jobs.append(BacktestJob(symbol, tuple(candles_1h), tuple(candles_4h)))
        return jobs

    return asyncio.run(_fetch_all())


def _run_backtest(config, symbols, days, data_dir, workers, output) -> None:
    """Fetch or load candles, run the backtest(s) and log a summary."""
    import json
    from pathlib import Path

    from tesseract.backtest.batch import aggregate_results, run_batch
    from tesseract.backtest.models import json_safe

    options = config.backtest_options()
    jobs = _load_jobs(config, symbols, days, data_dir)
    results = run_batch(jobs, options, max_workers=workers or config.max_workers)

    for r in results:
        logger.info(
            "%s: %d trades, win rate %.1f%%, P&L %.2f%%, Sharpe %.2f, final equity %.2f, best %s",
            r.symbol, r.overall.total_trades, r.overall.win_rate,
            r.overall.total_pnl_percent, r.overall.sharpe_ratio,
            r.final_equity, r.overall.best_strategy,
        )

    if len(results) == 1:
        data = results[0].to_dict()
    else:
        aggregated = aggregate_results(results)
        logger.info(
            "Aggregate over %d symbols: %d trades, win rate %.1f%%, P&L %.2f%%, best %s",
            aggregated.total_symbols, aggregated.total_trades, aggregated.win_rate,
            aggregated.total_pnl_percent, aggregated.best_strategy,
        )
        data = {
            "individual": [r.to_dict() for r in results],
            "aggregated": aggregated.to_dict(),
        }

    if output:
        path = Path(output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps({"success": True, "data": json_safe(data)}, indent=2) + "\n",
            encoding="utf-8",
        )
        logger.info("Wrote results to %s", path)


def _run_collect(config, symbols, days, data_dir) -> None:
    """Download each symbol's 1h and 4h history into Parquet files."""
    import asyncio

    from tesseract.market.binance_client import BinanceClient
    from tesseract.market.store import collect_candles

    client = BinanceClient(config)

    async def _collect_all():
        written = await asyncio.gather(
            *(collect_candles(client, s, days, data_dir) for s in symbols),
            return_exceptions=True,
        )
        for symbol, paths in zip(symbols, written):
            if isinstance(paths, Exception):
                logger.error("Failed to collect %s: %s", symbol, paths)
                continue
            logger.info("Collected %s: %s", symbol, ", ".join(p.name for p in paths) or "nothing")

    asyncio.run(_collect_all())


if __name__ == "__main__":
    _run_cli()
