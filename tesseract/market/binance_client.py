"""Binance REST async client.

Fetches kline history for backtests: paginates backwards from *now*,
falls back from the ``{SYM}USD`` pair to ``{SYM}USDT``, and returns an
ascending, de-duplicated candle list.
"""

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from tesseract.config import Config
from tesseract.market.models import Candle, timeframe_ms

logger = logging.getLogger("tesseract.market")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

MAX_KLINES_PER_REQUEST = 1000
QUOTE_ASSETS = ("USD", "USDT")


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def parse_kline(row: list) -> Candle:
    """Kline array → ``Candle``: index 0 is open time, 1-5 are OHLCV strings."""
    return Candle(
        time=int(row[0]),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
    )


def history_limits(days: int, warmup: int = 200, confirmation_warmup: int = 50) -> tuple[int, int]:
    """Candle counts to request for a *days*-long 1h/4h backtest."""
    return days * 24 + warmup, days * 6 + confirmation_warmup


class BinanceClient:
    """Async client wrapping the public Binance klines endpoint."""

    def __init__(self, config: Config, clock: Optional[Callable[[], int]] = None) -> None:
        self._config = config
        self._klines_url = config.klines_url
        self._headers = {"Accept": "application/json"}
        self._clock = clock or _now_ms

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=30.0,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Binance %s %s returned %d, retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    await asyncio.sleep(delay)
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Binance %s %s transport error (%s), retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    # ── Klines ───────────────────────────────────────────────────────────

    async def _fetch_batch(
        self, symbol: str, interval: str, start: int, end: int, limit: int,
    ) -> Optional[list[Candle]]:
        """One page of klines, trying each quote asset in turn; None if all fail."""
        for quote in QUOTE_ASSETS:
            params = {
                "symbol": f"{symbol}{quote}",
                "interval": interval,
                "startTime": start,
                "endTime": end,
                "limit": limit,
            }
            try:
                resp = await self._request_with_retry("get", self._klines_url, params=params)
            except httpx.HTTPError as exc:
                logger.debug("Klines %s%s %s failed: %s", symbol, quote, interval, exc)
                continue
            return [parse_kline(row) for row in resp.json()]
        return None

    async def fetch_klines(
        self,
        symbol: str,
        interval: str,
        limit: int,
        end_time: Optional[int] = None,
    ) -> list[Candle]:
        """Fetch up to *limit* candles ending at *end_time* (default: now).

        Args:
            symbol: Base asset, e.g. ``"BTC"``.
            interval: Kline interval, e.g. ``"1h"`` or ``"4h"``.
            limit: Number of candles wanted; paginated 1000 at a time.
            end_time: Epoch ms of the newest candle wanted.

        Returns:
            Candles ordered oldest-first with unique timestamps.  Pages
            that fail for every quote asset are logged and skipped.
        """
        interval_ms = timeframe_ms(interval)
        now = end_time if end_time is not None else self._clock()
        candles: list[Candle] = []

        for page in range(math.ceil(limit / MAX_KLINES_PER_REQUEST)):
            batch_limit = min(MAX_KLINES_PER_REQUEST, limit - len(candles))
            if batch_limit <= 0:
                break
            end = now - len(candles) * interval_ms
            start = end - batch_limit * interval_ms
            batch = await self._fetch_batch(symbol, interval, start, end, batch_limit)
            if batch is None:
                logger.warning(
                    "Failed to fetch batch %d for %s %s", page, symbol, interval,
                )
                continue
            candles = batch + candles

        unique: dict[int, Candle] = {}
        for c in sorted(candles, key=lambda c: c.time):
            unique.setdefault(c.time, c)
        return list(unique.values())

    async def fetch_backtest_history(
        self, symbol: str, days: int,
    ) -> tuple[list[Candle], list[Candle]]:
        """Fetch the 1h and 4h histories for a *days*-long backtest concurrently."""
        limit_1h, limit_4h = history_limits(days)
        candles_1h, candles_4h = await asyncio.gather(
            self.fetch_klines(symbol, "1h", limit_1h),
            self.fetch_klines(symbol, "4h", limit_4h),
        )
        logger.info(
            "Fetched %s history: %d 1h, %d 4h candles",
            symbol, len(candles_1h), len(candles_4h),
        )
        return candles_1h, candles_4h
