"""Candle storage — DataFrame conversion, cleaning, resampling and Parquet I/O.

Lets the CLI collect candles into, and backtest offline from,
``{data_dir}/{SYMBOL}_{timeframe}.parquet``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import pandas as pd

from tesseract.market.models import Candle

logger = logging.getLogger("tesseract.market")

COLUMNS = ["time", "open", "high", "low", "close", "volume"]
_PRICE_COLUMNS = ["open", "high", "low", "close"]


# ── Conversion ───────────────────────────────────────────────────────────


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """Candles → DataFrame with a UTC datetime ``time`` column."""
    df = pd.DataFrame(
        [(c.time, c.open, c.high, c.low, c.close, c.volume) for c in candles],
        columns=COLUMNS,
    )
    df["time"] = pd.to_datetime(df["time"], unit="ms", utc=True)
    return df


def frame_to_candles(df: pd.DataFrame) -> list[Candle]:
    """DataFrame → candles; ``time`` may be datetimes or epoch milliseconds."""
    if df.empty:
        return []
    times = df["time"]
    if pd.api.types.is_datetime64_any_dtype(times):
        if times.dt.tz is None:
            times = times.dt.tz_localize("UTC")
        millis = (times - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1)
    else:
        millis = times.astype("int64")
    return [
        Candle(
            time=int(t),
            open=float(o),
            high=float(h),
            low=float(lo),
            close=float(c),
            volume=float(v),
        )
        for t, o, h, lo, c, v in zip(
            millis, df["open"], df["high"], df["low"], df["close"], df["volume"],
        )
    ]


# ── Data quality ─────────────────────────────────────────────────────────


def clean_candles(df: pd.DataFrame) -> pd.DataFrame:
    """Clean raw candle data.

    1. Ensure a UTC datetime ``time`` column.
    2. Drop rows with NaN or non-positive prices, or negative volume.
    3. Sort by time and drop duplicate timestamps (first wins).
    """
    if df.empty:
        return df

    df = df.copy()

    if not pd.api.types.is_datetime64_any_dtype(df["time"]):
        df["time"] = pd.to_datetime(df["time"], unit="ms", utc=True)
    elif df["time"].dt.tz is None:
        df["time"] = df["time"].dt.tz_localize("UTC")

    df = df.dropna(subset=COLUMNS)
    df = df[(df[_PRICE_COLUMNS] > 0).all(axis=1) & (df["volume"] >= 0)]
    df = df.sort_values("time", kind="stable").drop_duplicates(subset="time", keep="first")
    return df.reset_index(drop=True)


def resample_candles(df: pd.DataFrame, rule: str = "4h") -> pd.DataFrame:
    """Aggregate candles into *rule*-sized bars (open=first, high=max, low=min,
    close=last, volume=sum).  Empty buckets are dropped."""
    if df.empty:
        return df
    out = (
        df.set_index("time")
        .resample(rule, label="left", closed="left")
        .agg({"open": "first", "high": "max", "low": "min", "close": "last", "volume": "sum"})
        .dropna(subset=_PRICE_COLUMNS)
        .reset_index()
    )
    return out[COLUMNS]


# ── Parquet I/O ──────────────────────────────────────────────────────────


def candle_path(data_dir: str | Path, symbol: str, timeframe: str) -> Path:
    return Path(data_dir) / f"{symbol.upper()}_{timeframe}.parquet"


def save_to_parquet(df: pd.DataFrame, path: Path) -> None:
    """Save DataFrame to Parquet file, creating directories as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_parquet(path, engine="pyarrow", index=False)
    logger.info("Saved %d rows to %s (%.1f KB)", len(df), path, path.stat().st_size / 1e3)


def load_from_parquet(path: Path) -> pd.DataFrame:
    """Load a Parquet file into a DataFrame."""
    df = pd.read_parquet(path, engine="pyarrow")
    if "time" in df.columns and not pd.api.types.is_datetime64_any_dtype(df["time"]):
        df["time"] = pd.to_datetime(df["time"], unit="ms", utc=True)
    return df


def load_candles(data_dir: str | Path, symbol: str, timeframe: str) -> list[Candle]:
    """Load, clean and convert ``{SYMBOL}_{timeframe}.parquet``.

    A missing confirmation file is not an error for 4h: the 1h file is
    resampled instead.

    Raises:
        FileNotFoundError: If no usable file exists.
    """
    path = candle_path(data_dir, symbol, timeframe)
    if path.exists():
        return frame_to_candles(clean_candles(load_from_parquet(path)))
    if timeframe == "4h":
        hourly = candle_path(data_dir, symbol, "1h")
        if hourly.exists():
            logger.info("No %s, resampling %s to 4h", path.name, hourly.name)
            return frame_to_candles(resample_candles(clean_candles(load_from_parquet(hourly)), "4h"))
    raise FileNotFoundError(f"No candle file for {symbol} {timeframe} at {path}")


# ── Collection ───────────────────────────────────────────────────────────


async def collect_candles(client, symbol: str, days: int, data_dir: str | Path) -> list[Path]:
    """Download, clean and save the 1h and 4h history for a *days*-long backtest.

    *client* is anything with an async ``fetch_backtest_history(symbol, days)``.
    Writes ``{SYMBOL}_1h.parquet`` and ``{SYMBOL}_4h.parquet`` under
    *data_dir*; a timeframe that comes back empty is logged and skipped.

    Returns the paths written.
    """
    histories = await client.fetch_backtest_history(symbol, days)
    written = []
    for timeframe, candles in zip(("1h", "4h"), histories):
        if not candles:
            logger.warning("No %s data for %s, skipping", timeframe, symbol)
            continue
        path = candle_path(data_dir, symbol, timeframe)
        save_to_parquet(clean_candles(candles_to_frame(candles)), path)
        written.append(path)
    return written
