"""Tesseract — application configuration.

Loads .env variables into a typed config object.
Validates numeric variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from tesseract.backtest.models import BacktestOptions


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    binance_base_url: str
    start_equity: float
    position_size_pct: float
    max_open_positions: int
    min_signal_strength: int
    max_batch_symbols: int
    max_workers: int
    data_dir: str
    log_level: str
    api_port: int

    @property
    def klines_url(self) -> str:
        """Return the Binance klines endpoint."""
        return f"{self.binance_base_url.rstrip('/')}/api/v3/klines"

    def backtest_options(self) -> BacktestOptions:
        """Simulation options used by the serving layer and the CLI."""
        return BacktestOptions(
            start_equity=self.start_equity,
            position_size_percent=self.position_size_pct,
            max_open_positions=self.max_open_positions,
            min_signal_strength=self.min_signal_strength,
        )


def _env_number(name: str, default: str, cast, minimum=None, maximum=None):
    raw = os.environ.get(name, default)
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(
            f"Environment variable {name} must be {cast.__name__}, got {raw!r}"
        ) from None
    if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
        raise ValueError(
            f"Environment variable {name} out of range: {value} "
            f"(allowed {minimum}..{maximum if maximum is not None else ''})"
        )
    return value


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the variable when a
    numeric variable is malformed or out of range.
    """
    load_dotenv(dotenv_path=env_path)

    return Config(
        binance_base_url=os.environ.get("BINANCE_BASE_URL", "https://api.binance.us"),
        start_equity=_env_number("BACKTEST_START_EQUITY", "10000", float, minimum=0.01),
        position_size_pct=_env_number("BACKTEST_POSITION_SIZE_PCT", "2", float, 0.01, 100),
        max_open_positions=_env_number("BACKTEST_MAX_OPEN_POSITIONS", "3", int, minimum=1),
        min_signal_strength=_env_number("BACKTEST_MIN_SIGNAL_STRENGTH", "45", int, 0, 100),
        max_batch_symbols=_env_number("BACKTEST_MAX_SYMBOLS", "5", int, minimum=1),
        max_workers=_env_number("BACKTEST_MAX_WORKERS", "4", int, minimum=1),
        data_dir=os.environ.get("DATA_DIR", "data/candles"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_env_number("API_PORT", "8080", int, 1, 65535),
    )
