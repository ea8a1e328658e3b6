"""Tests for tesseract.config — environment variable loading and validation."""

import pytest

from tesseract.config import load_config

_VARS = [
    "BINANCE_BASE_URL",
    "BACKTEST_START_EQUITY",
    "BACKTEST_POSITION_SIZE_PCT",
    "BACKTEST_MAX_OPEN_POSITIONS",
    "BACKTEST_MIN_SIGNAL_STRENGTH",
    "BACKTEST_MAX_SYMBOLS",
    "BACKTEST_MAX_WORKERS",
    "DATA_DIR",
    "LOG_LEVEL",
    "API_PORT",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure config env vars are cleared between tests."""
    for var in _VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def no_dotenv(tmp_path):
    # a non-existent env_path keeps load_dotenv from reading a real .env
    return str(tmp_path / "nonexistent.env")


class TestLoadConfig:
    def test_defaults(self, no_dotenv):
        cfg = load_config(env_path=no_dotenv)
        assert cfg.binance_base_url == "https://api.binance.us"
        assert cfg.start_equity == 10_000.0
        assert cfg.position_size_pct == 2.0
        assert cfg.max_open_positions == 3
        assert cfg.min_signal_strength == 45
        assert cfg.max_batch_symbols == 5
        assert cfg.max_workers == 4
        assert cfg.data_dir == "data/candles"
        assert cfg.log_level == "INFO"
        assert cfg.api_port == 8080

    def test_klines_url(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("BINANCE_BASE_URL", "https://api.binance.com/")
        cfg = load_config(env_path=no_dotenv)
        assert cfg.klines_url == "https://api.binance.com/api/v3/klines"

    def test_overrides(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("BACKTEST_START_EQUITY", "25000")
        monkeypatch.setenv("BACKTEST_MAX_OPEN_POSITIONS", "7")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        cfg = load_config(env_path=no_dotenv)
        assert cfg.start_equity == 25_000.0
        assert cfg.max_open_positions == 7
        assert cfg.log_level == "DEBUG"

    def test_reads_dotenv_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("BACKTEST_MIN_SIGNAL_STRENGTH=60\nDATA_DIR=/tmp/candles\n")
        cfg = load_config(env_path=str(env_file))
        assert cfg.min_signal_strength == 60
        assert cfg.data_dir == "/tmp/candles"

    def test_backtest_options(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("BACKTEST_POSITION_SIZE_PCT", "5")
        opts = load_config(env_path=no_dotenv).backtest_options()
        assert opts.position_size_percent == 5.0
        assert opts.max_open_positions == 3
        assert opts.min_signal_strength == 45
        assert opts.min_candles == 250


class TestValidation:
    def test_non_numeric(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("BACKTEST_MAX_WORKERS", "many")
        with pytest.raises(ValueError, match="BACKTEST_MAX_WORKERS"):
            load_config(env_path=no_dotenv)

    def test_strength_out_of_range(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("BACKTEST_MIN_SIGNAL_STRENGTH", "150")
        with pytest.raises(ValueError, match="BACKTEST_MIN_SIGNAL_STRENGTH out of range"):
            load_config(env_path=no_dotenv)

    def test_zero_positions_rejected(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("BACKTEST_MAX_OPEN_POSITIONS", "0")
        with pytest.raises(ValueError, match="BACKTEST_MAX_OPEN_POSITIONS"):
            load_config(env_path=no_dotenv)

    def test_port_range(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("API_PORT", "70000")
        with pytest.raises(ValueError, match="API_PORT"):
            load_config(env_path=no_dotenv)
