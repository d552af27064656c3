"""Tests for perppulse.config — environment loading, validation, strategy files."""

import json

import pytest

from perppulse.config import load_config, load_strategies

_VARS = [
    "PRICE_FEED_URL",
    "PRICE_API_URL",
    "TRADE_BASE",
    "TRADE_QUOTE",
    "POLL_INTERVAL_MS",
    "MOMENTUM_THRESHOLD",
    "EXIT_THRESHOLD",
    "HISTORY_CAPACITY",
    "HISTORY_EVICTION",
    "STRATEGY_HISTORY_LIMIT",
    "REQUEST_TIMEOUT_SECONDS",
    "DB_PATH",
    "LOG_LEVEL",
    "LOG_FILE",
    "API_PORT",
    "REFRESH_INTERVAL_MS",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure PerpPulse env vars are cleared between tests."""
    for var in _VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def env_path(tmp_path):
    """A non-existent .env so load_dotenv doesn't pick up a real file."""
    return str(tmp_path / "missing.env")


class TestLoadConfig:
    def test_defaults(self, env_path):
        cfg = load_config(env_path)
        assert cfg.price_feed_url == "wss://history.oraclesecurity.org/trading-view/stream"
        assert cfg.price_api_url == "https://api.jup.ag/price/v2"
        assert cfg.trade_base == "SOL"
        assert cfg.trade_quote == "USDC"
        assert cfg.poll_interval_ms == 1000
        assert cfg.momentum_threshold == 0.02
        assert cfg.exit_threshold == 0.02
        assert cfg.history_capacity == 10_000
        assert cfg.history_eviction == "global"
        assert cfg.strategy_history_limit == 500
        assert cfg.request_timeout_seconds == 10.0
        assert cfg.api_port == 8080
        assert cfg.refresh_interval_ms == 250

    def test_feed_market_uses_usd_quote(self, monkeypatch, env_path):
        monkeypatch.setenv("TRADE_BASE", "ETH")
        assert load_config(env_path).feed_market == "ETH-USD"

    def test_overrides(self, monkeypatch, env_path):
        monkeypatch.setenv("POLL_INTERVAL_MS", "500")
        monkeypatch.setenv("MOMENTUM_THRESHOLD", "0.05")
        monkeypatch.setenv("HISTORY_EVICTION", "per_market")
        cfg = load_config(env_path)
        assert cfg.poll_interval_ms == 500
        assert cfg.momentum_threshold == 0.05
        assert cfg.history_eviction == "per_market"

    def test_invalid_number_names_variable(self, monkeypatch, env_path):
        monkeypatch.setenv("POLL_INTERVAL_MS", "fast")
        with pytest.raises(ValueError, match="POLL_INTERVAL_MS"):
            load_config(env_path)

    def test_non_positive_rejected(self, monkeypatch, env_path):
        monkeypatch.setenv("HISTORY_CAPACITY", "0")
        with pytest.raises(ValueError, match="HISTORY_CAPACITY"):
            load_config(env_path)

    def test_unknown_eviction_mode(self, monkeypatch, env_path):
        monkeypatch.setenv("HISTORY_EVICTION", "lru")
        with pytest.raises(ValueError, match="HISTORY_EVICTION"):
            load_config(env_path)

    def test_reads_dotenv_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("TRADE_BASE=BTC\nAPI_PORT=9090\n", encoding="utf-8")
        cfg = load_config(str(env_file))
        assert cfg.trade_base == "BTC"
        assert cfg.api_port == 9090


class TestLoadStrategies:
    def test_defaults_without_file(self, env_path, tmp_path):
        cfg = load_config(env_path)
        strategies = load_strategies(cfg, tmp_path / "pulse.json")
        assert [s.name for s in strategies] == ["momentum", "ma-crossover"]
        assert [s.strategy for s in strategies] == ["momentum", "moving_average"]
        assert strategies[0].trading_pair == "SOL/USDC"

    def test_file_entries_inherit_env_defaults(self, env_path, tmp_path):
        path = tmp_path / "pulse.json"
        path.write_text(
            json.dumps({
                "strategies": [
                    {"name": "fast", "strategy": "momentum", "momentum_threshold": 0.01},
                    {"name": "off", "strategy": "moving_average", "enabled": False},
                ]
            }),
            encoding="utf-8",
        )
        cfg = load_config(env_path)
        strategies = load_strategies(cfg, path)
        assert len(strategies) == 1
        assert strategies[0].name == "fast"
        assert strategies[0].momentum_threshold == 0.01
        assert strategies[0].poll_interval_ms == cfg.poll_interval_ms
        assert strategies[0].base == "SOL"

    def test_unknown_key_rejected(self, env_path, tmp_path):
        path = tmp_path / "pulse.json"
        path.write_text(
            json.dumps({"strategies": [{"name": "x", "strategy": "momentum", "bogus": 1}]}),
            encoding="utf-8",
        )
        with pytest.raises(ValueError, match="Invalid strategy entry"):
            load_strategies(load_config(env_path), path)
