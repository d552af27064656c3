"""Tests for application wiring — pipeline construction and child ordering."""

import pytest

from perppulse import main as main_module
from perppulse.broker.models import PricePoint
from perppulse.config import Config, _default_strategies
from perppulse.main import _run_pipeline, build_pipeline, build_supervisor, main
from perppulse.models.strategy_config import StrategyConfig
from perppulse.strategy.momentum import MomentumStrategy
from perppulse.strategy.moving_average import MovingAverageStrategy
from perppulse.strategy.registry import get_strategy
from perppulse.supervisor import ChildSpec, Supervisor, SupervisorGaveUp


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_config(tmp_path, **overrides) -> Config:
    """Build a Config with sensible test defaults."""
    defaults = dict(
        price_feed_url="wss://feed.test/stream",
        price_api_url="https://price.test/v2",
        trade_base="SOL",
        trade_quote="USDC",
        poll_interval_ms=1000,
        momentum_threshold=0.02,
        exit_threshold=0.02,
        history_capacity=100,
        history_eviction="global",
        strategy_history_limit=500,
        request_timeout_seconds=10.0,
        db_path=str(tmp_path / "pulse.db"),
        log_level="WARNING",
        log_file=str(tmp_path / "pulse.log"),
        api_port=8080,
        refresh_interval_ms=250,
    )
    defaults.update(overrides)
    return Config(**defaults)


class TestBuildPipeline:
    def test_one_engine_per_strategy(self, tmp_path):
        config = _make_config(tmp_path)
        pipeline = build_pipeline(config, _default_strategies(config), with_dashboard=False)
        assert list(pipeline.engines) == ["momentum", "ma-crossover"]
        assert isinstance(pipeline.engines["momentum"].strategy, MomentumStrategy)
        assert pipeline.reporter is None
        assert pipeline.history.capacity == 100
        pipeline.history.close()

    def test_duplicate_names_rejected(self, tmp_path):
        config = _make_config(tmp_path)
        twice = [StrategyConfig(name="x", strategy="momentum")] * 2
        with pytest.raises(ValueError, match="Duplicate"):
            build_pipeline(config, twice, with_dashboard=False)

    def test_unknown_strategy_rejected(self, tmp_path):
        config = _make_config(tmp_path)
        with pytest.raises(KeyError, match="Unknown strategy"):
            build_pipeline(config, [StrategyConfig(name="x", strategy="rsi")], with_dashboard=False)

    def test_price_history_is_not_kept_across_runs(self, tmp_path):
        config = _make_config(tmp_path)
        first = build_pipeline(config, _default_strategies(config), with_dashboard=False)
        first.history.insert(PricePoint("SOL-USD", 100.0, 1))
        assert first.history.count() == 1
        first.history.close()

        second = build_pipeline(config, _default_strategies(config), with_dashboard=False)
        assert second.history.count() == 0
        second.history.close()


class TestBuildSupervisor:
    def test_feed_starts_before_strategies(self, tmp_path):
        config = _make_config(tmp_path)
        pipeline = build_pipeline(config, _default_strategies(config), with_dashboard=True)
        supervisor = build_supervisor(pipeline)
        assert supervisor.child_names == [
            "dashboard",
            "price_feed",
            "strategy:momentum",
            "strategy:ma-crossover",
        ]
        assert supervisor.get_status()["strategy"] == "rest_for_one"
        pipeline.reporter.detach()
        pipeline.history.close()


class TestRegistry:
    def test_momentum_thresholds_applied(self):
        strat = get_strategy(
            StrategyConfig(name="fast", strategy="momentum", momentum_threshold=0.05,
                           exit_threshold=0.01, history_limit=10)
        )
        assert strat.name == "fast"
        assert strat.momentum_threshold == 0.05
        assert strat.exit_threshold == 0.01
        assert strat.history_limit == 10

    def test_moving_average(self):
        strat = get_strategy(StrategyConfig(name="ma", strategy="moving_average", base="ETH"))
        assert isinstance(strat, MovingAverageStrategy)
        assert strat.trading_pair == "ETH/USDC"


# ── Exit status ──────────────────────────────────────────────────────────


async def _crash():
    raise RuntimeError("boom")


class TestGivingUp:
    @pytest.mark.asyncio
    async def test_run_pipeline_propagates_give_up(self):
        supervisor = Supervisor([ChildSpec("crasher", run=_crash)], max_restarts=0, restart_delay=0)
        with pytest.raises(SupervisorGaveUp):
            await _run_pipeline(supervisor, None)

    def test_main_exits_non_zero(self, tmp_path, monkeypatch):
        config = _make_config(tmp_path)

        async def give_up(supervisor, port):
            raise SupervisorGaveUp("more than 10 restarts in 60.0s")

        monkeypatch.setattr(main_module, "load_config", lambda env_path=None: config)
        monkeypatch.setattr(main_module, "configure_logging", lambda config, bus=None: None)
        monkeypatch.setattr(main_module.signal, "signal", lambda signum, handler: None)
        monkeypatch.setattr(main_module, "_run_pipeline", give_up)

        with pytest.raises(SystemExit) as exc_info:
            main(["--no-dashboard", "--no-api", "--config", str(tmp_path / "missing.json")])
        assert exc_info.value.code == 1
