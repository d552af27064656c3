"""Tests for the console dashboard — chart rendering, buffering, throttling, placeholders."""

import asyncio
import io

import pytest

from perppulse.broker.models import PriceQuote
from perppulse.cli.colors import Screen
from perppulse.cli.dashboard import (
    DEBUG_LOG_LIMIT,
    MAX_BUFFER_SIZE,
    ConsoleReporter,
    format_duration,
    format_ma_value,
    render_price_chart,
)
from perppulse.events import (
    EventBus,
    PriceFetched,
    PriceFetchFailed,
    StrategyStatus,
    TradeSignal,
)
from perppulse.engine import StrategyEngine
from perppulse.models.strategy_config import StrategyConfig
from perppulse.strategy.moving_average import MovingAverageStrategy


# ── Helpers ──────────────────────────────────────────────────────────────


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class StepPriceClient:
    """Returns a price one unit higher on every fetch."""

    def __init__(self, start: float) -> None:
        self.price = start

    async def fetch_price(self, symbol: str, quote_symbol: str = "USDC") -> PriceQuote:
        self.price += 1.0
        return PriceQuote(symbol=symbol, quote_symbol=quote_symbol, price=self.price)


def _make_reporter(**kwargs):
    bus = EventBus()
    clock = FakeClock()
    out = io.StringIO()
    reporter = ConsoleReporter(bus, active_market="SOL-USD", out=out, clock=clock, **kwargs)
    return reporter, bus, clock, out


def _price(price: float, ts: int = 1, market: str = "SOL-USD") -> PriceFetched:
    return PriceFetched(market=market, price=price, timestamp_ms=ts)


def _status(**overrides) -> StrategyStatus:
    fields = dict(
        strategy="ma-crossover",
        trading_pair="SOL/USDC",
        price=108.0,
        momentum=0.0385,
        signal="long",
        signal_strength=0.0,
        position="long",
        history_size=9,
        indicators={
            "price": 108.0,
            "short_ma": 104.0,
            "medium_ma": None,
            "long_ma": None,
            "trend_strength": 0.0,
            "momentum": 0.0385,
        },
    )
    fields.update(overrides)
    return StrategyStatus(**fields)


# ── Chart ────────────────────────────────────────────────────────────────


class TestRenderPriceChart:
    def test_empty(self):
        assert render_price_chart([]) == ["Collecting price data..."]

    def test_constant_prices_render_flat_line(self):
        rows = render_price_chart([100.0] * 30, width=40, height=10)
        assert len(rows) == 3
        assert "█" * 40 in rows[1]
        assert "100.0000" in rows[1]

    def test_single_point_renders_flat_line(self):
        rows = render_price_chart([42.0], width=20, height=10)
        assert len(rows) == 3

    def test_varying_prices_render_histogram(self):
        rows = render_price_chart([100.0, 101.0, 102.0, 103.0], width=40, height=8)
        assert len(rows) == 8
        assert rows[1].split("│ ", 1)[1].count("█") == 1
        assert rows[-1].split("│ ", 1)[1].count("█") == 3

    def test_only_visible_window_is_drawn(self):
        rows = render_price_chart([float(i) for i in range(100)], width=10, height=5)
        bottom = rows[-1].split("│ ", 1)[1]
        assert bottom.count("█") <= 10


class TestFormatting:
    def test_ma_value_collecting(self):
        assert format_ma_value(None, 21, 9) == "Collecting data (9/21)"

    def test_ma_value_ready(self):
        assert format_ma_value(104.0, 9, 9) == "104.0000 USDC"

    def test_duration(self):
        assert format_duration(3725) == "1h 2m 5s"


# ── Reporter ─────────────────────────────────────────────────────────────


class TestBuffering:
    def test_buffer_keeps_newest_updates(self):
        reporter, bus, _, _ = _make_reporter()
        for i in range(MAX_BUFFER_SIZE + 2):
            bus.publish_event(_price(100.0 + i, ts=i))

        assert len(reporter.buffer) == MAX_BUFFER_SIZE
        assert reporter.updates_received == MAX_BUFFER_SIZE + 2

        reporter.refresh()
        assert list(reporter.price_history) == [102.0, 103.0, 104.0, 105.0, 106.0]
        assert not reporter.buffer

    def test_other_markets_update_list_not_chart(self):
        reporter, bus, _, _ = _make_reporter()
        bus.publish_event(_price(3000.0, market="ETH-USD"))
        reporter.refresh()
        assert reporter.markets == {"ETH-USD": 3000.0}
        assert not reporter.price_history

    def test_trades_and_failures_counted(self):
        reporter, bus, _, _ = _make_reporter()
        bus.publish_event(PriceFetchFailed(strategy="momentum", reason="timeout"))
        bus.publish_event(
            TradeSignal("momentum", "SOL/USDC", "long", "none", "long", 105.0)
        )
        reporter.refresh()
        assert reporter.failed_requests == 1
        assert reporter.trade_counts == {"momentum": 1}
        assert "momentum: long signal" in reporter.debug_log[0]

    def test_debug_log_is_bounded(self):
        reporter, bus, _, _ = _make_reporter()
        for i in range(DEBUG_LOG_LIMIT + 6):
            bus.debug(f"message {i}")
        assert len(reporter.debug_log) == DEBUG_LOG_LIMIT
        assert reporter.debug_log[0].endswith(f"message {DEBUG_LOG_LIMIT + 5}")


class TestThrottle:
    def test_idle_redraw_waits_for_interval(self):
        reporter, _, clock, _ = _make_reporter()
        assert reporter.refresh() is True
        assert reporter.refresh() is False

        clock.now += 0.5
        assert reporter.refresh() is False

        clock.now += 0.5
        assert reporter.refresh() is True
        assert reporter.render_count == 2

    def test_update_forces_redraw(self):
        reporter, bus, _, out = _make_reporter()
        reporter.refresh()
        bus.publish_event(_price(100.0))
        assert reporter.refresh() is True
        assert "100.0000" in out.getvalue()


class TestRender:
    def test_initial_placeholders(self):
        reporter, _, _, _ = _make_reporter()
        text = reporter.render()
        assert "Collecting price data..." in text
        assert "Momentum: Initializing..." in text
        assert "Initializing" in text
        assert "Never" in text

    def test_ma_readiness_text(self):
        reporter, bus, _, _ = _make_reporter()
        bus.publish_event(_status())
        reporter.refresh()
        text = reporter.render()
        assert "Collecting data (9/21)" in text
        assert "Collecting data (9/50)" in text
        assert "104.0000 USDC" in text
        assert "BULLISH" in text

    def test_collection_progress_before_first_snapshot(self):
        reporter, bus, _, _ = _make_reporter()
        bus.publish_event(
            _status(indicators=None, history_size=5, signal="none", position="none")
        )
        reporter.refresh()
        text = reporter.render()
        assert "Collecting data (5/9)" in text
        assert "Collecting data (5/21)" in text
        assert "Collecting data (5/50)" in text
        assert "(0/50)" not in text

    @pytest.mark.asyncio
    async def test_progress_tracks_moving_average_engine(self):
        reporter, bus, _, _ = _make_reporter()
        engine = StrategyEngine(
            strategy=MovingAverageStrategy(name="ma-crossover"),
            price_client=StepPriceClient(100.0),
            bus=bus,
            strategy_config=StrategyConfig(name="ma-crossover", strategy="moving_average"),
        )
        for _ in range(5):
            await engine.run_once()

        reporter.refresh()
        text = reporter.render()
        assert "Collecting data (5/9)" in text
        assert "Collecting data (5/50)" in text

    def test_broken_section_shows_placeholder(self, monkeypatch):
        reporter, _, _, _ = _make_reporter()

        def broken(width):
            raise RuntimeError("kaboom")

        monkeypatch.setattr(reporter, "_section_price", broken)
        text = reporter.render()
        assert "Price unavailable" in text
        assert "System Diagnostics" in text
        assert "kaboom" in reporter.debug_log[0]

    def test_connection_status_follows_last_price(self):
        reporter, bus, clock, _ = _make_reporter()
        assert reporter.connection_status() == "Initializing"

        bus.publish_event(_price(100.0))
        assert "Connected" in reporter.connection_status()
        assert "Disconnected" not in reporter.connection_status()

        clock.now += 11
        assert "Disconnected" in reporter.connection_status()


class TestScreen:
    def test_close_restores_terminal(self):
        reporter, _, _, out = _make_reporter()
        reporter.start()
        assert out.getvalue().startswith(Screen.ALT_SCREEN + Screen.HIDE_CURSOR)
        reporter.close()
        assert out.getvalue().endswith(Screen.SHOW_CURSOR + Screen.MAIN_SCREEN)

    def test_close_without_start_writes_nothing(self):
        reporter, _, _, out = _make_reporter()
        reporter.close()
        assert out.getvalue() == ""

    @pytest.mark.asyncio
    async def test_run_stops_and_restores(self):
        reporter, bus, _, out = _make_reporter(refresh_interval_ms=1)
        bus.publish_event(_price(100.0))

        task = asyncio.create_task(reporter.run())
        await asyncio.sleep(0.01)
        reporter.stop()
        await asyncio.wait_for(task, timeout=1.0)
        assert reporter.render_count >= 1
        assert out.getvalue().endswith(Screen.SHOW_CURSOR + Screen.MAIN_SCREEN)
