"""Tests for the momentum strategy state machine.

Covers the pure momentum/signal/exit functions and the position transitions
driven by MomentumStrategy.on_price().
"""

import pytest

from perppulse.strategy.base import StrategyProtocol
from perppulse.strategy.models import HistoryPoint
from perppulse.strategy.momentum import (
    MomentumStrategy,
    calculate_momentum,
    generate_signal,
    manage_position,
)


def _history(*prices: float) -> list[HistoryPoint]:
    """Newest-first history from *prices*."""
    return [HistoryPoint(price=p, timestamp_ms=1_000 - i) for i, p in enumerate(prices)]


# ── Pure functions ───────────────────────────────────────────────────────


class TestCalculateMomentum:
    def test_rise(self):
        assert calculate_momentum(_history(110, 100)) == pytest.approx(0.10, abs=0.001)

    def test_fall(self):
        assert calculate_momentum(_history(90, 100)) == pytest.approx(-0.10, abs=0.001)

    def test_single_point(self):
        assert calculate_momentum(_history(100)) == 0.0

    def test_only_two_newest_prices_count(self):
        assert calculate_momentum(_history(110, 100, 50)) == pytest.approx(0.10)

    def test_zero_previous_price(self):
        assert calculate_momentum(_history(10, 0)) == 0.0


class TestGenerateSignal:
    def test_long(self):
        assert generate_signal(0.05, 0.03) == "long"

    def test_short(self):
        assert generate_signal(-0.05, 0.03) == "short"

    def test_below_threshold(self):
        assert generate_signal(0.02, 0.03) == "none"


class TestManagePosition:
    def test_long_exits_on_reversal(self):
        assert manage_position("long", -0.02, 0.01) == "none"

    def test_short_exits_on_reversal(self):
        assert manage_position("short", 0.02, 0.01) == "none"

    def test_long_holds_with_momentum(self):
        assert manage_position("long", 0.03, 0.01) == "long"

    def test_flat_stays_flat(self):
        assert manage_position("none", 0.5, 0.01) == "none"


# ── State machine ────────────────────────────────────────────────────────


class TestMomentumStrategy:
    def test_satisfies_protocol(self):
        assert isinstance(MomentumStrategy(), StrategyProtocol)

    def test_first_price_has_no_signal(self):
        strat = MomentumStrategy()
        result = strat.on_price(100.0)
        assert result.momentum == 0.0
        assert result.signal == "none"
        assert result.position == "none"
        assert result.change is None

    def test_long_signal_from_flat_opens_long(self):
        """Signal and position share one vocabulary: a long signal opens a long."""
        strat = MomentumStrategy(momentum_threshold=0.02)
        strat.on_price(100.0)
        result = strat.on_price(105.0)
        assert result.signal == "long"
        assert result.position == "long"
        assert result.change is not None
        assert result.change.previous == "none"
        assert result.change.current == "long"
        assert result.change.price == 105.0
        assert strat.total_trades == 1

    def test_short_signal_from_flat_opens_short(self):
        strat = MomentumStrategy(momentum_threshold=0.02)
        strat.on_price(100.0)
        assert strat.on_price(95.0).position == "short"

    def test_long_closes_on_reversal(self):
        strat = MomentumStrategy(momentum_threshold=0.02, exit_threshold=0.01)
        strat.on_price(100.0)
        strat.on_price(105.0)
        result = strat.on_price(103.0)
        assert result.position == "none"
        assert result.change.previous == "long"
        assert strat.total_trades == 2

    def test_long_holds_through_small_dip(self):
        strat = MomentumStrategy(momentum_threshold=0.02, exit_threshold=0.02)
        strat.on_price(100.0)
        strat.on_price(105.0)
        result = strat.on_price(104.0)
        assert result.position == "long"
        assert result.change is None

    def test_reenters_from_flat_after_exit(self):
        strat = MomentumStrategy(momentum_threshold=0.02, exit_threshold=0.01)
        strat.on_price(100.0)
        strat.on_price(105.0)
        assert strat.on_price(99.0).position == "none"
        assert strat.on_price(90.0).position == "short"

    def test_history_is_bounded(self):
        strat = MomentumStrategy(history_limit=3)
        for p in (1.0, 2.0, 3.0, 4.0):
            strat.on_price(p)
        assert strat.prices == [4.0, 3.0, 2.0]

    def test_signal_strength_is_absolute_momentum(self):
        strat = MomentumStrategy()
        strat.on_price(100.0)
        assert strat.on_price(99.0).signal_strength == pytest.approx(0.01)

    def test_invalid_history_limit(self):
        with pytest.raises(ValueError):
            MomentumStrategy(history_limit=1)


class TestSnapshotRestore:
    def test_round_trip_keeps_position_and_history(self):
        strat = MomentumStrategy()
        strat.on_price(100.0, timestamp_ms=1)
        strat.on_price(105.0, timestamp_ms=2)

        restored = MomentumStrategy()
        restored.restore(strat.snapshot())
        assert restored.current_position == "long"
        assert restored.prices == [105.0, 100.0]
        assert restored.total_trades == 1
        assert restored.current_price == 105.0

    def test_restore_truncates_to_limit(self):
        restored = MomentumStrategy(history_limit=2)
        restored.restore({"history": [[3, 3], [2, 2], [1, 1]], "position": "none"})
        assert restored.prices == [3.0, 2.0]
