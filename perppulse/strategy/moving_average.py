"""Moving-average crossover strategy — delegates signals to the indicator engine.

Transitions are a simple flip: a ``long`` signal opens a long from flat or
closes a short; a ``short`` signal opens a short from flat or closes a long.
A signal matching the current position is a no-op.
"""

from typing import Optional

from perppulse.strategy.base import BaseStrategy, StrategyResult
from perppulse.strategy.indicators import compute_indicators, generate_signal
from perppulse.strategy.models import LONG, NONE, SHORT, IndicatorSnapshot, Position, Signal

# Prices closer than this to the newest stored price are not re-added
MIN_PRICE_CHANGE = 0.00001

_TRANSITIONS: dict[tuple[Position, Signal], Position] = {
    (NONE, LONG): LONG,
    (NONE, SHORT): SHORT,
    (LONG, SHORT): NONE,
    (SHORT, LONG): NONE,
}


def next_position(position: Position, signal: Signal) -> Position:
    """Apply the crossover flip rule."""
    return _TRANSITIONS.get((position, signal), position)


class MovingAverageStrategy(BaseStrategy):
    """SMA(9/21/50) crossover state machine."""

    name = "moving_average"

    def __init__(
        self,
        trading_pair: str = "SOL/USDC",
        history_limit: int = 500,
        min_price_change: float = MIN_PRICE_CHANGE,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(trading_pair=trading_pair, history_limit=history_limit, name=name)
        self.min_price_change = min_price_change
        self.indicators: Optional[IndicatorSnapshot] = None
        self.last_signal_strength: float = 0.0
        self.skipped_prices: int = 0

    def on_price(self, price: float, timestamp_ms: Optional[int] = None) -> StrategyResult:
        if self.price_history and abs(self.price_history[0].price - price) < self.min_price_change:
            self.skipped_prices += 1
            self.current_price = price
        else:
            self._record_price(price, timestamp_ms)

        snapshot = compute_indicators(self.prices)
        if snapshot is not None:
            self.indicators = snapshot
            self.current_momentum = snapshot.momentum
            self.current_signal, self.last_signal_strength = generate_signal(snapshot)

        change = self._move_to(next_position(self.current_position, self.current_signal))

        return StrategyResult(
            price=price,
            momentum=self.current_momentum,
            signal=self.current_signal,
            signal_strength=self.last_signal_strength,
            position=self.current_position,
            history_size=len(self.price_history),
            indicators=self.indicators,
            change=change,
        )
