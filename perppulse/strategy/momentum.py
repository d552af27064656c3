"""Momentum strategy — tick-to-tick momentum with threshold entry and exit.

State machine over positions ``none``/``long``/``short``:

- ``none``: the raw momentum signal becomes the position.
- ``long``: closes to ``none`` once momentum drops below ``-exit_threshold``.
- ``short``: closes to ``none`` once momentum rises above ``exit_threshold``.

Momentum here uses only the two newest prices, unlike the windowed momentum
of the indicator engine.
"""

from typing import Optional, Sequence

from perppulse.strategy.base import BaseStrategy, StrategyResult
from perppulse.strategy.models import LONG, NONE, SHORT, HistoryPoint, Position, Signal

DEFAULT_MOMENTUM_THRESHOLD = 0.02
DEFAULT_EXIT_THRESHOLD = 0.02


def calculate_momentum(history: Sequence[HistoryPoint]) -> float:
    """``(latest - previous) / previous`` over a newest-first history.

    Returns 0.0 with fewer than two points or a zero previous price.
    """
    if len(history) < 2:
        return 0.0
    current = history[0].price
    previous = history[1].price
    if previous == 0:
        return 0.0
    return (current - previous) / previous


def generate_signal(momentum: float, threshold: float) -> Signal:
    """Map momentum onto a signal using a symmetric threshold."""
    if momentum > threshold:
        return LONG
    if momentum < -threshold:
        return SHORT
    return NONE


def manage_position(position: Position, momentum: float, exit_threshold: float) -> Position:
    """Close an open position once momentum crosses back past the exit threshold."""
    if position == LONG and momentum < -exit_threshold:
        return NONE
    if position == SHORT and momentum > exit_threshold:
        return NONE
    return position


class MomentumStrategy(BaseStrategy):
    """Threshold momentum state machine.

    Args:
        trading_pair: e.g. ``"SOL/USDC"``.
        momentum_threshold: Entry threshold (fraction, 0.02 = 2 %).
        exit_threshold: Exit threshold in the opposing direction.
        history_limit: Maximum prices kept.
    """

    name = "momentum"

    def __init__(
        self,
        trading_pair: str = "SOL/USDC",
        momentum_threshold: float = DEFAULT_MOMENTUM_THRESHOLD,
        exit_threshold: float = DEFAULT_EXIT_THRESHOLD,
        history_limit: int = 500,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(trading_pair=trading_pair, history_limit=history_limit, name=name)
        self.momentum_threshold = momentum_threshold
        self.exit_threshold = exit_threshold

    def on_price(self, price: float, timestamp_ms: Optional[int] = None) -> StrategyResult:
        self._record_price(price, timestamp_ms)
        self.current_momentum = calculate_momentum(self.price_history)
        self.current_signal = generate_signal(self.current_momentum, self.momentum_threshold)

        if self.current_position == NONE:
            new_position = self.current_signal
        else:
            new_position = manage_position(
                self.current_position, self.current_momentum, self.exit_threshold
            )
        change = self._move_to(new_position)

        return StrategyResult(
            price=price,
            momentum=self.current_momentum,
            signal=self.current_signal,
            signal_strength=abs(self.current_momentum),
            position=self.current_position,
            history_size=len(self.price_history),
            change=change,
        )
