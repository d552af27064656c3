"""Strategy registry — maps strategy names to classes.

Used by the application wiring to instantiate a strategy from
``StrategyConfig.strategy``.
"""

from perppulse.models.strategy_config import StrategyConfig
from perppulse.strategy.base import StrategyProtocol
from perppulse.strategy.momentum import MomentumStrategy
from perppulse.strategy.moving_average import MovingAverageStrategy


STRATEGY_REGISTRY: dict[str, type] = {
    "momentum": MomentumStrategy,
    "moving_average": MovingAverageStrategy,
}


def get_strategy(sc: StrategyConfig) -> StrategyProtocol:
    """Look up and instantiate the strategy described by *sc*.

    Raises ``KeyError`` if the strategy name is not registered.
    """
    if sc.strategy not in STRATEGY_REGISTRY:
        raise KeyError(
            f"Unknown strategy '{sc.strategy}'. "
            f"Available: {', '.join(STRATEGY_REGISTRY.keys())}"
        )
    if sc.strategy == "momentum":
        return MomentumStrategy(
            trading_pair=sc.trading_pair,
            momentum_threshold=sc.momentum_threshold,
            exit_threshold=sc.exit_threshold,
            history_limit=sc.history_limit,
            name=sc.name,
        )
    return STRATEGY_REGISTRY[sc.strategy](
        trading_pair=sc.trading_pair,
        history_limit=sc.history_limit,
        name=sc.name,
    )
