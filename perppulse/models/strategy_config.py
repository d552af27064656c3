"""Strategy configuration dataclass.

Represents one strategy state machine in the pipeline.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class StrategyConfig:
    """Configuration for a single strategy.

    Each strategy runs in its own ``StrategyEngine`` with its own trading
    pair, polling interval, and thresholds.
    """

    name: str
    strategy: str  # strategy registry key, e.g. "momentum"
    base: str = "SOL"
    quote: str = "USDC"
    poll_interval_ms: int = 1000
    history_limit: int = 500
    momentum_threshold: float = 0.02
    exit_threshold: float = 0.02
    enabled: bool = True

    @property
    def trading_pair(self) -> str:
        return f"{self.base}/{self.quote}"
