"""Strategy data models — signals, positions, and indicator snapshots."""

from dataclasses import dataclass
from typing import Literal, Optional

Signal = Literal["long", "short", "none"]
Position = Literal["long", "short", "none"]

LONG = "long"
SHORT = "short"
NONE = "none"


@dataclass(frozen=True)
class HistoryPoint:
    """A price kept in a strategy's local history."""

    price: float
    timestamp_ms: int


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Moving averages and trend readings for the current price window.

    Each moving average is ``None`` until its window has enough prices.
    """

    price: float
    short_ma: Optional[float]
    medium_ma: Optional[float]
    long_ma: Optional[float]
    trend_strength: float
    momentum: float

    def to_dict(self) -> dict:
        return {
            "price": self.price,
            "short_ma": self.short_ma,
            "medium_ma": self.medium_ma,
            "long_ma": self.long_ma,
            "trend_strength": self.trend_strength,
            "momentum": self.momentum,
        }


@dataclass(frozen=True)
class PositionChange:
    """A position transition produced by a strategy."""

    signal: Signal
    previous: Position
    current: Position
    price: float
