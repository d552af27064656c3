"""Strategy protocol and shared state-machine plumbing.

Defines the interface that all strategies must implement plus a base class
holding the bounded, newest-first price history every strategy keeps.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from perppulse.strategy.models import (
    NONE,
    HistoryPoint,
    IndicatorSnapshot,
    Position,
    PositionChange,
    Signal,
)


@dataclass(frozen=True)
class StrategyResult:
    """Outcome of feeding one price into a strategy.

    Returned by strategies so the engine doesn't need to know which
    indicator produced the signal.
    """

    price: float
    momentum: float
    signal: Signal
    signal_strength: float
    position: Position
    history_size: int
    indicators: Optional[IndicatorSnapshot] = None
    change: Optional[PositionChange] = None


@runtime_checkable
class StrategyProtocol(Protocol):
    """Interface that all strategies must satisfy."""

    name: str

    def on_price(self, price: float, timestamp_ms: Optional[int] = None) -> StrategyResult:
        """Consume a new price and return the resulting state."""
        ...

    def snapshot(self) -> dict:
        ...

    def restore(self, snapshot: dict) -> None:
        ...


class BaseStrategy:
    """Bounded history, position bookkeeping, and snapshot support.

    Args:
        name: Display name of the strategy.
        trading_pair: e.g. ``"SOL/USDC"``.
        history_limit: Maximum number of prices kept (oldest dropped).
    """

    name = "base"

    def __init__(
        self,
        trading_pair: str = "SOL/USDC",
        history_limit: int = 500,
        name: Optional[str] = None,
    ) -> None:
        if history_limit < 2:
            raise ValueError(f"history_limit must be at least 2, got {history_limit}")
        if name is not None:
            self.name = name
        self.trading_pair = trading_pair
        self.history_limit = history_limit
        self.price_history: deque[HistoryPoint] = deque(maxlen=history_limit)
        self.current_price: Optional[float] = None
        self.current_position: Position = NONE
        self.current_signal: Signal = NONE
        self.current_momentum: float = 0.0
        self.total_trades: int = 0

    # ── History ──────────────────────────────────────────────────────────

    def _record_price(self, price: float, timestamp_ms: Optional[int]) -> None:
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)
        self.current_price = price
        self.price_history.appendleft(HistoryPoint(price=price, timestamp_ms=timestamp_ms))

    @property
    def prices(self) -> list[float]:
        """History prices, newest first."""
        return [p.price for p in self.price_history]

    # ── Position ─────────────────────────────────────────────────────────

    def _move_to(self, new_position: Position) -> Optional[PositionChange]:
        if new_position == self.current_position:
            return None
        change = PositionChange(
            signal=self.current_signal,
            previous=self.current_position,
            current=new_position,
            price=self.current_price if self.current_price is not None else 0.0,
        )
        self.current_position = new_position
        self.total_trades += 1
        return change

    # ── Persistence ──────────────────────────────────────────────────────

    def snapshot(self) -> dict:
        """Serializable copy of history and position."""
        return {
            "position": self.current_position,
            "history": [[p.price, p.timestamp_ms] for p in self.price_history],
            "total_trades": self.total_trades,
        }

    def restore(self, snapshot: dict) -> None:
        """Reload state saved by :meth:`snapshot`.

        Entries beyond ``history_limit`` are dropped.
        """
        history = snapshot.get("history", [])[: self.history_limit]
        self.price_history = deque(
            (HistoryPoint(price=float(p), timestamp_ms=int(ts)) for p, ts in history),
            maxlen=self.history_limit,
        )
        self.current_position = snapshot.get("position", NONE)
        self.total_trades = int(snapshot.get("total_trades", 0))
        if self.price_history:
            self.current_price = self.price_history[0].price
