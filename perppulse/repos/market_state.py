"""Market state — latest tick per market.

Single writer (the price feed), many readers.  Point lookups only.
"""

import threading
from typing import Optional

from perppulse.broker.models import PriceTick


class MarketState:
    """Latest-price cache keyed by market."""

    def __init__(self) -> None:
        self._latest: dict[str, PriceTick] = {}
        self._lock = threading.Lock()

    def update(self, market: str, tick: PriceTick) -> None:
        with self._lock:
            self._latest[market] = tick

    def get_latest(self, market: str) -> Optional[PriceTick]:
        return self._latest.get(market)

    def markets(self) -> dict[str, PriceTick]:
        """Copy of the whole cache."""
        with self._lock:
            return dict(self._latest)

    def __len__(self) -> int:
        return len(self._latest)
