"""Event bus — topic-keyed publish/subscribe between pipeline components.

Producers (price feed, strategy engines) publish typed events; consumers
(console reporter, API diagnostics) subscribe by topic.  Delivery is
synchronous and fire-and-forget: no persistence, no replay, no
back-pressure.  Slow consumers must buffer on their own side.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Optional

logger = logging.getLogger("perppulse.events")

Handler = Callable[[Any], None]

# ── Topics ───────────────────────────────────────────────────────────────

PRICE_FETCH = "perpetuals.price_fetch"
PRICE_FETCH_ERROR = "perpetuals.price_fetch_error"
STATUS_UPDATE = "strategy.status_update"
TRADE_SIGNAL = "strategy.trade_signal"
DEBUG = "strategy.debug"
FEED_CONNECTED = "feed.connected"


def _now_ms() -> int:
    return int(time.time() * 1000)


# ── Event payloads ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class PriceFetched:
    """A normalized price arrived from the feed."""

    topic: ClassVar[str] = PRICE_FETCH

    market: str
    price: float
    timestamp_ms: int


@dataclass(frozen=True)
class PriceFetchFailed:
    """A strategy's price request failed."""

    topic: ClassVar[str] = PRICE_FETCH_ERROR

    strategy: str
    reason: str
    at_ms: int = field(default_factory=_now_ms)


@dataclass(frozen=True)
class StrategyStatus:
    """Per-tick status report from a strategy engine."""

    topic: ClassVar[str] = STATUS_UPDATE

    strategy: str
    trading_pair: str
    price: float
    momentum: float
    signal: str
    signal_strength: float
    position: str
    history_size: int
    indicators: Optional[dict] = None
    at_ms: int = field(default_factory=_now_ms)


@dataclass(frozen=True)
class TradeSignal:
    """A strategy moved from one position to another."""

    topic: ClassVar[str] = TRADE_SIGNAL

    strategy: str
    trading_pair: str
    signal: str
    previous_position: str
    new_position: str
    price: float


@dataclass(frozen=True)
class DebugMessage:
    """Free-form diagnostic line for the dashboard debug log."""

    topic: ClassVar[str] = DEBUG

    message: str
    source: str = "system"
    at_ms: int = field(default_factory=_now_ms)


@dataclass(frozen=True)
class FeedConnected:
    """The price feed opened its streaming connection."""

    topic: ClassVar[str] = FEED_CONNECTED

    url: str
    at_ms: int = field(default_factory=_now_ms)


EVENT_TYPES: dict[str, type] = {
    cls.topic: cls
    for cls in (
        PriceFetched,
        PriceFetchFailed,
        StrategyStatus,
        TradeSignal,
        DebugMessage,
        FeedConnected,
    )
}


# ── Bus ──────────────────────────────────────────────────────────────────


class EventBus:
    """In-process topic-based publish/subscribe."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)
        self._published: dict[str, int] = defaultdict(int)

    def subscribe(self, topic: str, handler: Handler) -> None:
        """Register *handler* for *topic*.  Duplicate registrations are ignored."""
        if handler not in self._subscribers[topic]:
            self._subscribers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._subscribers.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, topic: str, payload: Any) -> int:
        """Deliver *payload* to every current subscriber of *topic*.

        A handler that raises is logged and skipped; remaining handlers
        still receive the payload.

        Returns:
            Number of handlers that accepted the payload.
        """
        self._published[topic] += 1
        delivered = 0
        # Snapshot: handlers subscribing during delivery see the next publish
        for handler in list(self._subscribers.get(topic, [])):
            try:
                handler(payload)
                delivered += 1
            except Exception:
                logger.exception("Handler %r failed on topic '%s'", handler, topic)
        return delivered

    def publish_event(self, event: Any) -> int:
        """Publish a typed event on the topic it declares."""
        return self.publish(event.topic, event)

    def debug(self, message: str, source: str = "system") -> None:
        """Shorthand for publishing a :class:`DebugMessage`."""
        self.publish_event(DebugMessage(message=message, source=source))

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))

    @property
    def stats(self) -> dict[str, int]:
        """Publish counts per topic."""
        return dict(self._published)


class BusLogHandler(logging.Handler):
    """Mirror log records into the bus debug topic."""

    def __init__(self, bus: EventBus, level: int = logging.WARNING) -> None:
        super().__init__(level=level)
        self._bus = bus

    def emit(self, record: logging.LogRecord) -> None:
        # Records raised while delivering debug messages would recurse
        if record.name == logger.name:
            return
        try:
            message = f"{record.levelname}: {self.format(record)}"
            self._bus.debug(message, source=record.name)
        except Exception:
            self.handleError(record)
