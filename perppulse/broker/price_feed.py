"""Price feed — streaming ingestion of oracle price frames over a websocket.

Each JSON text frame shaped like::

    {"a": "price", "b": "SOL", "q": "USD", "p": "21795999999", "e": -8, "t": 1733888307798}

becomes a ``PriceTick`` (``price = p * 10**e``, ``market = "SOL-USD"``) that
is written to the market state, appended to the price history, and
published on the event bus.

A bad frame is logged and dropped.  A disconnect ends :meth:`PriceFeed.run`
with ``FeedDisconnected``; reconnecting is left to the supervisor.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from perppulse.broker.models import PricePoint, PriceSource, PriceTick, oracle_account_for
from perppulse.events import EventBus, FeedConnected, PriceFetched
from perppulse.repos.market_state import MarketState
from perppulse.repos.price_history_repo import PriceHistoryRepo

logger = logging.getLogger("perppulse.price_feed")


class FeedDisconnected(Exception):
    """The streaming connection closed or could not be opened."""


class FeedState(Enum):
    """State of the streaming connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STOPPED = "stopped"


@dataclass
class FeedStats:
    """Counters for the price feed."""

    frames_received: int = 0
    ticks_published: int = 0
    decode_errors: int = 0
    other_messages: int = 0
    connections: int = 0
    last_tick_ms: Optional[int] = None


class FrameError(ValueError):
    """A price frame was missing fields or carried bad values."""


def parse_price_frame(data: dict) -> PriceTick:
    """Convert a decoded ``"a": "price"`` frame into a ``PriceTick``.

    Raises ``FrameError`` when a field is missing or malformed.
    """
    try:
        base = str(data["b"])
        quote = str(data["q"])
        mantissa = int(data["p"])
        exponent = int(data["e"])
        timestamp_ms = int(data["t"])
        price = mantissa * (10.0 ** exponent)
    except KeyError as exc:
        raise FrameError(f"missing field {exc}") from None
    except (TypeError, ValueError, OverflowError) as exc:
        raise FrameError(f"bad field value: {exc}") from None

    return PriceTick(
        market=f"{base}-{quote}",
        price=price,
        timestamp_ms=timestamp_ms,
        source=PriceSource.REALTIME,
    )


class PriceFeed:
    """Owns one websocket connection and publishes decoded ticks.

    Args:
        url: Websocket endpoint.
        bus: Event bus for ``perpetuals.price_fetch`` / ``feed.connected``.
        market_state: Latest-price cache to update.
        history: Bounded price history to append to.
        connect: Websocket connect factory (``websockets.connect`` by default).
    """

    def __init__(
        self,
        url: str,
        bus: EventBus,
        market_state: MarketState,
        history: PriceHistoryRepo,
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        self._url = url
        self._bus = bus
        self._market_state = market_state
        self._history = history
        self._connect = connect
        self._ws = None
        self._stopping = False
        self.state = FeedState.DISCONNECTED
        self.stats = FeedStats()

    @property
    def url(self) -> str:
        return self._url

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def run(self) -> None:
        """Connect and consume frames until the stream ends.

        Returns normally only after :meth:`stop`.  Any other end of the
        stream raises ``FeedDisconnected``.
        """
        self._stopping = False
        self.state = FeedState.CONNECTING
        logger.info("Connecting to price feed %s", self._url)
        try:
            async with self._connect(
                self._url,
                ping_interval=20,
                ping_timeout=45,
                open_timeout=30,
                close_timeout=5,
            ) as ws:
                self._ws = ws
                self.state = FeedState.CONNECTED
                self.stats.connections += 1
                logger.info("Connected to price feed %s", self._url)
                self._bus.publish_event(FeedConnected(url=self._url))

                async for message in ws:
                    if isinstance(message, bytes):
                        message = message.decode("utf-8", errors="replace")
                    self.handle_frame(message)
        except ConnectionClosed as exc:
            if not self._stopping:
                self.state = FeedState.DISCONNECTED
                logger.error("Price feed connection closed: %s", exc)
                raise FeedDisconnected(str(exc)) from exc
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            self.state = FeedState.DISCONNECTED
            logger.error("Price feed error: %s", exc)
            raise FeedDisconnected(str(exc)) from exc
        finally:
            self._ws = None

        if self._stopping:
            self.state = FeedState.STOPPED
            logger.info("Price feed stopped.")
            return

        self.state = FeedState.DISCONNECTED
        logger.error("Price feed stream ended by server.")
        raise FeedDisconnected("stream ended")

    async def stop(self) -> None:
        """Close the connection; :meth:`run` then returns normally."""
        self._stopping = True
        if self._ws is not None:
            await self._ws.close()

    # ── Frames ───────────────────────────────────────────────────────────

    def handle_frame(self, message: str) -> Optional[PriceTick]:
        """Decode one text frame and publish it if it is a price update.

        Returns the published tick, or ``None`` when the frame was dropped.
        """
        self.stats.frames_received += 1
        try:
            data = json.loads(message)
        except json.JSONDecodeError as exc:
            self.stats.decode_errors += 1
            logger.warning("Dropping undecodable frame: %s", exc)
            self._bus.debug(f"Feed decode error: {exc}", source="price_feed")
            return None

        if not isinstance(data, dict) or data.get("a") != "price":
            self.stats.other_messages += 1
            logger.debug("Unhandled message type: %r", data)
            self._bus.debug(f"Other data: {data!r}"[:200], source="price_feed")
            return None

        try:
            tick = parse_price_frame(data)
        except FrameError as exc:
            self.stats.decode_errors += 1
            logger.warning("Dropping malformed price frame: %s", exc)
            self._bus.debug(f"Malformed price frame: {exc}", source="price_feed")
            return None

        self.publish_tick(tick)
        return tick

    def publish_tick(self, tick: PriceTick) -> None:
        """Fan a tick out to the market state, history, and event bus."""
        self._market_state.update(tick.market, tick)
        self._history.insert(
            PricePoint.from_tick(tick, oracle_account=oracle_account_for(tick.market))
        )
        self._bus.publish_event(
            PriceFetched(market=tick.market, price=tick.price, timestamp_ms=tick.timestamp_ms)
        )
        self.stats.ticks_published += 1
        self.stats.last_tick_ms = tick.timestamp_ms
        logger.debug("Price update for %s: %s", tick.market, tick.price)
