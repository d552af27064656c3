"""CLI dashboard — live console view of prices, indicators and strategy state.

Bus handlers only buffer incoming events; a periodic :meth:`ConsoleReporter.refresh`
drains the buffer and redraws the screen, at most once per second unless new
updates arrived.
"""

import asyncio
import logging
import shutil
import sys
import time
from collections import deque
from datetime import datetime
from typing import Callable, Optional, Sequence, TextIO

from perppulse.cli.colors import Colors, Screen, colorize, direction_color
from perppulse.events import (
    DEBUG,
    FEED_CONNECTED,
    PRICE_FETCH,
    PRICE_FETCH_ERROR,
    STATUS_UPDATE,
    TRADE_SIGNAL,
    DebugMessage,
    EventBus,
    FeedConnected,
    PriceFetched,
    PriceFetchFailed,
    StrategyStatus,
    TradeSignal,
)
from perppulse.strategy.indicators import LONG_PERIOD, MEDIUM_PERIOD, SHORT_PERIOD

logger = logging.getLogger("perppulse.dashboard")

MAX_BUFFER_SIZE = 5
DEBUG_LOG_LIMIT = 24
PRICE_HISTORY_LIMIT = 500
REFRESH_INTERVAL_MS = 250
RENDER_INTERVAL_MS = 1000
CONNECTED_WINDOW_SECONDS = 10

SCALE_BUFFER = 0.1
MIN_SCALE_BUFFER = 0.0001
FLAT_EPSILON = 1e-9
PRICE_BAR = "█"
LABEL_WIDTH = 10
MIN_WIDTH = 80
GRAPH_HEIGHT = 15
DIVIDER = "-" * MIN_WIDTH


# ── Formatting helpers ───────────────────────────────────────────────────


def format_price(price: Optional[float]) -> str:
    return f"{price:.4f}" if price is not None else "N/A"


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    return f"{seconds // 3600}h {(seconds // 60) % 60}m {seconds % 60}s"


def format_ma_value(value: Optional[float], period: int, history_size: int) -> str:
    """MA readout, or collection progress while the window is filling."""
    if value is not None:
        return f"{format_price(value)} USDC"
    if history_size < period:
        return f"Collecting data ({history_size}/{period})"
    return "Calculating..."


def render_price_chart(
    prices: Sequence[float],
    width: int = MIN_WIDTH - LABEL_WIDTH - 3,
    height: int = GRAPH_HEIGHT,
) -> list[str]:
    """ASCII bar chart of *prices* (oldest first), one column per price.

    The vertical range is the visible min/max padded by 10 % of the spread.
    A single point or a flat series renders as one labelled line.
    """
    if not prices:
        return ["Collecting price data..."]

    visible = list(prices)[-max(width, 1):]
    low, high = min(visible), max(visible)
    spread = high - low
    pad = max(spread * SCALE_BUFFER, MIN_SCALE_BUFFER)
    low, high = low - pad, high + pad
    span = high - low

    if len(visible) == 1 or spread < FLAT_EPSILON or span < FLAT_EPSILON:
        price = visible[-1]
        line = colorize(PRICE_BAR * width, Colors.CYAN)
        return [
            f"{format_price(price * 1.001):>{LABEL_WIDTH}} │ ",
            f"{format_price(price):>{LABEL_WIDTH}} │ {line}",
            f"{format_price(price * 0.999):>{LABEL_WIDTH}} │ ",
        ]

    color = direction_color(visible[-1] - visible[0])
    rows = []
    for y in range(height):
        threshold = 1.0 - y / height
        label = high - span * (y / height)
        line = "".join(
            PRICE_BAR if (p - low) / span >= threshold else " " for p in visible
        )
        if line.strip():
            line = colorize(line, color)
        rows.append(f"{format_price(label):>{LABEL_WIDTH}} │ {line}")
    return rows


# ── Reporter ─────────────────────────────────────────────────────────────


class ConsoleReporter:
    """Subscribes to the event bus and redraws a full-screen status view.

    Args:
        bus: Event bus to subscribe to.
        active_market: Market whose prices are charted (first seen if None).
        out: Output stream (stdout by default).
        refresh_interval_ms: Tick period of :meth:`run`.
        render_interval_ms: Forced redraw period when nothing changed.
        clock: Wall-clock source in seconds.
    """

    def __init__(
        self,
        bus: EventBus,
        active_market: Optional[str] = None,
        out: Optional[TextIO] = None,
        refresh_interval_ms: int = REFRESH_INTERVAL_MS,
        render_interval_ms: int = RENDER_INTERVAL_MS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._bus = bus
        self._out = out or sys.stdout
        self._refresh_interval = refresh_interval_ms / 1000.0
        self._render_interval = render_interval_ms / 1000.0
        self._clock = clock
        self._running = False
        self._screen_active = False

        self.buffer: deque = deque(maxlen=MAX_BUFFER_SIZE)
        self.debug_log: deque[str] = deque(maxlen=DEBUG_LOG_LIMIT)

        # View model
        self.active_market = active_market
        self.markets: dict[str, float] = {}
        self.price_history: deque[float] = deque(maxlen=PRICE_HISTORY_LIMIT)
        self.strategies: dict[str, StrategyStatus] = {}
        self.trade_counts: dict[str, int] = {}
        self.indicators: Optional[dict] = None
        self.indicator_history_size = 0

        # Health counters
        self.started_at = clock()
        self.updates_received = 0
        self.failed_requests = 0
        self.last_price_at: Optional[float] = None
        self.last_render_at: Optional[float] = None
        self.render_count = 0

        self._handlers = {
            PRICE_FETCH: self._on_price,
            STATUS_UPDATE: self._on_status,
            TRADE_SIGNAL: self._on_trade,
            PRICE_FETCH_ERROR: self._on_fetch_error,
            FEED_CONNECTED: self._on_connected,
            DEBUG: self._on_debug,
        }
        self.attach()

    def attach(self) -> None:
        for topic, handler in self._handlers.items():
            self._bus.subscribe(topic, handler)

    def detach(self) -> None:
        for topic, handler in self._handlers.items():
            self._bus.unsubscribe(topic, handler)

    # ── Bus handlers ─────────────────────────────────────────────────────

    def _on_price(self, event: PriceFetched) -> None:
        self.updates_received += 1
        self.last_price_at = self._clock()
        self.buffer.append(event)

    def _on_status(self, event: StrategyStatus) -> None:
        self.buffer.append(event)

    def _on_trade(self, event: TradeSignal) -> None:
        self.buffer.append(event)
        self.add_debug(
            f"{event.strategy}: {event.signal} signal, "
            f"{event.previous_position} -> {event.new_position} at {format_price(event.price)}"
        )

    def _on_fetch_error(self, event: PriceFetchFailed) -> None:
        self.failed_requests += 1

    def _on_connected(self, event: FeedConnected) -> None:
        self.add_debug(f"Connected to {event.url}")

    def _on_debug(self, event: DebugMessage) -> None:
        self.add_debug(event.message)

    def add_debug(self, message: str) -> None:
        stamp = datetime.fromtimestamp(self._clock()).strftime("%H:%M:%S")
        self.debug_log.appendleft(f"{stamp} | {message}")

    # ── Update application ───────────────────────────────────────────────

    def apply(self, event) -> None:
        """Fold one buffered event into the view model."""
        if isinstance(event, PriceFetched):
            self.markets[event.market] = event.price
            if self.active_market is None:
                self.active_market = event.market
            if event.market == self.active_market:
                self.price_history.append(event.price)
        elif isinstance(event, StrategyStatus):
            self.strategies[event.strategy] = event
            self.indicator_history_size = event.history_size
            if event.indicators is not None:
                self.indicators = event.indicators
        elif isinstance(event, TradeSignal):
            self.trade_counts[event.strategy] = self.trade_counts.get(event.strategy, 0) + 1

    def refresh(self) -> bool:
        """Drain buffered updates and redraw if needed.

        Returns True when the screen was redrawn.
        """
        applied = 0
        while self.buffer:
            self.apply(self.buffer.popleft())
            applied += 1

        now = self._clock()
        due = self.last_render_at is None or now - self.last_render_at >= self._render_interval
        if not applied and not due:
            return False

        self._write(Screen.HOME + Screen.CLEAR + self.render())
        self.last_render_at = now
        self.render_count += 1
        return True

    # ── Rendering ────────────────────────────────────────────────────────

    def render(self) -> str:
        columns, rows = shutil.get_terminal_size((MIN_WIDTH, 40))
        width = max(MIN_WIDTH, columns)
        sections = [
            ("Markets", self._section_markets),
            ("Price", self._section_price),
            ("Indicators", self._section_indicators),
            ("Strategies", self._section_strategies),
            ("Price graph", lambda w: self._section_chart(w, rows)),
            ("System diagnostics", self._section_diagnostics),
            ("Debug log", lambda w: self._section_debug(rows)),
        ]

        lines = [colorize("PerpPulse Trading Stats", Colors.YELLOW), DIVIDER]
        for title, build in sections:
            try:
                lines.extend(build(width))
            except Exception as exc:
                lines.append(f"{title} unavailable")
                self.add_debug(f"{title} render error: {exc}")
            lines.append(DIVIDER)
        return "\n".join(lines) + "\n"

    def _section_markets(self, width: int) -> list[str]:
        if not self.markets:
            return ["Markets: waiting for feed..."]
        lines = ["Markets:"]
        for market, price in sorted(self.markets.items()):
            marker = "*" if market == self.active_market else " "
            lines.append(f" {marker} {market:<12} {format_price(price)}")
        return lines

    def _section_price(self, width: int) -> list[str]:
        if not self.price_history:
            return ["Price: waiting for first update..."]
        price = self.price_history[-1]
        change = 0.0
        if len(self.price_history) > 1 and self.price_history[-2]:
            previous = self.price_history[-2]
            change = (price - previous) / previous * 100
        arrow = "▲" if change >= 0 else "▼"
        change_text = colorize(f"{arrow} {abs(change):.2f}%", direction_color(change))
        return [f"Price ({self.active_market}): {format_price(price)} {change_text}"]

    def _section_indicators(self, width: int) -> list[str]:
        n = self.indicator_history_size
        if self.indicators is None:
            return [
                "Momentum: Initializing...",
                f"Moving Averages: Collecting data ({n}/{LONG_PERIOD})",
                f"  Short ({SHORT_PERIOD}):   {format_ma_value(None, SHORT_PERIOD, n)}",
                f"  Medium ({MEDIUM_PERIOD}): {format_ma_value(None, MEDIUM_PERIOD, n)}",
                f"  Long ({LONG_PERIOD}):   {format_ma_value(None, LONG_PERIOD, n)}",
            ]
        ind = self.indicators
        momentum_pct = ind["momentum"] * 100
        color = Colors.RESET
        if momentum_pct > 1.0:
            color = Colors.GREEN
        elif momentum_pct < -1.0:
            color = Colors.RED
        ready = ind["long_ma"] is not None
        return [
            f"Momentum: {colorize(f'{momentum_pct:.2f}%', color)}    "
            f"Trend strength: {ind['trend_strength'] * 100:.2f}%",
            "Moving Averages: "
            + ("Ready" if ready else f"Collecting data ({n}/{LONG_PERIOD})"),
            f"  Short ({SHORT_PERIOD}):   {format_ma_value(ind['short_ma'], SHORT_PERIOD, n)}",
            f"  Medium ({MEDIUM_PERIOD}): {format_ma_value(ind['medium_ma'], MEDIUM_PERIOD, n)}",
            f"  Long ({LONG_PERIOD}):   {format_ma_value(ind['long_ma'], LONG_PERIOD, n)}",
        ]

    def _section_strategies(self, width: int) -> list[str]:
        if not self.strategies:
            return ["Signal: Initializing..."]
        lines = []
        for name, status in sorted(self.strategies.items()):
            if status.signal == "long":
                signal = colorize("BULLISH", Colors.GREEN)
            elif status.signal == "short":
                signal = colorize("BEARISH", Colors.RED)
            else:
                signal = "NEUTRAL"
            position_color = {"long": Colors.GREEN, "short": Colors.RED}.get(
                status.position, Colors.RESET
            )
            lines.append(
                f"{name:<14} {status.trading_pair:<10} Signal: {signal} "
                f"({status.signal_strength * 100:.2f}%)  "
                f"Position: {colorize(status.position, position_color)}  "
                f"Trades: {self.trade_counts.get(name, 0)}"
            )
        return lines

    def _section_chart(self, width: int, rows: int) -> list[str]:
        height = max(3, min(GRAPH_HEIGHT, (rows - 20) // 2))
        header = colorize(
            f"Price Graph (Last {len(self.price_history)} updates)", Colors.YELLOW
        )
        chart = render_price_chart(
            list(self.price_history), width=width - LABEL_WIDTH - 3, height=height
        )
        return [header, *chart]

    def connection_status(self) -> str:
        if self.last_price_at is None:
            return "Initializing"
        if self._clock() - self.last_price_at <= CONNECTED_WINDOW_SECONDS:
            return colorize("Connected", Colors.GREEN)
        return colorize("Disconnected", Colors.RED)

    def _last_update_text(self) -> str:
        if self.last_price_at is None:
            return "Never"
        ago = int(self._clock() - self.last_price_at)
        if ago < 5:
            return colorize("Just now", Colors.GREEN)
        if ago < 30:
            return f"{ago}s ago"
        return colorize(f"{ago}s ago", Colors.RED)

    def _section_diagnostics(self, width: int) -> list[str]:
        return [
            colorize("System Diagnostics", Colors.YELLOW),
            f"  Feed Status: {self.connection_status()}",
            f"  Last Price Update: {self._last_update_text()}",
            f"  Updates Received: {self.updates_received}",
            f"  Failed Requests: {self.failed_requests}",
            f"  Uptime: {format_duration(self._clock() - self.started_at)}",
        ]

    def _section_debug(self, rows: int) -> list[str]:
        limit = max(3, min(DEBUG_LOG_LIMIT, (rows - 20) // 3))
        entries = list(self.debug_log)[:limit]
        return [colorize(f"Debug Log (Last {limit} messages)", Colors.YELLOW), *entries]

    # ── Lifecycle ────────────────────────────────────────────────────────

    def _write(self, text: str) -> None:
        self._out.write(text)
        self._out.flush()

    def start(self) -> None:
        """Switch to the alternate screen and hide the cursor."""
        if not self._screen_active:
            self._write(Screen.ALT_SCREEN + Screen.HIDE_CURSOR)
            self._screen_active = True

    def close(self) -> None:
        """Restore the cursor and main screen."""
        if self._screen_active:
            self._write(Screen.SHOW_CURSOR + Screen.MAIN_SCREEN)
            self._screen_active = False

    def stop(self) -> None:
        self._running = False

    async def run(self) -> None:
        """Refresh every tick until :meth:`stop` is called."""
        self._running = True
        self.attach()
        self.start()
        try:
            while self._running:
                try:
                    self.refresh()
                except Exception as exc:
                    logger.error("Dashboard refresh failed: %s", exc)
                await asyncio.sleep(self._refresh_interval)
        finally:
            self.close()
