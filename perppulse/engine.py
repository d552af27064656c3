"""PerpPulse — Strategy engine (polling loop).

Connects the price client, one strategy state machine and the event bus
into a single polling loop.  Price fetch → strategy update → status event.
"""

import asyncio
import logging
from typing import Optional

from perppulse.broker.price_client import PriceClient, PriceFetchError
from perppulse.events import EventBus, PriceFetchFailed, StrategyStatus, TradeSignal
from perppulse.models.strategy_config import StrategyConfig
from perppulse.repos.snapshot_repo import SnapshotRepo
from perppulse.strategy.base import StrategyProtocol, StrategyResult

logger = logging.getLogger("perppulse.engine")

_DEFAULT_TIMEOUT = 10.0
_MAX_CONSECUTIVE_ERRORS = 5


class StrategyEngine:
    """Drives one strategy on a fixed polling cadence.

    Args:
        strategy: A strategy implementing ``StrategyProtocol``.
        price_client: A ``PriceClient`` (or compatible duck-type / mock).
        bus: Event bus for status, trade and error events.
        strategy_config: Pair, cadence, and naming for this strategy.
        snapshot_repo: Optional store for best-effort state recovery.
        request_timeout: Upper bound on a single price fetch, in seconds.
    """

    def __init__(
        self,
        strategy: StrategyProtocol,
        price_client: PriceClient,
        bus: EventBus,
        strategy_config: StrategyConfig,
        snapshot_repo: Optional[SnapshotRepo] = None,
        request_timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self._strategy = strategy
        self._client = price_client
        self._bus = bus
        self._config = strategy_config
        self._snapshots = snapshot_repo
        self._timeout = request_timeout
        self._running: bool = False
        self._cycle_count: int = 0
        self._failed_fetches: int = 0
        self._consecutive_errors: int = 0

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def trading_pair(self) -> str:
        return self._config.trading_pair

    @property
    def strategy(self) -> StrategyProtocol:
        return self._strategy

    @property
    def running(self) -> bool:
        return self._running

    def get_status(self) -> dict:
        return {
            "name": self.name,
            "strategy": self._config.strategy,
            "trading_pair": self.trading_pair,
            "running": self._running,
            "cycle_count": self._cycle_count,
            "failed_fetches": self._failed_fetches,
            "position": getattr(self._strategy, "current_position", None),
            "signal": getattr(self._strategy, "current_signal", None),
            "total_trades": getattr(self._strategy, "total_trades", 0),
        }

    # ── Lifecycle ────────────────────────────────────────────────────────

    def initialize(self) -> None:
        """Restore a saved snapshot if one exists, then mark as running."""
        if self._snapshots is not None:
            try:
                saved = self._snapshots.load(self.name)
                if saved:
                    self._strategy.restore(saved)
                    logger.info(
                        "Strategy '%s' recovered %d prices (position=%s)",
                        self.name, len(saved.get("history", [])), saved.get("position"),
                    )
                    self._bus.debug(
                        f"Recovered {self.name} with {len(saved.get('history', []))} prices",
                        source=self.name,
                    )
            except Exception as exc:
                logger.warning("Strategy '%s' — snapshot restore failed: %s", self.name, exc)
        self._running = True

    def stop(self) -> None:
        """Signal the engine to stop after the current cycle."""
        self._running = False

    def save_snapshot(self) -> None:
        if self._snapshots is None:
            return
        try:
            self._snapshots.save(self.name, self._strategy.snapshot())
        except Exception as exc:
            logger.warning("Strategy '%s' — snapshot save failed: %s", self.name, exc)

    # ── Polling loop ─────────────────────────────────────────────────────

    async def run(
        self,
        poll_interval_ms: int | None = None,
        max_cycles: int = 0,
    ) -> list[dict]:
        """Run the polling loop until stopped.

        Args:
            poll_interval_ms: Milliseconds between cycles.  Defaults to the
                              strategy config.
            max_cycles: Stop after this many cycles (0 = unlimited).

        Returns:
            List of per-cycle result dicts.

        Raises:
            RuntimeError: after repeated unexpected cycle errors, so a
                supervisor can restart the engine.
        """
        if poll_interval_ms is None:
            poll_interval_ms = self._config.poll_interval_ms
        if not self._running:
            self.initialize()

        results: list[dict] = []
        cycle = 0
        try:
            while self._running:
                cycle += 1
                self._cycle_count += 1
                try:
                    result = await self.run_once()
                    self._consecutive_errors = 0
                except Exception as exc:
                    self._consecutive_errors += 1
                    logger.error("Strategy '%s' cycle %d error: %s", self.name, cycle, exc)
                    self._bus.debug(f"{self.name} cycle error: {exc}", source=self.name)
                    result = {"action": "error", "reason": str(exc)}
                    if self._consecutive_errors >= _MAX_CONSECUTIVE_ERRORS:
                        raise RuntimeError(
                            f"Strategy '{self.name}' failed {self._consecutive_errors} "
                            f"cycles in a row"
                        ) from exc
                results.append(result)
                logger.debug("Strategy '%s' cycle %d: %s", self.name, cycle, result.get("action"))

                if max_cycles > 0 and cycle >= max_cycles:
                    break
                await asyncio.sleep(poll_interval_ms / 1000.0)
        finally:
            self.save_snapshot()
        return results

    # ── Single cycle ─────────────────────────────────────────────────────

    async def run_once(self) -> dict:
        """Execute one poll cycle.

        Returns a dict describing the outcome:

        - ``{"action": "skipped", "reason": "price_fetch_failed", ...}``
        - ``{"action": "evaluated", ...}``
        - ``{"action": "position_changed", ...}``
        """
        base, quote = self._config.base, self._config.quote
        try:
            quote_data = await asyncio.wait_for(
                self._client.fetch_price(base, quote), timeout=self._timeout
            )
        except (PriceFetchError, asyncio.TimeoutError) as exc:
            reason = str(exc) or "timeout"
            self._failed_fetches += 1
            logger.warning("Strategy '%s' — price fetch failed: %s", self.name, reason)
            self._bus.publish_event(PriceFetchFailed(strategy=self.name, reason=reason))
            self._bus.debug(f"Price fetch failed: {reason}", source=self.name)
            return {"action": "skipped", "reason": "price_fetch_failed", "detail": reason}

        result = self._strategy.on_price(quote_data.price)
        self._report_status(result)

        if result.change is not None:
            self._report_trade(result)
            return {
                "action": "position_changed",
                "price": result.price,
                "signal": result.signal,
                "from": result.change.previous,
                "to": result.change.current,
            }
        return {
            "action": "evaluated",
            "price": result.price,
            "signal": result.signal,
            "position": result.position,
        }

    def _report_status(self, result: StrategyResult) -> None:
        self._bus.publish_event(
            StrategyStatus(
                strategy=self.name,
                trading_pair=self.trading_pair,
                price=result.price,
                momentum=result.momentum,
                signal=result.signal,
                signal_strength=result.signal_strength,
                position=result.position,
                history_size=result.history_size,
                indicators=result.indicators.to_dict() if result.indicators else None,
            )
        )

    def _report_trade(self, result: StrategyResult) -> None:
        change = result.change
        logger.info(
            "Trade signal — pair=%s strategy=%s signal=%s position %s -> %s at %.4f",
            self.trading_pair, self.name, change.signal,
            change.previous, change.current, change.price,
        )
        self._bus.publish_event(
            TradeSignal(
                strategy=self.name,
                trading_pair=self.trading_pair,
                signal=change.signal,
                previous_position=change.previous,
                new_position=change.current,
                price=change.price,
            )
        )
