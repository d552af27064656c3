"""PerpPulse — application entry point.

Boots the FastAPI internal server next to the supervised pipeline
(price feed, strategy engines, console dashboard) and provides the CLI.
"""

import asyncio
import logging
import pathlib
import signal
from dataclasses import dataclass, field
from typing import Optional

from fastapi import FastAPI

from perppulse.api.routers import configure_routers, router
from perppulse.broker.price_client import PriceClient
from perppulse.broker.price_feed import PriceFeed
from perppulse.cli.dashboard import ConsoleReporter
from perppulse.config import Config, load_config, load_strategies
from perppulse.engine import StrategyEngine
from perppulse.events import BusLogHandler, EventBus
from perppulse.models.strategy_config import StrategyConfig
from perppulse.repos.market_state import MarketState
from perppulse.repos.price_history_repo import PriceHistoryRepo
from perppulse.repos.snapshot_repo import SnapshotRepo
from perppulse.strategy.registry import get_strategy
from perppulse.supervisor import ChildSpec, Supervisor, SupervisorGaveUp

app = FastAPI(title="PerpPulse Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("perppulse")

MAX_RESTARTS = 10
MAX_RESTART_SECONDS = 60.0
RESTART_DELAY_SECONDS = 2.0


@app.get("/health")
async def health():
    return {"status": "ok"}


# ── Wiring ───────────────────────────────────────────────────────────────


@dataclass
class Pipeline:
    """Every long-lived component of a running instance."""

    config: Config
    bus: EventBus
    market_state: MarketState
    history: PriceHistoryRepo
    snapshots: SnapshotRepo
    feed: PriceFeed
    engines: dict[str, StrategyEngine] = field(default_factory=dict)
    reporter: Optional[ConsoleReporter] = None


def build_pipeline(
    config: Config,
    strategies: list[StrategyConfig],
    with_dashboard: bool = True,
    bus: Optional[EventBus] = None,
) -> Pipeline:
    """Instantiate stores, feed, one engine per strategy and the dashboard."""
    bus = bus or EventBus()
    market_state = MarketState()
    history = PriceHistoryRepo(
        ":memory:",
        capacity=config.history_capacity,
        eviction=config.history_eviction,
    )
    snapshots = SnapshotRepo(config.db_path)
    feed = PriceFeed(config.price_feed_url, bus, market_state, history)
    client = PriceClient(config)

    pipeline = Pipeline(
        config=config,
        bus=bus,
        market_state=market_state,
        history=history,
        snapshots=snapshots,
        feed=feed,
    )
    for sc in strategies:
        if sc.name in pipeline.engines:
            raise ValueError(f"Duplicate strategy name '{sc.name}'")
        pipeline.engines[sc.name] = StrategyEngine(
            strategy=get_strategy(sc),
            price_client=client,
            bus=bus,
            strategy_config=sc,
            snapshot_repo=snapshots,
            request_timeout=config.request_timeout_seconds,
        )
        logger.info("Registered strategy '%s' → %s on %s", sc.name, sc.strategy, sc.trading_pair)

    if with_dashboard:
        pipeline.reporter = ConsoleReporter(
            bus,
            active_market=config.feed_market,
            refresh_interval_ms=config.refresh_interval_ms,
        )
    return pipeline


def build_supervisor(pipeline: Pipeline) -> Supervisor:
    """Dashboard first, then the feed, then the strategies.

    ``rest_for_one``: a feed restart also restarts every strategy.
    """
    children: list[ChildSpec] = []
    if pipeline.reporter is not None:
        children.append(
            ChildSpec("dashboard", run=pipeline.reporter.run, stop=pipeline.reporter.stop)
        )
    children.append(ChildSpec("price_feed", run=pipeline.feed.run, stop=pipeline.feed.stop))
    for name, engine in pipeline.engines.items():
        children.append(ChildSpec(f"strategy:{name}", run=engine.run, stop=engine.stop))
    return Supervisor(
        children,
        strategy="rest_for_one",
        max_restarts=MAX_RESTARTS,
        max_seconds=MAX_RESTART_SECONDS,
        restart_delay=RESTART_DELAY_SECONDS,
    )


def configure_logging(config: Config, bus: Optional[EventBus] = None) -> None:
    """Log to stderr, or to ``LOG_FILE`` plus the dashboard when *bus* is given."""
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    if bus is None:
        logging.basicConfig(level=level, format=fmt)
        return

    log_path = pathlib.Path(config.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(level=level, format=fmt, filename=str(log_path))
    logging.getLogger().addHandler(BusLogHandler(bus))


# ── Run ──────────────────────────────────────────────────────────────────


async def _run_pipeline(supervisor: Supervisor, port: Optional[int]) -> None:
    """Run the supervisor, and the API server unless *port* is None.

    Raises:
        SupervisorGaveUp: the children restarted too often.
    """
    if port is None:
        try:
            await supervisor.run()
        except SupervisorGaveUp as exc:
            logger.critical("Supervisor gave up: %s", exc)
            raise
        return

    import uvicorn

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="warning")
    server = uvicorn.Server(uvi_config)

    async def _run_server():
        await server.serve()
        supervisor.stop_all()

    async def _run_children():
        try:
            await supervisor.run()
        except SupervisorGaveUp as exc:
            logger.critical("Supervisor gave up: %s", exc)
            raise
        finally:
            server.should_exit = True

    logger.info("Internal API available at http://localhost:%d", port)
    results = await asyncio.gather(_run_server(), _run_children(), return_exceptions=True)
    logger.info("PerpPulse stopped. Results: %s", results)
    for result in results:
        if isinstance(result, SupervisorGaveUp):
            raise result


def main(argv: Optional[list[str]] = None) -> None:
    """Parse CLI arguments, wire the pipeline and run until interrupted."""
    import argparse

    parser = argparse.ArgumentParser(description="PerpPulse perpetuals price monitor")
    parser.add_argument("--no-dashboard", action="store_true", help="Disable the console dashboard")
    parser.add_argument("--no-api", action="store_true", help="Do not start the internal API")
    parser.add_argument("--config", default="pulse.json", help="Strategy definitions file")
    parser.add_argument("--env", default=None, help="Path to a .env file")
    args = parser.parse_args(argv)

    config = load_config(args.env)
    strategies = load_strategies(config, args.config)

    bus = EventBus()
    with_dashboard = not args.no_dashboard
    configure_logging(config, bus if with_dashboard else None)

    pipeline = build_pipeline(config, strategies, with_dashboard=with_dashboard, bus=bus)
    supervisor = build_supervisor(pipeline)
    configure_routers(
        market_state=pipeline.market_state,
        history=pipeline.history,
        engines=pipeline.engines,
        supervisor=supervisor,
        feed=pipeline.feed,
        bus=bus,
    )

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received — stopping gracefully.")
        supervisor.stop_all()

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    logger.info(
        "Starting PerpPulse with %d strategy(ies) on %s.",
        len(pipeline.engines), config.feed_market,
    )
    try:
        asyncio.run(_run_pipeline(supervisor, None if args.no_api else config.api_port))
    except SupervisorGaveUp:
        raise SystemExit(1)
    finally:
        pipeline.history.close()


if __name__ == "__main__":
    main()
