"""Internal API routers — /status, /markets, /history, /strategies endpoints.

No business logic. Delegates to the stores, engines and supervisor injected
at startup via :func:`configure_routers`.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

from perppulse.broker.models import PriceSource

logger = logging.getLogger("perppulse.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_market_state = None   # MarketState
_history = None        # PriceHistoryRepo
_engines: dict = {}    # name → StrategyEngine
_supervisor = None     # Supervisor
_feed = None           # PriceFeed
_bus = None            # EventBus


def configure_routers(
    market_state=None,
    history=None,
    engines: Optional[dict] = None,
    supervisor=None,
    feed=None,
    bus=None,
) -> None:
    """Inject dependencies from the application startup.

    Every argument accepts a duck-type, so tests can pass lightweight fakes.
    """
    global _market_state, _history, _engines, _supervisor, _feed, _bus  # noqa: PLW0603
    _market_state = market_state
    _history = history
    _engines = dict(engines or {})
    _supervisor = supervisor
    _feed = feed
    _bus = bus


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Supervisor, feed and event-bus health in one payload."""
    feed = None
    if _feed is not None:
        stats = _feed.stats
        feed = {
            "url": _feed.url,
            "state": _feed.state.value,
            "connections": stats.connections,
            "frames_received": stats.frames_received,
            "ticks_published": stats.ticks_published,
            "decode_errors": stats.decode_errors,
            "last_tick_ms": stats.last_tick_ms,
        }
    history = None
    if _history is not None:
        history = {
            "capacity": _history.capacity,
            "count": _history.count(),
            "total_inserted": _history.total_inserted,
            "last_insert_ms": _history.last_insert_ms,
        }
    return {
        "supervisor": _supervisor.get_status() if _supervisor is not None else None,
        "feed": feed,
        "history": history,
        "events": _bus.stats if _bus is not None else {},
    }


@router.get("/markets")
async def get_markets():
    """Latest tick per market."""
    if _market_state is None:
        return {"markets": {}}
    markets = {}
    for market, tick in _market_state.markets().items():
        markets[market] = {
            "price": tick.price,
            "timestamp_ms": tick.timestamp_ms,
            "source": tick.source.value,
        }
    return {"markets": markets}


@router.get("/history/{market}")
async def get_history(
    market: str,
    from_ms: int = Query(default=0, ge=0),
    to_ms: Optional[int] = Query(default=None, ge=0),
    source: Optional[PriceSource] = Query(default=None),
    limit: int = Query(default=500, ge=1, le=10_000),
):
    """Stored prices for *market* between *from_ms* and *to_ms*, oldest first.

    Only the newest *limit* points of the range are returned.
    """
    if _history is None:
        return {"market": market, "points": [], "total": 0}
    if to_ms is None:
        to_ms = 2**63 - 1
    rows = _history.query(market, from_ms, to_ms, source=source)
    points = [
        {"price": price, "timestamp_ms": ts, "oracle_account": account}
        for price, ts, account in rows[-limit:]
    ]
    return {"market": market, "points": points, "total": len(rows)}


@router.get("/strategies")
async def get_strategies():
    """Per-strategy engine status."""
    return {"strategies": {name: eng.get_status() for name, eng in _engines.items()}}


@router.get("/strategies/{name}")
async def get_strategy(name: str):
    engine = _engines.get(name)
    if engine is None:
        return {"error": f"Unknown strategy: {name}"}
    return engine.get_status()
