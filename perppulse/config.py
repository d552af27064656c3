"""PerpPulse — application configuration.

Loads .env variables into a typed config object.
Validates numeric variables on startup.
"""

import json
import logging
import os
import pathlib
from dataclasses import dataclass
from typing import Callable

from dotenv import load_dotenv

from perppulse.models.strategy_config import StrategyConfig

logger = logging.getLogger("perppulse.config")

_EVICTION_MODES = ("global", "per_market")


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    price_feed_url: str
    price_api_url: str
    trade_base: str
    trade_quote: str
    poll_interval_ms: int
    momentum_threshold: float
    exit_threshold: float
    history_capacity: int
    history_eviction: str  # "global" or "per_market"
    strategy_history_limit: int
    request_timeout_seconds: float
    db_path: str  # strategy snapshots; price history stays in memory
    log_level: str
    log_file: str
    api_port: int
    refresh_interval_ms: int

    @property
    def feed_market(self) -> str:
        """Market key used by the price feed, e.g. ``"SOL-USD"``."""
        return f"{self.trade_base}-USD"


def _parse(name: str, default: str, cast: Callable):
    raw = os.environ.get(name, default)
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(
            f"Invalid value for environment variable {name}: {raw!r}"
        ) from None
    return value


def _positive(name: str, value):
    if value <= 0:
        raise ValueError(f"Environment variable {name} must be positive, got {value}")
    return value


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the offending variable when a
    value cannot be parsed or is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    eviction = os.environ.get("HISTORY_EVICTION", "global")
    if eviction not in _EVICTION_MODES:
        raise ValueError(
            f"Invalid value for environment variable HISTORY_EVICTION: {eviction!r} "
            f"(expected one of {', '.join(_EVICTION_MODES)})"
        )

    return Config(
        price_feed_url=os.environ.get(
            "PRICE_FEED_URL",
            "wss://history.oraclesecurity.org/trading-view/stream",
        ),
        price_api_url=os.environ.get("PRICE_API_URL", "https://api.jup.ag/price/v2"),
        trade_base=os.environ.get("TRADE_BASE", "SOL"),
        trade_quote=os.environ.get("TRADE_QUOTE", "USDC"),
        poll_interval_ms=_positive(
            "POLL_INTERVAL_MS", _parse("POLL_INTERVAL_MS", "1000", int)
        ),
        momentum_threshold=_positive(
            "MOMENTUM_THRESHOLD", _parse("MOMENTUM_THRESHOLD", "0.02", float)
        ),
        exit_threshold=_positive(
            "EXIT_THRESHOLD", _parse("EXIT_THRESHOLD", "0.02", float)
        ),
        history_capacity=_positive(
            "HISTORY_CAPACITY", _parse("HISTORY_CAPACITY", "10000", int)
        ),
        history_eviction=eviction,
        strategy_history_limit=_positive(
            "STRATEGY_HISTORY_LIMIT", _parse("STRATEGY_HISTORY_LIMIT", "500", int)
        ),
        request_timeout_seconds=_positive(
            "REQUEST_TIMEOUT_SECONDS", _parse("REQUEST_TIMEOUT_SECONDS", "10", float)
        ),
        db_path=os.environ.get("DB_PATH", "data/perppulse.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        log_file=os.environ.get("LOG_FILE", "logs/perppulse.log"),
        api_port=_parse("API_PORT", "8080", int),
        refresh_interval_ms=_positive(
            "REFRESH_INTERVAL_MS", _parse("REFRESH_INTERVAL_MS", "250", int)
        ),
    )


def _default_strategies(config: Config) -> list[StrategyConfig]:
    """Synthesise the momentum + moving-average pair from env settings."""
    common = dict(
        base=config.trade_base,
        quote=config.trade_quote,
        poll_interval_ms=config.poll_interval_ms,
        history_limit=config.strategy_history_limit,
    )
    return [
        StrategyConfig(
            name="momentum",
            strategy="momentum",
            momentum_threshold=config.momentum_threshold,
            exit_threshold=config.exit_threshold,
            **common,
        ),
        StrategyConfig(name="ma-crossover", strategy="moving_average", **common),
    ]


def load_strategies(
    config: Config,
    path: str | pathlib.Path = "pulse.json",
) -> list[StrategyConfig]:
    """Load strategy definitions from *path*, falling back to env defaults.

    The file holds ``{"strategies": [{...StrategyConfig fields...}]}``.
    Disabled entries are dropped.  Raises ``ValueError`` for unknown keys.
    """
    path = pathlib.Path(path)
    if not path.exists():
        return _default_strategies(config)

    data = json.loads(path.read_text(encoding="utf-8"))
    strategies: list[StrategyConfig] = []
    for raw in data.get("strategies", []):
        entry = {
            "base": config.trade_base,
            "quote": config.trade_quote,
            "poll_interval_ms": config.poll_interval_ms,
            "history_limit": config.strategy_history_limit,
            **raw,
        }
        try:
            sc = StrategyConfig(**entry)
        except TypeError as exc:
            raise ValueError(f"Invalid strategy entry in {path}: {exc}") from None
        if sc.enabled:
            strategies.append(sc)
    logger.info("Loaded %d strategy definition(s) from %s", len(strategies), path)
    return strategies
