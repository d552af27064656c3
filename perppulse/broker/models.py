"""Market data models — typed representations of feed and price-API objects."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PriceSource(str, Enum):
    """Where a price observation came from."""

    REALTIME = "realtime"
    ORACLE = "oracle"
    BACKFILL = "backfill"


@dataclass(frozen=True)
class PriceTick:
    """One normalized price observation for a market."""

    market: str  # e.g. "SOL-USD"
    price: float
    timestamp_ms: int
    source: PriceSource = PriceSource.REALTIME


@dataclass(frozen=True)
class PricePoint:
    """Stored form of a tick, optionally tagged with its oracle account."""

    market: str
    price: float
    timestamp_ms: int
    source: PriceSource = PriceSource.REALTIME
    oracle_account: Optional[str] = None

    @classmethod
    def from_tick(cls, tick: PriceTick, oracle_account: Optional[str] = None) -> "PricePoint":
        return cls(
            market=tick.market,
            price=tick.price,
            timestamp_ms=tick.timestamp_ms,
            source=tick.source,
            oracle_account=oracle_account,
        )


@dataclass(frozen=True)
class PriceQuote:
    """Response from the price API for a single token."""

    symbol: str
    quote_symbol: str
    price: float
    confidence: float = 0.0


# ── Oracle metadata ──────────────────────────────────────────────────────

ORACLE_ACCOUNTS: dict[str, str] = {
    "SOL": "39cWjvHrpHNz2SbXv6ME4NPhqBDBd4KsjUYv5JkHEAJU",
    "ETH": "5URYohbPy32nxK1t3jAHVNfdWY2xTubHiFvLrE3VhXEp",
    "BTC": "4HBbPx9QJdjJ7GUe6bsiJjGybvfpDhQMMPXP1UEa7VT5",
    "USDC": "A28T5pKtscnhDo6C1Sz786Tup88aTjt8uyKewjVvPrGk",
    "USDT": "AGW7q2a3WxCzh5TB2Q6yNde1Nf41g3HLaaXdybz7cbBU",
}

TOKEN_MINTS: dict[str, str] = {
    "SOL": "So11111111111111111111111111111111111111112",
    "USDC": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
}


def oracle_account_for(market: str) -> Optional[str]:
    """Return the oracle account for *market* (``"SOL-USD"`` or ``"SOL"``)."""
    base = market.split("-", 1)[0].upper()
    return ORACLE_ACCOUNTS.get(base)
