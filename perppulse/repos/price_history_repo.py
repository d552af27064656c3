"""Price history repository — bounded SQLite table of price points.

The table is capped at ``capacity`` rows.  After each insert the oldest rows
by timestamp are evicted until the cap holds again.  In the default
``"global"`` mode the cap spans all markets combined, so a busy market can
push a quiet one out of the window; ``"per_market"`` caps each market
separately.  Eviction is silent.
"""

import threading
from typing import Optional

from perppulse.broker.models import PricePoint, PriceSource, oracle_account_for
from perppulse.repos.db import get_connection, init_db

DEFAULT_CAPACITY = 10_000


class PriceHistoryRepo:
    """Data access layer for the bounded price history table.

    The repo owns a single connection; every statement runs under its lock
    so concurrent writers are serialized.

    Args:
        db_path: SQLite path.  Defaults to an in-memory database.
        capacity: Maximum number of rows kept.
        eviction: ``"global"`` or ``"per_market"``.
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        capacity: int = DEFAULT_CAPACITY,
        eviction: str = "global",
    ) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        if eviction not in ("global", "per_market"):
            raise ValueError(f"Unknown eviction mode '{eviction}'")
        self._capacity = capacity
        self._eviction = eviction
        self._lock = threading.Lock()
        self._conn = get_connection(db_path, shared=True)
        init_db(self._conn)
        self._total_inserted = 0
        self._last_insert_ms: Optional[int] = None

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def total_inserted(self) -> int:
        """Points inserted since startup, including evicted ones."""
        return self._total_inserted

    @property
    def last_insert_ms(self) -> Optional[int]:
        return self._last_insert_ms

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ── Write ────────────────────────────────────────────────────────────

    def insert(self, point: PricePoint) -> None:
        """Append *point* and evict the oldest rows if over capacity."""
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO price_history
                    (market, price, timestamp_ms, source, oracle_account)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    point.market,
                    point.price,
                    point.timestamp_ms,
                    PriceSource(point.source).value,
                    point.oracle_account,
                ),
            )
            self._evict(point.market)
            self._conn.commit()
            self._total_inserted += 1
            self._last_insert_ms = point.timestamp_ms

    def _evict(self, market: str) -> None:
        if self._eviction == "per_market":
            size = self._conn.execute(
                "SELECT COUNT(*) FROM price_history WHERE market = ?", (market,)
            ).fetchone()[0]
            excess = size - self._capacity
            if excess > 0:
                self._conn.execute(
                    """
                    DELETE FROM price_history WHERE id IN (
                        SELECT id FROM price_history WHERE market = ?
                        ORDER BY timestamp_ms ASC, id ASC LIMIT ?
                    )
                    """,
                    (market, excess),
                )
            return

        size = self._conn.execute("SELECT COUNT(*) FROM price_history").fetchone()[0]
        excess = size - self._capacity
        if excess > 0:
            self._conn.execute(
                """
                DELETE FROM price_history WHERE id IN (
                    SELECT id FROM price_history
                    ORDER BY timestamp_ms ASC, id ASC LIMIT ?
                )
                """,
                (excess,),
            )

    # ── Read ─────────────────────────────────────────────────────────────

    def query(
        self,
        market: str,
        from_ms: int,
        to_ms: int,
        source: Optional[PriceSource | str] = None,
    ) -> list[tuple[float, int, Optional[str]]]:
        """Return ``(price, timestamp_ms, oracle_account)`` rows in range.

        Both bounds are inclusive.  Rows are ordered oldest-first.  When
        *source* is given only rows from that source are returned.
        """
        sql = (
            "SELECT price, timestamp_ms, oracle_account FROM price_history "
            "WHERE market = ? AND timestamp_ms >= ? AND timestamp_ms <= ?"
        )
        params: list = [market, from_ms, to_ms]
        if source is not None:
            sql += " AND source = ?"
            params.append(PriceSource(source).value)
        sql += " ORDER BY timestamp_ms ASC, id ASC"

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [(row["price"], row["timestamp_ms"], row["oracle_account"]) for row in rows]

    def latest(
        self,
        market: str,
        source: Optional[PriceSource | str] = None,
    ) -> Optional[float]:
        """Return the most recent price for *market*, or ``None``."""
        sql = "SELECT price FROM price_history WHERE market = ?"
        params: list = [market]
        if source is not None:
            sql += " AND source = ?"
            params.append(PriceSource(source).value)
        sql += " ORDER BY timestamp_ms DESC, id DESC LIMIT 1"

        with self._lock:
            row = self._conn.execute(sql, params).fetchone()
        return row["price"] if row else None

    def count(self, market: Optional[str] = None) -> int:
        """Number of rows stored, optionally for one market."""
        with self._lock:
            if market is None:
                return self._conn.execute("SELECT COUNT(*) FROM price_history").fetchone()[0]
            return self._conn.execute(
                "SELECT COUNT(*) FROM price_history WHERE market = ?", (market,)
            ).fetchone()[0]

    def markets(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT DISTINCT market FROM price_history ORDER BY market"
            ).fetchall()
        return [row["market"] for row in rows]

    @staticmethod
    def get_oracle_account(market: str) -> Optional[str]:
        """Return the oracle account for ``"SOL-USD"`` or a bare ``"SOL"``."""
        return oracle_account_for(market)
