"""Strategy snapshot repository — SQLite operations for strategy_snapshots.

Best-effort persistence of a strategy's bounded history and position so a
restarted process can pick up where it left off.
"""

import json
from datetime import datetime, timezone

from perppulse.repos.db import get_connection, init_db


class SnapshotRepo:
    """Data access layer for strategy snapshots.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        conn = get_connection(self._db_path)
        try:
            init_db(conn)
        finally:
            conn.close()

    def save(self, name: str, snapshot: dict) -> None:
        """Upsert the snapshot for strategy *name*."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO strategy_snapshots
                    (name, position, history, total_trades, saved_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    position = excluded.position,
                    history = excluded.history,
                    total_trades = excluded.total_trades,
                    saved_at = excluded.saved_at
                """,
                (
                    name,
                    snapshot.get("position", "none"),
                    json.dumps(snapshot.get("history", [])),
                    int(snapshot.get("total_trades", 0)),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def load(self, name: str) -> dict | None:
        """Return the saved snapshot for *name*, or ``None``."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM strategy_snapshots WHERE name = ?", (name,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return {
            "position": row["position"],
            "history": json.loads(row["history"]),
            "total_trades": row["total_trades"],
            "saved_at": row["saved_at"],
        }
