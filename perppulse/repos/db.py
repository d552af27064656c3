"""Database initialization and connection management.

Runs the schema migrations on first use, provides connection factory.
"""

import pathlib
import sqlite3


_MIGRATION_DIR = pathlib.Path(__file__).resolve().parent / "migrations"


def init_db(conn: sqlite3.Connection) -> None:
    """Apply every migration script to *conn*.

    Scripts use ``IF NOT EXISTS`` so re-running them is harmless.
    """
    for migration_file in sorted(_MIGRATION_DIR.glob("*.sql")):
        sql = migration_file.read_text(encoding="utf-8")
        conn.executescript(sql)


def get_connection(db_path: str, shared: bool = False) -> sqlite3.Connection:
    """Return a new SQLite connection with row-factory enabled.

    Parent directories of a file-backed database are created on demand.
    *shared* connections may be used from threads other than the creating
    one; their owner must serialize access.  Callers are responsible for
    closing the connection.
    """
    if db_path != ":memory:":
        pathlib.Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=not shared)
    conn.row_factory = sqlite3.Row
    return conn
