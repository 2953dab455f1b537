import sqlite3

from ..constants import TABLE_SCHEMA_VERSION, SCHEMA_VERSION
from ..utils.loggers import get_logger

_log = get_logger("pharmacy_pos.db")

_DDL = f"""
    CREATE TABLE IF NOT EXISTS {TABLE_SCHEMA_VERSION}(
        id      INTEGER PRIMARY KEY CHECK (id=1),
        version TEXT NOT NULL
    );
"""


def get_current_version(conn: sqlite3.Connection) -> str | None:
    conn.execute(_DDL)
    row = conn.execute(f"SELECT version FROM {TABLE_SCHEMA_VERSION} WHERE id=1;").fetchone()
    return row[0] if row else None


def ensure_version(conn: sqlite3.Connection) -> str:
    """Stamp a fresh database with SCHEMA_VERSION; leave an existing stamp alone."""
    current = get_current_version(conn)
    if current is None:
        set_current_version(conn, SCHEMA_VERSION)
        current = SCHEMA_VERSION
    elif current != SCHEMA_VERSION:
        _log.warning("Database schema %s differs from code schema %s", current, SCHEMA_VERSION)
    return current


def set_current_version(conn: sqlite3.Connection, version: str) -> str | None:
    """Upsert the single version row. Returns the previous stamp."""
    previous = get_current_version(conn)
    conn.execute(
        f"INSERT INTO {TABLE_SCHEMA_VERSION}(id, version) VALUES (1, ?) "
        f"ON CONFLICT(id) DO UPDATE SET version=excluded.version;",
        (version,),
    )
    if previous != version:
        _log.info("Schema version stamped: %s -> %s", previous, version)
    return previous
