# pharmacy_pos/database/__init__.py
from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator
import logging
import sqlite3

from ..config import DB_PATH
from . import schema as schema_module
from .errors import DomainError, map_sqlite_error
from .seeders.default_data import seed as seed_default_data
from .versioning import ensure_version

_log = logging.getLogger(__name__)


def get_connection(db_path: Path | str | None = None, *, seed: bool = True) -> sqlite3.Connection:
    """
    Returns a sqlite3.Connection with:
      - WAL mode (file databases)
      - foreign_keys ON
      - row_factory = sqlite3.Row (so rows behave like dicts and tuples)
    Ensures schema, version stamp & seed data are applied idempotently.
    Pass ":memory:" for a throwaway database.
    """
    target = str(db_path) if db_path is not None else str(DB_PATH)
    if target != ":memory:":
        Path(target).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(target)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    if target != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL;")

    schema_module.apply_schema(conn)
    ensure_version(conn)
    if seed:
        seed_default_data(conn)
    conn.commit()
    _log.debug("connection ready: %s", target)
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    Scoped write transaction.

    Starts an IMMEDIATE transaction (takes the write lock up front), commits on
    success and rolls back on any error. sqlite3 errors are re-raised as
    ConflictError/StorageError; domain errors propagate unchanged.

    When the connection is already inside a transaction the block joins it:
    the outermost scope decides commit or rollback.
    """
    if conn.in_transaction:
        yield conn
        return

    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except sqlite3.Error as e:
        conn.rollback()
        _log.warning("transaction rolled back: %s", e)
        raise map_sqlite_error(e) from e
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()


__all__ = [
    "get_connection",
    "transaction",
    "DomainError",
]
