# pharmacy_pos/database/seeders/default_data.py
import logging
import sqlite3

from ...constants import DEFAULT_ACCOUNTS

_log = logging.getLogger(__name__)


def seed(conn: sqlite3.Connection) -> None:
    """
    Idempotent: make sure the default cash drawer and bank account exist.
    Accounts are matched by name so a renamed default is not recreated twice.
    """
    for name, account_type, description in DEFAULT_ACCOUNTS:
        cur = conn.execute(
            """
            INSERT INTO accounts (name, account_type, description)
            SELECT ?, ?, ?
            WHERE NOT EXISTS (SELECT 1 FROM accounts WHERE name = ?)
            """,
            (name, account_type, description, name),
        )
        if cur.rowcount:
            _log.info("seeded default account %r", name)
