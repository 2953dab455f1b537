# pharmacy_pos/database/repositories/ledger_repo.py
"""
Running-balance ledger shared by accounts, suppliers and customers.

Conventions:
- Every entry carries exactly one positive side (debit or credit).
- balance = previous balance + credit - debit; the first entry starts from
  the owner's opening_balance.
- For accounts a credit is money coming in. For supplier/customer ledgers a
  credit raises what is outstanding, a debit settles it.
- The owner's current_balance is a cached copy of the latest running balance
  and is rewritten in the same transaction as the entry.
- Entries are never edited; corrections are new offsetting entries.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import sqlite3
from typing import Iterator

from ...config import DEFAULT_POLICY, Policy
from ...constants import ENTRY_TYPES, EPS, OWNER_ACCOUNT, OWNER_TYPES
from ...utils.helpers import round_money, today_str
from .. import transaction
from ..errors import NotFoundError, StateError, ValidationError

_log = logging.getLogger(__name__)

# owner_type -> (table, pk column)
_OWNER_TABLES = {
    "account": ("accounts", "account_id"),
    "supplier": ("suppliers", "supplier_id"),
    "customer": ("customers", "customer_id"),
}

_ENTRY_COLUMNS = (
    "entry_id, owner_type, owner_id, tx_date, entry_type, "
    "CAST(debit AS REAL) AS debit, CAST(credit AS REAL) AS credit, "
    "CAST(balance AS REAL) AS balance, reference_type, reference_id, "
    "reference_number, description, created_by, posted_at"
)


@dataclass
class LedgerEntry:
    entry_id: int
    owner_type: str
    owner_id: int
    tx_date: str
    entry_type: str
    debit: float
    credit: float
    balance: float
    reference_type: str | None
    reference_id: int | None
    reference_number: str | None
    description: str | None
    created_by: int | None
    posted_at: str


@dataclass
class Reconciliation:
    owner_type: str
    owner_id: int
    opening_balance: float
    total_credits: float
    total_debits: float
    expected_balance: float
    cached_balance: float

    @property
    def difference(self) -> float:
        return round_money(self.cached_balance - self.expected_balance)

    @property
    def ok(self) -> bool:
        return abs(self.cached_balance - self.expected_balance) < 0.005


class LedgerEntries:
    """
    Lazy, restartable view over one owner's entries.

    Nothing is read until iteration starts; every new iteration re-runs the
    query, so a second pass sees entries posted after the first one.
    """

    def __init__(self, conn: sqlite3.Connection, sql: str, params: tuple):
        self._conn = conn
        self._sql = sql
        self._params = params

    def __iter__(self) -> Iterator[LedgerEntry]:
        cur = self._conn.execute(self._sql, self._params)
        try:
            for row in cur:
                yield LedgerEntry(**dict(row))
        finally:
            cur.close()


class LedgerRepo:
    def __init__(self, conn: sqlite3.Connection, policy: Policy | None = None):
        conn.row_factory = sqlite3.Row
        self.conn = conn
        self.policy = policy or DEFAULT_POLICY

    # ------------------------------------------------------------------ #
    # Owners
    # ------------------------------------------------------------------ #
    @staticmethod
    def _owner_table(owner_type: str) -> tuple[str, str]:
        try:
            return _OWNER_TABLES[owner_type]
        except KeyError:
            raise ValidationError(
                f"Unknown ledger owner type: {owner_type!r}", field="owner_type"
            ) from None

    def _owner_row(self, owner_type: str, owner_id: int) -> sqlite3.Row:
        table, pk = self._owner_table(owner_type)
        row = self.conn.execute(
            f"SELECT {pk} AS owner_id, name, is_active, "
            f"CAST(opening_balance AS REAL) AS opening_balance, "
            f"CAST(current_balance AS REAL) AS current_balance "
            f"FROM {table} WHERE {pk} = ?",
            (owner_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"{owner_type.capitalize()} #{owner_id} does not exist.")
        return row

    def _latest_date(self, owner_type: str, owner_id: int) -> str | None:
        row = self.conn.execute(
            "SELECT MAX(DATE(tx_date)) FROM ledger_entries WHERE owner_type = ? AND owner_id = ?",
            (owner_type, owner_id),
        ).fetchone()
        return row[0] if row else None

    def _last_balance(self, owner_type: str, owner_id: int, opening: float) -> float:
        row = self.conn.execute(
            """
            SELECT CAST(balance AS REAL) FROM ledger_entries
            WHERE owner_type = ? AND owner_id = ?
            ORDER BY entry_id DESC LIMIT 1
            """,
            (owner_type, owner_id),
        ).fetchone()
        return float(row[0]) if row else float(opening)

    # ------------------------------------------------------------------ #
    # WRITE
    # ------------------------------------------------------------------ #
    def post_entry(
        self,
        owner_type: str,
        owner_id: int,
        entry_type: str,
        *,
        debit: float = 0.0,
        credit: float = 0.0,
        tx_date: str | None = None,
        reference_type: str | None = None,
        reference_id: int | None = None,
        reference_number: str | None = None,
        description: str | None = None,
        created_by: int | None = None,
    ) -> LedgerEntry:
        """
        Append one entry and move the owner's cached balance with it.

        Raises:
            ValidationError : unknown type, negative amounts, both/neither side set
            NotFoundError   : owner does not exist
            StateError      : owner is inactive, tx_date is earlier than the owner's
                              latest entry, or an account would be overdrawn
        """
        if entry_type not in ENTRY_TYPES:
            raise ValidationError(f"Unknown ledger entry type: {entry_type!r}", field="entry_type")
        debit = round_money(debit or 0.0)
        credit = round_money(credit or 0.0)
        if debit < 0 or credit < 0:
            raise ValidationError("Ledger amounts cannot be negative.", field="amount")
        if (debit > 0) == (credit > 0):
            raise ValidationError(
                "A ledger entry needs exactly one non-zero side (debit or credit).",
                field="amount",
            )

        table, pk = self._owner_table(owner_type)
        with transaction(self.conn):
            owner = self._owner_row(owner_type, owner_id)
            if not owner["is_active"]:
                raise StateError(f"{owner['name']} is inactive; postings are not allowed.")

            tx_date = tx_date or today_str()
            latest = self._latest_date(owner_type, owner_id)
            # Running balances chain in posting order, so dates may not go backwards.
            if latest is not None and self.conn.execute(
                "SELECT DATE(?) < ?", (tx_date, latest)
            ).fetchone()[0]:
                raise StateError(
                    f"{owner['name']} already has entries up to {latest}; "
                    f"cannot post an entry dated {tx_date}.",
                    field="tx_date",
                )

            previous = self._last_balance(owner_type, owner_id, owner["opening_balance"])
            balance = round_money(previous + credit - debit)
            if (
                owner_type == OWNER_ACCOUNT
                and debit > 0
                and balance < -EPS
                and not self.policy.allow_overdraft
            ):
                raise StateError(
                    f"Insufficient balance in {owner['name']}. "
                    f"Available: {previous:.2f}, required: {debit:.2f}"
                )

            cur = self.conn.execute(
                """
                INSERT INTO ledger_entries (
                    owner_type, owner_id, tx_date, entry_type, debit, credit, balance,
                    reference_type, reference_id, reference_number, description, created_by
                ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)
                """,
                (
                    owner_type,
                    owner_id,
                    tx_date,
                    entry_type,
                    debit,
                    credit,
                    balance,
                    reference_type,
                    reference_id,
                    reference_number,
                    description,
                    created_by,
                ),
            )
            entry_id = int(cur.lastrowid)

            if owner_type == OWNER_ACCOUNT:
                self.conn.execute(
                    """
                    UPDATE accounts
                    SET current_balance = ?,
                        total_deposits = CAST(total_deposits AS REAL) + ?,
                        total_withdrawals = CAST(total_withdrawals AS REAL) + ?,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE account_id = ?
                    """,
                    (balance, credit, debit, owner_id),
                )
            else:
                self.conn.execute(
                    f"UPDATE {table} SET current_balance = ?, updated_at = CURRENT_TIMESTAMP "
                    f"WHERE {pk} = ?",
                    (balance, owner_id),
                )

        _log.debug(
            "posted %s entry #%s on %s #%s: debit=%.2f credit=%.2f balance=%.2f",
            entry_type, entry_id, owner_type, owner_id, debit, credit, balance,
        )
        return self.get_entry(entry_id)

    # ------------------------------------------------------------------ #
    # READ
    # ------------------------------------------------------------------ #
    def get_entry(self, entry_id: int) -> LedgerEntry:
        row = self.conn.execute(
            f"SELECT {_ENTRY_COLUMNS} FROM ledger_entries WHERE entry_id = ?", (entry_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Ledger entry #{entry_id} does not exist.")
        return LedgerEntry(**dict(row))

    def get_entries(
        self,
        owner_type: str,
        owner_id: int,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> LedgerEntries:
        """
        Entries for one owner, oldest first (date, then posting order).
        Date bounds are inclusive. The owner is checked now; rows are read lazily.
        """
        self._owner_row(owner_type, owner_id)
        where = ["owner_type = ?", "owner_id = ?"]
        params: list = [owner_type, owner_id]
        if date_from:
            where.append("DATE(tx_date) >= DATE(?)")
            params.append(date_from)
        if date_to:
            where.append("DATE(tx_date) <= DATE(?)")
            params.append(date_to)
        sql = (
            f"SELECT {_ENTRY_COLUMNS} FROM ledger_entries WHERE "
            + " AND ".join(where)
            + " ORDER BY DATE(tx_date) ASC, entry_id ASC"
        )
        return LedgerEntries(self.conn, sql, tuple(params))

    def get_balance(self, owner_type: str, owner_id: int) -> float:
        return float(self._owner_row(owner_type, owner_id)["current_balance"])

    def reconcile(self, owner_type: str, owner_id: int) -> Reconciliation:
        """Re-sum the ledger and compare it with the cached balance."""
        owner = self._owner_row(owner_type, owner_id)
        sums = self.conn.execute(
            """
            SELECT COALESCE(SUM(CAST(credit AS REAL)), 0.0) AS credits,
                   COALESCE(SUM(CAST(debit AS REAL)), 0.0)  AS debits
            FROM ledger_entries WHERE owner_type = ? AND owner_id = ?
            """,
            (owner_type, owner_id),
        ).fetchone()
        opening = float(owner["opening_balance"])
        credits = round_money(sums["credits"])
        debits = round_money(sums["debits"])
        return Reconciliation(
            owner_type=owner_type,
            owner_id=owner_id,
            opening_balance=opening,
            total_credits=credits,
            total_debits=debits,
            expected_balance=round_money(opening + credits - debits),
            cached_balance=float(owner["current_balance"]),
        )

    def reconcile_all(self) -> list[Reconciliation]:
        """Reconcile every account, supplier and customer; mismatches are logged."""
        out: list[Reconciliation] = []
        for owner_type in OWNER_TYPES:
            table, pk = _OWNER_TABLES[owner_type]
            for (owner_id,) in self.conn.execute(f"SELECT {pk} FROM {table} ORDER BY {pk}").fetchall():
                rec = self.reconcile(owner_type, owner_id)
                if not rec.ok:
                    _log.warning(
                        "balance mismatch on %s #%s: cached=%.2f expected=%.2f",
                        owner_type, owner_id, rec.cached_balance, rec.expected_balance,
                    )
                out.append(rec)
        return out
