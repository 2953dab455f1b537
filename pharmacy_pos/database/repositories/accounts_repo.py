# pharmacy_pos/database/repositories/accounts_repo.py
from __future__ import annotations

from dataclasses import dataclass
import logging
import sqlite3

from ...config import DEFAULT_POLICY, Policy
from ...constants import ACCOUNT_TYPES, OWNER_ACCOUNT
from ...utils.helpers import round_money
from ...utils.validators import (
    optional_text,
    require_choice,
    require_non_negative,
    require_positive,
    require_text,
)
from .. import transaction
from ..errors import NotFoundError, StateError, ValidationError
from .audit_repo import AuditLogRepo
from .ledger_repo import LedgerEntries, LedgerEntry, LedgerRepo, Reconciliation

_log = logging.getLogger(__name__)


@dataclass
class Account:
    account_id: int
    name: str
    account_type: str
    account_number: str | None
    bank_name: str | None
    branch: str | None
    opening_balance: float
    current_balance: float
    total_deposits: float
    total_withdrawals: float
    description: str | None
    is_active: int


_SELECT = """
    SELECT account_id, name, account_type, account_number, bank_name, branch,
           CAST(opening_balance AS REAL)   AS opening_balance,
           CAST(current_balance AS REAL)   AS current_balance,
           CAST(total_deposits AS REAL)    AS total_deposits,
           CAST(total_withdrawals AS REAL) AS total_withdrawals,
           description, is_active
    FROM accounts
"""


class AccountsRepo:
    """
    Cash drawer / bank / mobile-banking accounts.

    The balance columns are never written here directly: opening_balance is
    set once at creation and everything after goes through LedgerRepo.
    """

    def __init__(self, conn: sqlite3.Connection, policy: Policy | None = None):
        conn.row_factory = sqlite3.Row
        self.conn = conn
        self.policy = policy or DEFAULT_POLICY
        self.ledger = LedgerRepo(conn, self.policy)
        self.audit = AuditLogRepo(conn)

    # ---------------------------- READ ----------------------------

    def list_accounts(self, active_only: bool = True) -> list[Account]:
        sql = _SELECT + (" WHERE is_active = 1" if active_only else "") + " ORDER BY account_id"
        return [Account(**r) for r in self.conn.execute(sql).fetchall()]

    def get(self, account_id: int) -> Account | None:
        r = self.conn.execute(_SELECT + " WHERE account_id = ?", (account_id,)).fetchone()
        return Account(**r) if r else None

    def require(self, account_id: int, *, active: bool = True) -> Account:
        acc = self.get(account_id)
        if acc is None:
            raise NotFoundError(f"Account #{account_id} does not exist.", field="account_id")
        if active and not acc.is_active:
            raise StateError(f"Account {acc.name!r} is inactive.", field="account_id")
        return acc

    def default_cash_account(self) -> int:
        """First active cash account; used when a payment names no account."""
        r = self.conn.execute(
            "SELECT account_id FROM accounts WHERE account_type='cash' AND is_active=1 "
            "ORDER BY account_id LIMIT 1"
        ).fetchone()
        if r is None:
            raise ValidationError(
                "No active cash account; choose the account the payment goes to.",
                field="account_id",
            )
        return int(r["account_id"])

    # ---------------------------- WRITE ----------------------------

    def create(
        self,
        name: str,
        account_type: str,
        *,
        opening_balance: float = 0.0,
        account_number: str | None = None,
        bank_name: str | None = None,
        branch: str | None = None,
        description: str | None = None,
        created_by: int | None = None,
    ) -> Account:
        name = require_text(name, "name")
        account_type = require_choice(account_type, "account_type", ACCOUNT_TYPES)
        opening = round_money(require_non_negative(opening_balance, "opening_balance"))
        if account_type == "bank" and not optional_text(bank_name):
            raise ValidationError("Bank name is required for bank accounts.", field="bank_name")

        with transaction(self.conn):
            cur = self.conn.execute(
                """
                INSERT INTO accounts (
                    name, account_type, account_number, bank_name, branch,
                    opening_balance, current_balance, description
                ) VALUES (?,?,?,?,?,?,?,?)
                """,
                (
                    name,
                    account_type,
                    optional_text(account_number),
                    optional_text(bank_name),
                    optional_text(branch),
                    opening,
                    opening,
                    optional_text(description),
                ),
            )
            account_id = int(cur.lastrowid)
            self.audit.log(
                "create", "account", account_id, name,
                {"account_type": account_type, "opening_balance": opening},
                created_by,
            )
        _log.info("account %r created (#%s, opening %.2f)", name, account_id, opening)
        return self.require(account_id, active=False)

    def update(
        self,
        account_id: int,
        *,
        name: str | None = None,
        account_number: str | None = None,
        bank_name: str | None = None,
        branch: str | None = None,
        description: str | None = None,
    ) -> Account:
        """Descriptive fields only; balances move through postings."""
        acc = self.require(account_id, active=False)
        with transaction(self.conn):
            self.conn.execute(
                """
                UPDATE accounts
                SET name=?, account_number=?, bank_name=?, branch=?, description=?,
                    updated_at=CURRENT_TIMESTAMP
                WHERE account_id=?
                """,
                (
                    require_text(name, "name") if name is not None else acc.name,
                    optional_text(account_number) if account_number is not None else acc.account_number,
                    optional_text(bank_name) if bank_name is not None else acc.bank_name,
                    optional_text(branch) if branch is not None else acc.branch,
                    optional_text(description) if description is not None else acc.description,
                    account_id,
                ),
            )
        return self.require(account_id, active=False)

    def deactivate(self, account_id: int, created_by: int | None = None) -> None:
        acc = self.require(account_id, active=False)
        with transaction(self.conn):
            self.conn.execute(
                "UPDATE accounts SET is_active=0, updated_at=CURRENT_TIMESTAMP WHERE account_id=?",
                (account_id,),
            )
            self.audit.log("deactivate", "account", account_id, acc.name, None, created_by)

    def activate(self, account_id: int) -> None:
        self.require(account_id, active=False)
        with transaction(self.conn):
            self.conn.execute(
                "UPDATE accounts SET is_active=1, updated_at=CURRENT_TIMESTAMP WHERE account_id=?",
                (account_id,),
            )

    def adjust_balance(
        self,
        account_id: int,
        amount: float,
        kind: str,
        reason: str,
        *,
        tx_date: str | None = None,
        created_by: int | None = None,
    ) -> LedgerEntry:
        """
        Manual deposit/withdrawal: one 'adjustment' entry, credit or debit.
        `kind` is 'credit' (money in) or 'debit' (money out).
        """
        kind = require_choice(kind, "type", ("credit", "debit"))
        reason = require_text(reason, "reason")
        amount = round_money(require_positive(amount, "amount"))

        with transaction(self.conn):
            acc = self.require(account_id)
            entry = self.ledger.post_entry(
                OWNER_ACCOUNT,
                account_id,
                "adjustment",
                debit=amount if kind == "debit" else 0.0,
                credit=amount if kind == "credit" else 0.0,
                tx_date=tx_date,
                reference_type="adjustment",
                description=reason,
                created_by=created_by,
            )
            self.audit.log(
                "adjust_balance", "account", account_id, acc.name,
                {"type": kind, "amount": amount, "reason": reason, "balance": entry.balance},
                created_by,
            )
        _log.info("account #%s %s %.2f (%s)", account_id, kind, amount, reason)
        return entry

    # ---------------------------- LEDGER ----------------------------

    def get_entries(
        self, account_id: int, date_from: str | None = None, date_to: str | None = None
    ) -> LedgerEntries:
        return self.ledger.get_entries(OWNER_ACCOUNT, account_id, date_from, date_to)

    def reconcile(self, account_id: int) -> Reconciliation:
        return self.ledger.reconcile(OWNER_ACCOUNT, account_id)
