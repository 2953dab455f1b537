# pharmacy_pos/database/repositories/suppliers_repo.py
from __future__ import annotations

from dataclasses import dataclass
import logging
import sqlite3
from typing import Any, Mapping

from ...config import DEFAULT_POLICY, Policy
from ...constants import OWNER_ACCOUNT, OWNER_SUPPLIER, PAYMENT_METHODS
from ...utils.helpers import round_money, snake_keys, today_str
from ...utils.validators import (
    optional_text,
    require_choice,
    require_non_negative,
    require_positive,
    require_text,
)
from .. import transaction
from ..errors import ConflictError, NotFoundError, StateError
from .accounts_repo import AccountsRepo
from .audit_repo import AuditLogRepo
from .doc_numbers import next_doc_number
from .ledger_repo import LedgerEntries, LedgerEntry, LedgerRepo

_log = logging.getLogger(__name__)


@dataclass
class Supplier:
    supplier_id: int
    name: str
    code: str
    contact_person: str | None
    phone: str | None
    email: str | None
    address: str | None
    tax_number: str | None
    opening_balance: float
    current_balance: float
    total_purchases: float
    total_payments: float
    credit_limit: float
    credit_days: int
    is_active: int


_SELECT = """
    SELECT supplier_id, name, code, contact_person, phone, email, address, tax_number,
           CAST(opening_balance AS REAL) AS opening_balance,
           CAST(current_balance AS REAL) AS current_balance,
           CAST(total_purchases AS REAL) AS total_purchases,
           CAST(total_payments AS REAL)  AS total_payments,
           CAST(credit_limit AS REAL)    AS credit_limit,
           credit_days, is_active
    FROM suppliers
"""


class SuppliersRepo:
    """
    Suppliers and their payable ledger.

    current_balance is what the pharmacy owes the supplier: purchases raise it
    (ledger credit), payments and returns lower it (ledger debit).
    """

    def __init__(self, conn: sqlite3.Connection, policy: Policy | None = None):
        conn.row_factory = sqlite3.Row
        self.conn = conn
        self.policy = policy or DEFAULT_POLICY
        self.ledger = LedgerRepo(conn, self.policy)
        self.accounts = AccountsRepo(conn, self.policy)
        self.audit = AuditLogRepo(conn)

    # ---------------------------- READ ----------------------------

    def get(self, supplier_id: int) -> Supplier | None:
        r = self.conn.execute(_SELECT + " WHERE supplier_id=?", (supplier_id,)).fetchone()
        return Supplier(**r) if r else None

    def require(self, supplier_id: int, *, active: bool = True) -> Supplier:
        s = self.get(supplier_id)
        if s is None:
            raise NotFoundError(f"Supplier #{supplier_id} does not exist.", field="supplier_id")
        if active and not s.is_active:
            raise StateError(f"Supplier {s.name!r} is inactive.", field="supplier_id")
        return s

    def list_suppliers(self, query: str = "", *, active_only: bool = True) -> list[Supplier]:
        where: list[str] = []
        params: list[Any] = []
        if active_only:
            where.append("is_active = 1")
        if query:
            where.append("(name LIKE ? OR code LIKE ? OR phone LIKE ?)")
            params += [f"%{query}%"] * 3
        sql = _SELECT
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY name COLLATE NOCASE, supplier_id"
        return [Supplier(**r) for r in self.conn.execute(sql, params).fetchall()]

    def get_entries(self, supplier_id: int, date_from: str | None = None, date_to: str | None = None) -> LedgerEntries:
        return self.ledger.get_entries(OWNER_SUPPLIER, supplier_id, date_from, date_to)

    def list_payments(self, supplier_id: int) -> list[dict]:
        rows = self.conn.execute(
            """
            SELECT payment_id, reference_number, supplier_id, account_id,
                   CAST(amount AS REAL) AS amount, payment_method, payment_date, notes
            FROM supplier_payments WHERE supplier_id=?
            ORDER BY payment_date DESC, payment_id DESC
            """,
            (supplier_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    # ---------------------------- WRITE ----------------------------

    def create(self, data: Mapping[str, Any], *, created_by: int | None = None) -> Supplier:
        d = snake_keys(data)
        name = require_text(d.get("name"), "name")
        code = require_text(d.get("code"), "code")
        opening = round_money(require_non_negative(d.get("opening_balance") or 0, "opening_balance"))
        credit_limit = round_money(require_non_negative(d.get("credit_limit") or 0, "credit_limit"))
        credit_days = int(require_non_negative(d.get("credit_days") or 0, "credit_days"))
        if self.conn.execute("SELECT 1 FROM suppliers WHERE code=?", (code,)).fetchone():
            raise ConflictError(f'Supplier code "{code}" already exists', field="code")

        with transaction(self.conn):
            cur = self.conn.execute(
                """
                INSERT INTO suppliers (
                    name, code, contact_person, phone, email, address, tax_number,
                    opening_balance, current_balance, credit_limit, credit_days
                ) VALUES (?,?,?,?,?,?,?,?,?,?,?)
                """,
                (
                    name,
                    code,
                    optional_text(d.get("contact_person")),
                    optional_text(d.get("phone")),
                    optional_text(d.get("email")),
                    optional_text(d.get("address")),
                    optional_text(d.get("tax_number")),
                    opening,
                    opening,
                    credit_limit,
                    credit_days,
                ),
            )
            supplier_id = int(cur.lastrowid)
            self.audit.log(
                "create", "supplier", supplier_id, name,
                {"code": code, "opening_balance": opening}, created_by,
            )
        _log.info("supplier %r created (#%s)", name, supplier_id)
        return self.require(supplier_id, active=False)

    def update(self, supplier_id: int, data: Mapping[str, Any], *, created_by: int | None = None) -> Supplier:
        s = self.require(supplier_id, active=False)
        d = snake_keys(data)
        fields = {
            "name": require_text(d["name"], "name") if "name" in d else s.name,
            "contact_person": optional_text(d["contact_person"]) if "contact_person" in d else s.contact_person,
            "phone": optional_text(d["phone"]) if "phone" in d else s.phone,
            "email": optional_text(d["email"]) if "email" in d else s.email,
            "address": optional_text(d["address"]) if "address" in d else s.address,
            "tax_number": optional_text(d["tax_number"]) if "tax_number" in d else s.tax_number,
            "credit_limit": (
                round_money(require_non_negative(d["credit_limit"], "credit_limit"))
                if "credit_limit" in d else s.credit_limit
            ),
            "credit_days": (
                int(require_non_negative(d["credit_days"], "credit_days"))
                if "credit_days" in d else s.credit_days
            ),
        }
        with transaction(self.conn):
            self.conn.execute(
                "UPDATE suppliers SET "
                + ", ".join(f"{k}=?" for k in fields)
                + ", updated_at=CURRENT_TIMESTAMP WHERE supplier_id=?",
                [*fields.values(), supplier_id],
            )
            self.audit.log("update", "supplier", supplier_id, fields["name"], d, created_by)
        return self.require(supplier_id, active=False)

    def deactivate(self, supplier_id: int, *, created_by: int | None = None) -> None:
        s = self.require(supplier_id, active=False)
        with transaction(self.conn):
            self.conn.execute(
                "UPDATE suppliers SET is_active=0, updated_at=CURRENT_TIMESTAMP WHERE supplier_id=?",
                (supplier_id,),
            )
            self.audit.log("deactivate", "supplier", supplier_id, s.name, None, created_by)

    def create_ledger_entry(
        self,
        supplier_id: int,
        entry_type: str,
        *,
        debit: float = 0.0,
        credit: float = 0.0,
        tx_date: str | None = None,
        reference_number: str | None = None,
        description: str | None = None,
        created_by: int | None = None,
    ) -> LedgerEntry:
        """Manual supplier ledger line (opening carry-over, correction, ...)."""
        with transaction(self.conn):
            s = self.require(supplier_id)
            entry = self.ledger.post_entry(
                OWNER_SUPPLIER, supplier_id, entry_type,
                debit=debit, credit=credit, tx_date=tx_date,
                reference_type="manual", reference_number=optional_text(reference_number),
                description=optional_text(description), created_by=created_by,
            )
            self.audit.log(
                "ledger_entry", "supplier", supplier_id, s.name,
                {"type": entry_type, "debit": entry.debit, "credit": entry.credit},
                created_by,
            )
        return entry

    def record_payment(
        self,
        supplier_id: int,
        account_id: int,
        amount: float,
        *,
        payment_method: str = "cash",
        payment_date: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
        created_by: int | None = None,
    ) -> dict:
        """
        Pay a supplier from an account. The account is debited (overdraft
        policy applies) and the payable goes down by the same amount.
        A reference number is generated when none is given; reusing one is a
        ConflictError.
        """
        amount = round_money(require_positive(amount, "amount"))
        payment_method = require_choice(payment_method, "payment_method", PAYMENT_METHODS)
        payment_date = payment_date or today_str()
        ref = optional_text(reference_number)
        if ref and self.conn.execute(
            "SELECT 1 FROM supplier_payments WHERE reference_number=?", (ref,)
        ).fetchone():
            raise ConflictError(
                f'Payment reference "{ref}" already exists', field="reference_number"
            )

        with transaction(self.conn):
            supplier = self.require(supplier_id)
            self.accounts.require(account_id)
            ref = ref or next_doc_number(self.conn, "PAY", payment_date)
            cur = self.conn.execute(
                """
                INSERT INTO supplier_payments (reference_number, supplier_id, account_id, amount,
                                               payment_method, payment_date, notes, created_by)
                VALUES (?,?,?,?,?,?,?,?)
                """,
                (ref, supplier_id, account_id, amount, payment_method, payment_date,
                 optional_text(notes), created_by),
            )
            payment_id = int(cur.lastrowid)
            desc = f"Payment {ref} to {supplier.name}"
            self.ledger.post_entry(
                OWNER_ACCOUNT, account_id, "payment",
                debit=amount, tx_date=payment_date,
                reference_type="supplier_payment", reference_id=payment_id,
                reference_number=ref, description=desc, created_by=created_by,
            )
            self.ledger.post_entry(
                OWNER_SUPPLIER, supplier_id, "payment",
                debit=amount, tx_date=payment_date,
                reference_type="supplier_payment", reference_id=payment_id,
                reference_number=ref, description=desc, created_by=created_by,
            )
            self.add_payment_total(supplier_id, amount)
            self.audit.log(
                "payment", "supplier", supplier_id, supplier.name,
                {"amount": amount, "account_id": account_id, "reference_number": ref},
                created_by,
            )
        _log.info("paid supplier #%s %.2f from account #%s (%s)", supplier_id, amount, account_id, ref)
        return {
            "payment_id": payment_id,
            "reference_number": ref,
            "supplier_id": supplier_id,
            "account_id": account_id,
            "amount": amount,
            "payment_method": payment_method,
            "payment_date": payment_date,
        }

    # ---------------------------- TOTALS (caller's transaction) ----------------------------

    def add_purchase_total(self, supplier_id: int, amount: float) -> None:
        self.conn.execute(
            "UPDATE suppliers SET total_purchases = CAST(total_purchases AS REAL) + ? WHERE supplier_id=?",
            (round_money(amount), supplier_id),
        )

    def add_payment_total(self, supplier_id: int, amount: float) -> None:
        self.conn.execute(
            "UPDATE suppliers SET total_payments = CAST(total_payments AS REAL) + ? WHERE supplier_id=?",
            (round_money(amount), supplier_id),
        )
