# pharmacy_pos/database/repositories/customers_repo.py
from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import sqlite3
from typing import Any, Mapping

from ...config import DEFAULT_POLICY, Policy
from ...constants import OWNER_ACCOUNT, OWNER_CUSTOMER, PAYMENT_METHODS
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
from .ledger_repo import LedgerEntries, LedgerRepo

_log = logging.getLogger(__name__)


@dataclass
class Customer:
    customer_id: int
    name: str
    phone: str | None
    email: str | None
    address: str | None
    opening_balance: float
    current_balance: float
    loyalty_points: int
    total_purchases: float
    is_active: int


_SELECT = """
    SELECT customer_id, name, phone, email, address,
           CAST(opening_balance AS REAL) AS opening_balance,
           CAST(current_balance AS REAL) AS current_balance,
           loyalty_points,
           CAST(total_purchases AS REAL) AS total_purchases,
           is_active
    FROM customers
"""


class CustomersRepo:
    """
    Customers and their receivable ledger.

    current_balance is what the customer still owes: credit sales raise it,
    payments lower it.
    """

    def __init__(self, conn: sqlite3.Connection, policy: Policy | None = None):
        conn.row_factory = sqlite3.Row
        self.conn = conn
        self.policy = policy or DEFAULT_POLICY
        self.ledger = LedgerRepo(conn, self.policy)
        self.accounts = AccountsRepo(conn, self.policy)
        self.audit = AuditLogRepo(conn)

    # ---------------------------- READ ----------------------------

    def get(self, customer_id: int) -> Customer | None:
        r = self.conn.execute(_SELECT + " WHERE customer_id=?", (customer_id,)).fetchone()
        return Customer(**r) if r else None

    def require(self, customer_id: int, *, active: bool = True) -> Customer:
        c = self.get(customer_id)
        if c is None:
            raise NotFoundError(f"Customer #{customer_id} does not exist.", field="customer_id")
        if active and not c.is_active:
            raise StateError(f"Customer {c.name!r} is inactive.", field="customer_id")
        return c

    def list_customers(self, query: str = "", *, active_only: bool = True) -> list[Customer]:
        where: list[str] = []
        params: list[Any] = []
        if active_only:
            where.append("is_active = 1")
        if query:
            where.append("(name LIKE ? OR phone LIKE ? OR email LIKE ?)")
            params += [f"%{query}%"] * 3
        sql = _SELECT
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY name COLLATE NOCASE, customer_id"
        return [Customer(**r) for r in self.conn.execute(sql, params).fetchall()]

    def get_entries(self, customer_id: int, date_from: str | None = None, date_to: str | None = None) -> LedgerEntries:
        return self.ledger.get_entries(OWNER_CUSTOMER, customer_id, date_from, date_to)

    # ---------------------------- WRITE ----------------------------

    def _ensure_phone_free(self, phone: str | None, exclude_id: int | None = None) -> None:
        if not phone:
            return
        r = self.conn.execute("SELECT customer_id FROM customers WHERE phone=?", (phone,)).fetchone()
        if r and r["customer_id"] != exclude_id:
            raise ConflictError(
                f'Phone number "{phone}" already belongs to another customer', field="phone"
            )

    def create(self, data: Mapping[str, Any], *, created_by: int | None = None) -> Customer:
        d = snake_keys(data)
        name = require_text(d.get("name"), "name")
        phone = optional_text(d.get("phone"))
        opening = round_money(require_non_negative(d.get("opening_balance") or 0, "opening_balance"))
        self._ensure_phone_free(phone)

        with transaction(self.conn):
            cur = self.conn.execute(
                """
                INSERT INTO customers (name, phone, email, address, date_of_birth,
                                       opening_balance, current_balance)
                VALUES (?,?,?,?,?,?,?)
                """,
                (
                    name,
                    phone,
                    optional_text(d.get("email")),
                    optional_text(d.get("address")),
                    optional_text(d.get("date_of_birth")),
                    opening,
                    opening,
                ),
            )
            customer_id = int(cur.lastrowid)
            self.audit.log("create", "customer", customer_id, name, {"phone": phone}, created_by)
        return self.require(customer_id, active=False)

    def update(self, customer_id: int, data: Mapping[str, Any], *, created_by: int | None = None) -> Customer:
        c = self.require(customer_id, active=False)
        d = snake_keys(data)
        name = require_text(d["name"], "name") if "name" in d else c.name
        phone = optional_text(d["phone"]) if "phone" in d else c.phone
        self._ensure_phone_free(phone, exclude_id=customer_id)
        with transaction(self.conn):
            self.conn.execute(
                """
                UPDATE customers SET name=?, phone=?, email=?, address=?, updated_at=CURRENT_TIMESTAMP
                WHERE customer_id=?
                """,
                (
                    name,
                    phone,
                    optional_text(d["email"]) if "email" in d else c.email,
                    optional_text(d["address"]) if "address" in d else c.address,
                    customer_id,
                ),
            )
            self.audit.log("update", "customer", customer_id, name, d, created_by)
        return self.require(customer_id, active=False)

    def deactivate(self, customer_id: int, *, created_by: int | None = None) -> None:
        c = self.require(customer_id, active=False)
        with transaction(self.conn):
            self.conn.execute(
                "UPDATE customers SET is_active=0, updated_at=CURRENT_TIMESTAMP WHERE customer_id=?",
                (customer_id,),
            )
            self.audit.log("deactivate", "customer", customer_id, c.name, None, created_by)

    def record_payment(
        self,
        customer_id: int,
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
        Customer settles dues: money into the account (credit), receivable
        down (customer ledger debit). Paying more than owed leaves a negative
        balance, i.e. an advance.
        """
        amount = round_money(require_positive(amount, "amount"))
        payment_method = require_choice(payment_method, "payment_method", PAYMENT_METHODS)
        payment_date = payment_date or today_str()

        with transaction(self.conn):
            customer = self.require(customer_id)
            self.accounts.require(account_id)
            ref = optional_text(reference_number) or next_doc_number(self.conn, "RCV", payment_date)
            cur = self.conn.execute(
                """
                INSERT INTO customer_payments (reference_number, customer_id, account_id, amount,
                                               payment_method, payment_date, notes, created_by)
                VALUES (?,?,?,?,?,?,?,?)
                """,
                (ref, customer_id, account_id, amount, payment_method, payment_date,
                 optional_text(notes), created_by),
            )
            payment_id = int(cur.lastrowid)
            desc = f"Payment {ref} from {customer.name}"
            self.ledger.post_entry(
                OWNER_ACCOUNT, account_id, "payment",
                credit=amount, tx_date=payment_date,
                reference_type="customer_payment", reference_id=payment_id,
                reference_number=ref, description=desc, created_by=created_by,
            )
            self.ledger.post_entry(
                OWNER_CUSTOMER, customer_id, "payment",
                debit=amount, tx_date=payment_date,
                reference_type="customer_payment", reference_id=payment_id,
                reference_number=ref, description=desc, created_by=created_by,
            )
            self.audit.log(
                "payment", "customer", customer_id, customer.name,
                {"amount": amount, "account_id": account_id, "reference_number": ref},
                created_by,
            )
        _log.info("customer #%s paid %.2f (%s)", customer_id, amount, ref)
        return {
            "payment_id": payment_id,
            "reference_number": ref,
            "customer_id": customer_id,
            "account_id": account_id,
            "amount": amount,
            "payment_date": payment_date,
        }

    # ---------------------------- STATS ----------------------------

    def apply_purchase(self, customer_id: int, amount: float) -> None:
        """Add spend to the running totals; caller owns the transaction."""
        self.conn.execute(
            "UPDATE customers SET total_purchases = CAST(total_purchases AS REAL) + ?, "
            "updated_at = CURRENT_TIMESTAMP WHERE customer_id = ?",
            (round_money(amount), customer_id),
        )
        self._refresh_points(customer_id)

    def _refresh_points(self, customer_id: int) -> None:
        total = self.conn.execute(
            "SELECT CAST(total_purchases AS REAL) FROM customers WHERE customer_id=?",
            (customer_id,),
        ).fetchone()[0]
        points = max(0, math.floor(float(total) / self.policy.loyalty_spend_per_point))
        self.conn.execute(
            "UPDATE customers SET loyalty_points=? WHERE customer_id=?", (points, customer_id)
        )

    def recalculate_stats(self, customer_id: int) -> Customer:
        """Rebuild total_purchases and loyalty points from sales net of returns."""
        self.require(customer_id, active=False)
        with transaction(self.conn):
            total = self.conn.execute(
                """
                SELECT
                  COALESCE((SELECT SUM(CAST(total_amount AS REAL)) FROM sales
                            WHERE customer_id = :cid AND status <> 'cancelled'), 0.0)
                  -
                  COALESCE((SELECT SUM(CAST(total_amount AS REAL)) FROM sales_returns
                            WHERE customer_id = :cid), 0.0)
                """,
                {"cid": customer_id},
            ).fetchone()[0]
            self.conn.execute(
                "UPDATE customers SET total_purchases=?, updated_at=CURRENT_TIMESTAMP WHERE customer_id=?",
                (round_money(max(0.0, float(total))), customer_id),
            )
            self._refresh_points(customer_id)
        return self.require(customer_id, active=False)
