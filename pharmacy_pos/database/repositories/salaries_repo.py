# pharmacy_pos/database/repositories/salaries_repo.py
from __future__ import annotations

import logging
import sqlite3

from ...config import DEFAULT_POLICY, Policy
from ...constants import OWNER_ACCOUNT
from ...requests import SalaryPaymentRequest
from ...utils.helpers import round_money, today_str
from .. import transaction
from ..errors import ConflictError, NotFoundError
from .accounts_repo import AccountsRepo
from .audit_repo import AuditLogRepo
from .doc_numbers import next_doc_number
from .ledger_repo import LedgerRepo

_log = logging.getLogger(__name__)

_SELECT = """
    SELECT payment_id, reference_number, employee_id, employee_name, account_id,
           payment_date, pay_period_start, pay_period_end,
           CAST(basic_amount AS REAL) AS basic_amount,
           CAST(allowances AS REAL)   AS allowances,
           CAST(bonuses AS REAL)      AS bonuses,
           CAST(deductions AS REAL)   AS deductions,
           CAST(total_amount AS REAL) AS total_amount,
           payment_method, notes, paid_by
    FROM salary_payments
"""


class SalaryPaymentsRepo:
    """
    Payroll disbursements. Each payment is one money-out event: the net
    amount (basic + allowances + bonuses - deductions) is debited from the
    paying account under the usual overdraft rule.
    """

    def __init__(self, conn: sqlite3.Connection, policy: Policy | None = None):
        conn.row_factory = sqlite3.Row
        self.conn = conn
        self.policy = policy or DEFAULT_POLICY
        self.ledger = LedgerRepo(conn, self.policy)
        self.accounts = AccountsRepo(conn, self.policy)
        self.audit = AuditLogRepo(conn)

    # ---------------------------- READ ----------------------------

    def get_payment(self, payment_id: int) -> dict:
        r = self.conn.execute(_SELECT + " WHERE payment_id = ?", (payment_id,)).fetchone()
        if r is None:
            raise NotFoundError(f"Salary payment #{payment_id} does not exist.", field="payment_id")
        return dict(r)

    def list_payments(
        self,
        employee_id: int | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> list[dict]:
        """Newest first, optionally for one employee and/or a date window."""
        where: list[str] = []
        params: list = []
        if employee_id is not None:
            where.append("employee_id = ?")
            params.append(employee_id)
        if date_from:
            where.append("DATE(payment_date) >= DATE(?)")
            params.append(date_from)
        if date_to:
            where.append("DATE(payment_date) <= DATE(?)")
            params.append(date_to)
        sql = _SELECT
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY payment_date DESC, payment_id DESC"
        return [dict(r) for r in self.conn.execute(sql, params).fetchall()]

    # ---------------------------- WRITE ----------------------------

    def record_payment(self, req: SalaryPaymentRequest) -> dict:
        """
        Pay a salary out of an account (default: the cash drawer).

        Raises:
            ValidationError : bad amounts, net <= 0, no cash account to default to
            ConflictError   : reference number already used
            NotFoundError   : unknown account
            StateError      : inactive account, or the account would be overdrawn
        """
        req.validate()
        total = round_money(req.total_amount)
        payment_date = req.payment_date or today_str()
        if req.reference_number and self.conn.execute(
            "SELECT 1 FROM salary_payments WHERE reference_number=?", (req.reference_number,)
        ).fetchone():
            raise ConflictError(
                f'Payment reference "{req.reference_number}" already exists',
                field="reference_number",
            )

        with transaction(self.conn):
            account_id = req.account_id if req.account_id is not None else self.accounts.default_cash_account()
            self.accounts.require(account_id)
            ref = req.reference_number or next_doc_number(self.conn, "SAL", payment_date)
            cur = self.conn.execute(
                """
                INSERT INTO salary_payments (
                    reference_number, employee_id, employee_name, account_id, payment_date,
                    pay_period_start, pay_period_end, basic_amount, allowances, bonuses,
                    deductions, total_amount, payment_method, notes, paid_by
                ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
                """,
                (
                    ref, req.employee_id, req.employee_name.strip(), account_id, payment_date,
                    req.pay_period_start, req.pay_period_end,
                    round_money(req.basic_amount), round_money(req.allowances),
                    round_money(req.bonuses), round_money(req.deductions), total,
                    req.payment_method, req.notes, req.paid_by,
                ),
            )
            payment_id = int(cur.lastrowid)
            self.ledger.post_entry(
                OWNER_ACCOUNT, account_id, "payment",
                debit=total, tx_date=payment_date,
                reference_type="salary_payment", reference_id=payment_id,
                reference_number=ref,
                description=f"Salary {ref} to {req.employee_name.strip()}",
                created_by=req.paid_by,
            )
            self.audit.log(
                "create", "salary_payment", payment_id, req.employee_name.strip(),
                {"total": total, "account_id": account_id, "reference_number": ref,
                 "period": [req.pay_period_start, req.pay_period_end]},
                req.paid_by,
            )

        _log.info("salary %s paid to %s: %.2f from account #%s", ref, req.employee_name, total, account_id)
        return self.get_payment(payment_id)
