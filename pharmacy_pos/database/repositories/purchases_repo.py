# pharmacy_pos/database/repositories/purchases_repo.py
from __future__ import annotations

import logging
import sqlite3
from typing import Dict

from ...config import DEFAULT_POLICY, Policy
from ...constants import EPS, OWNER_ACCOUNT, OWNER_SUPPLIER
from ...requests import PurchaseRequest, PurchaseReturnRequest
from ...utils.helpers import round_money, today_str
from .. import transaction
from ..errors import NotFoundError, ValidationError
from .accounts_repo import AccountsRepo
from .audit_repo import AuditLogRepo
from .doc_numbers import next_doc_number
from .inventory_repo import InventoryRepo
from .ledger_repo import LedgerRepo
from .products_repo import ProductsRepo
from .sales_repo import payment_status_for, price_line
from .suppliers_repo import SuppliersRepo

_log = logging.getLogger(__name__)


class PurchasesRepo:
    """
    Purchases from suppliers and returns to them.

    A purchase credits the supplier's payable with the invoice total and, when
    something is paid up front, debits both the paying account and the payable
    with the paid amount. Stock goes up per line with its batch/expiry.
    """

    def __init__(self, conn: sqlite3.Connection, policy: Policy | None = None):
        conn.row_factory = sqlite3.Row
        self.conn = conn
        self.policy = policy or DEFAULT_POLICY
        self.ledger = LedgerRepo(conn, self.policy)
        self.inventory = InventoryRepo(conn, self.policy)
        self.products = ProductsRepo(conn, self.policy)
        self.suppliers = SuppliersRepo(conn, self.policy)
        self.accounts = AccountsRepo(conn, self.policy)
        self.audit = AuditLogRepo(conn)

    # ---------------------------------------------------------------------
    # READ
    # ---------------------------------------------------------------------
    def get_header(self, purchase_id: int) -> dict | None:
        r = self.conn.execute(
            """
            SELECT p.purchase_id, p.invoice_number, p.supplier_id, s.name AS supplier_name,
                   p.account_id, p.purchase_date,
                   CAST(p.subtotal AS REAL)        AS subtotal,
                   CAST(p.discount_amount AS REAL) AS discount_amount,
                   CAST(p.tax_amount AS REAL)      AS tax_amount,
                   CAST(p.total_amount AS REAL)    AS total_amount,
                   CAST(p.paid_amount AS REAL)     AS paid_amount,
                   CAST(p.due_amount AS REAL)      AS due_amount,
                   p.payment_status, p.notes, p.created_by
            FROM purchases p
            JOIN suppliers s ON s.supplier_id = p.supplier_id
            WHERE p.purchase_id = ?
            """,
            (purchase_id,),
        ).fetchone()
        return dict(r) if r else None

    def list_items(self, purchase_id: int) -> list[dict]:
        rows = self.conn.execute(
            """
            SELECT item_id, purchase_id, product_id, product_name,
                   CAST(quantity AS REAL)         AS quantity,
                   CAST(unit_cost AS REAL)        AS unit_cost,
                   CAST(discount_percent AS REAL) AS discount_percent,
                   CAST(tax_rate AS REAL)         AS tax_rate,
                   CAST(subtotal AS REAL)         AS subtotal,
                   batch_number, expiry_date
            FROM purchase_items WHERE purchase_id = ?
            ORDER BY item_id
            """,
            (purchase_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def get_purchase(self, purchase_id: int) -> dict:
        header = self.get_header(purchase_id)
        if header is None:
            raise NotFoundError(f"Purchase #{purchase_id} does not exist.", field="purchase_id")
        header["items"] = self.list_items(purchase_id)
        return header

    def list_purchases(
        self,
        date_from: str | None = None,
        date_to: str | None = None,
        *,
        supplier_id: int | None = None,
    ) -> list[dict]:
        where: list[str] = []
        params: list = []
        if date_from:
            where.append("DATE(p.purchase_date) >= DATE(?)")
            params.append(date_from)
        if date_to:
            where.append("DATE(p.purchase_date) <= DATE(?)")
            params.append(date_to)
        if supplier_id is not None:
            where.append("p.supplier_id = ?")
            params.append(supplier_id)
        sql = """
          SELECT p.purchase_id, p.invoice_number, p.purchase_date, s.name AS supplier_name,
                 CAST(p.total_amount AS REAL) AS total_amount,
                 CAST(p.paid_amount AS REAL)  AS paid_amount,
                 CAST(p.due_amount AS REAL)   AS due_amount,
                 p.payment_status
          FROM purchases p
          JOIN suppliers s ON s.supplier_id = p.supplier_id
        """
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY DATE(p.purchase_date) DESC, p.purchase_id DESC"
        return [dict(r) for r in self.conn.execute(sql, params).fetchall()]

    def get_returnable_for_items(self, purchase_id: int) -> Dict[int, float]:
        """{purchase_item_id: purchased - already returned}"""
        rows = self.conn.execute(
            "SELECT purchase_item_id, purchased_qty - returned_qty AS remaining "
            "FROM v_purchase_item_returnable WHERE purchase_id = ?",
            (purchase_id,),
        ).fetchall()
        return {int(r["purchase_item_id"]): max(0.0, float(r["remaining"])) for r in rows}

    # ---------------------------------------------------------------------
    # WRITE: PURCHASES
    # ---------------------------------------------------------------------
    def create_purchase(self, req: PurchaseRequest) -> dict:
        req.validate()
        purchase_date = req.purchase_date or today_str()

        with transaction(self.conn):
            supplier = self.suppliers.require(req.supplier_id)

            priced = []
            for line in req.items:
                p = self.products.require(line.product_id)
                base, discount, tax, subtotal = price_line(
                    float(line.quantity), float(line.unit_cost),
                    float(line.discount_percent), float(line.tax_rate),
                )
                priced.append((line, p, base, discount, tax, subtotal))

            subtotal = round_money(sum(x[2] for x in priced))
            discount_amount = round_money(sum(x[3] for x in priced) + (req.discount_amount or 0.0))
            tax_amount = round_money(sum(x[4] for x in priced))
            total = round_money(subtotal - discount_amount + tax_amount)
            if total <= 0:
                raise ValidationError("Purchase total must be greater than zero.", field="discount_amount")

            paid = round_money(req.paid_amount or 0.0)
            if paid - total > EPS:
                raise ValidationError(
                    f"Paid amount {paid:.2f} exceeds the purchase total {total:.2f}.",
                    field="paid_amount",
                )
            if paid > 0:
                self.accounts.require(req.account_id)
            due = round_money(total - paid)

            invoice = req.invoice_number or next_doc_number(self.conn, "PUR", purchase_date)
            cur = self.conn.execute(
                """
                INSERT INTO purchases (
                    invoice_number, supplier_id, account_id, purchase_date,
                    subtotal, discount_amount, tax_amount, total_amount,
                    paid_amount, due_amount, payment_status, notes, created_by
                ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)
                """,
                (
                    invoice, supplier.supplier_id, req.account_id if paid > 0 else None,
                    purchase_date, subtotal, discount_amount, tax_amount, total,
                    paid, due, payment_status_for(paid, total), req.notes, req.created_by,
                ),
            )
            purchase_id = int(cur.lastrowid)

            for line, p, _base, _discount, _tax, line_subtotal in priced:
                item_cur = self.conn.execute(
                    """
                    INSERT INTO purchase_items (
                        purchase_id, product_id, product_name, quantity, unit_cost,
                        discount_percent, tax_rate, subtotal, batch_number, expiry_date
                    ) VALUES (?,?,?,?,?,?,?,?,?,?)
                    """,
                    (
                        purchase_id, p.product_id, p.name, float(line.quantity),
                        float(line.unit_cost), float(line.discount_percent),
                        float(line.tax_rate), line_subtotal,
                        line.batch_number, line.expiry_date,
                    ),
                )
                self.inventory.adjust(
                    p.product_id,
                    float(line.quantity),
                    transaction_type="purchase",
                    reference_type="purchase",
                    reference_id=purchase_id,
                    reference_item_id=int(item_cur.lastrowid),
                    date=purchase_date,
                    batch_number=line.batch_number,
                    expiry_date=line.expiry_date,
                    created_by=req.created_by,
                )

            self.ledger.post_entry(
                OWNER_SUPPLIER, supplier.supplier_id, "purchase",
                credit=total, tx_date=purchase_date,
                reference_type="purchase", reference_id=purchase_id, reference_number=invoice,
                description=f"Purchase {invoice}", created_by=req.created_by,
            )
            self.suppliers.add_purchase_total(supplier.supplier_id, total)

            if paid > 0:
                self.ledger.post_entry(
                    OWNER_ACCOUNT, req.account_id, "purchase",
                    debit=paid, tx_date=purchase_date,
                    reference_type="purchase", reference_id=purchase_id, reference_number=invoice,
                    description=f"Payment for purchase {invoice} ({supplier.name})",
                    created_by=req.created_by,
                )
                self.ledger.post_entry(
                    OWNER_SUPPLIER, supplier.supplier_id, "payment",
                    debit=paid, tx_date=purchase_date,
                    reference_type="purchase", reference_id=purchase_id, reference_number=invoice,
                    description=f"Paid on purchase {invoice}", created_by=req.created_by,
                )
                self.suppliers.add_payment_total(supplier.supplier_id, paid)

            self.audit.log(
                "create", "purchase", purchase_id, invoice,
                {"supplier_id": supplier.supplier_id, "total": total, "paid": paid},
                req.created_by,
            )

        _log.info("purchase %s from %s: total %.2f, due %.2f", invoice, supplier.name, total, due)
        return self.get_purchase(purchase_id)

    # ---------------------------------------------------------------------
    # WRITE: RETURNS
    # ---------------------------------------------------------------------
    def create_return(self, req: PurchaseReturnRequest) -> dict:
        """
        Send goods back to the supplier.

        Stock goes down (stock policy applies). Any refund received is
        credited to the account; the rest of the returned value is taken off
        the supplier payable.
        """
        req.validate()
        return_date = req.return_date or today_str()

        with transaction(self.conn):
            purchase = self.get_header(req.purchase_id)
            if purchase is None:
                raise NotFoundError(f"Purchase #{req.purchase_id} does not exist.", field="purchase_id")

            bought = {it["item_id"]: it for it in self.list_items(req.purchase_id)}
            remaining = self.get_returnable_for_items(req.purchase_id)
            requested: Dict[int, float] = {}
            lines = []
            for line in req.items:
                item = bought.get(line.item_id)
                if item is None:
                    raise ValidationError(
                        f"Item #{line.item_id} is not part of purchase {purchase['invoice_number']}.",
                        field="items",
                    )
                qty = float(line.quantity)
                requested[line.item_id] = requested.get(line.item_id, 0.0) + qty
                if requested[line.item_id] - remaining.get(line.item_id, 0.0) > EPS:
                    raise ValidationError(
                        f"Return qty exceeds remaining for {item['product_name']}: "
                        f"{remaining.get(line.item_id, 0.0):g} left to return.",
                        field="quantity",
                    )
                value = round_money(item["subtotal"] / item["quantity"] * qty)
                lines.append((item, qty, value))

            total_value = round_money(sum(v for _, _, v in lines))
            refund = round_money(req.refund_amount or 0.0)
            if refund - total_value > EPS:
                raise ValidationError(
                    f"Refund {refund:.2f} exceeds the value of returned goods {total_value:.2f}.",
                    field="refund_amount",
                )
            if refund > 0:
                self.accounts.require(req.account_id)

            return_number = next_doc_number(self.conn, "PRT", return_date)
            cur = self.conn.execute(
                """
                INSERT INTO purchase_returns (
                    return_number, purchase_id, supplier_id, account_id, return_date,
                    total_amount, refund_amount, reason, created_by
                ) VALUES (?,?,?,?,?,?,?,?,?)
                """,
                (
                    return_number, req.purchase_id, purchase["supplier_id"],
                    req.account_id if refund > 0 else None, return_date,
                    total_value, refund, req.reason, req.created_by,
                ),
            )
            return_id = int(cur.lastrowid)

            for item, qty, value in lines:
                self.conn.execute(
                    """
                    INSERT INTO purchase_return_items (
                        return_id, purchase_item_id, product_id, quantity, unit_cost, subtotal
                    ) VALUES (?,?,?,?,?,?)
                    """,
                    (return_id, item["item_id"], item["product_id"], qty, item["unit_cost"], value),
                )
                self.inventory.adjust(
                    item["product_id"],
                    -qty,
                    transaction_type="purchase_return",
                    reference_type="purchase_return",
                    reference_id=return_id,
                    reference_item_id=item["item_id"],
                    date=return_date,
                    created_by=req.created_by,
                )

            if refund > 0:
                self.ledger.post_entry(
                    OWNER_ACCOUNT, req.account_id, "return",
                    credit=refund, tx_date=return_date,
                    reference_type="purchase_return", reference_id=return_id,
                    reference_number=return_number,
                    description=f"Refund {return_number} from {purchase['supplier_name']}",
                    created_by=req.created_by,
                )
            credit_note = round_money(total_value - refund)
            if credit_note > 0:
                self.ledger.post_entry(
                    OWNER_SUPPLIER, purchase["supplier_id"], "return",
                    debit=credit_note, tx_date=return_date,
                    reference_type="purchase_return", reference_id=return_id,
                    reference_number=return_number,
                    description=f"Return {return_number} on {purchase['invoice_number']}",
                    created_by=req.created_by,
                )

            self.audit.log(
                "return", "purchase", req.purchase_id, purchase["invoice_number"],
                {"return_number": return_number, "value": total_value, "refund": refund},
                req.created_by,
            )

        _log.info("purchase return %s: value %.2f, refund %.2f", return_number, total_value, refund)
        return self.get_return(return_id)

    def get_return(self, return_id: int) -> dict:
        r = self.conn.execute(
            """
            SELECT return_id, return_number, purchase_id, supplier_id, account_id, return_date,
                   CAST(total_amount AS REAL)  AS total_amount,
                   CAST(refund_amount AS REAL) AS refund_amount,
                   reason, created_by
            FROM purchase_returns WHERE return_id = ?
            """,
            (return_id,),
        ).fetchone()
        if r is None:
            raise NotFoundError(f"Purchase return #{return_id} does not exist.", field="return_id")
        out = dict(r)
        out["items"] = [
            dict(x)
            for x in self.conn.execute(
                """
                SELECT return_item_id, purchase_item_id, product_id,
                       CAST(quantity AS REAL)  AS quantity,
                       CAST(unit_cost AS REAL) AS unit_cost,
                       CAST(subtotal AS REAL)  AS subtotal
                FROM purchase_return_items WHERE return_id = ? ORDER BY return_item_id
                """,
                (return_id,),
            ).fetchall()
        ]
        return out
