# pharmacy_pos/database/repositories/sales_repo.py
from __future__ import annotations

from dataclasses import dataclass
import logging
import sqlite3
from typing import Dict

from ...config import DEFAULT_POLICY, Policy
from ...constants import EPS, OWNER_ACCOUNT, OWNER_CUSTOMER
from ...requests import PaymentSplit, SaleRequest, SaleReturnRequest
from ...utils.helpers import round_money, today_str
from .. import transaction
from ..errors import NotFoundError, StateError, ValidationError
from .accounts_repo import AccountsRepo
from .audit_repo import AuditLogRepo
from .customers_repo import CustomersRepo
from .doc_numbers import next_doc_number
from .inventory_repo import InventoryRepo
from .ledger_repo import LedgerRepo
from .products_repo import ProductsRepo

_log = logging.getLogger(__name__)


@dataclass
class SaleHeader:
    invoice_number: str
    customer_id: int | None
    sale_date: str
    subtotal: float
    discount_amount: float
    tax_amount: float
    total_amount: float
    paid_amount: float
    change_amount: float
    due_amount: float
    payment_method: str
    payment_status: str
    notes: str | None
    created_by: int | None


@dataclass
class SaleItem:
    product_id: int
    product_name: str
    quantity: float
    unit_price: float
    discount_percent: float
    tax_rate: float
    subtotal: float
    discount: float = 0.0   # computed, not stored
    tax: float = 0.0        # computed, not stored


def price_line(quantity: float, unit_price: float, discount_percent: float, tax_rate: float) -> tuple[float, float, float, float]:
    """
    Returns (base, discount, tax, subtotal) for one line:
      base = qty * price, discount on base, tax on (base - discount).
    """
    base = round_money(quantity * unit_price)
    discount = round_money(base * discount_percent / 100.0)
    tax = round_money((base - discount) * tax_rate / 100.0)
    return base, discount, tax, round_money(base - discount + tax)


def payment_status_for(paid: float, total: float) -> str:
    if paid + EPS >= total:
        return "paid"
    return "partial" if paid > EPS else "unpaid"


class SalesRepo:
    """
    Sales and sales returns.

    Key behavior:
      - create_sale() writes header, items, stock decrements, one account credit
        per payment account, the customer's receivable for any unpaid part and
        the customer's spend totals in one transaction.
      - The amount kept in the till is min(paid, total); the rest is change.
      - Returns are capped per line at sold - already returned; refunds debit
        the chosen account and optionally put stock back.
    """

    def __init__(self, conn: sqlite3.Connection, policy: Policy | None = None):
        conn.row_factory = sqlite3.Row
        self.conn = conn
        self.policy = policy or DEFAULT_POLICY
        self.ledger = LedgerRepo(conn, self.policy)
        self.inventory = InventoryRepo(conn, self.policy)
        self.products = ProductsRepo(conn, self.policy)
        self.customers = CustomersRepo(conn, self.policy)
        self.accounts = AccountsRepo(conn, self.policy)
        self.audit = AuditLogRepo(conn)

    # ---------------------------------------------------------------------
    # READ
    # ---------------------------------------------------------------------
    def get_header(self, sale_id: int) -> dict | None:
        r = self.conn.execute(
            """
            SELECT s.sale_id, s.invoice_number, s.customer_id, c.name AS customer_name,
                   s.sale_date,
                   CAST(s.subtotal AS REAL)        AS subtotal,
                   CAST(s.discount_amount AS REAL) AS discount_amount,
                   CAST(s.tax_amount AS REAL)      AS tax_amount,
                   CAST(s.total_amount AS REAL)    AS total_amount,
                   CAST(s.paid_amount AS REAL)     AS paid_amount,
                   CAST(s.change_amount AS REAL)   AS change_amount,
                   CAST(s.due_amount AS REAL)      AS due_amount,
                   s.payment_method, s.payment_status, s.status, s.notes, s.created_by
            FROM sales s
            LEFT JOIN customers c ON c.customer_id = s.customer_id
            WHERE s.sale_id = ?
            """,
            (sale_id,),
        ).fetchone()
        return dict(r) if r else None

    def list_items(self, sale_id: int) -> list[dict]:
        rows = self.conn.execute(
            """
            SELECT item_id, sale_id, product_id, product_name,
                   CAST(quantity AS REAL)         AS quantity,
                   CAST(unit_price AS REAL)       AS unit_price,
                   CAST(discount_percent AS REAL) AS discount_percent,
                   CAST(tax_rate AS REAL)         AS tax_rate,
                   CAST(subtotal AS REAL)         AS subtotal
            FROM sale_items WHERE sale_id = ?
            ORDER BY item_id
            """,
            (sale_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def list_payments(self, sale_id: int) -> list[dict]:
        rows = self.conn.execute(
            "SELECT payment_id, account_id, CAST(amount AS REAL) AS amount, payment_method "
            "FROM sale_payments WHERE sale_id = ? ORDER BY payment_id",
            (sale_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def get_sale(self, sale_id: int) -> dict:
        """Header + items + payments, as recorded."""
        header = self.get_header(sale_id)
        if header is None:
            raise NotFoundError(f"Sale #{sale_id} does not exist.", field="sale_id")
        header["items"] = self.list_items(sale_id)
        header["payments"] = self.list_payments(sale_id)
        return header

    def list_sales(
        self,
        date_from: str | None = None,
        date_to: str | None = None,
        query: str = "",
        *,
        customer_id: int | None = None,
    ) -> list[dict]:
        where: list[str] = []
        params: list = []
        if date_from:
            where.append("DATE(s.sale_date) >= DATE(?)")
            params.append(date_from)
        if date_to:
            where.append("DATE(s.sale_date) <= DATE(?)")
            params.append(date_to)
        if query:
            where.append("(s.invoice_number LIKE ? OR c.name LIKE ?)")
            params += [f"%{query}%", f"%{query}%"]
        if customer_id is not None:
            where.append("s.customer_id = ?")
            params.append(customer_id)
        sql = """
          SELECT s.sale_id, s.invoice_number, s.sale_date, c.name AS customer_name,
                 CAST(s.total_amount AS REAL) AS total_amount,
                 CAST(s.paid_amount AS REAL)  AS paid_amount,
                 CAST(s.due_amount AS REAL)   AS due_amount,
                 s.payment_status, s.status
          FROM sales s
          LEFT JOIN customers c ON c.customer_id = s.customer_id
        """
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY DATE(s.sale_date) DESC, s.sale_id DESC"
        return [dict(r) for r in self.conn.execute(sql, params).fetchall()]

    def get_returnable_quantities(self, sale_id: int) -> Dict[int, float]:
        """{sale_item_id: sold - already returned}"""
        rows = self.conn.execute(
            "SELECT sale_item_id, sold_qty - returned_qty AS remaining "
            "FROM v_sale_item_returnable WHERE sale_id = ?",
            (sale_id,),
        ).fetchall()
        return {int(r["sale_item_id"]): max(0.0, float(r["remaining"])) for r in rows}

    def _return_totals(self, sale_id: int) -> tuple[float, float]:
        """(refunded, credited to the customer ledger) by earlier returns of a sale"""
        refunded = self.conn.execute(
            "SELECT COALESCE(SUM(CAST(refund_amount AS REAL)), 0.0) FROM sales_returns WHERE sale_id = ?",
            (sale_id,),
        ).fetchone()[0]
        credited = self.conn.execute(
            """
            SELECT COALESCE(SUM(CAST(le.debit AS REAL)), 0.0)
            FROM ledger_entries le
            JOIN sales_returns r ON r.return_id = le.reference_id
            WHERE le.owner_type = 'customer' AND le.reference_type = 'sales_return'
              AND r.sale_id = ?
            """,
            (sale_id,),
        ).fetchone()[0]
        return round_money(refunded), round_money(credited)

    # ---------------------------------------------------------------------
    # INTERNAL WRITES
    # ---------------------------------------------------------------------
    def _insert_header(self, h: SaleHeader) -> int:
        cur = self.conn.execute(
            """
            INSERT INTO sales (
                invoice_number, customer_id, sale_date,
                subtotal, discount_amount, tax_amount, total_amount,
                paid_amount, change_amount, due_amount,
                payment_method, payment_status, notes, created_by
            ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                h.invoice_number, h.customer_id, h.sale_date,
                h.subtotal, h.discount_amount, h.tax_amount, h.total_amount,
                h.paid_amount, h.change_amount, h.due_amount,
                h.payment_method, h.payment_status, h.notes, h.created_by,
            ),
        )
        return int(cur.lastrowid)

    def _insert_item(self, sale_id: int, it: SaleItem) -> int:
        cur = self.conn.execute(
            """
            INSERT INTO sale_items (
                sale_id, product_id, product_name, quantity, unit_price,
                discount_percent, tax_rate, subtotal
            ) VALUES (?,?,?,?,?,?,?,?)
            """,
            (sale_id, it.product_id, it.product_name, it.quantity, it.unit_price,
             it.discount_percent, it.tax_rate, it.subtotal),
        )
        return int(cur.lastrowid)

    def _build_items(self, req: SaleRequest) -> list[SaleItem]:
        items: list[SaleItem] = []
        for line in req.items:
            p = self.products.require(line.product_id)
            unit_price = p.selling_price if line.unit_price is None else float(line.unit_price)
            disc = p.discount_percent if line.discount_percent is None else float(line.discount_percent)
            tax_rate = p.tax_rate if line.tax_rate is None else float(line.tax_rate)
            qty = float(line.quantity)
            _base, discount, tax, subtotal = price_line(qty, unit_price, disc, tax_rate)
            items.append(
                SaleItem(
                    product_id=p.product_id,
                    product_name=p.name,
                    quantity=qty,
                    unit_price=unit_price,
                    discount_percent=disc,
                    tax_rate=tax_rate,
                    subtotal=subtotal,
                    discount=discount,
                    tax=tax,
                )
            )
        return items

    # ---------------------------------------------------------------------
    # WRITE: SALES
    # ---------------------------------------------------------------------
    def create_sale(self, req: SaleRequest) -> dict:
        """
        Record a sale atomically and return it as read back from the database.

        Raises:
            ValidationError : bad input, total <= 0, splits above total,
                              order discount above the goods value
            NotFoundError   : unknown product/customer/account
            StateError      : inactive product/customer/account, insufficient
                              stock (unless negative stock is allowed)
        """
        req.validate()
        sale_date = req.sale_date or today_str()

        with transaction(self.conn):
            items = self._build_items(req)
            subtotal = round_money(sum(it.quantity * it.unit_price for it in items))
            line_discounts = round_money(sum(it.discount for it in items))
            tax_amount = round_money(sum(it.tax for it in items))
            order_discount = round_money(req.discount_amount or 0.0)
            discount_amount = round_money(line_discounts + order_discount)
            total = round_money(subtotal - discount_amount + tax_amount)
            if total <= 0:
                raise ValidationError("Sale total must be greater than zero.", field="discount_amount")

            customer = self.customers.require(req.customer_id) if req.customer_id is not None else None

            tendered = round_money(req.tendered)
            if req.payments:
                splits = list(req.payments)
                if tendered - total > EPS:
                    raise ValidationError(
                        "Split payments cannot exceed the sale total.", field="payments"
                    )
            elif tendered > 0:
                account_id = req.account_id if req.account_id is not None else self.accounts.default_cash_account()
                splits = [PaymentSplit(account_id, tendered, req.payment_method)]
            else:
                splits = []
            for s in splits:
                self.accounts.require(s.account_id)

            change = round_money(max(0.0, tendered - total))
            retained = round_money(tendered - change)
            due = round_money(max(0.0, total - retained))

            invoice = req.invoice_number or next_doc_number(self.conn, "INV", sale_date)
            header = SaleHeader(
                invoice_number=invoice,
                customer_id=customer.customer_id if customer else None,
                sale_date=sale_date,
                subtotal=subtotal,
                discount_amount=discount_amount,
                tax_amount=tax_amount,
                total_amount=total,
                paid_amount=tendered,
                change_amount=change,
                due_amount=due,
                payment_method=(
                    req.payment_method if len(splits) <= 1 else "split"
                ) if splits else "credit",
                payment_status=payment_status_for(retained, total),
                notes=req.notes,
                created_by=req.created_by,
            )
            sale_id = self._insert_header(header)

            for it in items:
                item_id = self._insert_item(sale_id, it)
                self.inventory.adjust(
                    it.product_id,
                    -it.quantity,
                    transaction_type="sale",
                    reference_type="sale",
                    reference_id=sale_id,
                    reference_item_id=item_id,
                    date=sale_date,
                    created_by=req.created_by,
                )

            # Change comes out of the last split (the only one when change > 0).
            remaining_change = change
            for s in reversed(splits):
                kept = round_money(float(s.amount) - remaining_change)
                remaining_change = 0.0
                self.conn.execute(
                    "INSERT INTO sale_payments (sale_id, account_id, amount, payment_method) VALUES (?,?,?,?)",
                    (sale_id, s.account_id, kept, s.payment_method),
                )
                self.ledger.post_entry(
                    OWNER_ACCOUNT, s.account_id, "sale",
                    credit=kept, tx_date=sale_date,
                    reference_type="sale", reference_id=sale_id, reference_number=invoice,
                    description=f"Sale {invoice}", created_by=req.created_by,
                )

            if customer is not None:
                if due > 0:
                    self.ledger.post_entry(
                        OWNER_CUSTOMER, customer.customer_id, "sale",
                        credit=due, tx_date=sale_date,
                        reference_type="sale", reference_id=sale_id, reference_number=invoice,
                        description=f"Credit sale {invoice}", created_by=req.created_by,
                    )
                self.customers.apply_purchase(customer.customer_id, total)

            self.audit.log(
                "create", "sale", sale_id, invoice,
                {"total": total, "paid": tendered, "change": change, "items": len(items)},
                req.created_by,
            )

        if due > 0:
            _log.info("sale %s recorded with %.2f outstanding", invoice, due)
        else:
            _log.info("sale %s recorded: total %.2f, change %.2f", invoice, total, change)
        return self.get_sale(sale_id)

    # ---------------------------------------------------------------------
    # WRITE: RETURNS
    # ---------------------------------------------------------------------
    def create_return(self, req: SaleReturnRequest) -> dict:
        """
        Record a sales return.

        Each line is capped at sold - already returned for that sale item. The
        refund defaults to the value of the returned goods, limited to what
        the sale actually kept in the till less earlier refunds, and may not
        exceed either. Value not refunded is debited to the customer's ledger,
        up to what is still due on the sale. A refund needs an account to come
        out of. Stock goes back on the shelf when `req.restock` (or the policy
        default) says so.
        """
        req.validate()
        return_date = req.return_date or today_str()
        restock = self.policy.restock_on_return if req.restock is None else req.restock

        with transaction(self.conn):
            sale = self.get_header(req.sale_id)
            if sale is None:
                raise NotFoundError(f"Sale #{req.sale_id} does not exist.", field="sale_id")
            if sale["status"] in ("cancelled", "refunded"):
                raise StateError(f"Sale {sale['invoice_number']} is {sale['status']}; nothing to return.")

            sold = {it["item_id"]: it for it in self.list_items(req.sale_id)}
            remaining = self.get_returnable_quantities(req.sale_id)
            lines: list[tuple[dict, float, float]] = []
            requested: Dict[int, float] = {}
            for line in req.items:
                item = sold.get(line.item_id)
                if item is None:
                    raise ValidationError(
                        f"Item #{line.item_id} is not part of sale {sale['invoice_number']}.",
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
                # value per unit as actually charged (discount and tax included)
                value = round_money(item["subtotal"] / item["quantity"] * qty)
                lines.append((item, qty, value))

            total_value = round_money(sum(v for _, _, v in lines))
            refunded, credited = self._return_totals(req.sale_id)
            refundable = round_money(
                max(0.0, sale["paid_amount"] - sale["change_amount"] - refunded)
            )
            due_left = round_money(max(0.0, sale["due_amount"] - credited))
            if req.refund_amount is None:
                refund = round_money(min(total_value, refundable))
            else:
                refund = round_money(req.refund_amount)
            if refund - total_value > EPS:
                raise ValidationError(
                    f"Refund {refund:.2f} exceeds the value of returned goods {total_value:.2f}.",
                    field="refund_amount",
                )
            if refund - refundable > EPS:
                raise ValidationError(
                    f"Refund {refund:.2f} exceeds what was received on "
                    f"{sale['invoice_number']}: {refundable:.2f} left to refund.",
                    field="refund_amount",
                )
            # Goods value not refunded in cash comes off what is still owed on this sale.
            credit_note = 0.0
            if sale["customer_id"] is not None:
                credit_note = round_money(min(total_value - refund, due_left))
            account_id = req.account_id
            if refund > 0 and account_id is None:
                account_id = self.accounts.default_cash_account()
            if refund > 0:
                self.accounts.require(account_id)

            return_number = next_doc_number(self.conn, "RET", return_date)
            cur = self.conn.execute(
                """
                INSERT INTO sales_returns (
                    return_number, sale_id, customer_id, account_id, return_date,
                    total_amount, refund_amount, refund_status, restocked, reason, created_by
                ) VALUES (?,?,?,?,?,?,?,?,?,?,?)
                """,
                (
                    return_number, req.sale_id, sale["customer_id"],
                    account_id if refund > 0 else None, return_date,
                    total_value, refund, "refunded" if refund > 0 else "none",
                    1 if restock else 0, req.reason, req.created_by,
                ),
            )
            return_id = int(cur.lastrowid)

            for item, qty, value in lines:
                self.conn.execute(
                    """
                    INSERT INTO sales_return_items (
                        return_id, sale_item_id, product_id, quantity, unit_price, subtotal
                    ) VALUES (?,?,?,?,?,?)
                    """,
                    (return_id, item["item_id"], item["product_id"], qty, item["unit_price"], value),
                )
                if restock:
                    self.inventory.adjust(
                        item["product_id"],
                        qty,
                        transaction_type="sale_return",
                        reference_type="sales_return",
                        reference_id=return_id,
                        reference_item_id=item["item_id"],
                        date=return_date,
                        created_by=req.created_by,
                    )

            if refund > 0:
                self.ledger.post_entry(
                    OWNER_ACCOUNT, account_id, "return",
                    debit=refund, tx_date=return_date,
                    reference_type="sales_return", reference_id=return_id,
                    reference_number=return_number,
                    description=f"Refund {return_number} for {sale['invoice_number']}",
                    created_by=req.created_by,
                )
            if credit_note > EPS:
                self.ledger.post_entry(
                    OWNER_CUSTOMER, sale["customer_id"], "return",
                    debit=credit_note, tx_date=return_date,
                    reference_type="sales_return", reference_id=return_id,
                    reference_number=return_number,
                    description=f"Return {return_number} credited", created_by=req.created_by,
                )

            left = self.get_returnable_quantities(req.sale_id)
            status = "refunded" if all(q <= EPS for q in left.values()) else "partially_refunded"
            self.conn.execute("UPDATE sales SET status=? WHERE sale_id=?", (status, req.sale_id))
            if sale["customer_id"] is not None:
                self.customers.apply_purchase(sale["customer_id"], -total_value)

            self.audit.log(
                "return", "sale", req.sale_id, sale["invoice_number"],
                {"return_number": return_number, "value": total_value, "refund": refund,
                 "credited": credit_note, "restocked": restock},
                req.created_by,
            )

        _log.info("return %s on %s: value %.2f, refund %.2f", return_number, sale["invoice_number"], total_value, refund)
        return self.get_return(return_id)

    def get_return(self, return_id: int) -> dict:
        r = self.conn.execute(
            """
            SELECT return_id, return_number, sale_id, customer_id, account_id, return_date,
                   CAST(total_amount AS REAL)  AS total_amount,
                   CAST(refund_amount AS REAL) AS refund_amount,
                   refund_status, restocked, reason, created_by
            FROM sales_returns WHERE return_id = ?
            """,
            (return_id,),
        ).fetchone()
        if r is None:
            raise NotFoundError(f"Sales return #{return_id} does not exist.", field="return_id")
        out = dict(r)
        out["items"] = [
            dict(x)
            for x in self.conn.execute(
                """
                SELECT return_item_id, sale_item_id, product_id,
                       CAST(quantity AS REAL)   AS quantity,
                       CAST(unit_price AS REAL) AS unit_price,
                       CAST(subtotal AS REAL)   AS subtotal
                FROM sales_return_items WHERE return_id = ? ORDER BY return_item_id
                """,
                (return_id,),
            ).fetchall()
        ]
        return out
