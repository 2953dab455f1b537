# pharmacy_pos/database/repositories/damaged_items_repo.py
from __future__ import annotations

import logging
import sqlite3

from ...config import DEFAULT_POLICY, Policy
from ...requests import DamagedItemRequest
from ...utils.helpers import today_str
from .. import transaction
from .audit_repo import AuditLogRepo
from .inventory_repo import InventoryRepo
from .products_repo import ProductsRepo

_log = logging.getLogger(__name__)


class DamagedItemsRepo:
    """Expired/damaged stock write-offs. Each record takes the goods out of stock."""

    def __init__(self, conn: sqlite3.Connection, policy: Policy | None = None):
        conn.row_factory = sqlite3.Row
        self.conn = conn
        self.policy = policy or DEFAULT_POLICY
        self.inventory = InventoryRepo(conn, self.policy)
        self.products = ProductsRepo(conn, self.policy)
        self.audit = AuditLogRepo(conn)

    def record(self, req: DamagedItemRequest) -> dict:
        req.validate()
        day = req.date or today_str()
        with transaction(self.conn):
            product = self.products.require(req.product_id, active=False)
            cur = self.conn.execute(
                """
                INSERT INTO damaged_items (
                    product_id, quantity, reason, batch_number, expiry_date,
                    unit_cost, notes, reported_by, date
                ) VALUES (?,?,?,?,?,?,?,?,?)
                """,
                (
                    product.product_id, float(req.quantity), req.reason, req.batch_number,
                    req.expiry_date, product.cost_price, req.notes, req.reported_by, day,
                ),
            )
            damaged_id = int(cur.lastrowid)
            self.inventory.adjust(
                product.product_id,
                -float(req.quantity),
                transaction_type="damaged",
                reference_type="damaged_item",
                reference_id=damaged_id,
                date=day,
                notes=req.reason,
                created_by=req.reported_by,
            )
            self.audit.log(
                "write_off", "product", product.product_id, product.name,
                {"quantity": float(req.quantity), "reason": req.reason},
                req.reported_by,
            )
        _log.info("wrote off %g x %s (%s)", req.quantity, product.name, req.reason)
        return self.get(damaged_id)

    def get(self, damaged_id: int) -> dict:
        r = self.conn.execute(
            """
            SELECT d.damaged_id, d.product_id, p.name AS product_name,
                   CAST(d.quantity AS REAL)  AS quantity, d.reason,
                   d.batch_number, d.expiry_date,
                   CAST(d.unit_cost AS REAL) AS unit_cost,
                   d.notes, d.reported_by, d.date
            FROM damaged_items d JOIN products p ON p.product_id = d.product_id
            WHERE d.damaged_id = ?
            """,
            (damaged_id,),
        ).fetchone()
        return dict(r) if r else {}

    def list_items(self, date_from: str | None = None, date_to: str | None = None) -> list[dict]:
        where, params = [], []
        if date_from:
            where.append("DATE(d.date) >= DATE(?)")
            params.append(date_from)
        if date_to:
            where.append("DATE(d.date) <= DATE(?)")
            params.append(date_to)
        sql = """
            SELECT d.damaged_id, d.product_id, p.name AS product_name,
                   CAST(d.quantity AS REAL) AS quantity, d.reason,
                   CAST(d.quantity AS REAL) * CAST(d.unit_cost AS REAL) AS loss_value,
                   d.batch_number, d.expiry_date, d.date
            FROM damaged_items d JOIN products p ON p.product_id = d.product_id
        """
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY d.date DESC, d.damaged_id DESC"
        return [dict(r) for r in self.conn.execute(sql, params).fetchall()]
