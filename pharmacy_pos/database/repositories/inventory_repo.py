# pharmacy_pos/database/repositories/inventory_repo.py
"""
Stock on hand and the movement log behind it.

Conventions:
- `inventory.quantity` is the cached on-hand quantity per product; every
  change also appends one `inventory_transactions` row with the signed delta
  and the quantity after it.
- Deltas are applied inside the caller's transaction when there is one, so a
  sale's stock movements commit or roll back with the sale.
- Low/out-of-stock is worked out at read time from quantity and reorder level.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import sqlite3
from typing import Any

from ...config import DEFAULT_POLICY, Policy
from ...constants import EPS, INVENTORY_TX_TYPES
from ...utils.helpers import today_str
from ...utils.validators import require_number, require_text
from .. import transaction
from ..errors import NotFoundError, StateError, ValidationError
from .audit_repo import AuditLogRepo

_log = logging.getLogger(__name__)


def stock_status(quantity: float, reorder_level: float) -> str:
    if quantity <= EPS:
        return "out_of_stock"
    if quantity <= reorder_level + EPS:
        return "low_stock"
    return "in_stock"


@dataclass
class StockLevel:
    product_id: int
    name: str
    sku: str
    category: str | None
    reorder_level: float
    quantity: float
    batch_number: str | None
    expiry_date: str | None
    is_active: int
    status: str = ""

    def __post_init__(self):
        if not self.status:
            self.status = stock_status(self.quantity, self.reorder_level)


def _normalize_limit(limit: Any, default: int = 100) -> int:
    try:
        n = int(limit)
    except (TypeError, ValueError):
        return default
    return n if n > 0 else default


class InventoryRepo:
    def __init__(self, conn: sqlite3.Connection, policy: Policy | None = None):
        conn.row_factory = sqlite3.Row
        self.conn = conn
        self.policy = policy or DEFAULT_POLICY
        self.audit = AuditLogRepo(conn)

    # ---------------------------------------------------------------------
    # READ
    # ---------------------------------------------------------------------
    def get_stock(self, product_id: int) -> StockLevel:
        r = self.conn.execute(
            "SELECT * FROM v_stock_levels WHERE product_id = ?", (product_id,)
        ).fetchone()
        if r is None:
            raise NotFoundError(f"Product #{product_id} does not exist.", field="product_id")
        return StockLevel(**dict(r))

    def get_quantity(self, product_id: int) -> float:
        return self.get_stock(product_id).quantity

    def list_stock(self, *, active_only: bool = True, query: str = "") -> list[StockLevel]:
        where: list[str] = []
        params: list[Any] = []
        if active_only:
            where.append("is_active = 1")
        if query:
            where.append("(name LIKE ? OR sku LIKE ?)")
            params += [f"%{query}%", f"%{query}%"]
        sql = "SELECT * FROM v_stock_levels"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY name COLLATE NOCASE, product_id"
        return [StockLevel(**dict(r)) for r in self.conn.execute(sql, params).fetchall()]

    def low_stock(self) -> list[StockLevel]:
        """Active products at or under their reorder level, emptiest first."""
        rows = self.conn.execute(
            """
            SELECT * FROM v_stock_levels
            WHERE is_active = 1 AND quantity <= reorder_level + 1e-9
            ORDER BY quantity ASC, name COLLATE NOCASE
            """
        ).fetchall()
        return [StockLevel(**dict(r)) for r in rows]

    def list_movements(self, product_id: int, limit: int = 100) -> list[dict]:
        rows = self.conn.execute(
            """
            SELECT transaction_id, product_id,
                   CAST(quantity AS REAL)      AS quantity,
                   CAST(balance_after AS REAL) AS balance_after,
                   transaction_type, reference_type, reference_id, reference_item_id,
                   date, notes, created_by
            FROM inventory_transactions
            WHERE product_id = ?
            ORDER BY transaction_id DESC
            LIMIT ?
            """,
            (product_id, _normalize_limit(limit)),
        ).fetchall()
        return [dict(r) for r in rows]

    # ---------------------------------------------------------------------
    # WRITE
    # ---------------------------------------------------------------------
    def adjust(
        self,
        product_id: int,
        delta: float,
        *,
        transaction_type: str = "adjustment",
        reference_type: str | None = None,
        reference_id: int | None = None,
        reference_item_id: int | None = None,
        date: str | None = None,
        notes: str | None = None,
        batch_number: str | None = None,
        expiry_date: str | None = None,
        created_by: int | None = None,
        allow_negative: bool | None = None,
    ) -> float:
        """
        Apply a signed quantity change and return the new on-hand quantity.

        Raises:
            ValidationError : zero/non-numeric delta, unknown movement type
            NotFoundError   : product does not exist
            StateError      : result would be negative and the policy forbids it
        """
        delta = require_number(delta, "quantity")
        if abs(delta) <= EPS:
            raise ValidationError("Quantity change cannot be zero.", field="quantity")
        if transaction_type not in INVENTORY_TX_TYPES:
            raise ValidationError(
                f"Unknown inventory movement type: {transaction_type!r}", field="transaction_type"
            )
        if allow_negative is None:
            allow_negative = self.policy.allow_negative_stock

        with transaction(self.conn):
            product = self.conn.execute(
                "SELECT name FROM products WHERE product_id = ?", (product_id,)
            ).fetchone()
            if product is None:
                raise NotFoundError(f"Product #{product_id} does not exist.", field="product_id")

            self.conn.execute(
                "INSERT OR IGNORE INTO inventory (product_id, quantity) VALUES (?, 0)",
                (product_id,),
            )
            current = float(
                self.conn.execute(
                    "SELECT CAST(quantity AS REAL) FROM inventory WHERE product_id = ?",
                    (product_id,),
                ).fetchone()[0]
            )
            new_qty = current + delta
            if new_qty < -EPS and not allow_negative:
                raise StateError(
                    f"Insufficient stock for {product['name']}: "
                    f"available {current:g}, requested {-delta:g}",
                    field="quantity",
                )

            self.conn.execute(
                """
                UPDATE inventory
                SET quantity = ?,
                    batch_number = COALESCE(?, batch_number),
                    expiry_date  = COALESCE(?, expiry_date),
                    updated_at   = CURRENT_TIMESTAMP
                WHERE product_id = ?
                """,
                (new_qty, batch_number, expiry_date, product_id),
            )
            self.conn.execute(
                """
                INSERT INTO inventory_transactions (
                    product_id, quantity, balance_after, transaction_type,
                    reference_type, reference_id, reference_item_id,
                    date, notes, created_by
                ) VALUES (?,?,?,?,?,?,?,?,?,?)
                """,
                (
                    product_id,
                    delta,
                    new_qty,
                    transaction_type,
                    reference_type,
                    reference_id,
                    reference_item_id,
                    date or today_str(),
                    notes,
                    created_by,
                ),
            )

        if new_qty < -EPS:
            _log.warning("product #%s went negative (%g) via %s", product_id, new_qty, transaction_type)
        return new_qty

    def update_quantity(
        self,
        product_id: int,
        delta: float,
        reason: str,
        *,
        created_by: int | None = None,
    ) -> float:
        """Manual stock correction (count, found stock, write-off) with an audit row."""
        reason = require_text(reason, "reason")
        with transaction(self.conn):
            before = self.get_quantity(product_id)
            after = self.adjust(
                product_id,
                delta,
                transaction_type="adjustment",
                reference_type="manual",
                notes=reason,
                created_by=created_by,
            )
            self.audit.log(
                "adjust_stock", "product", product_id, None,
                {"before": before, "after": after, "reason": reason},
                created_by,
            )
        _log.info("stock of product #%s adjusted %g -> %g (%s)", product_id, before, after, reason)
        return after
