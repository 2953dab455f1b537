# pharmacy_pos/database/repositories/products_repo.py
from __future__ import annotations

from dataclasses import dataclass, field
import logging
import sqlite3
from typing import Any, Iterable, Mapping

from ...config import DEFAULT_POLICY, Policy
from ...utils.helpers import round_money, snake_keys
from ...utils.validators import (
    optional_text,
    require_non_negative,
    require_percent,
    require_text,
)
from .. import transaction
from ..errors import ConflictError, DomainError, NotFoundError, StateError
from .audit_repo import AuditLogRepo
from .inventory_repo import InventoryRepo

_log = logging.getLogger(__name__)


@dataclass
class Product:
    product_id: int
    name: str
    generic_name: str | None
    sku: str
    barcode: str | None
    category: str | None
    manufacturer: str | None
    unit: str
    strength: str | None
    shelf: str | None
    cost_price: float
    selling_price: float
    tax_rate: float
    discount_percent: float
    reorder_level: float
    requires_prescription: int
    is_active: int


@dataclass
class ImportResult:
    success: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    product_ids: list[int] = field(default_factory=list)


_SELECT = """
    SELECT product_id, name, generic_name, sku, barcode, category, manufacturer,
           unit, strength, shelf,
           CAST(cost_price AS REAL)       AS cost_price,
           CAST(selling_price AS REAL)    AS selling_price,
           CAST(tax_rate AS REAL)         AS tax_rate,
           CAST(discount_percent AS REAL) AS discount_percent,
           CAST(reorder_level AS REAL)    AS reorder_level,
           requires_prescription, is_active
    FROM products
"""

_TEXT_FIELDS = ("generic_name", "category", "manufacturer", "strength", "shelf")


class ProductsRepo:
    def __init__(self, conn: sqlite3.Connection, policy: Policy | None = None):
        conn.row_factory = sqlite3.Row
        self.conn = conn
        self.policy = policy or DEFAULT_POLICY
        self.inventory = InventoryRepo(conn, self.policy)
        self.audit = AuditLogRepo(conn)

    # ---------------------------- READ ----------------------------

    def get(self, product_id: int) -> Product | None:
        r = self.conn.execute(_SELECT + " WHERE product_id=?", (product_id,)).fetchone()
        return Product(**r) if r else None

    def require(self, product_id: int, *, active: bool = True) -> Product:
        p = self.get(product_id)
        if p is None:
            raise NotFoundError(f"Product #{product_id} does not exist.", field="product_id")
        if active and not p.is_active:
            raise StateError(f"Product {p.name!r} is inactive.", field="product_id")
        return p

    def get_by_sku(self, sku: str) -> Product | None:
        r = self.conn.execute(_SELECT + " WHERE sku=?", (str(sku).strip(),)).fetchone()
        return Product(**r) if r else None

    def get_by_barcode(self, barcode: str) -> Product | None:
        r = self.conn.execute(_SELECT + " WHERE barcode=?", (str(barcode).strip(),)).fetchone()
        return Product(**r) if r else None

    def search(self, query: str = "", *, active_only: bool = True, limit: int = 100) -> list[Product]:
        where: list[str] = []
        params: list[Any] = []
        if active_only:
            where.append("is_active = 1")
        if query:
            where.append("(name LIKE ? OR generic_name LIKE ? OR sku LIKE ? OR barcode = ?)")
            params += [f"%{query}%", f"%{query}%", f"%{query}%", query]
        sql = _SELECT
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY name COLLATE NOCASE, product_id LIMIT ?"
        params.append(max(1, int(limit)))
        return [Product(**r) for r in self.conn.execute(sql, params).fetchall()]

    # ---------------------------- VALIDATION ----------------------------

    def _clean(self, data: Mapping[str, Any], *, partial: bool = False) -> dict[str, Any]:
        """
        Normalize a product payload. With partial=True only the keys present
        are validated (updates); otherwise name and sku are required.
        """
        d = snake_keys(data)
        out: dict[str, Any] = {}

        if not partial or "name" in d:
            out["name"] = require_text(d.get("name"), "name")
        if not partial or "sku" in d:
            out["sku"] = require_text(d.get("sku"), "sku")
        if "barcode" in d or not partial:
            out["barcode"] = optional_text(d.get("barcode"))
        if "unit" in d or not partial:
            out["unit"] = optional_text(d.get("unit")) or "piece"
        for key in _TEXT_FIELDS:
            if key in d or not partial:
                out[key] = optional_text(d.get(key))

        for key in ("cost_price", "selling_price", "tax_rate"):
            if key in d and d[key] not in (None, ""):
                out[key] = round_money(require_non_negative(d[key], key))
            elif not partial:
                out[key] = 0.0
        if "discount_percent" in d and d["discount_percent"] not in (None, ""):
            out["discount_percent"] = require_percent(d["discount_percent"], "discount_percent")
        elif not partial:
            out["discount_percent"] = 0.0
        if "reorder_level" in d and d["reorder_level"] not in (None, ""):
            out["reorder_level"] = require_non_negative(d["reorder_level"], "reorder_level")
        elif not partial:
            out["reorder_level"] = self.policy.default_reorder_level
        if "requires_prescription" in d or not partial:
            out["requires_prescription"] = 1 if d.get("requires_prescription") else 0
        return out

    def _ensure_unique(self, sku: str | None, barcode: str | None, exclude_id: int | None = None) -> None:
        if sku:
            hit = self.get_by_sku(sku)
            if hit and hit.product_id != exclude_id:
                raise ConflictError(f'Duplicate SKU "{sku}" - Product already exists', field="sku")
        if barcode:
            hit = self.get_by_barcode(barcode)
            if hit and hit.product_id != exclude_id:
                raise ConflictError(
                    f'Duplicate barcode "{barcode}" - Product already exists', field="barcode"
                )

    # ---------------------------- WRITE ----------------------------

    def create(
        self,
        data: Mapping[str, Any],
        *,
        initial_stock: float = 0.0,
        batch_number: str | None = None,
        expiry_date: str | None = None,
        created_by: int | None = None,
    ) -> Product:
        clean = self._clean(data)
        initial_stock = require_non_negative(initial_stock or 0, "stock_quantity")
        self._ensure_unique(clean["sku"], clean["barcode"])

        cols = list(clean.keys())
        with transaction(self.conn):
            cur = self.conn.execute(
                f"INSERT INTO products ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
                [clean[c] for c in cols],
            )
            product_id = int(cur.lastrowid)
            self.conn.execute(
                "INSERT INTO inventory (product_id, quantity, batch_number, expiry_date) VALUES (?, 0, ?, ?)",
                (product_id, optional_text(batch_number), optional_text(expiry_date)),
            )
            if initial_stock > 0:
                self.inventory.adjust(
                    product_id,
                    initial_stock,
                    transaction_type="opening",
                    reference_type="product",
                    reference_id=product_id,
                    notes="Opening stock",
                    created_by=created_by,
                )
            self.audit.log("create", "product", product_id, clean["name"], clean, created_by)
        _log.info("product %r created (#%s, sku=%s)", clean["name"], product_id, clean["sku"])
        return self.require(product_id, active=False)

    def update(self, product_id: int, changes: Mapping[str, Any], *, created_by: int | None = None) -> Product:
        self.require(product_id, active=False)
        clean = self._clean(changes, partial=True)
        if not clean:
            return self.require(product_id, active=False)
        self._ensure_unique(clean.get("sku"), clean.get("barcode"), exclude_id=product_id)

        assignments = ", ".join(f"{c}=?" for c in clean)
        with transaction(self.conn):
            self.conn.execute(
                f"UPDATE products SET {assignments}, updated_at=CURRENT_TIMESTAMP WHERE product_id=?",
                [*clean.values(), product_id],
            )
            self.audit.log("update", "product", product_id, clean.get("name"), clean, created_by)
        return self.require(product_id, active=False)

    def deactivate(self, product_id: int, *, created_by: int | None = None) -> None:
        """Soft delete: the product stays referenced by history but leaves the catalog."""
        p = self.require(product_id, active=False)
        with transaction(self.conn):
            self.conn.execute(
                "UPDATE products SET is_active=0, updated_at=CURRENT_TIMESTAMP WHERE product_id=?",
                (product_id,),
            )
            self.audit.log("deactivate", "product", product_id, p.name, None, created_by)

    # ---------------------------- BULK IMPORT ----------------------------

    def bulk_import(self, rows: Iterable[Mapping[str, Any]], *, created_by: int | None = None) -> ImportResult:
        """
        Import already-parsed rows. Each row is its own transaction: a bad row
        is reported as "Row N: <reason>" (N counts from 1) and the rest carry on.
        `stock_quantity` > 0 seeds opening stock.
        """
        result = ImportResult()
        for n, row in enumerate(rows, start=1):
            d = snake_keys(row)
            try:
                product = self.create(
                    d,
                    initial_stock=d.get("stock_quantity") or 0,
                    batch_number=d.get("batch_number"),
                    expiry_date=d.get("expiry_date"),
                    created_by=created_by,
                )
            except DomainError as e:
                result.failed += 1
                result.errors.append(f"Row {n}: {e.message}")
                _log.debug("import row %s rejected: %s", n, e.message)
            else:
                result.success += 1
                result.product_ids.append(product.product_id)
        _log.info("product import: %s imported, %s failed", result.success, result.failed)
        return result
