# pharmacy_pos/database/repositories/reporting_repo.py
from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional, Tuple

from ...utils.helpers import round_money
from .inventory_repo import InventoryRepo


def _to_float(x: Optional[Any]) -> float:
    try:
        return float(x or 0.0)
    except (TypeError, ValueError):
        return 0.0


class ReportingRepo:
    """
    Read-only summaries over committed sales, returns and stock.

    - Dates are 'YYYY-MM-DD' strings supplied by the caller; no SQLite clock
      (DATE('now')) inside filters, so results are reproducible in tests.
    - Cancelled sales are excluded everywhere. Returns are reported on their
      own date and netted out of revenue.
    - Nothing is cached; two calls around a write may disagree.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.conn.row_factory = sqlite3.Row

    # ----------------------------- helpers -----------------------------

    def _scalar(self, sql: str, params: Tuple[Any, ...] = ()) -> Any:
        row = self.conn.execute(sql, params).fetchone()
        return row[0] if row else None

    def _rows(self, sql: str, params: Tuple[Any, ...] = ()) -> List[Dict[str, Any]]:
        return [dict(r) for r in self.conn.execute(sql, params).fetchall()]

    def _returns_total(self, date_from: str, date_to: str) -> float:
        return _to_float(
            self._scalar(
                """
                SELECT COALESCE(SUM(CAST(total_amount AS REAL)), 0.0)
                FROM sales_returns WHERE return_date >= ? AND return_date <= ?
                """,
                (date_from, date_to),
            )
        )

    # ----------------------------- sales -----------------------------

    def sales_summary(self, date_from: str, date_to: str) -> Dict[str, Any]:
        r = self.conn.execute(
            """
            SELECT COUNT(*)                                              AS sales_count,
                   COALESCE(SUM(CAST(total_amount AS REAL)), 0.0)        AS revenue,
                   COALESCE(SUM(CAST(tax_amount AS REAL)), 0.0)          AS tax,
                   COALESCE(SUM(CAST(discount_amount AS REAL)), 0.0)     AS discount,
                   COALESCE(SUM(CAST(due_amount AS REAL)), 0.0)          AS outstanding
            FROM sales
            WHERE status <> 'cancelled' AND sale_date >= ? AND sale_date <= ?
            """,
            (date_from, date_to),
        ).fetchone()
        count = int(r["sales_count"])
        revenue = round_money(r["revenue"])
        returns = round_money(self._returns_total(date_from, date_to))
        return {
            "date_from": date_from,
            "date_to": date_to,
            "sales_count": count,
            "revenue": revenue,
            "returns": returns,
            "net_revenue": round_money(revenue - returns),
            "tax": round_money(r["tax"]),
            "discount": round_money(r["discount"]),
            "outstanding": round_money(r["outstanding"]),
            "average_sale": round_money(revenue / count) if count else 0.0,
        }

    def today_summary(self, day: str) -> Dict[str, Any]:
        """Sales count and revenue for one day (the caller's "today")."""
        return self.sales_summary(day, day)

    def monthly_revenue(self, year: int) -> List[Dict[str, Any]]:
        """Twelve rows, January first, months without sales reported as zero."""
        found = {
            int(r["month"]): r
            for r in self._rows(
                """
                SELECT CAST(SUBSTR(sale_date, 6, 2) AS INTEGER)       AS month,
                       COUNT(*)                                       AS sales_count,
                       COALESCE(SUM(CAST(total_amount AS REAL)), 0.0) AS revenue
                FROM sales
                WHERE status <> 'cancelled' AND SUBSTR(sale_date, 1, 4) = ?
                GROUP BY month
                """,
                (f"{int(year):04d}",),
            )
        }
        returns = {
            int(r["month"]): _to_float(r["returns"])
            for r in self._rows(
                """
                SELECT CAST(SUBSTR(return_date, 6, 2) AS INTEGER)     AS month,
                       COALESCE(SUM(CAST(total_amount AS REAL)), 0.0) AS returns
                FROM sales_returns
                WHERE SUBSTR(return_date, 1, 4) = ?
                GROUP BY month
                """,
                (f"{int(year):04d}",),
            )
        }
        out = []
        for month in range(1, 13):
            row = found.get(month)
            revenue = round_money(row["revenue"]) if row else 0.0
            ret = round_money(returns.get(month, 0.0))
            out.append(
                {
                    "month": f"{int(year):04d}-{month:02d}",
                    "sales_count": int(row["sales_count"]) if row else 0,
                    "revenue": revenue,
                    "returns": ret,
                    "net_revenue": round_money(revenue - ret),
                }
            )
        return out

    def top_products(self, date_from: str, date_to: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Best sellers by revenue net of returns against those sales."""
        rows = self._rows(
            """
            SELECT si.product_id,
                   si.product_name,
                   SUM(CAST(si.quantity AS REAL)) - COALESCE(SUM(r.qty), 0.0)    AS quantity,
                   SUM(CAST(si.subtotal AS REAL)) - COALESCE(SUM(r.value), 0.0)  AS revenue
            FROM sale_items si
            JOIN sales s ON s.sale_id = si.sale_id
            LEFT JOIN (
                SELECT sale_item_id,
                       SUM(CAST(quantity AS REAL)) AS qty,
                       SUM(CAST(subtotal AS REAL)) AS value
                FROM sales_return_items GROUP BY sale_item_id
            ) r ON r.sale_item_id = si.item_id
            WHERE s.status <> 'cancelled' AND s.sale_date >= ? AND s.sale_date <= ?
            GROUP BY si.product_id, si.product_name
            HAVING revenue > 0
            ORDER BY revenue DESC, quantity DESC, si.product_id
            LIMIT ?
            """,
            (date_from, date_to, max(1, int(limit))),
        )
        for r in rows:
            r["revenue"] = round_money(r["revenue"])
        return rows

    # ----------------------------- stock & balances -----------------------------

    def low_stock(self) -> List[Dict[str, Any]]:
        return [
            {
                "product_id": s.product_id,
                "name": s.name,
                "sku": s.sku,
                "quantity": s.quantity,
                "reorder_level": s.reorder_level,
                "status": s.status,
            }
            for s in InventoryRepo(self.conn).low_stock()
        ]

    def balances_overview(self) -> Dict[str, float]:
        """Money on hand, owed to suppliers and owed by customers (active parties)."""
        def total(table: str) -> float:
            return round_money(
                _to_float(
                    self._scalar(
                        f"SELECT COALESCE(SUM(CAST(current_balance AS REAL)), 0.0) "
                        f"FROM {table} WHERE is_active = 1"
                    )
                )
            )

        return {
            "cash_and_bank": total("accounts"),
            "payables": total("suppliers"),
            "receivables": total("customers"),
        }
