# pharmacy_pos/database/repositories/doc_numbers.py
from __future__ import annotations

import sqlite3

# prefix -> (table, column)
_SERIES = {
    "INV": ("sales", "invoice_number"),
    "RET": ("sales_returns", "return_number"),
    "PUR": ("purchases", "invoice_number"),
    "PRT": ("purchase_returns", "return_number"),
    "PAY": ("supplier_payments", "reference_number"),
    "RCV": ("customer_payments", "reference_number"),
    "SAL": ("salary_payments", "reference_number"),
}


def next_doc_number(conn: sqlite3.Connection, prefix: str, date: str) -> str:
    """
    Next free number in a daily series, e.g. INV-20250916-0003.
    Must run inside the write transaction that inserts the document.
    """
    table, column = _SERIES[prefix]
    stem = f"{prefix}-{date[:10].replace('-', '')}-"
    row = conn.execute(
        f"SELECT MAX(CAST(SUBSTR({column}, ?) AS INTEGER)) FROM {table} WHERE {column} LIKE ?",
        (len(stem) + 1, stem + "%"),
    ).fetchone()
    seq = int(row[0] or 0) + 1
    return f"{stem}{seq:04d}"
