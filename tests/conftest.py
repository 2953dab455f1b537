# tests/conftest.py
# ---------------------------------------------------------------------
# Ground rules:
# - Every test gets its own SQLite file under tmp_path, built with the
#   real schema + default accounts (Cash in Hand, Main Bank Account)
# - conn.row_factory = sqlite3.Row, PRAGMA foreign_keys=ON
# - Factories for products/accounts keep tests short
# - pytest-qt owns QApplication (qtbot) for the bridge tests
# ---------------------------------------------------------------------
from __future__ import annotations

import os
import sqlite3
from typing import Callable

import pytest

# Run Qt headless so the bridge tests work without a display.
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from pharmacy_pos.database import get_connection
from pharmacy_pos.database.repositories import (
    AccountsRepo,
    CustomersRepo,
    ProductsRepo,
    SuppliersRepo,
)


@pytest.fixture
def conn(tmp_path) -> sqlite3.Connection:
    c = get_connection(tmp_path / "pos.db")
    yield c
    c.close()


@pytest.fixture
def cash_account_id(conn) -> int:
    row = conn.execute("SELECT account_id FROM accounts WHERE name='Cash in Hand'").fetchone()
    return int(row["account_id"])


@pytest.fixture
def bank_account_id(conn) -> int:
    row = conn.execute("SELECT account_id FROM accounts WHERE name='Main Bank Account'").fetchone()
    return int(row["account_id"])


@pytest.fixture
def fund(conn) -> Callable[[int, float], None]:
    """Put money into an account so outgoing payments don't hit the overdraft rule."""
    repo = AccountsRepo(conn)

    def _fund(account_id: int, amount: float) -> None:
        repo.adjust_balance(account_id, amount, "credit", "float", tx_date="2025-03-01")

    return _fund


@pytest.fixture
def make_product(conn) -> Callable[..., int]:
    repo = ProductsRepo(conn)
    counter = {"n": 0}

    def _make(name: str | None = None, *, stock: float = 100, price: float = 10.0, **extra) -> int:
        counter["n"] += 1
        n = counter["n"]
        data = {
            "name": name or f"Product {n}",
            "sku": extra.pop("sku", f"SKU-{n:03d}"),
            "selling_price": price,
            "cost_price": extra.pop("cost_price", price / 2),
            **extra,
        }
        return repo.create(data, initial_stock=stock).product_id

    return _make


@pytest.fixture
def supplier_id(conn) -> int:
    return SuppliersRepo(conn).create({"name": "Acme Pharma", "code": "ACME"}).supplier_id


@pytest.fixture
def customer_id(conn) -> int:
    return CustomersRepo(conn).create({"name": "Jane Roe", "phone": "0300-1234567"}).customer_id


@pytest.fixture
def stock(conn) -> Callable[[int], float]:
    def _stock(product_id: int) -> float:
        row = conn.execute(
            "SELECT CAST(quantity AS REAL) FROM inventory WHERE product_id=?", (product_id,)
        ).fetchone()
        return float(row[0]) if row else 0.0

    return _stock


@pytest.fixture
def balance(conn) -> Callable[[str, int], float]:
    """balance('accounts'|'suppliers'|'customers', id) -> cached current_balance"""
    pks = {"accounts": "account_id", "suppliers": "supplier_id", "customers": "customer_id"}

    def _balance(table: str, owner_id: int) -> float:
        row = conn.execute(
            f"SELECT CAST(current_balance AS REAL) FROM {table} WHERE {pks[table]}=?", (owner_id,)
        ).fetchone()
        return float(row[0])

    return _balance
