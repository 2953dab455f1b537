"""
Catalog and stock: product CRUD, bulk import, stock status, manual
adjustments, movement history and damaged-goods write-offs.
"""
from __future__ import annotations

import pytest

from pharmacy_pos.config import Policy
from pharmacy_pos.database.errors import ConflictError, NotFoundError, StateError, ValidationError
from pharmacy_pos.database.repositories import (
    DamagedItemsRepo,
    InventoryRepo,
    ProductsRepo,
    stock_status,
)
from pharmacy_pos.requests import DamagedItemRequest, InventoryAdjustmentRequest


@pytest.fixture
def products(conn) -> ProductsRepo:
    return ProductsRepo(conn)


@pytest.fixture
def inventory(conn) -> InventoryRepo:
    return InventoryRepo(conn)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def test_create_with_opening_stock(products, inventory) -> None:
    p = products.create(
        {"name": "Amoxil 250mg", "sku": "AMX-250", "sellingPrice": "35.50", "reorderLevel": 5},
        initial_stock=24,
        batch_number="LOT-7",
    )

    assert p.selling_price == 35.5
    assert p.reorder_level == 5
    assert p.unit == "piece"
    level = inventory.get_stock(p.product_id)
    assert (level.quantity, level.batch_number, level.status) == (24, "LOT-7", "in_stock")
    moves = inventory.list_movements(p.product_id)
    assert [(m["transaction_type"], m["quantity"]) for m in moves] == [("opening", 24)]


def test_reorder_level_defaults_from_policy(conn) -> None:
    p = ProductsRepo(conn, Policy(default_reorder_level=3)).create({"name": "X", "sku": "X-1"})
    assert p.reorder_level == 3


def test_duplicate_sku_and_barcode(products) -> None:
    products.create({"name": "A", "sku": "DUP", "barcode": "890100"})

    with pytest.raises(ConflictError, match='Duplicate SKU "DUP"') as ei:
        products.create({"name": "B", "sku": "DUP"})
    assert ei.value.field == "sku"

    with pytest.raises(ConflictError) as ei:
        products.create({"name": "C", "sku": "OTHER", "barcode": "890100"})
    assert ei.value.field == "barcode"


@pytest.mark.parametrize(
    "data,field",
    [
        ({"sku": "S"}, "name"),
        ({"name": "N"}, "sku"),
        ({"name": "N", "sku": "S", "selling_price": -1}, "selling_price"),
        ({"name": "N", "sku": "S", "discount_percent": 150}, "discount_percent"),
    ],
)
def test_invalid_product_payloads(products, data, field) -> None:
    with pytest.raises(ValidationError) as ei:
        products.create(data)
    assert ei.value.field == field


def test_update_search_and_deactivate(products, make_product) -> None:
    pid = make_product("Cetirizine 10mg", sku="CET-10")
    make_product("Calpol Syrup")

    updated = products.update(pid, {"sellingPrice": 4.25, "shelf": "B2"})
    assert (updated.selling_price, updated.shelf, updated.name) == (4.25, "B2", "Cetirizine 10mg")

    assert [p.product_id for p in products.search("ceti")] == [pid]
    assert [p.product_id for p in products.search("CET-10")] == [pid]

    products.deactivate(pid)
    assert products.search("ceti") == []
    with pytest.raises(StateError):
        products.require(pid)


def test_bulk_import_reports_bad_rows(products) -> None:
    rows = [
        {"name": "Panadol", "sku": "PAN-500", "sellingPrice": 2, "stockQuantity": 100},
        {"name": "Panadol again", "sku": "PAN-500", "sellingPrice": 2},
        {"name": "Disprin", "sku": "DIS-300", "sellingPrice": 1.5},
    ]

    result = products.bulk_import(rows)

    assert (result.success, result.failed) == (2, 1)
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Row 2:")
    assert "PAN-500" in result.errors[0]
    assert products.get_by_sku("DIS-300") is not None
    assert InventoryRepo(products.conn).get_quantity(result.product_ids[0]) == 100


# ---------------------------------------------------------------------------
# Stock levels
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "qty,reorder,expected",
    [(0, 10, "out_of_stock"), (-2, 10, "out_of_stock"), (10, 10, "low_stock"), (11, 10, "in_stock")],
)
def test_stock_status(qty, reorder, expected) -> None:
    assert stock_status(qty, reorder) == expected


def test_low_stock_lists_emptiest_first(inventory, make_product) -> None:
    empty = make_product("Empty", stock=0)
    low = make_product("Low", stock=5)
    make_product("Plenty", stock=50)

    levels = inventory.low_stock()

    assert [(s.product_id, s.status) for s in levels] == [(empty, "out_of_stock"), (low, "low_stock")]


def test_manual_adjustment_is_audited(conn, inventory, make_product) -> None:
    pid = make_product(stock=10)

    after = inventory.update_quantity(pid, -3, "cycle count")

    assert after == 7
    assert inventory.get_quantity(pid) == 7
    moves = inventory.list_movements(pid)
    assert moves[0]["transaction_type"] == "adjustment"
    assert moves[0]["balance_after"] == 7
    log = conn.execute(
        "SELECT action, changes FROM audit_logs WHERE entity_type='product' AND action='adjust_stock'"
    ).fetchone()
    assert log is not None


def test_adjustment_guards(inventory, make_product) -> None:
    pid = make_product(stock=2)
    with pytest.raises(ValidationError):
        inventory.adjust(pid, 0)
    with pytest.raises(StateError, match="Insufficient stock"):
        inventory.update_quantity(pid, -5, "shrinkage")
    assert inventory.get_quantity(pid) == 2
    with pytest.raises(NotFoundError):
        inventory.adjust(9999, 1)
    with pytest.raises(ValidationError):
        inventory.adjust(pid, 1, transaction_type="teleport")


def test_adjustment_request_payload() -> None:
    req = InventoryAdjustmentRequest.from_payload({"productId": "4", "quantity": "-2"})
    assert (req.product_id, req.quantity, req.reason) == (4, -2, "Manual stock adjustment")
    with pytest.raises(ValidationError):
        InventoryAdjustmentRequest.from_payload({"productId": 4, "quantity": 0})


# ---------------------------------------------------------------------------
# Damaged / expired goods
# ---------------------------------------------------------------------------


def test_write_off_takes_stock_out(conn, inventory, make_product) -> None:
    pid = make_product(stock=20, price=10, cost_price=6)
    damaged = DamagedItemsRepo(conn)

    rec = damaged.record(
        DamagedItemRequest(pid, 3, "expired", batch_number="LOT-1", date="2025-03-14")
    )

    assert rec["quantity"] == 3
    assert rec["unit_cost"] == 6
    assert inventory.get_quantity(pid) == 17
    listed = damaged.list_items("2025-03-01", "2025-03-31")
    assert [(d["damaged_id"], d["loss_value"]) for d in listed] == [(rec["damaged_id"], 18)]
    assert damaged.list_items("2025-04-01", "2025-04-30") == []


def test_write_off_validation(conn, make_product) -> None:
    pid = make_product(stock=1)
    damaged = DamagedItemsRepo(conn)
    with pytest.raises(ValidationError) as ei:
        damaged.record(DamagedItemRequest(pid, 1, "stolen"))
    assert ei.value.field == "reason"
    with pytest.raises(StateError):
        damaged.record(DamagedItemRequest(pid, 2, "damaged"))
