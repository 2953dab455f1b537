"""
Named operations: camelCase payloads in, JSON-compatible results out,
DomainError subclasses (with to_dict()) on failure.
"""
from __future__ import annotations

import json
import logging

import pytest

from pharmacy_pos.database.errors import NotFoundError, ValidationError
from pharmacy_pos.operations import Operations
from pharmacy_pos.requests import SaleReturnRequest
from pharmacy_pos.utils.loggers import JsonLineFormatter, TextFormatter, get_logger, log_event

DAY = "2025-03-14"


@pytest.fixture
def ops(conn) -> Operations:
    return Operations(conn)


def test_checkout_through_operations(ops, make_product, stock) -> None:
    a = make_product(price=10)
    b = make_product(price=5)

    sale = ops.invoke(
        "sales.create",
        {
            "sale": {"paidAmount": 25, "saleDate": DAY, "paymentMethod": "Cash"},
            "items": [{"productId": a, "quantity": 2}, {"productId": b, "quantity": 1}],
        },
    )

    assert sale["total_amount"] == 25
    assert sale["change_amount"] == 0
    assert (stock(a), stock(b)) == (98, 49)
    json.dumps(sale)

    returnable = ops.invoke("sales.getReturnable", {"saleId": sale["sale_id"]})
    assert sorted(returnable.values()) == [1, 2]


def test_account_adjustment_round(ops) -> None:
    acc = ops.invoke("bankAccounts.create", {"name": "Till", "accountType": "cash", "openingBalance": 100})

    out = ops.invoke(
        "bankAccounts.updateBalance",
        {"accountId": acc["account_id"], "amount": 50, "type": "credit", "reason": "test"},
    )

    assert out["entry"]["balance"] == 150
    assert out["account"]["current_balance"] == 150
    entries = ops.invoke("bankAccounts.getEntries", {"accountId": acc["account_id"]})
    assert [(e["debit"], e["credit"], e["balance"]) for e in entries] == [(0, 50, 150)]
    rec = ops.invoke("bankAccounts.reconcile", {"id": acc["account_id"]})
    assert rec["ok"] is True


def test_supplier_flow(ops, make_product, cash_account_id) -> None:
    p = make_product(stock=0)
    sup = ops.invoke("suppliers.create", {"name": "Acme", "code": "ACME"})
    ops.invoke(
        "purchases.create",
        {
            "purchase": {"supplierId": sup["supplier_id"], "purchaseDate": DAY},
            "items": [{"productId": p, "quantity": 10, "unitCost": 4}],
        },
    )
    ops.invoke(
        "bankAccounts.updateBalance",
        {"accountId": cash_account_id, "amount": 100, "type": "credit", "reason": "float"},
    )

    ops.invoke(
        "suppliers.recordPayment",
        {"supplierId": sup["supplier_id"], "accountId": cash_account_id, "amount": 15},
    )

    entries = ops.invoke("supplierLedger.getEntries", {"supplierId": sup["supplier_id"]})
    assert [e["balance"] for e in entries] == [40, 25]
    assert ops.invoke("reports.balances")["payables"] == 25


def test_bulk_import_operation(ops) -> None:
    out = ops.invoke(
        "products.bulkImport",
        {"rows": [{"name": "A", "sku": "A-1"}, {"name": "", "sku": "B-1"}, {"name": "C", "sku": "C-1"}]},
    )
    assert (out["success"], out["failed"]) == (2, 1)
    assert out["errors"][0].startswith("Row 2:")


def test_unknown_operation(ops) -> None:
    with pytest.raises(ValidationError) as ei:
        ops.invoke("sales.teleport", {})
    assert ei.value.to_dict()["code"] == "validation_error"


def test_domain_errors_surface_as_dicts(ops) -> None:
    with pytest.raises(ValidationError) as ei:
        ops.invoke("sales.create", {"items": []})
    assert ei.value.to_dict() == {
        "code": "validation_error",
        "message": "At least one item is required.",
        "field": "items",
    }

    with pytest.raises(NotFoundError) as ei:
        ops.invoke("sales.get", {"id": 999})
    assert ei.value.to_dict()["code"] == "not_found"


def test_failures_are_logged_with_operation_name(ops, caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="pharmacy_pos.ops"):
        with pytest.raises(NotFoundError):
            ops.invoke("customers.get", {"customerId": 31337})

    rec = next(r for r in caplog.records if r.name == "pharmacy_pos.ops")
    assert rec.extra_payload["op"] == "customers.get"
    assert rec.extra_payload["phase"] == "error"
    line = json.loads(JsonLineFormatter().format(rec))
    assert line["extra"]["code"] == "not_found"


def test_every_boundary_operation_is_registered(ops) -> None:
    expected = {
        "bankAccounts.create", "bankAccounts.list", "bankAccounts.updateBalance",
        "bankAccounts.getEntries", "suppliers.create", "suppliers.recordPayment",
        "supplierLedger.createEntry", "supplierLedger.getEntries",
        "customers.create", "customers.recordPayment",
        "products.create", "products.bulkImport", "inventory.updateQuantity",
        "damagedItems.create", "sales.create", "salesReturns.create",
        "purchases.create", "purchaseReturns.create",
        "reports.todaySummary", "reports.monthlyRevenue", "reports.topProducts",
        "reports.lowStock", "auditLogs.list",
        "salaryPayments.create", "salaryPayments.list",
    }
    assert expected <= set(ops.names)


def test_json_logger_writes_structured_lines(tmp_path) -> None:
    path = tmp_path / "logs" / "ops.log"
    logger = get_logger("pharmacy_pos.test_json", json_lines=True, file_path=path)
    try:
        assert all(isinstance(h.formatter, JsonLineFormatter) for h in logger.handlers)

        log_event(logger, "sales.create", "error", "boom", {"code": "not_found"}, level=logging.WARNING)
        for h in logger.handlers:
            h.flush()

        line = json.loads(path.read_text(encoding="utf-8").splitlines()[-1])
        assert line["msg"] == "boom"
        assert line["extra"] == {"op": "sales.create", "phase": "error", "code": "not_found"}
    finally:
        for h in list(logger.handlers):
            h.close()
            logger.removeHandler(h)


def test_text_formatter_keeps_the_event_payload() -> None:
    rec = logging.makeLogRecord(
        {"name": "pharmacy_pos.ops", "levelname": "INFO", "msg": "operation completed",
         "extra_payload": {"op": "reports.balances", "phase": "ok"}}
    )
    out = TextFormatter().format(rec)
    assert out.endswith('operation completed {"op": "reports.balances", "phase": "ok"}')


@pytest.mark.parametrize("limit", ["abc", 0, -3, 1.5])
def test_bad_limit_is_a_validation_error(ops, limit) -> None:
    with pytest.raises(ValidationError) as ei:
        ops.invoke("auditLogs.list", {"limit": limit})
    assert ei.value.field == "limit"
    with pytest.raises(ValidationError):
        ops.invoke("reports.topProducts", {"limit": limit})


def test_limit_accepts_numeric_strings(ops) -> None:
    assert ops.invoke("auditLogs.list", {"limit": "5"}) == []


@pytest.mark.parametrize(
    "raw,expected",
    [("false", False), ("False", False), ("0", False), (0, False), ("no", False),
     ("true", True), (True, True), (1, True), (None, None), ("", None)],
)
def test_restock_flag_parsing(raw, expected) -> None:
    req = SaleReturnRequest.from_payload(
        {"saleId": 1, "items": [{"saleItemId": 1, "quantity": 1}], "restock": raw}
    )
    assert req.restock is expected


def test_restock_flag_rejects_garbage() -> None:
    with pytest.raises(ValidationError) as ei:
        SaleReturnRequest.from_payload(
            {"saleId": 1, "items": [{"saleItemId": 1, "quantity": 1}], "restock": "maybe"}
        )
    assert ei.value.field == "restock"


def test_string_false_does_not_restock(ops, make_product, stock) -> None:
    p = make_product(price=10)
    sale = ops.invoke(
        "sales.create",
        {"sale": {"paidAmount": 20, "saleDate": DAY}, "items": [{"productId": p, "quantity": 2}]},
    )
    ops.invoke(
        "salesReturns.create",
        {
            "saleId": sale["sale_id"],
            "items": [{"saleItemId": sale["items"][0]["item_id"], "quantity": 1}],
            "restock": "false",
            "returnDate": DAY,
        },
    )
    assert stock(p) == 98


def test_salary_payment_operations(ops, fund, cash_account_id) -> None:
    fund(cash_account_id, 1000)

    pay = ops.invoke(
        "salaryPayments.create",
        {"employeeName": "Ali Raza", "employeeId": 7, "basicAmount": 600, "allowances": 50,
         "deductions": 25, "paymentDate": DAY},
    )

    assert pay["total_amount"] == 625
    assert pay["reference_number"] == "SAL-20250314-0001"
    assert pay["account_id"] == cash_account_id
    assert ops.invoke("bankAccounts.get", {"id": cash_account_id})["current_balance"] == 375
    listed = ops.invoke("salaryPayments.list", {"employeeId": 7})
    assert [p["payment_id"] for p in listed] == [pay["payment_id"]]
    json.dumps(listed)
