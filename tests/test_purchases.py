"""
Purchases, purchase returns and the supplier/customer ledgers they drive.

Supplier balance = what we owe: purchases credit it, payments and returns
debit it. Customer balance = what they owe us.
"""
from __future__ import annotations

import pytest

from pharmacy_pos.database.errors import ConflictError, StateError, ValidationError
from pharmacy_pos.database.repositories import (
    CustomersRepo,
    PurchasesRepo,
    SalesRepo,
    SuppliersRepo,
)
from pharmacy_pos.requests import (
    PurchaseLine,
    PurchaseRequest,
    PurchaseReturnRequest,
    ReturnLine,
    SaleLine,
    SaleRequest,
    SaleReturnRequest,
)

DAY = "2025-03-14"


@pytest.fixture
def purchases(conn) -> PurchasesRepo:
    return PurchasesRepo(conn)


@pytest.fixture
def suppliers(conn) -> SuppliersRepo:
    return SuppliersRepo(conn)


def _purchase(supplier_id, product_id, qty=10, cost=4.0, **kw) -> PurchaseRequest:
    kw.setdefault("purchase_date", DAY)
    return PurchaseRequest(
        supplier_id=supplier_id,
        items=[PurchaseLine(product_id, qty, cost, batch_number="B-1", expiry_date="2026-12-31")],
        **kw,
    )


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------


def test_purchase_on_credit(purchases, suppliers, supplier_id, make_product, stock, balance) -> None:
    p = make_product(stock=0)

    doc = purchases.create_purchase(_purchase(supplier_id, p))

    assert doc["invoice_number"] == "PUR-20250314-0001"
    assert doc["total_amount"] == 40
    assert doc["due_amount"] == 40
    assert doc["payment_status"] == "unpaid"
    assert doc["items"][0]["batch_number"] == "B-1"
    assert stock(p) == 10
    assert balance("suppliers", supplier_id) == 40
    assert suppliers.require(supplier_id).total_purchases == 40

    entries = list(suppliers.get_entries(supplier_id))
    assert [(e.entry_type, e.credit, e.balance) for e in entries] == [("purchase", 40, 40)]


def test_paid_purchase_settles_supplier_and_debits_account(
    purchases, suppliers, supplier_id, make_product, balance, fund, cash_account_id
) -> None:
    fund(cash_account_id, 100)
    p = make_product(stock=0)

    doc = purchases.create_purchase(
        _purchase(supplier_id, p, paid_amount=40, account_id=cash_account_id)
    )

    assert doc["payment_status"] == "paid"
    assert balance("accounts", cash_account_id) == 60
    assert balance("suppliers", supplier_id) == 0
    assert [(e.entry_type, e.debit, e.credit, e.balance) for e in suppliers.get_entries(supplier_id)] == [
        ("purchase", 0, 40, 40),
        ("payment", 40, 0, 0),
    ]
    assert suppliers.require(supplier_id).total_payments == 40


def test_purchase_overpayment_rejected(purchases, supplier_id, make_product, fund, cash_account_id) -> None:
    fund(cash_account_id, 100)
    p = make_product(stock=0)
    with pytest.raises(ValidationError) as ei:
        purchases.create_purchase(_purchase(supplier_id, p, paid_amount=41, account_id=cash_account_id))
    assert ei.value.field == "paid_amount"


def test_paid_purchase_needs_account(purchases, supplier_id, make_product) -> None:
    p = make_product(stock=0)
    with pytest.raises(ValidationError) as ei:
        purchases.create_purchase(_purchase(supplier_id, p, paid_amount=10))
    assert ei.value.field == "account_id"


def test_purchase_paid_from_empty_account_rolls_back(
    purchases, conn, supplier_id, make_product, stock, balance, cash_account_id
) -> None:
    p = make_product(stock=0)

    with pytest.raises(StateError):
        purchases.create_purchase(_purchase(supplier_id, p, paid_amount=40, account_id=cash_account_id))

    assert stock(p) == 0
    assert balance("suppliers", supplier_id) == 0
    assert conn.execute("SELECT COUNT(*) FROM purchases").fetchone()[0] == 0


def test_opening_balance_carries_into_running_balance(purchases, suppliers, make_product) -> None:
    sid = suppliers.create({"name": "Old Vendor", "code": "OLD", "openingBalance": 100}).supplier_id
    p = make_product(stock=0)

    purchases.create_purchase(_purchase(sid, p))

    assert [e.balance for e in suppliers.get_entries(sid)] == [140]
    assert suppliers.require(sid).current_balance == 140


# ---------------------------------------------------------------------------
# Purchase returns
# ---------------------------------------------------------------------------


def test_return_to_supplier_reduces_payable_and_stock(
    purchases, supplier_id, make_product, stock, balance
) -> None:
    p = make_product(stock=0)
    doc = purchases.create_purchase(_purchase(supplier_id, p))
    item_id = doc["items"][0]["item_id"]

    ret = purchases.create_return(
        PurchaseReturnRequest(doc["purchase_id"], [ReturnLine(item_id, 3)], return_date=DAY)
    )

    assert ret["return_number"] == "PRT-20250314-0001"
    assert ret["total_amount"] == 12
    assert stock(p) == 7
    assert balance("suppliers", supplier_id) == 28
    assert purchases.get_returnable_for_items(doc["purchase_id"]) == {item_id: 7}

    with pytest.raises(ValidationError, match="exceeds remaining"):
        purchases.create_return(
            PurchaseReturnRequest(doc["purchase_id"], [ReturnLine(item_id, 8)], return_date=DAY)
        )


def test_cash_refund_from_supplier(purchases, supplier_id, make_product, balance, cash_account_id) -> None:
    p = make_product(stock=0)
    doc = purchases.create_purchase(_purchase(supplier_id, p))

    purchases.create_return(
        PurchaseReturnRequest(
            doc["purchase_id"],
            [ReturnLine(doc["items"][0]["item_id"], 3)],
            refund_amount=12,
            account_id=cash_account_id,
            return_date=DAY,
        )
    )

    assert balance("accounts", cash_account_id) == 12
    assert balance("suppliers", supplier_id) == 40


# ---------------------------------------------------------------------------
# Supplier payments & manual entries
# ---------------------------------------------------------------------------


def test_supplier_payment(purchases, suppliers, supplier_id, make_product, balance, fund, cash_account_id) -> None:
    purchases.create_purchase(_purchase(supplier_id, make_product(stock=0)))
    fund(cash_account_id, 100)

    pay = suppliers.record_payment(supplier_id, cash_account_id, 15, payment_date=DAY)

    assert pay["reference_number"] == "PAY-20250314-0001"
    assert balance("suppliers", supplier_id) == 25
    assert balance("accounts", cash_account_id) == 85
    assert suppliers.list_payments(supplier_id)[0]["amount"] == 15

    with pytest.raises(ConflictError):
        suppliers.record_payment(
            supplier_id, cash_account_id, 5, reference_number=pay["reference_number"]
        )


def test_supplier_payment_beyond_account_balance(suppliers, supplier_id, balance, cash_account_id) -> None:
    with pytest.raises(StateError):
        suppliers.record_payment(supplier_id, cash_account_id, 10)
    assert balance("suppliers", supplier_id) == 0
    assert suppliers.list_payments(supplier_id) == []


def test_manual_supplier_entry(suppliers, supplier_id) -> None:
    entry = suppliers.create_ledger_entry(
        supplier_id, "opening_balance", credit=75, tx_date="2025-01-01", description="carried over"
    )
    assert entry.balance == 75

    with pytest.raises(ValidationError):
        suppliers.create_ledger_entry(supplier_id, "adjustment", debit=5, credit=5)


def test_supplier_code_is_unique(suppliers, supplier_id) -> None:
    with pytest.raises(ConflictError) as ei:
        suppliers.create({"name": "Copycat", "code": "ACME"})
    assert ei.value.field == "code"


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------


def test_customer_payment_clears_due(conn, make_product, customer_id, balance, cash_account_id) -> None:
    p = make_product(price=10)
    SalesRepo(conn).create_sale(
        SaleRequest(items=[SaleLine(p, 3)], customer_id=customer_id, sale_date=DAY)
    )
    customers = CustomersRepo(conn)

    rcv = customers.record_payment(customer_id, cash_account_id, 30, payment_date=DAY)

    assert rcv["reference_number"] == "RCV-20250314-0001"
    assert balance("customers", customer_id) == 0
    assert balance("accounts", cash_account_id) == 30
    assert [e.entry_type for e in customers.get_entries(customer_id)] == ["sale", "payment"]


def test_customer_phone_is_unique(conn, customer_id) -> None:
    with pytest.raises(ConflictError) as ei:
        CustomersRepo(conn).create({"name": "Someone Else", "phone": "0300-1234567"})
    assert ei.value.field == "phone"


def test_recalculate_stats_nets_returns(conn, make_product, customer_id) -> None:
    p = make_product(price=10)
    sales = SalesRepo(conn)
    sale = sales.create_sale(
        SaleRequest(items=[SaleLine(p, 4)], paid_amount=40, customer_id=customer_id, sale_date=DAY)
    )
    sales.create_return(
        SaleReturnRequest(sale["sale_id"], [ReturnLine(sale["items"][0]["item_id"], 1)], return_date=DAY)
    )
    with conn:
        conn.execute("UPDATE customers SET total_purchases = 0, loyalty_points = 0")

    c = CustomersRepo(conn).recalculate_stats(customer_id)

    assert c.total_purchases == 30
    assert c.loyalty_points == 3
