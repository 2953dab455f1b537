"""
Account ledger: postings, running balances, overdraft rule, lazy entry
listing, reconciliation and immutability of posted entries.
"""
from __future__ import annotations

import sqlite3

import pytest

from pharmacy_pos.config import Policy
from pharmacy_pos.constants import OWNER_ACCOUNT, OWNER_CUSTOMER, OWNER_SUPPLIER
from pharmacy_pos.database.errors import (
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from pharmacy_pos.database.repositories import (
    AccountsRepo,
    CustomersRepo,
    DamagedItemsRepo,
    LedgerRepo,
    PurchasesRepo,
    SalesRepo,
    SuppliersRepo,
)
from pharmacy_pos.requests import (
    DamagedItemRequest,
    PurchaseLine,
    PurchaseRequest,
    PurchaseReturnRequest,
    ReturnLine,
    SaleLine,
    SaleRequest,
    SaleReturnRequest,
)


@pytest.fixture
def accounts(conn) -> AccountsRepo:
    return AccountsRepo(conn)


@pytest.fixture
def till(accounts) -> int:
    return accounts.create("Till 2", "cash", opening_balance=100).account_id


# ---------------------------------------------------------------------------
# Postings
# ---------------------------------------------------------------------------


def test_credit_adjustment_on_opening_balance(accounts, till) -> None:
    entry = accounts.adjust_balance(till, 50, "credit", "test", tx_date="2025-03-14")

    entries = list(accounts.get_entries(till))
    assert len(entries) == 1
    assert (entries[0].debit, entries[0].credit, entries[0].balance) == (0, 50, 150)
    assert entries[0].entry_type == "adjustment"
    assert entries[0].description == "test"
    assert entry.entry_id == entries[0].entry_id
    assert accounts.require(till).current_balance == 150
    assert accounts.require(till).total_deposits == 50


def test_running_balance_follows_every_posting(accounts, till) -> None:
    accounts.adjust_balance(till, 50, "credit", "in")
    accounts.adjust_balance(till, 30, "debit", "out")
    accounts.adjust_balance(till, 20.25, "credit", "in again")

    previous = 100.0
    for e in accounts.get_entries(till):
        assert e.balance == pytest.approx(previous + e.credit - e.debit)
        previous = e.balance
    assert previous == pytest.approx(140.25)
    assert accounts.require(till).current_balance == pytest.approx(140.25)
    assert accounts.require(till).total_withdrawals == 30


def test_debit_past_zero_is_rejected_and_nothing_is_written(accounts) -> None:
    acc = accounts.create("Petty", "cash", opening_balance=10).account_id

    with pytest.raises(StateError, match="Insufficient balance"):
        accounts.adjust_balance(acc, 20, "debit", "too much")

    assert accounts.require(acc).current_balance == 10
    assert list(accounts.get_entries(acc)) == []


def test_overdraft_allowed_by_policy(conn) -> None:
    accounts = AccountsRepo(conn, Policy(allow_overdraft=True))
    acc = accounts.create("Petty", "cash", opening_balance=10).account_id

    entry = accounts.adjust_balance(acc, 20, "debit", "advance")

    assert entry.balance == -10
    assert accounts.require(acc).current_balance == -10


@pytest.mark.parametrize("amount", [0, -5, "abc", None])
def test_non_positive_amounts_rejected(accounts, till, amount) -> None:
    with pytest.raises(ValidationError) as ei:
        accounts.adjust_balance(till, amount, "credit", "bad")
    assert ei.value.field == "amount"


def test_unknown_adjustment_kind_rejected(accounts, till) -> None:
    with pytest.raises(ValidationError):
        accounts.adjust_balance(till, 5, "sideways", "bad")


def test_missing_and_inactive_accounts(accounts, till) -> None:
    with pytest.raises(NotFoundError):
        accounts.adjust_balance(9999, 5, "credit", "ghost")

    accounts.deactivate(till)
    with pytest.raises(StateError):
        accounts.adjust_balance(till, 5, "credit", "closed")

    accounts.activate(till)
    assert accounts.adjust_balance(till, 5, "credit", "reopened").balance == 105


def test_post_entry_needs_exactly_one_side(conn, till) -> None:
    ledger = LedgerRepo(conn)
    with pytest.raises(ValidationError):
        ledger.post_entry(OWNER_ACCOUNT, till, "adjustment", debit=5, credit=5)
    with pytest.raises(ValidationError):
        ledger.post_entry(OWNER_ACCOUNT, till, "adjustment")
    with pytest.raises(ValidationError):
        ledger.post_entry(OWNER_ACCOUNT, till, "bonus", credit=5)


# ---------------------------------------------------------------------------
# Accounts CRUD
# ---------------------------------------------------------------------------


def test_bank_account_needs_bank_name(accounts) -> None:
    with pytest.raises(ValidationError) as ei:
        accounts.create("HBL", "bank")
    assert ei.value.field == "bank_name"

    acc = accounts.create("HBL", "bank", bank_name="Habib Bank", account_number="001")
    assert acc.bank_name == "Habib Bank"
    assert acc.current_balance == 0


def test_duplicate_account_name_is_a_conflict(accounts) -> None:
    with pytest.raises(ConflictError) as ei:
        accounts.create("Cash in Hand", "cash")
    assert ei.value.field == "name"


def test_update_changes_descriptive_fields_only(accounts, till) -> None:
    acc = accounts.update(till, name="Front Till", description="counter 1")
    assert acc.name == "Front Till"
    assert acc.description == "counter 1"
    assert acc.current_balance == 100


# ---------------------------------------------------------------------------
# Reading entries
# ---------------------------------------------------------------------------


def test_entries_are_lazy_and_restartable(accounts, till) -> None:
    view = accounts.get_entries(till)
    accounts.adjust_balance(till, 1, "credit", "after the view was made")

    first = [e.entry_id for e in view]
    second = [e.entry_id for e in view]
    assert first == second
    assert len(first) == 1

    accounts.adjust_balance(till, 2, "credit", "later")
    assert len(list(view)) == 2


def test_entries_filtered_by_date_and_ordered(accounts, till) -> None:
    accounts.adjust_balance(till, 1, "credit", "january", tx_date="2025-01-05")
    accounts.adjust_balance(till, 2, "credit", "february", tx_date="2025-02-07")
    accounts.adjust_balance(till, 4, "debit", "february again", tx_date="2025-02-07")
    accounts.adjust_balance(till, 3, "credit", "march", tx_date="2025-03-10")

    all_dates = [e.tx_date for e in accounts.get_entries(till)]
    assert all_dates == ["2025-01-05", "2025-02-07", "2025-02-07", "2025-03-10"]

    window = [e.description for e in accounts.get_entries(till, "2025-02-01", "2025-03-10")]
    assert window == ["february", "february again", "march"]


def test_backdated_posting_rejected(accounts, till) -> None:
    accounts.adjust_balance(till, 100, "credit", "in", tx_date="2025-03-10")

    with pytest.raises(StateError) as ei:
        accounts.adjust_balance(till, 30, "credit", "late", tx_date="2025-03-01")

    assert ei.value.field == "tx_date"
    assert accounts.require(till).current_balance == 200
    assert len(list(accounts.get_entries(till))) == 1


def test_running_balance_chains_over_entries(accounts, till) -> None:
    accounts.adjust_balance(till, 30, "credit", "a", tx_date="2025-03-01")
    accounts.adjust_balance(till, 45.5, "debit", "b", tx_date="2025-03-01")
    accounts.adjust_balance(till, 12.25, "credit", "c", tx_date="2025-03-09")
    accounts.adjust_balance(till, 7, "debit", "d")

    previous = 100.0
    for e in accounts.get_entries(till):
        assert e.balance == round(previous + e.credit - e.debit, 2)
        previous = e.balance
    assert previous == accounts.require(till).current_balance


def test_entries_for_missing_owner(conn) -> None:
    with pytest.raises(NotFoundError):
        LedgerRepo(conn).get_entries(OWNER_SUPPLIER, 4242)


def test_posted_entries_cannot_be_changed(conn, accounts, till) -> None:
    entry = accounts.adjust_balance(till, 5, "credit", "fixed")

    with pytest.raises(sqlite3.DatabaseError, match="immutable"):
        conn.execute("UPDATE ledger_entries SET credit = 500 WHERE entry_id = ?", (entry.entry_id,))
    conn.rollback()
    with pytest.raises(sqlite3.DatabaseError, match="immutable"):
        conn.execute("DELETE FROM ledger_entries WHERE entry_id = ?", (entry.entry_id,))
    conn.rollback()

    assert LedgerRepo(conn).get_entry(entry.entry_id).credit == 5


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


def test_reconcile_matches_cached_balance(accounts, till) -> None:
    accounts.adjust_balance(till, 40, "credit", "in")
    accounts.adjust_balance(till, 15, "debit", "out")

    rec = accounts.reconcile(till)
    assert rec.ok
    assert rec.expected_balance == 125
    assert (rec.total_credits, rec.total_debits) == (40, 15)
    assert rec.difference == 0


def test_reconcile_reports_drift(conn, accounts, till) -> None:
    with conn:
        conn.execute("UPDATE accounts SET current_balance = 999 WHERE account_id = ?", (till,))

    rec = accounts.reconcile(till)
    assert not rec.ok
    assert rec.difference == 899

    bad = [r for r in LedgerRepo(conn).reconcile_all() if not r.ok]
    assert [(r.owner_type, r.owner_id) for r in bad] == [(OWNER_ACCOUNT, till)]


def test_reconcile_all_after_mixed_trading(
    conn, make_product, supplier_id, customer_id, fund, cash_account_id, bank_account_id, balance
) -> None:
    day = "2025-03-14"
    fund(cash_account_id, 500)
    p = make_product(stock=100, price=10)

    purchases = PurchasesRepo(conn)
    doc = purchases.create_purchase(
        PurchaseRequest(
            supplier_id, [PurchaseLine(p, 10, 4)],
            paid_amount=20, account_id=cash_account_id, purchase_date=day,
        )
    )
    purchases.create_return(
        PurchaseReturnRequest(
            doc["purchase_id"], [ReturnLine(doc["items"][0]["item_id"], 2)],
            refund_amount=8, account_id=cash_account_id, return_date=day,
        )
    )

    sales = SalesRepo(conn)
    sale = sales.create_sale(
        SaleRequest([SaleLine(p, 5)], paid_amount=20, customer_id=customer_id, sale_date=day)
    )
    sales.create_return(
        SaleReturnRequest(sale["sale_id"], [ReturnLine(sale["items"][0]["item_id"], 1)], return_date=day)
    )

    SuppliersRepo(conn).record_payment(supplier_id, cash_account_id, 5, payment_date=day)
    CustomersRepo(conn).record_payment(customer_id, bank_account_id, 10, payment_date=day)
    DamagedItemsRepo(conn).record(DamagedItemRequest(p, 1, "expired", date=day))

    recs = LedgerRepo(conn).reconcile_all()

    assert {r.owner_type for r in recs} == {OWNER_ACCOUNT, OWNER_SUPPLIER, OWNER_CUSTOMER}
    assert all(r.ok for r in recs), [r for r in recs if not r.ok]
    assert balance("accounts", cash_account_id) == 493
    assert balance("accounts", bank_account_id) == 10
    assert balance("suppliers", supplier_id) == 15
    assert balance("customers", customer_id) == 20
