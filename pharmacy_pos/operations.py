# pharmacy_pos/operations.py
"""
Named operations the desktop shell calls, e.g.

    ops = Operations(get_connection())
    ops.invoke("sales.create", {"sale": {...}, "items": [...]})

Payloads and results are plain JSON-compatible values. Failures raise a
DomainError subclass; `error.to_dict()` is what the shell shows. Nothing here
retries: a failed financial call is reported, never replayed.
"""
from __future__ import annotations

from dataclasses import asdict, is_dataclass
import logging
import sqlite3
import time
from typing import Any, Callable, Dict, Mapping

from .config import DEFAULT_POLICY, Policy
from .database.errors import DomainError, ValidationError
from .database.repositories import (
    AccountsRepo,
    AuditLogRepo,
    CustomersRepo,
    DamagedItemsRepo,
    InventoryRepo,
    LedgerEntries,
    LedgerRepo,
    ProductsRepo,
    PurchasesRepo,
    ReportingRepo,
    SalaryPaymentsRepo,
    SalesRepo,
    SuppliersRepo,
)
from .requests import (
    BalanceAdjustmentRequest,
    DamagedItemRequest,
    InventoryAdjustmentRequest,
    LedgerEntryRequest,
    PartyPaymentRequest,
    PurchaseRequest,
    PurchaseReturnRequest,
    SalaryPaymentRequest,
    SaleRequest,
    SaleReturnRequest,
)
from .utils.helpers import snake_keys, today_str
from .utils.loggers import get_logger, log_event
from .utils.validators import optional_text, require_date, require_int

Handler = Callable[[Dict[str, Any]], Any]


def to_jsonable(value: Any) -> Any:
    """Dataclasses, ledger views and rows -> dicts/lists."""
    if is_dataclass(value) and not isinstance(value, type):
        out = asdict(value)
        for prop in ("ok", "difference"):
            if hasattr(value, prop) and prop not in out:
                out[prop] = getattr(value, prop)
        return out
    if isinstance(value, LedgerEntries):
        return [to_jsonable(e) for e in value]
    if isinstance(value, sqlite3.Row):
        return dict(value)
    if isinstance(value, Mapping):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def _id(d: Mapping[str, Any], *keys: str) -> int:
    for k in keys:
        if d.get(k) not in (None, ""):
            return require_int(d[k], k)
    raise ValidationError(f"{keys[0]} is required.", field=keys[0])


def _user(d: Mapping[str, Any]) -> int | None:
    v = d.get("created_by", d.get("user_id"))
    return require_int(v, "user_id") if v not in (None, "") else None


def _limit(d: Mapping[str, Any], default: int) -> int:
    v = d.get("limit")
    if v in (None, ""):
        return default
    n = require_int(v, "limit")
    if n <= 0:
        raise ValidationError("limit must be greater than zero.", field="limit")
    return n


def _dates(d: Mapping[str, Any]) -> tuple[str | None, str | None]:
    lo = d.get("date_from", d.get("from", d.get("start_date")))
    hi = d.get("date_to", d.get("to", d.get("end_date")))
    return (
        require_date(lo, "date_from") if lo else None,
        require_date(hi, "date_to") if hi else None,
    )


class Operations:
    def __init__(self, conn: sqlite3.Connection, policy: Policy | None = None):
        self.conn = conn
        self.policy = policy or DEFAULT_POLICY
        self.log = get_logger("pharmacy_pos.ops")

        self.accounts = AccountsRepo(conn, self.policy)
        self.ledger = LedgerRepo(conn, self.policy)
        self.customers = CustomersRepo(conn, self.policy)
        self.suppliers = SuppliersRepo(conn, self.policy)
        self.products = ProductsRepo(conn, self.policy)
        self.inventory = InventoryRepo(conn, self.policy)
        self.damaged = DamagedItemsRepo(conn, self.policy)
        self.sales = SalesRepo(conn, self.policy)
        self.purchases = PurchasesRepo(conn, self.policy)
        self.salaries = SalaryPaymentsRepo(conn, self.policy)
        self.reports = ReportingRepo(conn)
        self.audit = AuditLogRepo(conn)

        self._handlers: Dict[str, Handler] = {
            # accounts
            "bankAccounts.create": self._account_create,
            "bankAccounts.list": lambda d: self.accounts.list_accounts(active_only=d.get("active_only", True)),
            "bankAccounts.get": lambda d: self.accounts.require(_id(d, "account_id", "id"), active=False),
            "bankAccounts.update": lambda d: self.accounts.update(
                _id(d, "account_id", "id"),
                **{k: d[k] for k in ("name", "account_number", "bank_name", "branch", "description") if k in d},
            ),
            "bankAccounts.deactivate": lambda d: self.accounts.deactivate(_id(d, "account_id", "id"), _user(d)),
            "bankAccounts.updateBalance": self._account_adjust,
            "bankAccounts.getEntries": lambda d: self.accounts.get_entries(_id(d, "account_id", "id"), *_dates(d)),
            "bankAccounts.reconcile": lambda d: self.accounts.reconcile(_id(d, "account_id", "id")),
            "ledger.reconcileAll": lambda d: self.ledger.reconcile_all(),
            # suppliers
            "suppliers.create": lambda d: self.suppliers.create(d, created_by=_user(d)),
            "suppliers.list": lambda d: self.suppliers.list_suppliers(d.get("query") or "", active_only=d.get("active_only", True)),
            "suppliers.get": lambda d: self.suppliers.require(_id(d, "supplier_id", "id"), active=False),
            "suppliers.update": lambda d: self.suppliers.update(_id(d, "supplier_id", "id"), d, created_by=_user(d)),
            "suppliers.deactivate": lambda d: self.suppliers.deactivate(_id(d, "supplier_id", "id"), created_by=_user(d)),
            "suppliers.recordPayment": self._supplier_payment,
            "supplierLedger.createEntry": self._supplier_entry,
            "supplierLedger.getEntries": lambda d: self.suppliers.get_entries(_id(d, "supplier_id", "id"), *_dates(d)),
            # customers
            "customers.create": lambda d: self.customers.create(d, created_by=_user(d)),
            "customers.list": lambda d: self.customers.list_customers(d.get("query") or "", active_only=d.get("active_only", True)),
            "customers.get": lambda d: self.customers.require(_id(d, "customer_id", "id"), active=False),
            "customers.update": lambda d: self.customers.update(_id(d, "customer_id", "id"), d, created_by=_user(d)),
            "customers.recordPayment": self._customer_payment,
            "customers.recalculateStats": lambda d: self.customers.recalculate_stats(_id(d, "customer_id", "id")),
            "customers.getEntries": lambda d: self.customers.get_entries(_id(d, "customer_id", "id"), *_dates(d)),
            # catalog & stock
            "products.create": lambda d: self.products.create(
                d, initial_stock=d.get("stock_quantity") or 0, created_by=_user(d)
            ),
            "products.get": lambda d: self.products.require(_id(d, "product_id", "id"), active=False),
            "products.search": lambda d: self.products.search(d.get("query") or ""),
            "products.update": lambda d: self.products.update(_id(d, "product_id", "id"), d.get("changes") or {}, created_by=_user(d)),
            "products.deactivate": lambda d: self.products.deactivate(_id(d, "product_id", "id"), created_by=_user(d)),
            "products.bulkImport": self._bulk_import,
            "inventory.updateQuantity": self._inventory_adjust,
            "inventory.get": lambda d: self.inventory.get_stock(_id(d, "product_id", "id")),
            "inventory.list": lambda d: self.inventory.list_stock(query=d.get("query") or ""),
            "inventory.lowStock": lambda d: self.inventory.low_stock(),
            "damagedItems.create": lambda d: self.damaged.record(DamagedItemRequest.from_payload(d)),
            "damagedItems.list": lambda d: self.damaged.list_items(*_dates(d)),
            # documents
            "sales.create": lambda d: self.sales.create_sale(SaleRequest.from_payload(d)),
            "sales.get": lambda d: self.sales.get_sale(_id(d, "sale_id", "id")),
            "sales.list": lambda d: self.sales.list_sales(*_dates(d), d.get("query") or ""),
            "sales.getReturnable": lambda d: {
                str(k): v for k, v in self.sales.get_returnable_quantities(_id(d, "sale_id", "id")).items()
            },
            "salesReturns.create": lambda d: self.sales.create_return(SaleReturnRequest.from_payload(d)),
            "salesReturns.get": lambda d: self.sales.get_return(_id(d, "return_id", "id")),
            "purchases.create": lambda d: self.purchases.create_purchase(PurchaseRequest.from_payload(d)),
            "purchases.get": lambda d: self.purchases.get_purchase(_id(d, "purchase_id", "id")),
            "purchases.list": lambda d: self.purchases.list_purchases(*_dates(d)),
            "purchaseReturns.create": lambda d: self.purchases.create_return(PurchaseReturnRequest.from_payload(d)),
            "purchaseReturns.get": lambda d: self.purchases.get_return(_id(d, "return_id", "id")),
            "salaryPayments.create": lambda d: self.salaries.record_payment(SalaryPaymentRequest.from_payload(d)),
            "salaryPayments.get": lambda d: self.salaries.get_payment(_id(d, "payment_id", "id")),
            "salaryPayments.list": lambda d: self.salaries.list_payments(
                require_int(d["employee_id"], "employee_id") if d.get("employee_id") not in (None, "") else None,
                *_dates(d),
            ),
            # reports
            "reports.todaySummary": lambda d: self.reports.today_summary(
                require_date(d.get("date") or today_str(), "date")
            ),
            "reports.salesSummary": self._sales_summary,
            "reports.monthlyRevenue": lambda d: self.reports.monthly_revenue(
                require_int(d.get("year") or today_str()[:4], "year")
            ),
            "reports.topProducts": self._top_products,
            "reports.lowStock": lambda d: self.reports.low_stock(),
            "reports.balances": lambda d: self.reports.balances_overview(),
            "auditLogs.list": lambda d: self.audit.list_logs(
                optional_text(d.get("entity_type")),
                require_int(d["entity_id"], "entity_id") if d.get("entity_id") is not None else None,
                _limit(d, 100),
            ),
        }

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #
    @property
    def names(self) -> list[str]:
        return sorted(self._handlers)

    def invoke(self, name: str, payload: Mapping[str, Any] | None = None) -> Any:
        handler = self._handlers.get(name)
        if handler is None:
            raise ValidationError(f"Unknown operation: {name!r}", field="operation")
        if payload is not None and not isinstance(payload, Mapping):
            raise ValidationError("Request payload must be an object.", field="payload")

        started = time.perf_counter()
        log_event(self.log, name, "start", "operation started", level=logging.DEBUG)
        try:
            result = to_jsonable(handler(snake_keys(payload)))
        except DomainError as e:
            log_event(
                self.log, name, "error", e.message,
                {"code": e.code, "field": e.field}, level=logging.WARNING,
            )
            raise
        log_event(
            self.log, name, "ok", "operation completed",
            {"ms": round((time.perf_counter() - started) * 1000, 1)}, level=logging.DEBUG,
        )
        return result

    # ------------------------------------------------------------------ #
    # Handlers with more than a one-line mapping
    # ------------------------------------------------------------------ #
    def _account_create(self, d: Dict[str, Any]):
        return self.accounts.create(
            d.get("name"),
            d.get("account_type"),
            opening_balance=d.get("opening_balance") or 0,
            account_number=d.get("account_number"),
            bank_name=d.get("bank_name"),
            branch=d.get("branch"),
            description=d.get("description"),
            created_by=_user(d),
        )

    def _account_adjust(self, d: Dict[str, Any]):
        req = BalanceAdjustmentRequest.from_payload(d)
        entry = self.accounts.adjust_balance(
            req.account_id, req.amount, req.type, req.reason,
            tx_date=req.tx_date, created_by=req.created_by,
        )
        return {"entry": entry, "account": self.accounts.require(req.account_id, active=False)}

    def _supplier_payment(self, d: Dict[str, Any]):
        req = PartyPaymentRequest.from_payload(d, "supplier_id")
        return self.suppliers.record_payment(
            req.party_id, req.account_id, req.amount,
            payment_method=req.payment_method, payment_date=req.payment_date,
            reference_number=req.reference_number, notes=req.notes, created_by=req.created_by,
        )

    def _customer_payment(self, d: Dict[str, Any]):
        req = PartyPaymentRequest.from_payload(d, "customer_id")
        return self.customers.record_payment(
            req.party_id, req.account_id, req.amount,
            payment_method=req.payment_method, payment_date=req.payment_date,
            reference_number=req.reference_number, notes=req.notes, created_by=req.created_by,
        )

    def _supplier_entry(self, d: Dict[str, Any]):
        req = LedgerEntryRequest.from_payload(d)
        return self.suppliers.create_ledger_entry(
            req.supplier_id, req.entry_type,
            debit=req.debit, credit=req.credit, tx_date=req.tx_date,
            reference_number=req.reference_number, description=req.description,
            created_by=req.created_by,
        )

    def _inventory_adjust(self, d: Dict[str, Any]):
        req = InventoryAdjustmentRequest.from_payload(d)
        self.inventory.update_quantity(req.product_id, req.quantity, req.reason, created_by=req.created_by)
        return self.inventory.get_stock(req.product_id)

    def _bulk_import(self, d: Dict[str, Any]):
        rows = d.get("rows", d.get("products"))
        if not isinstance(rows, list):
            raise ValidationError("rows must be a list of product records.", field="rows")
        return self.products.bulk_import(rows, created_by=_user(d))

    def _sales_summary(self, d: Dict[str, Any]):
        lo, hi = _dates(d)
        if not lo or not hi:
            raise ValidationError("Both date_from and date_to are required.", field="date_from")
        return self.reports.sales_summary(lo, hi)

    def _top_products(self, d: Dict[str, Any]):
        lo, hi = _dates(d)
        today = today_str()
        return self.reports.top_products(lo or today[:8] + "01", hi or today, _limit(d, 10))


__all__ = ["Operations", "to_jsonable"]
