"""
Repository layer public API.

Usage:
    from pharmacy_pos.database import get_connection
    from pharmacy_pos.database.repositories import SalesRepo

    conn = get_connection()
    sale = SalesRepo(conn).create_sale(request)

Every write method runs inside `database.transaction(conn)`; calling one from
inside another joins the outer transaction.
"""

# ------ ledger ------
from .ledger_repo import LedgerEntries, LedgerEntry, LedgerRepo, Reconciliation
from .accounts_repo import Account, AccountsRepo

# ------ parties ------
from .customers_repo import Customer, CustomersRepo
from .suppliers_repo import Supplier, SuppliersRepo

# ------ catalog & stock ------
from .products_repo import ImportResult, Product, ProductsRepo
from .inventory_repo import InventoryRepo, StockLevel, stock_status
from .damaged_items_repo import DamagedItemsRepo

# ------ documents ------
from .sales_repo import SalesRepo
from .purchases_repo import PurchasesRepo
from .salaries_repo import SalaryPaymentsRepo

# ------ read side ------
from .reporting_repo import ReportingRepo
from .audit_repo import AuditLogRepo

__all__ = [
    # ledger
    "LedgerRepo",
    "LedgerEntry",
    "LedgerEntries",
    "Reconciliation",
    "AccountsRepo",
    "Account",
    # parties
    "CustomersRepo",
    "Customer",
    "SuppliersRepo",
    "Supplier",
    # catalog & stock
    "ProductsRepo",
    "Product",
    "ImportResult",
    "InventoryRepo",
    "StockLevel",
    "stock_status",
    "DamagedItemsRepo",
    # documents
    "SalesRepo",
    "PurchasesRepo",
    "SalaryPaymentsRepo",
    # read side
    "ReportingRepo",
    "AuditLogRepo",
]
