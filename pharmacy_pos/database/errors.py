# pharmacy_pos/database/errors.py
from __future__ import annotations

import re
import sqlite3


class DomainError(Exception):
    """Domain-level error the boundary can surface (toast/snackbar)."""

    code = "domain_error"

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        out = {"code": self.code, "message": self.message}
        if self.field:
            out["field"] = self.field
        return out


class ValidationError(DomainError):
    """Malformed or missing input; nothing was written."""

    code = "validation_error"


class NotFoundError(DomainError):
    """A referenced account, product, party or document does not exist."""

    code = "not_found"


class ConflictError(DomainError):
    """Uniqueness violation (duplicate SKU, barcode, invoice number, ...)."""

    code = "conflict"


class StateError(DomainError):
    """Operation not valid for the entity's current state."""

    code = "invalid_state"


class StorageError(DomainError):
    """The database refused the transaction; it was rolled back."""

    code = "storage_error"

    def __init__(self, message: str, *, field: str | None = None, original: BaseException | None = None):
        super().__init__(message, field=field)
        self.original = original


# "UNIQUE constraint failed: products.sku" -> friendly label per column
_UNIQUE_RX = re.compile(r"UNIQUE constraint failed: ([\w.]+)")
_UNIQUE_LABELS = {
    "products.sku": ("sku", "SKU"),
    "products.barcode": ("barcode", "Barcode"),
    "accounts.name": ("name", "Account name"),
    "suppliers.code": ("code", "Supplier code"),
    "customers.phone": ("phone", "Phone number"),
    "sales.invoice_number": ("invoice_number", "Invoice number"),
    "purchases.invoice_number": ("invoice_number", "Invoice number"),
    "sales_returns.return_number": ("return_number", "Return number"),
    "purchase_returns.return_number": ("return_number", "Return number"),
    "supplier_payments.reference_number": ("reference_number", "Payment reference"),
    "customer_payments.reference_number": ("reference_number", "Payment reference"),
}


def map_sqlite_error(exc: sqlite3.Error) -> DomainError:
    """
    Translate a sqlite3 error raised mid-transaction into the domain taxonomy.
    Trigger messages raised with RAISE(ABORT, '...') are passed through verbatim.
    """
    msg = str(exc)
    m = _UNIQUE_RX.search(msg)
    if isinstance(exc, sqlite3.IntegrityError) and m:
        column = m.group(1).split(",")[0].strip()
        field, label = _UNIQUE_LABELS.get(column, (column.split(".")[-1], column))
        return ConflictError(f"{label} already exists.", field=field)
    if isinstance(exc, sqlite3.IntegrityError):
        return StorageError(f"Constraint violation: {msg}", original=exc)
    return StorageError(f"Database error: {msg}", original=exc)


__all__ = [
    "DomainError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "StateError",
    "StorageError",
    "map_sqlite_error",
]
