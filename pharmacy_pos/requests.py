# pharmacy_pos/requests.py
"""
Typed request shapes for every money- or stock-moving operation.

Payloads arrive as loosely-typed dicts (camelCase from the UI, snake_case from
scripts). `from_payload()` coerces and validates them into one of the
dataclasses below; repositories only ever see these. `validate()` can be
called again on hand-built instances and raises ValidationError on the first
problem it finds.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .constants import PAYMENT_METHODS
from .database.errors import ValidationError
from .utils.helpers import snake_keys
from .utils.validators import (
    optional_bool,
    optional_int,
    optional_text,
    require_choice,
    require_date,
    require_int,
    require_non_negative,
    require_number,
    require_percent,
    require_positive,
    require_text,
)


def _opt_number(d: Mapping[str, Any], key: str, check) -> float | None:
    v = d.get(key)
    if v is None or v == "":
        return None
    return check(v, key)


def _opt_date(d: Mapping[str, Any], key: str) -> str | None:
    v = d.get(key)
    return require_date(v, key) if v not in (None, "") else None


def _lines(d: Mapping[str, Any], key: str = "items") -> list[dict]:
    raw = d.get(key)
    if not isinstance(raw, (list, tuple)) or not raw:
        raise ValidationError("At least one item is required.", field=key)
    out = []
    for n, item in enumerate(raw, start=1):
        if not isinstance(item, Mapping):
            raise ValidationError(f"Item {n} is malformed.", field=key)
        out.append(snake_keys(item))
    return out


def _header(payload: Mapping[str, Any], key: str) -> dict:
    """Accept either {key: {...header}, items: [...]} or one flat dict."""
    d = snake_keys(payload)
    inner = d.get(key)
    if isinstance(inner, Mapping):
        merged = snake_keys(inner)
        merged.setdefault("items", d.get("items"))
        return merged
    return d


# --------------------------------------------------------------------------- #
# Sales
# --------------------------------------------------------------------------- #

@dataclass
class SaleLine:
    product_id: int
    quantity: float
    unit_price: float | None = None        # None: product's selling price
    discount_percent: float | None = None  # None: product default
    tax_rate: float | None = None          # None: product default

    def validate(self) -> "SaleLine":
        require_int(self.product_id, "product_id")
        require_positive(self.quantity, "quantity")
        if self.unit_price is not None:
            require_non_negative(self.unit_price, "unit_price")
        if self.discount_percent is not None:
            require_percent(self.discount_percent, "discount_percent")
        if self.tax_rate is not None:
            require_non_negative(self.tax_rate, "tax_rate")
        return self


@dataclass
class PaymentSplit:
    account_id: int
    amount: float
    payment_method: str = "cash"

    def validate(self) -> "PaymentSplit":
        require_int(self.account_id, "account_id")
        require_positive(self.amount, "amount")
        require_choice(self.payment_method, "payment_method", PAYMENT_METHODS)
        return self


@dataclass
class SaleRequest:
    items: list[SaleLine]
    paid_amount: float = 0.0
    account_id: int | None = None
    payment_method: str = "cash"
    payments: list[PaymentSplit] = field(default_factory=list)
    customer_id: int | None = None
    discount_amount: float = 0.0
    sale_date: str | None = None
    invoice_number: str | None = None
    notes: str | None = None
    created_by: int | None = None

    def validate(self) -> "SaleRequest":
        if not self.items:
            raise ValidationError("A sale needs at least one item.", field="items")
        for line in self.items:
            line.validate()
        require_non_negative(self.paid_amount, "paid_amount")
        require_non_negative(self.discount_amount, "discount_amount")
        require_choice(self.payment_method, "payment_method", PAYMENT_METHODS)
        for split in self.payments:
            split.validate()
        if self.payments and self.paid_amount and abs(
            sum(p.amount for p in self.payments) - self.paid_amount
        ) > 0.005:
            raise ValidationError(
                "Paid amount does not match the sum of payment splits.", field="paid_amount"
            )
        return self

    @property
    def tendered(self) -> float:
        if self.payments:
            return sum(float(p.amount) for p in self.payments)
        return float(self.paid_amount or 0.0)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SaleRequest":
        d = _header(payload, "sale")
        items = [
            SaleLine(
                product_id=require_int(i.get("product_id"), "product_id"),
                quantity=require_positive(i.get("quantity"), "quantity"),
                unit_price=_opt_number(i, "unit_price", require_non_negative),
                discount_percent=_opt_number(i, "discount_percent", require_percent),
                tax_rate=_opt_number(i, "tax_rate", require_non_negative),
            )
            for i in _lines(d)
        ]
        payments = [
            PaymentSplit(
                account_id=require_int(p.get("account_id"), "account_id"),
                amount=require_positive(p.get("amount"), "amount"),
                payment_method=(optional_text(p.get("payment_method")) or "cash").lower(),
            )
            for p in (snake_keys(x) for x in (d.get("payments") or []))
        ]
        return cls(
            items=items,
            paid_amount=_opt_number(d, "paid_amount", require_non_negative) or 0.0,
            account_id=optional_int(d.get("account_id"), "account_id"),
            payment_method=(optional_text(d.get("payment_method")) or "cash").lower(),
            payments=payments,
            customer_id=optional_int(d.get("customer_id"), "customer_id"),
            discount_amount=_opt_number(d, "discount_amount", require_non_negative) or 0.0,
            sale_date=_opt_date(d, "sale_date"),
            invoice_number=optional_text(d.get("invoice_number")),
            notes=optional_text(d.get("notes")),
            created_by=optional_int(d.get("created_by") or d.get("user_id"), "created_by"),
        ).validate()


@dataclass
class ReturnLine:
    item_id: int      # sale_items.item_id or purchase_items.item_id
    quantity: float

    def validate(self) -> "ReturnLine":
        require_int(self.item_id, "item_id")
        require_positive(self.quantity, "quantity")
        return self


def _return_lines(d: Mapping[str, Any], id_keys: tuple[str, ...]) -> list[ReturnLine]:
    out = []
    for i in _lines(d):
        raw_id = next((i[k] for k in id_keys if i.get(k) is not None), None)
        out.append(
            ReturnLine(
                item_id=require_int(raw_id, id_keys[0]),
                quantity=require_positive(i.get("quantity"), "quantity"),
            )
        )
    return out


@dataclass
class SaleReturnRequest:
    sale_id: int
    items: list[ReturnLine]
    refund_amount: float | None = None   # None: returned value, up to what was received
    account_id: int | None = None
    restock: bool | None = None          # None: policy default
    reason: str | None = None
    return_date: str | None = None
    created_by: int | None = None

    def validate(self) -> "SaleReturnRequest":
        require_int(self.sale_id, "sale_id")
        if not self.items:
            raise ValidationError("A return needs at least one item.", field="items")
        for line in self.items:
            line.validate()
        if self.refund_amount is not None:
            require_non_negative(self.refund_amount, "refund_amount")
        self.restock = optional_bool(self.restock, "restock")
        return self

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SaleReturnRequest":
        d = _header(payload, "sales_return")
        return cls(
            sale_id=require_int(d.get("sale_id"), "sale_id"),
            items=_return_lines(d, ("sale_item_id", "item_id")),
            refund_amount=_opt_number(d, "refund_amount", require_non_negative),
            account_id=optional_int(d.get("account_id"), "account_id"),
            restock=optional_bool(d.get("restock"), "restock"),
            reason=optional_text(d.get("reason")),
            return_date=_opt_date(d, "return_date"),
            created_by=optional_int(d.get("created_by") or d.get("user_id"), "created_by"),
        ).validate()


# --------------------------------------------------------------------------- #
# Purchases
# --------------------------------------------------------------------------- #

@dataclass
class PurchaseLine:
    product_id: int
    quantity: float
    unit_cost: float
    discount_percent: float = 0.0
    tax_rate: float = 0.0
    batch_number: str | None = None
    expiry_date: str | None = None

    def validate(self) -> "PurchaseLine":
        require_int(self.product_id, "product_id")
        require_positive(self.quantity, "quantity")
        require_non_negative(self.unit_cost, "unit_cost")
        require_percent(self.discount_percent, "discount_percent")
        require_non_negative(self.tax_rate, "tax_rate")
        return self


@dataclass
class PurchaseRequest:
    supplier_id: int
    items: list[PurchaseLine]
    paid_amount: float = 0.0
    account_id: int | None = None
    discount_amount: float = 0.0
    purchase_date: str | None = None
    invoice_number: str | None = None
    notes: str | None = None
    created_by: int | None = None

    def validate(self) -> "PurchaseRequest":
        require_int(self.supplier_id, "supplier_id")
        if not self.items:
            raise ValidationError("A purchase needs at least one item.", field="items")
        for line in self.items:
            line.validate()
        require_non_negative(self.paid_amount, "paid_amount")
        require_non_negative(self.discount_amount, "discount_amount")
        if self.paid_amount and self.account_id is None:
            raise ValidationError("Select the account the payment is made from.", field="account_id")
        return self

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PurchaseRequest":
        d = _header(payload, "purchase")
        items = [
            PurchaseLine(
                product_id=require_int(i.get("product_id"), "product_id"),
                quantity=require_positive(i.get("quantity"), "quantity"),
                unit_cost=require_non_negative(
                    i.get("unit_cost", i.get("unit_price")), "unit_cost"
                ),
                discount_percent=_opt_number(i, "discount_percent", require_percent) or 0.0,
                tax_rate=_opt_number(i, "tax_rate", require_non_negative) or 0.0,
                batch_number=optional_text(i.get("batch_number")),
                expiry_date=_opt_date(i, "expiry_date"),
            )
            for i in _lines(d)
        ]
        return cls(
            supplier_id=require_int(d.get("supplier_id"), "supplier_id"),
            items=items,
            paid_amount=_opt_number(d, "paid_amount", require_non_negative) or 0.0,
            account_id=optional_int(d.get("account_id"), "account_id"),
            discount_amount=_opt_number(d, "discount_amount", require_non_negative) or 0.0,
            purchase_date=_opt_date(d, "purchase_date"),
            invoice_number=optional_text(d.get("invoice_number")),
            notes=optional_text(d.get("notes")),
            created_by=optional_int(d.get("created_by") or d.get("user_id"), "created_by"),
        ).validate()


@dataclass
class PurchaseReturnRequest:
    purchase_id: int
    items: list[ReturnLine]
    refund_amount: float = 0.0
    account_id: int | None = None
    reason: str | None = None
    return_date: str | None = None
    created_by: int | None = None

    def validate(self) -> "PurchaseReturnRequest":
        require_int(self.purchase_id, "purchase_id")
        if not self.items:
            raise ValidationError("A return needs at least one item.", field="items")
        for line in self.items:
            line.validate()
        require_non_negative(self.refund_amount, "refund_amount")
        if self.refund_amount and self.account_id is None:
            raise ValidationError("Select the account the refund is paid into.", field="account_id")
        return self

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PurchaseReturnRequest":
        d = _header(payload, "purchase_return")
        return cls(
            purchase_id=require_int(d.get("purchase_id"), "purchase_id"),
            items=_return_lines(d, ("purchase_item_id", "item_id")),
            refund_amount=_opt_number(d, "refund_amount", require_non_negative) or 0.0,
            account_id=optional_int(d.get("account_id"), "account_id"),
            reason=optional_text(d.get("reason")),
            return_date=_opt_date(d, "return_date"),
            created_by=optional_int(d.get("created_by") or d.get("user_id"), "created_by"),
        ).validate()


# --------------------------------------------------------------------------- #
# Payments, adjustments, stock
# --------------------------------------------------------------------------- #

@dataclass
class BalanceAdjustmentRequest:
    account_id: int
    amount: float
    type: str      # 'credit' | 'debit'
    reason: str
    tx_date: str | None = None
    created_by: int | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "BalanceAdjustmentRequest":
        d = snake_keys(payload)
        return cls(
            account_id=require_int(d.get("account_id") or d.get("id"), "account_id"),
            amount=require_positive(d.get("amount"), "amount"),
            type=require_choice(d.get("type"), "type", ("credit", "debit")),
            reason=require_text(d.get("reason") or d.get("description"), "reason"),
            tx_date=_opt_date(d, "date"),
            created_by=optional_int(d.get("created_by") or d.get("user_id"), "created_by"),
        )


@dataclass
class PartyPaymentRequest:
    party_id: int
    account_id: int
    amount: float
    payment_method: str = "cash"
    payment_date: str | None = None
    reference_number: str | None = None
    notes: str | None = None
    created_by: int | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], party_key: str) -> "PartyPaymentRequest":
        d = snake_keys(payload)
        return cls(
            party_id=require_int(d.get(party_key), party_key),
            account_id=require_int(d.get("account_id"), "account_id"),
            amount=require_positive(d.get("amount"), "amount"),
            payment_method=require_choice(
                d.get("payment_method") or "cash", "payment_method", PAYMENT_METHODS
            ),
            payment_date=_opt_date(d, "payment_date"),
            reference_number=optional_text(d.get("reference_number")),
            notes=optional_text(d.get("notes")),
            created_by=optional_int(d.get("created_by") or d.get("user_id"), "created_by"),
        )


@dataclass
class SalaryPaymentRequest:
    employee_name: str
    basic_amount: float
    allowances: float = 0.0
    bonuses: float = 0.0
    deductions: float = 0.0
    employee_id: int | None = None
    account_id: int | None = None       # None: default cash drawer
    payment_method: str = "cash"
    payment_date: str | None = None
    pay_period_start: str | None = None
    pay_period_end: str | None = None
    reference_number: str | None = None
    notes: str | None = None
    paid_by: int | None = None

    @property
    def total_amount(self) -> float:
        return round(
            float(self.basic_amount) + float(self.allowances)
            + float(self.bonuses) - float(self.deductions),
            2,
        ) + 0.0

    def validate(self) -> "SalaryPaymentRequest":
        require_text(self.employee_name, "employee_name")
        require_non_negative(self.basic_amount, "basic_amount")
        for name in ("allowances", "bonuses", "deductions"):
            require_non_negative(getattr(self, name), name)
        require_choice(self.payment_method, "payment_method", PAYMENT_METHODS)
        if self.total_amount <= 0:
            raise ValidationError("Net salary must be greater than zero.", field="deductions")
        if (
            self.pay_period_start and self.pay_period_end
            and self.pay_period_end < self.pay_period_start
        ):
            raise ValidationError("Pay period ends before it starts.", field="pay_period_end")
        return self

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SalaryPaymentRequest":
        d = snake_keys(payload)
        return cls(
            employee_name=require_text(d.get("employee_name") or d.get("user_name"), "employee_name"),
            basic_amount=require_non_negative(d.get("basic_amount"), "basic_amount"),
            allowances=_opt_number(d, "allowances", require_non_negative) or 0.0,
            bonuses=_opt_number(d, "bonuses", require_non_negative) or 0.0,
            deductions=_opt_number(d, "deductions", require_non_negative) or 0.0,
            employee_id=optional_int(d.get("employee_id") or d.get("user_id"), "employee_id"),
            account_id=optional_int(d.get("account_id"), "account_id"),
            payment_method=require_choice(
                d.get("payment_method") or "cash", "payment_method", PAYMENT_METHODS
            ),
            payment_date=_opt_date(d, "payment_date"),
            pay_period_start=_opt_date(d, "pay_period_start"),
            pay_period_end=_opt_date(d, "pay_period_end"),
            reference_number=optional_text(d.get("reference_number") or d.get("transaction_reference")),
            notes=optional_text(d.get("notes")),
            paid_by=optional_int(d.get("paid_by") or d.get("created_by"), "paid_by"),
        ).validate()


@dataclass
class LedgerEntryRequest:
    supplier_id: int
    entry_type: str
    debit: float = 0.0
    credit: float = 0.0
    tx_date: str | None = None
    reference_number: str | None = None
    description: str | None = None
    created_by: int | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "LedgerEntryRequest":
        d = snake_keys(payload)
        return cls(
            supplier_id=require_int(d.get("supplier_id"), "supplier_id"),
            entry_type=require_text(d.get("type") or d.get("entry_type"), "type").lower(),
            debit=_opt_number(d, "debit", require_non_negative) or 0.0,
            credit=_opt_number(d, "credit", require_non_negative) or 0.0,
            tx_date=_opt_date(d, "transaction_date") or _opt_date(d, "tx_date"),
            reference_number=optional_text(d.get("reference_number")),
            description=optional_text(d.get("description")),
            created_by=optional_int(d.get("created_by") or d.get("user_id"), "created_by"),
        )


@dataclass
class InventoryAdjustmentRequest:
    product_id: int
    quantity: float    # signed delta
    reason: str
    created_by: int | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "InventoryAdjustmentRequest":
        d = snake_keys(payload)
        qty = d.get("quantity")
        if qty is None:
            raise ValidationError("quantity is required.", field="quantity")
        delta = require_number(qty, "quantity")
        if delta == 0:
            raise ValidationError("Quantity change cannot be zero.", field="quantity")
        return cls(
            product_id=require_int(d.get("product_id"), "product_id"),
            quantity=delta,
            reason=optional_text(d.get("reason")) or "Manual stock adjustment",
            created_by=optional_int(d.get("created_by") or d.get("user_id"), "created_by"),
        )


DAMAGE_REASONS = ("expired", "damaged", "defective", "other")


@dataclass
class DamagedItemRequest:
    product_id: int
    quantity: float
    reason: str
    batch_number: str | None = None
    expiry_date: str | None = None
    notes: str | None = None
    reported_by: int | None = None
    date: str | None = None

    def validate(self) -> "DamagedItemRequest":
        require_int(self.product_id, "product_id")
        require_positive(self.quantity, "quantity")
        require_choice(self.reason, "reason", DAMAGE_REASONS)
        return self

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "DamagedItemRequest":
        d = snake_keys(payload)
        return cls(
            product_id=require_int(d.get("product_id"), "product_id"),
            quantity=require_positive(d.get("quantity"), "quantity"),
            reason=require_choice(d.get("reason"), "reason", DAMAGE_REASONS),
            batch_number=optional_text(d.get("batch_number")),
            expiry_date=_opt_date(d, "expiry_date"),
            notes=optional_text(d.get("notes")),
            reported_by=optional_int(d.get("reported_by") or d.get("user_id"), "reported_by"),
            date=_opt_date(d, "date"),
        ).validate()
