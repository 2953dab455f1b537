from pathlib import Path
import logging
import sqlite3
import sys

_log = logging.getLogger(__name__)

SQL = r"""
PRAGMA foreign_keys = ON;

/* ======================== MONEY HOLDERS ======================== */

/* -------- accounts (cash drawer, bank, mobile banking) -------- */
CREATE TABLE IF NOT EXISTS accounts (
    account_id        INTEGER PRIMARY KEY AUTOINCREMENT,
    name              TEXT NOT NULL UNIQUE,
    account_type      TEXT NOT NULL CHECK (account_type IN ('cash','bank','mobile_banking')),
    account_number    TEXT,
    bank_name         TEXT,
    branch            TEXT,
    opening_balance   NUMERIC NOT NULL DEFAULT 0,
    current_balance   NUMERIC NOT NULL DEFAULT 0,
    total_deposits    NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(total_deposits AS REAL) >= 0),
    total_withdrawals NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(total_withdrawals AS REAL) >= 0),
    description       TEXT,
    is_active         INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
    created_at        TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at        TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);

/* -------- parties -------- */
CREATE TABLE IF NOT EXISTS suppliers (
    supplier_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT NOT NULL,
    code            TEXT NOT NULL UNIQUE,
    contact_person  TEXT,
    phone           TEXT,
    email           TEXT,
    address         TEXT,
    tax_number      TEXT,
    opening_balance NUMERIC NOT NULL DEFAULT 0,
    current_balance NUMERIC NOT NULL DEFAULT 0,
    total_purchases NUMERIC NOT NULL DEFAULT 0,
    total_payments  NUMERIC NOT NULL DEFAULT 0,
    credit_limit    NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(credit_limit AS REAL) >= 0),
    credit_days     INTEGER NOT NULL DEFAULT 0 CHECK (credit_days >= 0),
    is_active       INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
    created_at      TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at      TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS customers (
    customer_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT NOT NULL,
    phone           TEXT UNIQUE,
    email           TEXT,
    address         TEXT,
    date_of_birth   DATE,
    opening_balance NUMERIC NOT NULL DEFAULT 0,
    current_balance NUMERIC NOT NULL DEFAULT 0,
    loyalty_points  INTEGER NOT NULL DEFAULT 0 CHECK (loyalty_points >= 0),
    total_purchases NUMERIC NOT NULL DEFAULT 0,
    is_active       INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
    created_at      TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at      TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);

/* ======================== LEDGER ======================== */

/* One table for account, supplier and customer ledgers.
   balance = previous balance + credit - debit (starting at owner's opening_balance). */
CREATE TABLE IF NOT EXISTS ledger_entries (
    entry_id         INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_type       TEXT NOT NULL CHECK (owner_type IN ('account','supplier','customer')),
    owner_id         INTEGER NOT NULL,
    tx_date          DATE NOT NULL,
    entry_type       TEXT NOT NULL CHECK (entry_type IN
                       ('opening_balance','sale','purchase','payment','return','adjustment')),
    debit            NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(debit AS REAL) >= 0),
    credit           NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(credit AS REAL) >= 0),
    balance          NUMERIC NOT NULL,
    reference_type   TEXT,
    reference_id     INTEGER,
    reference_number TEXT,
    description      TEXT,
    created_by       INTEGER,
    posted_at        TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CHECK ((CAST(debit AS REAL) > 0) <> (CAST(credit AS REAL) > 0))
);
CREATE INDEX IF NOT EXISTS idx_ledger_owner_date
    ON ledger_entries(owner_type, owner_id, tx_date, entry_id);
CREATE INDEX IF NOT EXISTS idx_ledger_reference
    ON ledger_entries(reference_type, reference_id);

DROP TRIGGER IF EXISTS trg_ledger_entries_no_update;
CREATE TRIGGER trg_ledger_entries_no_update
BEFORE UPDATE ON ledger_entries
BEGIN
  SELECT RAISE(ABORT, 'Ledger entries are immutable; post an offsetting entry instead');
END;

DROP TRIGGER IF EXISTS trg_ledger_entries_no_delete;
CREATE TRIGGER trg_ledger_entries_no_delete
BEFORE DELETE ON ledger_entries
BEGIN
  SELECT RAISE(ABORT, 'Ledger entries are immutable; post an offsetting entry instead');
END;

/* ======================== CATALOG & STOCK ======================== */

CREATE TABLE IF NOT EXISTS products (
    product_id            INTEGER PRIMARY KEY AUTOINCREMENT,
    name                  TEXT NOT NULL,
    generic_name          TEXT,
    sku                   TEXT NOT NULL UNIQUE,
    barcode               TEXT UNIQUE,
    category              TEXT,
    manufacturer          TEXT,
    unit                  TEXT NOT NULL DEFAULT 'piece',
    strength              TEXT,
    shelf                 TEXT,
    cost_price            NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(cost_price AS REAL) >= 0),
    selling_price         NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(selling_price AS REAL) >= 0),
    tax_rate              NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(tax_rate AS REAL) >= 0),
    discount_percent      NUMERIC NOT NULL DEFAULT 0
                            CHECK (CAST(discount_percent AS REAL) BETWEEN 0 AND 100),
    reorder_level         NUMERIC NOT NULL DEFAULT 10 CHECK (CAST(reorder_level AS REAL) >= 0),
    requires_prescription INTEGER NOT NULL DEFAULT 0 CHECK (requires_prescription IN (0,1)),
    is_active             INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
    created_at            TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at            TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_products_name ON products(name);

/* -------- on-hand quantity, one row per product -------- */
CREATE TABLE IF NOT EXISTS inventory (
    product_id   INTEGER PRIMARY KEY,
    quantity     NUMERIC NOT NULL DEFAULT 0,
    batch_number TEXT,
    expiry_date  DATE,
    updated_at   TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (product_id) REFERENCES products(product_id)
);

/* -------- movement log: one row per applied delta -------- */
CREATE TABLE IF NOT EXISTS inventory_transactions (
    transaction_id    INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id        INTEGER NOT NULL,
    quantity          NUMERIC NOT NULL CHECK (CAST(quantity AS REAL) <> 0),
    balance_after     NUMERIC NOT NULL,
    transaction_type  TEXT NOT NULL CHECK (transaction_type IN
                        ('opening','sale','purchase','sale_return','purchase_return',
                         'adjustment','damaged')),
    reference_type    TEXT,
    reference_id      INTEGER,
    reference_item_id INTEGER,
    date              DATE NOT NULL,
    notes             TEXT,
    created_by        INTEGER,
    created_at        TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (product_id) REFERENCES products(product_id)
);
CREATE INDEX IF NOT EXISTS idx_inventory_tx_product
    ON inventory_transactions(product_id, date, transaction_id);
CREATE INDEX IF NOT EXISTS idx_inventory_tx_reference
    ON inventory_transactions(reference_type, reference_id);

CREATE TABLE IF NOT EXISTS damaged_items (
    damaged_id   INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id   INTEGER NOT NULL,
    quantity     NUMERIC NOT NULL CHECK (CAST(quantity AS REAL) > 0),
    reason       TEXT NOT NULL CHECK (reason IN ('expired','damaged','defective','other')),
    batch_number TEXT,
    expiry_date  DATE,
    unit_cost    NUMERIC NOT NULL DEFAULT 0,
    notes        TEXT,
    reported_by  INTEGER,
    date         DATE NOT NULL,
    created_at   TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (product_id) REFERENCES products(product_id)
);

/* ======================== SALES ======================== */

CREATE TABLE IF NOT EXISTS sales (
    sale_id         INTEGER PRIMARY KEY AUTOINCREMENT,
    invoice_number  TEXT NOT NULL UNIQUE,
    customer_id     INTEGER,
    sale_date       DATE NOT NULL,
    subtotal        NUMERIC NOT NULL DEFAULT 0,
    discount_amount NUMERIC NOT NULL DEFAULT 0,
    tax_amount      NUMERIC NOT NULL DEFAULT 0,
    total_amount    NUMERIC NOT NULL CHECK (CAST(total_amount AS REAL) > 0),
    paid_amount     NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(paid_amount AS REAL) >= 0),
    change_amount   NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(change_amount AS REAL) >= 0),
    due_amount      NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(due_amount AS REAL) >= 0),
    payment_method  TEXT NOT NULL DEFAULT 'cash',
    payment_status  TEXT NOT NULL CHECK (payment_status IN ('unpaid','partial','paid')),
    status          TEXT NOT NULL DEFAULT 'completed'
                      CHECK (status IN ('completed','partially_refunded','refunded','cancelled')),
    notes           TEXT,
    created_by      INTEGER,
    created_at      TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (customer_id) REFERENCES customers(customer_id)
);
CREATE INDEX IF NOT EXISTS idx_sales_date ON sales(sale_date);

CREATE TABLE IF NOT EXISTS sale_items (
    item_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    sale_id          INTEGER NOT NULL,
    product_id       INTEGER NOT NULL,
    product_name     TEXT NOT NULL,
    quantity         NUMERIC NOT NULL CHECK (CAST(quantity AS REAL) > 0),
    unit_price       NUMERIC NOT NULL CHECK (CAST(unit_price AS REAL) >= 0),
    discount_percent NUMERIC NOT NULL DEFAULT 0,
    tax_rate         NUMERIC NOT NULL DEFAULT 0,
    subtotal         NUMERIC NOT NULL,
    FOREIGN KEY (sale_id)    REFERENCES sales(sale_id) ON DELETE CASCADE,
    FOREIGN KEY (product_id) REFERENCES products(product_id)
);
CREATE INDEX IF NOT EXISTS idx_sale_items_sale ON sale_items(sale_id);

/* one row per account a sale was paid into */
CREATE TABLE IF NOT EXISTS sale_payments (
    payment_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    sale_id        INTEGER NOT NULL,
    account_id     INTEGER NOT NULL,
    amount         NUMERIC NOT NULL CHECK (CAST(amount AS REAL) > 0),
    payment_method TEXT NOT NULL DEFAULT 'cash',
    FOREIGN KEY (sale_id)    REFERENCES sales(sale_id) ON DELETE CASCADE,
    FOREIGN KEY (account_id) REFERENCES accounts(account_id)
);

CREATE TABLE IF NOT EXISTS sales_returns (
    return_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    return_number TEXT NOT NULL UNIQUE,
    sale_id       INTEGER NOT NULL,
    customer_id   INTEGER,
    account_id    INTEGER,
    return_date   DATE NOT NULL,
    total_amount  NUMERIC NOT NULL DEFAULT 0,
    refund_amount NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(refund_amount AS REAL) >= 0),
    refund_status TEXT NOT NULL CHECK (refund_status IN ('none','refunded')),
    restocked     INTEGER NOT NULL DEFAULT 1 CHECK (restocked IN (0,1)),
    reason        TEXT,
    created_by    INTEGER,
    created_at    TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (sale_id)    REFERENCES sales(sale_id),
    FOREIGN KEY (account_id) REFERENCES accounts(account_id)
);

CREATE TABLE IF NOT EXISTS sales_return_items (
    return_item_id INTEGER PRIMARY KEY AUTOINCREMENT,
    return_id      INTEGER NOT NULL,
    sale_item_id   INTEGER NOT NULL,
    product_id     INTEGER NOT NULL,
    quantity       NUMERIC NOT NULL CHECK (CAST(quantity AS REAL) > 0),
    unit_price     NUMERIC NOT NULL,
    subtotal       NUMERIC NOT NULL,
    FOREIGN KEY (return_id)    REFERENCES sales_returns(return_id) ON DELETE CASCADE,
    FOREIGN KEY (sale_item_id) REFERENCES sale_items(item_id),
    FOREIGN KEY (product_id)   REFERENCES products(product_id)
);

/* Returned quantity may never exceed what was sold on the line. */
DROP TRIGGER IF EXISTS trg_sales_return_qty_guard;
CREATE TRIGGER trg_sales_return_qty_guard
BEFORE INSERT ON sales_return_items
FOR EACH ROW
BEGIN
  SELECT CASE
    WHEN (
      COALESCE((SELECT SUM(CAST(quantity AS REAL)) FROM sales_return_items
                WHERE sale_item_id = NEW.sale_item_id), 0.0)
      + CAST(NEW.quantity AS REAL)
      - COALESCE((SELECT CAST(quantity AS REAL) FROM sale_items
                  WHERE item_id = NEW.sale_item_id), 0.0)
    ) > 1e-9
    THEN RAISE(ABORT, 'Return quantity exceeds quantity sold')
    ELSE 1
  END;
END;

/* ======================== PURCHASES ======================== */

CREATE TABLE IF NOT EXISTS purchases (
    purchase_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    invoice_number  TEXT NOT NULL UNIQUE,
    supplier_id     INTEGER NOT NULL,
    account_id      INTEGER,
    purchase_date   DATE NOT NULL,
    subtotal        NUMERIC NOT NULL DEFAULT 0,
    discount_amount NUMERIC NOT NULL DEFAULT 0,
    tax_amount      NUMERIC NOT NULL DEFAULT 0,
    total_amount    NUMERIC NOT NULL CHECK (CAST(total_amount AS REAL) > 0),
    paid_amount     NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(paid_amount AS REAL) >= 0),
    due_amount      NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(due_amount AS REAL) >= 0),
    payment_status  TEXT NOT NULL CHECK (payment_status IN ('unpaid','partial','paid')),
    notes           TEXT,
    created_by      INTEGER,
    created_at      TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (supplier_id) REFERENCES suppliers(supplier_id),
    FOREIGN KEY (account_id)  REFERENCES accounts(account_id)
);
CREATE INDEX IF NOT EXISTS idx_purchases_date ON purchases(purchase_date);

CREATE TABLE IF NOT EXISTS purchase_items (
    item_id      INTEGER PRIMARY KEY AUTOINCREMENT,
    purchase_id  INTEGER NOT NULL,
    product_id   INTEGER NOT NULL,
    product_name TEXT NOT NULL,
    quantity     NUMERIC NOT NULL CHECK (CAST(quantity AS REAL) > 0),
    unit_cost    NUMERIC NOT NULL CHECK (CAST(unit_cost AS REAL) >= 0),
    discount_percent NUMERIC NOT NULL DEFAULT 0,
    tax_rate     NUMERIC NOT NULL DEFAULT 0,
    subtotal     NUMERIC NOT NULL,
    batch_number TEXT,
    expiry_date  DATE,
    FOREIGN KEY (purchase_id) REFERENCES purchases(purchase_id) ON DELETE CASCADE,
    FOREIGN KEY (product_id)  REFERENCES products(product_id)
);
CREATE INDEX IF NOT EXISTS idx_purchase_items_purchase ON purchase_items(purchase_id);

CREATE TABLE IF NOT EXISTS purchase_returns (
    return_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    return_number TEXT NOT NULL UNIQUE,
    purchase_id   INTEGER NOT NULL,
    supplier_id   INTEGER NOT NULL,
    account_id    INTEGER,
    return_date   DATE NOT NULL,
    total_amount  NUMERIC NOT NULL DEFAULT 0,
    refund_amount NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(refund_amount AS REAL) >= 0),
    reason        TEXT,
    created_by    INTEGER,
    created_at    TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (purchase_id) REFERENCES purchases(purchase_id),
    FOREIGN KEY (supplier_id) REFERENCES suppliers(supplier_id),
    FOREIGN KEY (account_id)  REFERENCES accounts(account_id)
);

CREATE TABLE IF NOT EXISTS purchase_return_items (
    return_item_id   INTEGER PRIMARY KEY AUTOINCREMENT,
    return_id        INTEGER NOT NULL,
    purchase_item_id INTEGER NOT NULL,
    product_id       INTEGER NOT NULL,
    quantity         NUMERIC NOT NULL CHECK (CAST(quantity AS REAL) > 0),
    unit_cost        NUMERIC NOT NULL,
    subtotal         NUMERIC NOT NULL,
    FOREIGN KEY (return_id)        REFERENCES purchase_returns(return_id) ON DELETE CASCADE,
    FOREIGN KEY (purchase_item_id) REFERENCES purchase_items(item_id),
    FOREIGN KEY (product_id)       REFERENCES products(product_id)
);

DROP TRIGGER IF EXISTS trg_purchase_return_qty_guard;
CREATE TRIGGER trg_purchase_return_qty_guard
BEFORE INSERT ON purchase_return_items
FOR EACH ROW
BEGIN
  SELECT CASE
    WHEN (
      COALESCE((SELECT SUM(CAST(quantity AS REAL)) FROM purchase_return_items
                WHERE purchase_item_id = NEW.purchase_item_id), 0.0)
      + CAST(NEW.quantity AS REAL)
      - COALESCE((SELECT CAST(quantity AS REAL) FROM purchase_items
                  WHERE item_id = NEW.purchase_item_id), 0.0)
    ) > 1e-9
    THEN RAISE(ABORT, 'Return quantity exceeds quantity purchased')
    ELSE 1
  END;
END;

/* ======================== PAYMENTS ======================== */

CREATE TABLE IF NOT EXISTS supplier_payments (
    payment_id       INTEGER PRIMARY KEY AUTOINCREMENT,
    reference_number TEXT NOT NULL UNIQUE,
    supplier_id      INTEGER NOT NULL,
    account_id       INTEGER NOT NULL,
    amount           NUMERIC NOT NULL CHECK (CAST(amount AS REAL) > 0),
    payment_method   TEXT NOT NULL DEFAULT 'cash',
    payment_date     DATE NOT NULL,
    notes            TEXT,
    created_by       INTEGER,
    created_at       TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (supplier_id) REFERENCES suppliers(supplier_id),
    FOREIGN KEY (account_id)  REFERENCES accounts(account_id)
);

CREATE TABLE IF NOT EXISTS customer_payments (
    payment_id       INTEGER PRIMARY KEY AUTOINCREMENT,
    reference_number TEXT NOT NULL UNIQUE,
    customer_id      INTEGER NOT NULL,
    account_id       INTEGER NOT NULL,
    amount           NUMERIC NOT NULL CHECK (CAST(amount AS REAL) > 0),
    payment_method   TEXT NOT NULL DEFAULT 'cash',
    payment_date     DATE NOT NULL,
    notes            TEXT,
    created_by       INTEGER,
    created_at       TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (customer_id) REFERENCES customers(customer_id),
    FOREIGN KEY (account_id)  REFERENCES accounts(account_id)
);

/* ======================== PAYROLL ======================== */

-- net = basic + allowances + bonuses - deductions, paid out of one account
CREATE TABLE IF NOT EXISTS salary_payments (
    payment_id       INTEGER PRIMARY KEY AUTOINCREMENT,
    reference_number TEXT NOT NULL UNIQUE,
    employee_id      INTEGER,
    employee_name    TEXT NOT NULL,
    account_id       INTEGER NOT NULL,
    payment_date     DATE NOT NULL,
    pay_period_start DATE,
    pay_period_end   DATE,
    basic_amount     NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(basic_amount AS REAL) >= 0),
    allowances       NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(allowances AS REAL) >= 0),
    bonuses          NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(bonuses AS REAL) >= 0),
    deductions       NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(deductions AS REAL) >= 0),
    total_amount     NUMERIC NOT NULL CHECK (CAST(total_amount AS REAL) > 0),
    payment_method   TEXT NOT NULL DEFAULT cash,
    notes            TEXT,
    paid_by          INTEGER,
    created_at       TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (account_id) REFERENCES accounts(account_id),
    CHECK (pay_period_end IS NULL OR pay_period_start IS NULL OR pay_period_end >= pay_period_start)
);
CREATE INDEX IF NOT EXISTS idx_salary_payments_date ON salary_payments(payment_date);

/* ======================== AUDIT ======================== */

CREATE TABLE IF NOT EXISTS audit_logs (
    log_id      INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER,
    action      TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id   INTEGER,
    entity_name TEXT,
    changes     TEXT,
    created_at  TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_logs(entity_type, entity_id);

/* ======================== VIEWS ======================== */

DROP VIEW IF EXISTS v_sale_item_returnable;
CREATE VIEW v_sale_item_returnable AS
SELECT si.item_id AS sale_item_id,
       si.sale_id,
       si.product_id,
       CAST(si.quantity AS REAL) AS sold_qty,
       COALESCE((SELECT SUM(CAST(ri.quantity AS REAL)) FROM sales_return_items ri
                 WHERE ri.sale_item_id = si.item_id), 0.0) AS returned_qty
FROM sale_items si;

DROP VIEW IF EXISTS v_purchase_item_returnable;
CREATE VIEW v_purchase_item_returnable AS
SELECT pi.item_id AS purchase_item_id,
       pi.purchase_id,
       pi.product_id,
       CAST(pi.quantity AS REAL) AS purchased_qty,
       COALESCE((SELECT SUM(CAST(ri.quantity AS REAL)) FROM purchase_return_items ri
                 WHERE ri.purchase_item_id = pi.item_id), 0.0) AS returned_qty
FROM purchase_items pi;

DROP VIEW IF EXISTS v_stock_levels;
CREATE VIEW v_stock_levels AS
SELECT p.product_id,
       p.name,
       p.sku,
       p.category,
       CAST(p.reorder_level AS REAL)            AS reorder_level,
       CAST(COALESCE(i.quantity, 0) AS REAL)    AS quantity,
       i.batch_number,
       i.expiry_date,
       p.is_active
FROM products p
LEFT JOIN inventory i ON i.product_id = p.product_id;
"""

# (table, column, DDL fragment) for databases created before the column existed.
_ADDED_COLUMNS = [
    ("products", "strength", "TEXT"),
    ("products", "shelf", "TEXT"),
    ("customers", "loyalty_points",
     "INTEGER NOT NULL DEFAULT 0 CHECK (loyalty_points >= 0)"),
    ("customers", "total_purchases", "NUMERIC NOT NULL DEFAULT 0"),
]


def _ensure_columns(conn: sqlite3.Connection) -> None:
    """
    Safe migration for older DBs: add columns introduced after the table was created.
    No-op when present.
    """
    for table, column, ddl in _ADDED_COLUMNS:
        cols = {row[1] for row in conn.execute(f"PRAGMA table_info({table});").fetchall()}
        if column not in cols:
            _log.info("schema: adding %s.%s", table, column)
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl};")


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply the (idempotent) schema to an open connection and commit."""
    conn.executescript(SQL)
    _ensure_columns(conn)
    conn.commit()


def init_schema(db_path: Path | str) -> None:
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        apply_schema(conn)
    finally:
        conn.close()
    _log.info("schema applied to %s", db_path)


if __name__ == "__main__":
    from ..config import DB_PATH

    logging.basicConfig(level=logging.INFO)
    init_schema(sys.argv[1] if len(sys.argv) > 1 else DB_PATH)
