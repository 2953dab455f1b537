# pharmacy_pos/constants.py

DATA_DIR = "data"
DB_FILE_NAME = "pharmacy.db"

TABLE_SCHEMA_VERSION = "schema_version"
SCHEMA_VERSION = "1.0.0"

# Money/quantity comparisons mirror the tolerance used by the guard triggers.
EPS = 1e-9

ACCOUNT_TYPES = ("cash", "bank", "mobile_banking")
PAYMENT_METHODS = ("cash", "card", "bank_transfer", "mobile_banking", "credit")

# Ledger owners and entry vocabulary
OWNER_ACCOUNT = "account"
OWNER_SUPPLIER = "supplier"
OWNER_CUSTOMER = "customer"
OWNER_TYPES = (OWNER_ACCOUNT, OWNER_SUPPLIER, OWNER_CUSTOMER)

ENTRY_TYPES = ("opening_balance", "sale", "purchase", "payment", "return", "adjustment")

INVENTORY_TX_TYPES = (
    "opening",
    "sale",
    "purchase",
    "sale_return",
    "purchase_return",
    "adjustment",
    "damaged",
)

DEFAULT_ACCOUNTS = (
    ("Cash in Hand", "cash", "Default cash drawer"),
    ("Main Bank Account", "bank", "Default bank account"),
)
