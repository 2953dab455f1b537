"""
pharmacy_pos: transactional core of a pharmacy point-of-sale.

Ledgers, sales/purchases/returns, inventory and read-only reports over a
single local SQLite database.
"""

__version__ = "0.1.0"
