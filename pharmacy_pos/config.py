# pharmacy_pos/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .constants import DATA_DIR, DB_FILE_NAME

BASE_DIR = Path(__file__).resolve().parent
DATA_PATH = BASE_DIR / DATA_DIR
DB_PATH = Path(os.environ.get("PHARMACY_POS_DB_PATH") or DATA_PATH / DB_FILE_NAME)

LOG_LEVEL = os.environ.get("PHARMACY_POS_LOG_LEVEL", "INFO").upper()
# "text" (default) or "json": one JSON object per line
LOG_FORMAT = os.environ.get("PHARMACY_POS_LOG_FORMAT", "text").strip().lower()
# optional JSON-lines log file, in addition to the stream handler
LOG_FILE = os.environ.get("PHARMACY_POS_LOG_FILE") or None


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass(frozen=True)
class Policy:
    """
    Business rules the repositories consult when an event could go either way.

      - allow_negative_stock: sales/returns may drive on-hand quantity below zero.
      - restock_on_return: a sales return puts the goods back on the shelf.
      - allow_overdraft: outgoing money may take an account below zero.
      - loyalty_spend_per_point: spend needed to earn one loyalty point.
      - default_reorder_level: used when a product does not set one.
    """
    allow_negative_stock: bool = False
    restock_on_return: bool = True
    allow_overdraft: bool = False
    loyalty_spend_per_point: float = 10.0
    default_reorder_level: float = 10.0

    @classmethod
    def from_env(cls) -> "Policy":
        return cls(
            allow_negative_stock=_env_flag("PHARMACY_POS_ALLOW_NEGATIVE_STOCK", False),
            restock_on_return=_env_flag("PHARMACY_POS_RESTOCK_ON_RETURN", True),
            allow_overdraft=_env_flag("PHARMACY_POS_ALLOW_OVERDRAFT", False),
            loyalty_spend_per_point=_env_float("PHARMACY_POS_LOYALTY_SPEND_PER_POINT", 10.0),
            default_reorder_level=_env_float("PHARMACY_POS_DEFAULT_REORDER_LEVEL", 10.0),
        )


DEFAULT_POLICY = Policy()
