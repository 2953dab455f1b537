# pharmacy_pos/utils/helpers.py
from __future__ import annotations

from datetime import date
import re
from typing import Any, Mapping


def today_str() -> str:
    """Return today's date as ISO string (YYYY-MM-DD)."""
    return date.today().isoformat()


def round_money(v: float) -> float:
    # +0.0 folds -0.0 into 0.0
    return round(float(v), 2) + 0.0


_CAMEL_RX = re.compile(r"(?<=[a-z0-9])([A-Z])")


def snake_case(key: str) -> str:
    """'sellingPrice' -> 'selling_price'; already-snake keys pass through."""
    return _CAMEL_RX.sub(r"_\1", str(key).strip()).lower().replace(" ", "_")


def snake_keys(data: Mapping[str, Any] | None) -> dict[str, Any]:
    """Shallow copy of a payload with camelCase keys converted to snake_case."""
    return {snake_case(k): v for k, v in (data or {}).items()}
