# pharmacy_pos/utils/validators.py
"""
Field-level checks shared by request parsing and repositories.

The `require_*` helpers raise ValidationError naming the offending field;
the boolean helpers never raise.
"""
from __future__ import annotations

from datetime import date
from typing import Any, Iterable

from ..database.errors import ValidationError


def non_empty(text) -> bool:
    """True if `text` is not None/empty after stripping whitespace."""
    return bool(text and str(text).strip())


def try_parse_float(x):
    """
    Best-effort parse to float.

    Returns:
        (ok: bool, value: float|None)
    """
    if isinstance(x, bool) or x is None:
        return False, None
    try:
        return True, float(x)
    except (TypeError, ValueError):
        return False, None


# ---- Raising variants ----

def require_text(value: Any, field: str) -> str:
    if not non_empty(value):
        raise ValidationError(f"{field} is required.", field=field)
    return str(value).strip()


def optional_text(value: Any) -> str | None:
    return str(value).strip() if non_empty(value) else None


def require_number(value: Any, field: str) -> float:
    ok, val = try_parse_float(value)
    if not ok or val is None or val != val:  # NaN
        raise ValidationError(f"{field} must be a number.", field=field)
    return val


def require_positive(value: Any, field: str) -> float:
    val = require_number(value, field)
    if val <= 0:
        raise ValidationError(f"{field} must be greater than zero.", field=field)
    return val


def require_non_negative(value: Any, field: str) -> float:
    val = require_number(value, field)
    if val < 0:
        raise ValidationError(f"{field} cannot be negative.", field=field)
    return val


def require_percent(value: Any, field: str) -> float:
    val = require_non_negative(value, field)
    if val > 100:
        raise ValidationError(f"{field} cannot exceed 100%.", field=field)
    return val


def require_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer id.", field=field)
    try:
        ival = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer id.", field=field) from None
    if str(value).strip() != str(ival) and float(value) != ival:
        raise ValidationError(f"{field} must be an integer id.", field=field)
    return ival


def optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return require_int(value, field)


def require_date(value: Any, field: str) -> str:
    """Accept 'YYYY-MM-DD' (optionally followed by a time) and return the date part."""
    text = require_text(value, field)[:10]
    try:
        date.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"{field} must be a date (YYYY-MM-DD).", field=field) from None
    return text


def require_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    text = require_text(value, field).lower()
    allowed = tuple(choices)
    if text not in allowed:
        raise ValidationError(
            f"{field} must be one of: {', '.join(allowed)}.", field=field
        )
    return text


_TRUE = ("true", "yes", "y", "on", "1")
_FALSE = ("false", "no", "n", "off", "0")


def optional_bool(value: Any, field: str) -> bool | None:
    """None/'' -> None; bools, 0/1 and true/false-style strings -> bool."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValidationError(f"{field} must be true or false.", field=field)
