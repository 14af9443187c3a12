from __future__ import annotations

import math
from typing import Any


# Maximum unit price on an order line: 9,999,999.99
# Prevents nonsensical prices from reaching the till totals
MAX_PRICE = 9_999_999.99

# Upper bound on lines per cart; a till cart is never this large
MAX_ITEMS_PER_SESSION = 500


class ValidationError(ValueError):
    """400-level input problem."""


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Accepts ints and plain digit strings. Rejects bools, floats,
    decimals and scientific notation.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_number(value: Any, field: str) -> int | float:
    """Accept int/float (not bool, not NaN/inf) and numeric strings."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if isinstance(number, float) and not math.isfinite(number):
        raise ValidationError(f"{field} must be a finite number")
    return number


def coerce_str(value: Any, field: str, *, max_length: int) -> str:
    if value is None or isinstance(value, (dict, list, bool)):
        raise ValidationError(f"{field} must be a string")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} cannot be blank")
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text
