from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional


MONEY_QUANT = Decimal("0.01")
QTY_QUANT = Decimal("0.001")
ZERO = Decimal("0")


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """
    Coerce ints, strings and Decimals to Decimal.

    Floats go through str() so 0.1 stays 0.1. Booleans are rejected.
    Raises ValueError for anything that is not a finite number.
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"invalid number: {value!r}")
    if not result.is_finite():
        raise ValueError(f"invalid number: {value!r}")
    return result


def money(value: Decimal) -> Decimal:
    """Quantize to 2 places, half-up."""
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def qty(value: Decimal) -> Decimal:
    """Quantize to 3 places, half-up."""
    return Decimal(value).quantize(QTY_QUANT, rounding=ROUND_HALF_UP)


def dec_str(value: Optional[Decimal]) -> Optional[str]:
    """Serialize a Decimal for JSON payloads (None passes through)."""
    if value is None:
        return None
    return str(value)
