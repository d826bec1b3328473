"""
Money Precision Module

All ledger amounts are Decimal values rounded to 2 decimal places with
ROUND_HALF_UP. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Any, Union

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0.00')

Number = Union[Decimal, int, float, str]


def to_decimal(value: Any) -> Decimal:
    """
    Convert a raw value to Decimal without rounding

    Floats go through str() so that 0.1 becomes Decimal('0.1'), not the
    binary expansion. None and empty strings become zero.
    """
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        return Decimal('0')
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid monetary amount: {value!r}") from e


def round_money(value: Number) -> Decimal:
    """Round to 2 decimal places (ROUND_HALF_UP)"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def non_negative(value: Number) -> Decimal:
    """Round and clamp at zero"""
    rounded = round_money(value)
    if rounded < ZERO:
        return ZERO
    return rounded


def format_money(value: Number) -> str:
    """Format for display in notifications"""
    return f"{round_money(value):,.2f}"
