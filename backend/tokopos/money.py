from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

# Column precisions (keep in sync with the Numeric columns in models/)
MONEY_Q = Decimal("0.01")
STOCK_Q = Decimal("0.001")
COST_Q = Decimal("0.0001")
FACTOR_Q = Decimal("0.0001")

ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """
    Coerce a value to Decimal without going through binary floats.

    Floats are converted via str() so 0.1 stays 0.1.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"not a number: {value!r}")


def q_money(value) -> Decimal:
    return to_decimal(value).quantize(MONEY_Q, rounding=ROUND_HALF_UP)


def q_stock(value) -> Decimal:
    return to_decimal(value).quantize(STOCK_Q, rounding=ROUND_HALF_UP)


def q_cost(value) -> Decimal:
    return to_decimal(value).quantize(COST_Q, rounding=ROUND_HALF_UP)


def q_factor(value) -> Decimal:
    return to_decimal(value).quantize(FACTOR_Q, rounding=ROUND_HALF_UP)


def fits_stock_precision(value) -> bool:
    """True when a quantity is stored exactly at stock precision (0.001)."""
    value = to_decimal(value)
    return value == q_stock(value)
