# Overview: Variant unit -> base unit conversion.

from __future__ import annotations

from decimal import Decimal

from ..errors import ValidationError
from ..money import ZERO, fits_stock_precision, q_factor, q_stock, to_decimal


def to_base_unit(qty, conversion_factor) -> Decimal:
    """
    Convert a quantity in variant units to base units.

    qty * conversion_factor, rounded to stock precision.
    The factor must be > 0 (enforced again here so a bad snapshot cannot
    silently zero out a stock movement).
    """
    qty = to_decimal(qty)
    factor = to_decimal(conversion_factor)
    if factor <= ZERO:
        raise ValidationError("conversion_to_base must be greater than 0")
    if qty == ZERO:
        return q_stock(ZERO)
    return q_stock(qty * factor)


def validate_conversion_factor(value) -> Decimal:
    """
    Parse and validate a conversion factor for a variant create/update.

    The factor is rounded to column precision here so the in-session variant
    carries the same value that is stored.
    """
    try:
        factor = q_factor(value)
    except ValueError:
        raise ValidationError("conversion_to_base must be a number")
    if factor <= ZERO:
        raise ValidationError("conversion_to_base must be greater than 0")
    return factor


def quantity_error(value) -> str | None:
    """
    Why value cannot be used as a line quantity, or None when it can.

    Quantities must be > 0 and fit stock precision (3 decimals). They are
    rejected rather than rounded so a document line and its stock movement
    always agree.
    """
    try:
        qty = to_decimal(value)
    except ValueError:
        return "must be a number"
    if not qty.is_finite():
        return "must be a number"
    if qty <= ZERO:
        return "must be greater than 0"
    if not fits_stock_precision(qty):
        return "must have at most 3 decimal places"
    return None
