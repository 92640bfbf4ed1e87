# Overview: Weighted average cost (WAC) recomputation.

from __future__ import annotations

from decimal import Decimal

from ..money import ZERO, q_cost, to_decimal


def recompute_average_cost(current_avg, current_stock, incoming_qty, incoming_unit_cost) -> Decimal:
    """
    Blend an inbound receipt into the product's average cost (per base unit).

        new_avg = (current_avg * current_stock + incoming_unit_cost * incoming_qty)
                  / (current_stock + incoming_qty)

    Edge cases:
    - current_stock <= 0: the old average no longer describes anything on
      hand, so the incoming cost becomes the average.
    - denominator == 0: incoming cost is returned.
    - current_avg None (legacy rows): treated as 0.

    Result is rounded to cost precision (4 places, half-up).
    """
    avg = to_decimal(current_avg)
    stock = to_decimal(current_stock)
    qty = to_decimal(incoming_qty)
    unit_cost = to_decimal(incoming_unit_cost)

    if stock <= ZERO:
        return q_cost(unit_cost)

    denominator = stock + qty
    if denominator == ZERO:
        return q_cost(unit_cost)

    return q_cost((avg * stock + unit_cost * qty) / denominator)


def cost_per_base_unit(price_per_variant_unit, conversion_factor) -> Decimal:
    """Supplier price per variant unit -> cost per base unit."""
    return q_cost(to_decimal(price_per_variant_unit) / to_decimal(conversion_factor))
