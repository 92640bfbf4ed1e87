# Overview: Append-only stock ledger writer and audit trail queries.

"""
Stock ledger invariants (authoritative)

- Every change to Product.stock goes through record_mutation(), which appends
  exactly one StockMutation row with the same signed quantity in the same
  session flush. Therefore, for every product at every commit:

      Product.stock == SUM(StockMutation.qty_base_unit)

- StockMutation rows are never updated or deleted. Reversals are new rows of
  the matching *_cancel type.
- record_mutation() does NOT check sufficiency. Orchestrators validate stock
  (and lock product rows) before calling it; the CHECK constraint on
  products.stock is the last line.
"""

from __future__ import annotations

from decimal import Decimal

from ..errors import ValidationError
from ..extensions import db
from ..models import Product, StockMutation
from ..models.inventory import MUTATION_TYPES
from ..money import ZERO, q_stock, to_decimal


def record_mutation(
    product: Product,
    *,
    variant_id: int | None,
    mutation_type: str,
    qty_base_unit,
    reference: str | None = None,
    user_id: int | None = None,
    unit_factor=None,
    note: str | None = None,
) -> StockMutation:
    """
    Append a ledger row and apply the same signed qty to product.stock.

    qty_base_unit: positive = stock in, negative = stock out. Zero is allowed
    for audit-only rows (e.g. a returned line written off as waste).
    """
    if mutation_type not in MUTATION_TYPES:
        raise ValidationError(f"Unknown mutation type: {mutation_type}")

    qty = q_stock(qty_base_unit)

    mutation = StockMutation(
        product_id=product.id,
        variant_id=variant_id,
        type=mutation_type,
        qty_base_unit=qty,
        unit_factor_at_mutation=to_decimal(unit_factor) if unit_factor is not None else None,
        reference=reference,
        note=note,
        user_id=user_id,
    )
    db.session.add(mutation)

    if qty != ZERO:
        product.stock = q_stock(to_decimal(product.stock) + qty)

    db.session.flush()
    return mutation


def insufficient_stock_line(*, product: Product, variant, requested, available) -> dict:
    """One itemized entry of an InsufficientStock rejection."""
    requested = q_stock(requested)
    available = q_stock(max(to_decimal(available), ZERO))
    return {
        "product_id": product.id,
        "product_name": product.name,
        "variant_id": variant.id if variant is not None else None,
        "variant_name": variant.name if variant is not None else None,
        "requested": requested,
        "available": available,
        "shortfall": requested - available,
    }


def ledger_balance(product_id: int) -> Decimal:
    """SUM(qty_base_unit) over the product's ledger rows."""
    total = (
        db.session.query(db.func.coalesce(db.func.sum(StockMutation.qty_base_unit), 0))
        .filter(StockMutation.product_id == product_id)
        .scalar()
    )
    return q_stock(total)


def list_mutations(
    *,
    product_id: int | None = None,
    variant_id: int | None = None,
    mutation_type: str | None = None,
    reference: str | None = None,
    start=None,
    end=None,
    limit: int | None = None,
) -> list[StockMutation]:
    """Audit trail ordered by creation time (then id)."""
    query = db.session.query(StockMutation)
    if product_id is not None:
        query = query.filter(StockMutation.product_id == product_id)
    if variant_id is not None:
        query = query.filter(StockMutation.variant_id == variant_id)
    if mutation_type is not None:
        query = query.filter(StockMutation.type == mutation_type)
    if reference is not None:
        query = query.filter(StockMutation.reference == reference)
    if start is not None:
        query = query.filter(StockMutation.created_at >= start)
    if end is not None:
        query = query.filter(StockMutation.created_at <= end)

    query = query.order_by(StockMutation.created_at.asc(), StockMutation.id.asc())
    if limit:
        query = query.limit(limit)
    return query.all()
