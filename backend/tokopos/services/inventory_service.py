# Overview: Service-layer operations for inventory; adjustments, write-offs and stock checks.

"""
Inventory invariants (authoritative)

- Product.stock is a running counter; the ledger is the audit trail.
  stock == SUM(StockMutation.qty_base_unit) for every product.
- Stock may never go negative. Outbound operations (waste, supplier return)
  validate sufficiency under a product row lock before writing.
- ADJUSTMENT sets stock to a counted quantity. Only a positive adjustment
  that carries a unit cost recomputes the weighted average cost.
- Waste and supplier returns never change the average cost.
"""

from __future__ import annotations

from ..errors import InsufficientStock, ValidationError
from ..extensions import db
from ..models import Product, SupplierReturn
from ..models.inventory import MUTATION_ADJUSTMENT, MUTATION_SUPPLIER_RETURN, MUTATION_WASTE
from ..money import ZERO, q_cost, q_stock, to_decimal
from .catalog_service import get_product, get_supplier, get_variant, lock_products
from .concurrency import run_atomically
from .costing import recompute_average_cost
from .stock_ledger_service import insufficient_stock_line, ledger_balance, list_mutations, record_mutation
from .unit_conversion import quantity_error, to_base_unit


def adjust_stock(
    product_id: int,
    *,
    actual_stock,
    reason: str | None = None,
    user_id: int | None = None,
    unit_cost=None,
) -> dict:
    """
    Set stock to a physically counted quantity (base units).

    Returns {"changed": bool, "difference", "product", "mutation"}.
    """
    actual = q_stock(actual_stock)
    if actual < ZERO:
        raise ValidationError("actual_stock must be >= 0", errors={"actual_stock": ["must be >= 0"]})
    if unit_cost is not None and to_decimal(unit_cost) < ZERO:
        raise ValidationError("unit_cost must be >= 0", errors={"unit_cost": ["must be >= 0"]})

    def _op() -> dict:
        product = lock_products([product_id])[product_id]
        difference = actual - q_stock(product.stock)
        if difference == ZERO:
            return {
                "changed": False,
                "message": "No stock change needed",
                "difference": difference,
                "product": product.to_dict(),
                "mutation": None,
            }

        if difference > ZERO and unit_cost is not None:
            product.average_cost = recompute_average_cost(
                product.average_cost, product.stock, difference, q_cost(unit_cost)
            )

        mutation = record_mutation(
            product,
            variant_id=None,
            mutation_type=MUTATION_ADJUSTMENT,
            qty_base_unit=difference,
            reference=f"ADJ-{product.sku}",
            user_id=user_id,
            note=reason,
        )
        return {
            "changed": True,
            "difference": difference,
            "product": product.to_dict(),
            "mutation": mutation.to_dict(),
        }

    return run_atomically(_op)


def _outbound_base(product: Product, variant, qty) -> tuple:
    problem = quantity_error(qty)
    if problem:
        raise ValidationError(f"qty {problem}", errors={"qty": [problem]})
    qty = to_decimal(qty)
    base = to_base_unit(qty, variant.conversion_to_base)
    if base > to_decimal(product.stock):
        raise InsufficientStock([
            insufficient_stock_line(product=product, variant=variant, requested=base, available=product.stock)
        ])
    return qty, base


def record_waste(
    product_id: int,
    variant_id: int,
    *,
    qty,
    reason: str | None = None,
    user_id: int | None = None,
) -> dict:
    """Write off damaged/expired goods from the shelf."""
    def _op() -> dict:
        variant = get_variant(variant_id, product_id=product_id)
        product = lock_products([product_id])[product_id]
        _, base = _outbound_base(product, variant, qty)
        mutation = record_mutation(
            product,
            variant_id=variant.id,
            mutation_type=MUTATION_WASTE,
            qty_base_unit=-base,
            reference=f"WASTE-{product.sku}",
            user_id=user_id,
            unit_factor=variant.conversion_to_base,
            note=reason,
        )
        return {"product": product.to_dict(), "mutation": mutation.to_dict()}

    return run_atomically(_op)


def return_to_supplier(
    supplier_id: int,
    product_id: int,
    variant_id: int,
    *,
    qty,
    reason: str | None = None,
    user_id: int | None = None,
) -> SupplierReturn:
    def _op() -> SupplierReturn:
        get_supplier(supplier_id)
        variant = get_variant(variant_id, product_id=product_id)
        product = lock_products([product_id])[product_id]
        qty_units, base = _outbound_base(product, variant, qty)

        supplier_return = SupplierReturn(
            supplier_id=supplier_id,
            product_id=product.id,
            variant_id=variant.id,
            qty=qty_units,
            unit_factor_at_return=variant.conversion_to_base,
            reason=reason,
            user_id=user_id,
        )
        db.session.add(supplier_return)
        db.session.flush()

        record_mutation(
            product,
            variant_id=variant.id,
            mutation_type=MUTATION_SUPPLIER_RETURN,
            qty_base_unit=-base,
            reference=f"SR-{supplier_return.id}",
            user_id=user_id,
            unit_factor=variant.conversion_to_base,
            note=reason,
        )
        return supplier_return

    return run_atomically(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_stock_summary(product_id: int, *, recent: int = 20) -> dict:
    """Stock in base units and per variant, plus the most recent ledger rows."""
    product = get_product(product_id)
    stock = to_decimal(product.stock)
    data = product.to_dict()
    data["variants"] = [
        {
            **variant.to_dict(),
            "stock_in_variant_units": q_stock(stock / to_decimal(variant.conversion_to_base)),
        }
        for variant in product.variants
        if not variant.is_archived
    ]
    mutations = list_mutations(product_id=product.id)
    data["recent_mutations"] = [m.to_dict() for m in mutations[-recent:]]
    return data


def list_low_stock() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.stock <= Product.min_stock)
        .order_by(Product.stock.asc(), Product.id.asc())
        .all()
    )


def verify_stock_conservation(product_id: int | None = None) -> list[dict]:
    """
    Compare each product's stock counter with its ledger sum.

    Returns one row per product: {product_id, sku, stock, ledger_sum, ok}.
    """
    query = db.session.query(Product)
    if product_id is not None:
        query = query.filter(Product.id == product_id)

    rows = []
    for product in query.order_by(Product.id.asc()).all():
        stock = q_stock(product.stock)
        ledger_sum = ledger_balance(product.id)
        rows.append({
            "product_id": product.id,
            "sku": product.sku,
            "stock": stock,
            "ledger_sum": ledger_sum,
            "ok": stock == ledger_sum,
        })
    return rows
