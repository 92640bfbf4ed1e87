# Overview: Service-layer operations for purchasing; stock receipt and weighted average cost.

"""
Purchases are the main cost-bearing inbound movement.

Per line:
    base      = qty * conversion_to_base
    unit_cost = price / conversion_to_base      (cost per BASE unit)
    new_avg   = recompute_average_cost(avg, stock, base, unit_cost)

cost_before on each PurchaseItem keeps the product's average cost right
before the line was received, so cancelling the purchase can put the
average back where it was.
"""

from __future__ import annotations

from decimal import Decimal

from ..errors import InsufficientStock, NotFound, ValidationError
from ..extensions import db
from ..models import ProductVariant, PurchaseItem, PurchaseOrder
from ..models.documents import DOC_PURCHASE
from ..models.inventory import MUTATION_PURCHASE, MUTATION_PURCHASE_CANCEL
from ..money import ZERO, q_cost, q_money, q_stock, to_decimal
from ..time_utils import utcnow
from .catalog_service import get_supplier, lock_products
from .concurrency import lock_for_update, run_atomically
from .costing import cost_per_base_unit, recompute_average_cost
from .document_service import next_document_number
from .stock_ledger_service import insufficient_stock_line, record_mutation
from .unit_conversion import quantity_error, to_base_unit

PURCHASE_RECEIVED = "received"
PURCHASE_CANCELLED = "cancelled"

def _validate_items(items: list[dict]) -> None:
    errors: dict[str, list[str]] = {}
    if not items:
        errors["items"] = ["must contain at least one item"]
    seen: set[int] = set()
    for idx, raw in enumerate(items or []):
        problem = quantity_error(raw.get("qty"))
        if problem:
            errors.setdefault(f"items[{idx}].qty", []).append(problem)
        if to_decimal(raw.get("price")) < ZERO:
            errors.setdefault(f"items[{idx}].price", []).append("must be >= 0")
        if raw.get("variant_id") in seen:
            errors.setdefault(f"items[{idx}].variant_id", []).append("duplicate variant in purchase")
        seen.add(raw.get("variant_id"))
    if errors:
        raise ValidationError("Validation failed", errors=errors)


def _lock_received(purchase_id: int) -> PurchaseOrder:
    order = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=purchase_id)).first()
    if order is None:
        raise NotFound("Purchase not found", details={"purchase_id": purchase_id})
    if order.status == PURCHASE_CANCELLED:
        raise ValidationError("Purchase is already cancelled", details={"purchase_id": purchase_id})
    return order


def _receive_lines(order: PurchaseOrder, items: list[dict], products: dict, user_id: int | None) -> Decimal:
    """PurchaseItem + purchase mutation per line; returns the order total."""
    total = ZERO
    for raw in items:
        variant = db.session.get(ProductVariant, raw["variant_id"])
        if variant is None:
            raise NotFound("Product variant not found", details={"variant_id": raw["variant_id"]})
        if variant.product_id != raw["product_id"]:
            raise ValidationError(
                "Variant does not belong to product",
                details={"variant_id": variant.id, "product_id": raw["product_id"]},
            )
        product = products[variant.product_id]

        qty = q_stock(raw["qty"])
        price = q_money(raw["price"])
        factor = to_decimal(variant.conversion_to_base)
        base = to_base_unit(qty, factor)
        unit_cost = cost_per_base_unit(price, factor)
        subtotal = q_money(qty * price)

        cost_before = q_cost(product.average_cost)
        product.average_cost = recompute_average_cost(cost_before, product.stock, base, unit_cost)
        product.last_purchase_cost = unit_cost

        db.session.add(
            PurchaseItem(
                purchase_id=order.id,
                product_id=product.id,
                variant_id=variant.id,
                qty=qty,
                price=price,
                unit_factor_at_purchase=factor,
                subtotal=subtotal,
                cost_before=cost_before,
            )
        )
        record_mutation(
            product,
            variant_id=variant.id,
            mutation_type=MUTATION_PURCHASE,
            qty_base_unit=base,
            reference=order.order_number,
            user_id=user_id,
            unit_factor=factor,
        )
        total += subtotal
    return q_money(total)


def _reverse_lines(
    order: PurchaseOrder,
    products: dict,
    *,
    reference: str,
    user_id: int | None,
    message: str,
    note: str | None = None,
) -> None:
    """
    Take every line of a received order back out of stock.

    Stock must still cover every line (goods already sold cannot be
    un-received). Average cost goes back to the cost_before of the product's
    first line on the order.
    """
    needed: dict[int, Decimal] = {}
    shortages = []
    for item in order.items:
        product = products[item.product_id]
        base = to_base_unit(item.qty, item.unit_factor_at_purchase)
        already = needed.get(product.id, ZERO)
        needed[product.id] = already + base
        if already + base > to_decimal(product.stock):
            variant = db.session.get(ProductVariant, item.variant_id)
            shortages.append(
                insufficient_stock_line(
                    product=product,
                    variant=variant,
                    requested=base,
                    available=to_decimal(product.stock) - already,
                )
            )
    if shortages:
        raise InsufficientStock(shortages, message=message)

    restored: set[int] = set()
    for item in order.items:
        product = products[item.product_id]
        record_mutation(
            product,
            variant_id=item.variant_id,
            mutation_type=MUTATION_PURCHASE_CANCEL,
            qty_base_unit=-to_base_unit(item.qty, item.unit_factor_at_purchase),
            reference=reference,
            user_id=user_id,
            unit_factor=item.unit_factor_at_purchase,
            note=note,
        )
        if product.id not in restored:
            product.average_cost = q_cost(item.cost_before)
            restored.add(product.id)


def create_purchase(
    *,
    items: list[dict],
    supplier_id: int | None = None,
    user_id: int | None = None,
) -> PurchaseOrder:
    """
    Receive goods.

    items: [{product_id, variant_id, qty, price}] with price per variant unit.
    """
    _validate_items(items)

    def _op() -> PurchaseOrder:
        if supplier_id is not None:
            get_supplier(supplier_id)

        products = lock_products(raw["product_id"] for raw in items)
        order = PurchaseOrder(
            order_number=next_document_number(DOC_PURCHASE),
            supplier_id=supplier_id,
            status=PURCHASE_RECEIVED,
            user_id=user_id,
        )
        db.session.add(order)
        db.session.flush()

        order.total = _receive_lines(order, items, products, user_id)
        db.session.flush()
        return order

    return run_atomically(_op)


def edit_purchase(
    purchase_id: int,
    *,
    items: list[dict],
    supplier_id: int | None = None,
    user_id: int | None = None,
) -> PurchaseOrder:
    """
    Replace the lines of a received purchase.

    The old lines are taken back out (purchase_cancel rows referenced
    EDIT-<order number>, average cost restored) and the new lines are
    received as if freshly delivered, under the same order number.
    """
    _validate_items(items)

    def _op() -> PurchaseOrder:
        order = _lock_received(purchase_id)
        if supplier_id is not None:
            get_supplier(supplier_id)
            order.supplier_id = supplier_id

        products = lock_products(
            [item.product_id for item in order.items] + [raw["product_id"] for raw in items]
        )
        _reverse_lines(
            order,
            products,
            reference=f"EDIT-{order.order_number}",
            user_id=user_id,
            message="Not enough stock left to edit this purchase",
            note="Purchase edited",
        )
        for item in list(order.items):
            db.session.delete(item)
        db.session.flush()
        db.session.expire(order, ["items"])

        order.total = _receive_lines(order, items, products, user_id)
        db.session.flush()
        return order

    return run_atomically(_op)


def cancel_purchase(purchase_id: int, *, user_id: int | None = None) -> PurchaseOrder:
    """Reverse a received purchase."""
    def _op() -> PurchaseOrder:
        order = _lock_received(purchase_id)
        products = lock_products(item.product_id for item in order.items)
        _reverse_lines(
            order,
            products,
            reference=f"VOID-{order.order_number}",
            user_id=user_id,
            message="Not enough stock left to cancel this purchase",
        )

        order.status = PURCHASE_CANCELLED
        order.cancelled_at = utcnow()
        order.cancelled_by_user_id = user_id
        db.session.flush()
        return order

    return run_atomically(_op)


def get_purchase(purchase_id: int) -> PurchaseOrder:
    order = db.session.get(PurchaseOrder, purchase_id)
    if order is None:
        raise NotFound("Purchase not found", details={"purchase_id": purchase_id})
    return order


def list_purchases(*, supplier_id: int | None = None, status: str | None = None) -> list[PurchaseOrder]:
    query = db.session.query(PurchaseOrder)
    if supplier_id is not None:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)
    if status is not None:
        query = query.filter(PurchaseOrder.status == status)
    return query.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc()).all()
