# Overview: Service-layer operations for units, categories, products, variants and suppliers.

from __future__ import annotations

from sqlalchemy import or_

from ..errors import ConflictError, NotFound, ValidationError
from ..extensions import db
from ..models import Category, Product, ProductVariant, PurchaseOrder, Supplier, SupplierReturn, Unit
from ..models.inventory import MUTATION_ADJUSTMENT
from ..money import ZERO, q_cost, q_money, q_stock
from .concurrency import lock_for_update, run_atomically
from .stock_ledger_service import record_mutation
from .unit_conversion import validate_conversion_factor


# =============================================================================
# LOOKUPS
# =============================================================================

def get_unit(unit_id: int) -> Unit:
    unit = db.session.get(Unit, unit_id)
    if unit is None:
        raise NotFound("Unit not found", details={"unit_id": unit_id})
    return unit


def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFound("Product not found", details={"product_id": product_id})
    return product


def get_variant(variant_id: int, *, product_id: int | None = None) -> ProductVariant:
    variant = db.session.get(ProductVariant, variant_id)
    if variant is None:
        raise NotFound("Product variant not found", details={"variant_id": variant_id})
    if product_id is not None and variant.product_id != product_id:
        raise ValidationError(
            "Variant does not belong to product",
            details={"variant_id": variant_id, "product_id": product_id},
        )
    return variant


def lock_products(product_ids) -> dict[int, Product]:
    """
    Lock product rows for a check-then-decrement sequence.

    Rows are locked in id order so two transactions touching the same
    products can never deadlock on each other.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    rows = (
        lock_for_update(db.session.query(Product).filter(Product.id.in_(ids)))
        .order_by(Product.id.asc())
        .all()
    )
    found = {p.id: p for p in rows}
    missing = [pid for pid in ids if pid not in found]
    if missing:
        raise NotFound("Product not found", details={"product_ids": missing})
    return found


# =============================================================================
# UNITS
# =============================================================================

def create_unit(name: str) -> Unit:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Unit name is required", errors={"name": ["is required"]})

    def _op() -> Unit:
        if db.session.query(Unit).filter_by(name=name).first():
            raise ConflictError(f"Unit '{name}' already exists")
        unit = Unit(name=name)
        db.session.add(unit)
        db.session.flush()
        return unit

    return run_atomically(_op)


def list_units() -> list[Unit]:
    return db.session.query(Unit).order_by(Unit.name.asc()).all()


def update_unit(unit_id: int, name: str) -> Unit:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Unit name is required", errors={"name": ["is required"]})

    def _op() -> Unit:
        unit = get_unit(unit_id)
        clash = db.session.query(Unit).filter(Unit.name == name, Unit.id != unit.id).first()
        if clash:
            raise ConflictError(f"Unit '{name}' already exists")
        unit.name = name
        return unit

    return run_atomically(_op)


def delete_unit(unit_id: int) -> None:
    """Units still used by a product or a variant cannot be deleted."""
    def _op() -> None:
        unit = get_unit(unit_id)
        in_use = (
            db.session.query(Product.id).filter_by(base_unit_id=unit.id).first()
            or db.session.query(ProductVariant.id).filter_by(unit_id=unit.id).first()
        )
        if in_use:
            raise ConflictError(f"Unit '{unit.name}' is still in use", details={"unit_id": unit.id})
        db.session.delete(unit)
        db.session.flush()

    run_atomically(_op)


# =============================================================================
# CATEGORIES
# =============================================================================

def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFound("Category not found", details={"category_id": category_id})
    return category


def _category_name(name: str | None) -> str:
    name = (name or "").strip()
    if len(name) < 3:
        raise ValidationError(
            "Category name must be at least 3 characters long",
            errors={"name": ["must be at least 3 characters long"]},
        )
    return name


def _ensure_category_name_free(name: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Category).filter(Category.name == name)
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    if query.first():
        raise ConflictError(f"Category '{name}' already exists")


def create_category(name: str) -> Category:
    name = _category_name(name)

    def _op() -> Category:
        _ensure_category_name_free(name)
        category = Category(name=name)
        db.session.add(category)
        db.session.flush()
        return category

    return run_atomically(_op)


def update_category(category_id: int, name: str) -> Category:
    name = _category_name(name)

    def _op() -> Category:
        category = get_category(category_id)
        _ensure_category_name_free(name, exclude_id=category.id)
        category.name = name
        return category

    return run_atomically(_op)


def delete_category(category_id: int) -> None:
    """Categories with products (active or not) cannot be deleted."""
    def _op() -> None:
        category = get_category(category_id)
        if db.session.query(Product.id).filter_by(category_id=category.id).first():
            raise ConflictError(
                f"Category '{category.name}' still has products", details={"category_id": category.id}
            )
        db.session.delete(category)
        db.session.flush()

    run_atomically(_op)


def list_categories() -> list[Category]:
    return db.session.query(Category).order_by(Category.name.asc()).all()


# =============================================================================
# PRODUCTS & VARIANTS
# =============================================================================

def _ensure_sku_free(model, sku: str) -> None:
    if db.session.query(model).filter_by(sku=sku).first():
        raise ConflictError(f"SKU '{sku}' already exists", details={"sku": sku})


def _build_variant(product: Product, data: dict) -> ProductVariant:
    name = (data.get("name") or "").strip()
    sku = (data.get("sku") or "").strip()
    if not name:
        raise ValidationError("Variant name is required", errors={"variants.name": ["is required"]})
    if not sku:
        raise ValidationError("Variant SKU is required", errors={"variants.sku": ["is required"]})
    _ensure_sku_free(ProductVariant, sku)

    sell_price = q_money(data.get("sell_price"))
    if sell_price < ZERO:
        raise ValidationError("sell_price must be >= 0", errors={"variants.sell_price": ["must be >= 0"]})

    unit_id = data.get("unit_id") or product.base_unit_id
    get_unit(unit_id)

    variant = ProductVariant(
        product=product,
        unit_id=unit_id,
        name=name,
        sku=sku,
        conversion_to_base=validate_conversion_factor(data.get("conversion_to_base", 1)),
        sell_price=sell_price,
    )
    db.session.add(variant)
    return variant


def create_product(
    *,
    sku: str,
    name: str,
    base_unit_id: int,
    min_stock=0,
    variants: list[dict] | None = None,
    initial_stock=0,
    initial_cost=None,
    category_id: int | None = None,
    user_id: int | None = None,
) -> Product:
    """
    Create a product and its variants.

    Opening stock is booked through an `adjustment` mutation (never by
    writing Product.stock directly) so the ledger sum always matches.
    """
    sku = (sku or "").strip()
    name = (name or "").strip()
    if not sku or not name:
        errors = {}
        if not sku:
            errors["sku"] = ["is required"]
        if not name:
            errors["name"] = ["is required"]
        raise ValidationError("Validation failed", errors=errors)

    initial_stock = q_stock(initial_stock)
    if initial_stock < ZERO:
        raise ValidationError("initial_stock must be >= 0", errors={"initial_stock": ["must be >= 0"]})

    def _op() -> Product:
        get_unit(base_unit_id)
        if category_id is not None:
            get_category(category_id)
        _ensure_sku_free(Product, sku)

        product = Product(
            sku=sku,
            name=name,
            base_unit_id=base_unit_id,
            category_id=category_id,
            min_stock=q_stock(min_stock),
            stock=ZERO,
            average_cost=q_cost(initial_cost) if initial_cost is not None else ZERO,
        )
        db.session.add(product)
        db.session.flush()

        for data in variants or []:
            _build_variant(product, data)

        if initial_stock > ZERO:
            record_mutation(
                product,
                variant_id=None,
                mutation_type=MUTATION_ADJUSTMENT,
                qty_base_unit=initial_stock,
                reference=f"INIT-{product.sku}",
                user_id=user_id,
                note="Opening stock",
            )
        db.session.flush()
        return product

    return run_atomically(_op)


def update_product(
    product_id: int,
    *,
    sku: str | None = None,
    name: str | None = None,
    min_stock=None,
    category_id: int | None = None,
    clear_category: bool = False,
) -> Product:
    """
    Change master data. Stock and costs are not editable here: they only
    move through the stock ledger.
    """
    def _op() -> Product:
        product = get_product(product_id)
        if sku is not None:
            new_sku = sku.strip()
            if not new_sku:
                raise ValidationError("SKU cannot be blank", errors={"sku": ["cannot be blank"]})
            if new_sku != product.sku:
                _ensure_sku_free(Product, new_sku)
                product.sku = new_sku
        if name is not None:
            if not name.strip():
                raise ValidationError("Product name cannot be blank", errors={"name": ["cannot be blank"]})
            product.name = name.strip()
        if min_stock is not None:
            value = q_stock(min_stock)
            if value < ZERO:
                raise ValidationError("min_stock must be >= 0", errors={"min_stock": ["must be >= 0"]})
            product.min_stock = value
        if clear_category:
            product.category_id = None
        elif category_id is not None:
            product.category_id = get_category(category_id).id
        db.session.flush()
        return product

    return run_atomically(_op)


def delete_product(product_id: int) -> Product:
    """
    Deactivate a product. It drops out of listings and can no longer be
    sold, while its ledger and documents stay intact.
    """
    def _op() -> Product:
        product = get_product(product_id)
        product.is_active = False
        db.session.flush()
        return product

    return run_atomically(_op)


def add_variant(product_id: int, data: dict) -> ProductVariant:
    def _op() -> ProductVariant:
        product = get_product(product_id)
        variant = _build_variant(product, data)
        db.session.flush()
        return variant

    return run_atomically(_op)


def update_variant(
    variant_id: int,
    *,
    sell_price=None,
    conversion_to_base=None,
    name: str | None = None,
) -> ProductVariant:
    """
    Change current catalog values.

    Historical sale/return/purchase rows keep their own snapshots, so this
    never alters past documents.
    """
    def _op() -> ProductVariant:
        variant = get_variant(variant_id)
        if variant.is_archived:
            raise ValidationError("Variant is archived")
        if sell_price is not None:
            price = q_money(sell_price)
            if price < ZERO:
                raise ValidationError("sell_price must be >= 0", errors={"sell_price": ["must be >= 0"]})
            variant.sell_price = price
        if conversion_to_base is not None:
            variant.conversion_to_base = validate_conversion_factor(conversion_to_base)
        if name is not None:
            if not name.strip():
                raise ValidationError("Variant name cannot be blank", errors={"name": ["cannot be blank"]})
            variant.name = name.strip()
        return variant

    return run_atomically(_op)


def archive_variant(variant_id: int) -> ProductVariant:
    def _op() -> ProductVariant:
        variant = get_variant(variant_id)
        variant.is_archived = True
        return variant

    return run_atomically(_op)


def list_products(
    search: str | None = None,
    *,
    include_inactive: bool = False,
    category_id: int | None = None,
) -> list[Product]:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(like), Product.sku.ilike(like)))
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


# =============================================================================
# SUPPLIERS
# =============================================================================

def create_supplier(*, name: str, phone: str | None = None, address: str | None = None) -> Supplier:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Supplier name is required", errors={"name": ["is required"]})

    def _op() -> Supplier:
        supplier = Supplier(name=name, phone=phone, address=address)
        db.session.add(supplier)
        db.session.flush()
        return supplier

    return run_atomically(_op)


def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFound("Supplier not found", details={"supplier_id": supplier_id})
    return supplier


def list_suppliers() -> list[Supplier]:
    return db.session.query(Supplier).order_by(Supplier.name.asc()).all()


def update_supplier(
    supplier_id: int,
    *,
    name: str | None = None,
    phone: str | None = None,
    address: str | None = None,
) -> Supplier:
    def _op() -> Supplier:
        supplier = get_supplier(supplier_id)
        if name is not None:
            if not name.strip():
                raise ValidationError("Supplier name cannot be blank", errors={"name": ["cannot be blank"]})
            supplier.name = name.strip()
        if phone is not None:
            supplier.phone = phone
        if address is not None:
            supplier.address = address
        return supplier

    return run_atomically(_op)


def delete_supplier(supplier_id: int) -> None:
    """Suppliers referenced by purchases or supplier returns cannot be deleted."""
    def _op() -> None:
        supplier = get_supplier(supplier_id)
        in_use = (
            db.session.query(PurchaseOrder.id).filter_by(supplier_id=supplier.id).first()
            or db.session.query(SupplierReturn.id).filter_by(supplier_id=supplier.id).first()
        )
        if in_use:
            raise ConflictError(
                f"Supplier '{supplier.name}' has purchase history", details={"supplier_id": supplier.id}
            )
        db.session.delete(supplier)
        db.session.flush()

    run_atomically(_op)
