# Overview: Flask API routes for master data (units, categories, products, variants, customers, suppliers).

"""
Master data API routes

DESIGN:
- Units, products and variants form the catalog the sale/purchase flows price against
- Opening stock on product creation is booked through the stock ledger
- Customer credit balance is read-only here; it only moves through sales and returns
- Products and customers are deactivated, never removed; units, categories and
  suppliers are removed only while nothing references them
"""

from flask import Blueprint, current_app, request

from ..errors import PosError
from ..extensions import db
from ..money import ZERO
from ..services import catalog_service, customer_service
from ..validation import coerce_int
from .responses import actor_id, fail, ok, read_json, server_error

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


def _variant_specs(reader) -> list[dict]:
    specs = []
    for idx, row in enumerate(reader.items("variants", required=False)):
        line = reader.nested(row, f"variants[{idx}].")
        specs.append({
            "name": line.string("name", required=True, max_length=100),
            "sku": line.string("sku", required=True, max_length=60),
            "unit_id": line.integer("unit_id", minimum=1),
            "conversion_to_base": line.decimal("conversion_to_base", positive=True, default=1),
            "sell_price": line.decimal("sell_price", required=True, non_negative=True),
        })
    return specs


# =============================================================================
# UNITS
# =============================================================================

@catalog_bp.get("/units")
def list_units_route():
    try:
        return ok([unit.to_dict() for unit in catalog_service.list_units()])
    except Exception:
        current_app.logger.exception("Failed to list units")
        return server_error()


@catalog_bp.post("/units")
def create_unit_route():
    try:
        reader = read_json()
        name = reader.string("name", required=True, max_length=50)
        reader.raise_if_errors()

        unit = catalog_service.create_unit(name)
        return ok(unit.to_dict(), status=201)

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create unit")
        return server_error()


@catalog_bp.patch("/units/<int:unit_id>")
def update_unit_route(unit_id: int):
    try:
        reader = read_json()
        name = reader.string("name", required=True, max_length=50)
        reader.raise_if_errors()

        return ok(catalog_service.update_unit(unit_id, name).to_dict())

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update unit")
        return server_error()


@catalog_bp.delete("/units/<int:unit_id>")
def delete_unit_route(unit_id: int):
    try:
        catalog_service.delete_unit(unit_id)
        current_app.logger.info("Unit %s deleted", unit_id)
        return ok({"id": unit_id})
    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete unit")
        return server_error()


# =============================================================================
# CATEGORIES
# =============================================================================

@catalog_bp.get("/categories")
def list_categories_route():
    try:
        return ok([category.to_dict() for category in catalog_service.list_categories()])
    except Exception:
        current_app.logger.exception("Failed to list categories")
        return server_error()


@catalog_bp.post("/categories")
def create_category_route():
    try:
        reader = read_json()
        name = reader.string("name", required=True, max_length=100)
        reader.raise_if_errors()

        category = catalog_service.create_category(name)
        return ok(category.to_dict(), status=201)

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create category")
        return server_error()


@catalog_bp.patch("/categories/<int:category_id>")
def update_category_route(category_id: int):
    try:
        reader = read_json()
        name = reader.string("name", required=True, max_length=100)
        reader.raise_if_errors()

        return ok(catalog_service.update_category(category_id, name).to_dict())

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update category")
        return server_error()


@catalog_bp.delete("/categories/<int:category_id>")
def delete_category_route(category_id: int):
    try:
        catalog_service.delete_category(category_id)
        current_app.logger.info("Category %s deleted", category_id)
        return ok({"id": category_id})
    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete category")
        return server_error()


# =============================================================================
# PRODUCTS & VARIANTS
# =============================================================================

@catalog_bp.get("/products")
def list_products_route():
    """Query params: search, category_id, include_inactive (true/false)"""
    try:
        category_id = request.args.get("category_id")
        products = catalog_service.list_products(
            request.args.get("search"),
            include_inactive=request.args.get("include_inactive", "").lower() in ("1", "true", "yes"),
            category_id=coerce_int(category_id, "category_id") if category_id else None,
        )
        return ok([product.to_dict(include_variants=True) for product in products])
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to list products")
        return server_error()


@catalog_bp.post("/products")
def create_product_route():
    """
    Create a product with its variants.

    Request body:
    {
        "sku": "TEH-BOTOL",
        "name": "Teh Botol 350ml",
        "base_unit_id": 1,
        "category_id": 2,        (optional)
        "min_stock": "24",
        "initial_stock": "40",   (optional, base units, booked as an adjustment)
        "initial_cost": "4500",  (optional, average cost per base unit)
        "variants": [
            {"name": "Pcs", "sku": "TEH-BOTOL-PCS", "conversion_to_base": "1", "sell_price": "5000"},
            {"name": "Box 12", "sku": "TEH-BOTOL-BOX", "conversion_to_base": "12", "sell_price": "54000"}
        ]
    }
    """
    try:
        reader = read_json()
        sku = reader.string("sku", required=True, max_length=50)
        name = reader.string("name", required=True, max_length=150)
        base_unit_id = reader.integer("base_unit_id", required=True, minimum=1)
        category_id = reader.integer("category_id", minimum=1)
        min_stock = reader.decimal("min_stock", non_negative=True, default=ZERO)
        initial_stock = reader.decimal("initial_stock", non_negative=True, default=ZERO)
        initial_cost = reader.decimal("initial_cost", non_negative=True)
        user_id = actor_id(reader)
        variants = _variant_specs(reader)
        reader.raise_if_errors()

        product = catalog_service.create_product(
            sku=sku,
            name=name,
            base_unit_id=base_unit_id,
            min_stock=min_stock,
            variants=variants,
            initial_stock=initial_stock,
            initial_cost=initial_cost,
            category_id=category_id,
            user_id=user_id,
        )
        current_app.logger.info("Product %s created", product.sku)
        return ok(product.to_dict(include_variants=True), status=201)

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create product")
        return server_error()


@catalog_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return ok(catalog_service.get_product(product_id).to_dict(include_variants=True))
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to load product")
        return server_error()


@catalog_bp.route("/products/<int:product_id>", methods=["PUT", "PATCH"])
def update_product_route(product_id: int):
    """
    Change sku, name, min_stock or category.

    "category_id": null removes the category. Stock and costs only move
    through the stock ledger and are not accepted here.
    """
    try:
        reader = read_json()
        sku = reader.string("sku", max_length=50)
        name = reader.string("name", max_length=150)
        min_stock = reader.decimal("min_stock", non_negative=True)
        category_id = reader.integer("category_id", minimum=1)
        clear_category = "category_id" in reader.payload and reader.payload["category_id"] is None
        reader.raise_if_errors()

        product = catalog_service.update_product(
            product_id,
            sku=sku,
            name=name,
            min_stock=min_stock,
            category_id=category_id,
            clear_category=clear_category,
        )
        return ok(product.to_dict(include_variants=True))

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update product")
        return server_error()


@catalog_bp.delete("/products/<int:product_id>")
def delete_product_route(product_id: int):
    """Deactivate a product (its history stays)."""
    try:
        product = catalog_service.delete_product(product_id)
        current_app.logger.info("Product %s deactivated", product.sku)
        return ok(product.to_dict())
    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete product")
        return server_error()


@catalog_bp.post("/products/<int:product_id>/variants")
def add_variant_route(product_id: int):
    try:
        reader = read_json()
        data = {
            "name": reader.string("name", required=True, max_length=100),
            "sku": reader.string("sku", required=True, max_length=60),
            "unit_id": reader.integer("unit_id", minimum=1),
            "conversion_to_base": reader.decimal("conversion_to_base", positive=True, default=1),
            "sell_price": reader.decimal("sell_price", required=True, non_negative=True),
        }
        reader.raise_if_errors()

        variant = catalog_service.add_variant(product_id, data)
        return ok(variant.to_dict(), status=201)

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to add variant")
        return server_error()


@catalog_bp.patch("/variants/<int:variant_id>")
def update_variant_route(variant_id: int):
    """
    Change current price / conversion / name.

    Past sales keep their frozen price_at_sale and unit_factor_at_sale.
    """
    try:
        reader = read_json()
        sell_price = reader.decimal("sell_price", non_negative=True)
        conversion_to_base = reader.decimal("conversion_to_base", positive=True)
        name = reader.string("name", max_length=100)
        reader.raise_if_errors()

        variant = catalog_service.update_variant(
            variant_id,
            sell_price=sell_price,
            conversion_to_base=conversion_to_base,
            name=name,
        )
        return ok(variant.to_dict())

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update variant")
        return server_error()


@catalog_bp.post("/variants/<int:variant_id>/archive")
def archive_variant_route(variant_id: int):
    try:
        return ok(catalog_service.archive_variant(variant_id).to_dict())
    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to archive variant")
        return server_error()


# =============================================================================
# CUSTOMERS
# =============================================================================

@catalog_bp.get("/customers")
def list_customers_route():
    try:
        customers = customer_service.list_customers(
            request.args.get("search"),
            include_inactive=request.args.get("include_inactive", "").lower() in ("1", "true", "yes"),
        )
        return ok([customer.to_dict() for customer in customers])
    except Exception:
        current_app.logger.exception("Failed to list customers")
        return server_error()


@catalog_bp.post("/customers")
def create_customer_route():
    try:
        reader = read_json()
        name = reader.string("name", required=True, max_length=120)
        phone = reader.string("phone", max_length=30)
        address = reader.string("address", max_length=500)
        reader.raise_if_errors()

        customer = customer_service.create_customer(name=name, phone=phone, address=address)
        return ok(customer.to_dict(), status=201)

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create customer")
        return server_error()


@catalog_bp.get("/customers/<int:customer_id>")
def get_customer_route(customer_id: int):
    """Customer with credit balance and total active debt."""
    try:
        return ok(customer_service.customer_summary(customer_id))
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to load customer")
        return server_error()


@catalog_bp.patch("/customers/<int:customer_id>")
def update_customer_route(customer_id: int):
    try:
        reader = read_json()
        name = reader.string("name", max_length=120)
        phone = reader.string("phone", max_length=30)
        address = reader.string("address", max_length=500)
        reader.raise_if_errors()

        customer = customer_service.update_customer(customer_id, name=name, phone=phone, address=address)
        return ok(customer.to_dict())

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update customer")
        return server_error()


@catalog_bp.delete("/customers/<int:customer_id>")
def delete_customer_route(customer_id: int):
    """Deactivate a customer; refused while they still owe money."""
    try:
        customer = customer_service.delete_customer(customer_id)
        current_app.logger.info("Customer %s deactivated", customer.id)
        return ok(customer.to_dict())
    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete customer")
        return server_error()


@catalog_bp.get("/customers/<int:customer_id>/balance-mutations")
def balance_mutations_route(customer_id: int):
    try:
        mutations = customer_service.list_balance_mutations(customer_id)
        return ok([m.to_dict() for m in mutations])
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to list balance mutations")
        return server_error()


# =============================================================================
# SUPPLIERS
# =============================================================================

@catalog_bp.get("/suppliers")
def list_suppliers_route():
    try:
        return ok([supplier.to_dict() for supplier in catalog_service.list_suppliers()])
    except Exception:
        current_app.logger.exception("Failed to list suppliers")
        return server_error()


@catalog_bp.post("/suppliers")
def create_supplier_route():
    try:
        reader = read_json()
        name = reader.string("name", required=True, max_length=120)
        phone = reader.string("phone", max_length=30)
        address = reader.string("address", max_length=500)
        reader.raise_if_errors()

        supplier = catalog_service.create_supplier(name=name, phone=phone, address=address)
        return ok(supplier.to_dict(), status=201)

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create supplier")
        return server_error()


@catalog_bp.get("/suppliers/<int:supplier_id>")
def get_supplier_route(supplier_id: int):
    try:
        return ok(catalog_service.get_supplier(supplier_id).to_dict())
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to load supplier")
        return server_error()


@catalog_bp.patch("/suppliers/<int:supplier_id>")
def update_supplier_route(supplier_id: int):
    try:
        reader = read_json()
        name = reader.string("name", max_length=120)
        phone = reader.string("phone", max_length=30)
        address = reader.string("address", max_length=500)
        reader.raise_if_errors()

        supplier = catalog_service.update_supplier(supplier_id, name=name, phone=phone, address=address)
        return ok(supplier.to_dict())

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update supplier")
        return server_error()


@catalog_bp.delete("/suppliers/<int:supplier_id>")
def delete_supplier_route(supplier_id: int):
    try:
        catalog_service.delete_supplier(supplier_id)
        current_app.logger.info("Supplier %s deleted", supplier_id)
        return ok({"id": supplier_id})
    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete supplier")
        return server_error()
