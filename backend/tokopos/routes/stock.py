# Overview: Flask API routes for stock corrections and ledger queries; parses input and returns JSON responses.

"""
Stock API routes

WHY: Stock only moves through the ledger. These endpoints expose the
non-document movements (stock opname, waste, supplier returns) and the
audit views over the ledger itself.
"""

from flask import Blueprint, current_app, request

from ..errors import PosError, ValidationError
from ..extensions import db
from ..models.inventory import MUTATION_TYPES
from ..services import inventory_service
from ..services.stock_ledger_service import list_mutations
from ..time_utils import parse_date_range
from ..validation import coerce_int
from .responses import actor_id, fail, ok, read_json, server_error

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.post("/adjustments")
def adjust_stock_route():
    """
    Stock opname: set a product's stock to the counted quantity.

    Request body:
    {
        "product_id": 1,
        "actual_stock": "36",   (base units)
        "unit_cost": "4500",    (optional, recomputes average cost on a surplus)
        "reason": "Monthly count",
        "user_id": 1
    }
    """
    try:
        reader = read_json()
        product_id = reader.integer("product_id", required=True, minimum=1)
        actual_stock = reader.decimal("actual_stock", required=True, non_negative=True)
        unit_cost = reader.decimal("unit_cost", non_negative=True)
        reason = reader.string("reason", max_length=255)
        user_id = actor_id(reader)
        reader.raise_if_errors()

        result = inventory_service.adjust_stock(
            product_id,
            actual_stock=actual_stock,
            reason=reason,
            user_id=user_id,
            unit_cost=unit_cost,
        )
        if result["changed"]:
            current_app.logger.info("Stock of product %s adjusted by %s", product_id, result["difference"])
        return ok(result, status=201 if result["changed"] else 200)

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust stock")
        return server_error()


@stock_bp.post("/waste")
def record_waste_route():
    """Request body: {"product_id", "variant_id", "qty", "reason", "user_id"}"""
    try:
        reader = read_json()
        product_id = reader.integer("product_id", required=True, minimum=1)
        variant_id = reader.integer("variant_id", required=True, minimum=1)
        qty = reader.decimal("qty", required=True, positive=True)
        reason = reader.string("reason", max_length=255)
        user_id = actor_id(reader)
        reader.raise_if_errors()

        result = inventory_service.record_waste(product_id, variant_id, qty=qty, reason=reason, user_id=user_id)
        current_app.logger.info("Waste recorded for product %s: %s", product_id, qty)
        return ok(result, status=201)

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record waste")
        return server_error()


@stock_bp.post("/supplier-returns")
def supplier_return_route():
    """Request body: {"supplier_id", "product_id", "variant_id", "qty", "reason", "user_id"}"""
    try:
        reader = read_json()
        supplier_id = reader.integer("supplier_id", required=True, minimum=1)
        product_id = reader.integer("product_id", required=True, minimum=1)
        variant_id = reader.integer("variant_id", required=True, minimum=1)
        qty = reader.decimal("qty", required=True, positive=True)
        reason = reader.string("reason", max_length=500)
        user_id = actor_id(reader)
        reader.raise_if_errors()

        supplier_return = inventory_service.return_to_supplier(
            supplier_id, product_id, variant_id, qty=qty, reason=reason, user_id=user_id
        )
        current_app.logger.info("Supplier return %s recorded", supplier_return.id)
        return ok(supplier_return.to_dict(), status=201)

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record supplier return")
        return server_error()


@stock_bp.get("/mutations")
def list_mutations_route():
    """Query params: product_id, variant_id, type, reference, start, end, limit"""
    try:
        args = request.args
        mutation_type = args.get("type") or None
        if mutation_type is not None and mutation_type not in MUTATION_TYPES:
            raise ValidationError(f"Unknown mutation type: {mutation_type}")
        try:
            start, end = parse_date_range(args.get("start"), args.get("end"))
        except ValueError:
            raise ValidationError("start/end must be ISO-8601 dates with end >= start")

        mutations = list_mutations(
            product_id=coerce_int(args["product_id"], "product_id") if args.get("product_id") else None,
            variant_id=coerce_int(args["variant_id"], "variant_id") if args.get("variant_id") else None,
            mutation_type=mutation_type,
            reference=args.get("reference") or None,
            start=start,
            end=end,
            limit=coerce_int(args["limit"], "limit") if args.get("limit") else None,
        )
        return ok([m.to_dict() for m in mutations])

    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to list stock mutations")
        return server_error()


@stock_bp.get("/low")
def low_stock_route():
    try:
        return ok([product.to_dict() for product in inventory_service.list_low_stock()])
    except Exception:
        current_app.logger.exception("Failed to list low stock")
        return server_error()


@stock_bp.get("/verify")
def verify_route():
    """Stock counter vs ledger sum for every product."""
    try:
        rows = inventory_service.verify_stock_conservation()
        mismatched = [row for row in rows if not row["ok"]]
        if mismatched:
            current_app.logger.error("Stock ledger mismatch on %d product(s)", len(mismatched))
        return ok(rows, all_ok=not mismatched)
    except Exception:
        current_app.logger.exception("Failed to verify stock ledger")
        return server_error()


@stock_bp.get("/<int:product_id>")
def stock_summary_route(product_id: int):
    try:
        return ok(inventory_service.get_stock_summary(product_id))
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to load stock summary")
        return server_error()
