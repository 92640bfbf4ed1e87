# Overview: Flask API routes for purchase receiving; parses input and returns JSON responses.

from flask import Blueprint, current_app, request

from ..errors import PosError
from ..extensions import db
from ..services import purchase_service
from ..validation import PayloadReader, coerce_int
from .responses import actor_id, fail, ok, read_json, server_error

purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


def _read_lines(reader: PayloadReader) -> list[dict]:
    items = []
    for idx, row in enumerate(reader.items("items")):
        line = reader.nested(row, f"items[{idx}].")
        items.append({
            "product_id": line.integer("product_id", required=True, minimum=1),
            "variant_id": line.integer("variant_id", required=True, minimum=1),
            "qty": line.decimal("qty", required=True, positive=True),
            "price": line.decimal("price", required=True, non_negative=True),
        })
    return items


@purchases_bp.post("")
def create_purchase_route():
    """
    Receive goods from a supplier.

    Request body:
    {
        "supplier_id": 2,  (optional)
        "items": [{"product_id": 1, "variant_id": 2, "qty": "10", "price": "54000"}],
        "user_id": 1       (optional)
    }

    price is per variant unit; stock and average cost move in base units.
    """
    try:
        reader = read_json()
        supplier_id = reader.integer("supplier_id", minimum=1)
        user_id = actor_id(reader)

        items = _read_lines(reader)
        reader.raise_if_errors()

        order = purchase_service.create_purchase(items=items, supplier_id=supplier_id, user_id=user_id)
        current_app.logger.info("Purchase %s received: total=%s", order.order_number, order.total)
        return ok(order.to_dict(include_items=True), status=201)

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create purchase")
        return server_error()


@purchases_bp.get("")
def list_purchases_route():
    try:
        supplier_id = request.args.get("supplier_id")
        orders = purchase_service.list_purchases(
            supplier_id=coerce_int(supplier_id, "supplier_id") if supplier_id else None,
            status=request.args.get("status") or None,
        )
        return ok([order.to_dict() for order in orders])
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to list purchases")
        return server_error()


@purchases_bp.get("/<int:purchase_id>")
def get_purchase_route(purchase_id: int):
    try:
        return ok(purchase_service.get_purchase(purchase_id).to_dict(include_items=True))
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to load purchase")
        return server_error()


@purchases_bp.put("/<int:purchase_id>")
def edit_purchase_route(purchase_id: int):
    """
    Replace the lines of a received purchase.

    Same body as POST /api/purchases. The old lines are taken back out of
    stock first, so stock must still cover them.
    """
    try:
        reader = read_json()
        supplier_id = reader.integer("supplier_id", minimum=1)
        user_id = actor_id(reader)
        items = _read_lines(reader)
        reader.raise_if_errors()

        order = purchase_service.edit_purchase(purchase_id, items=items, supplier_id=supplier_id, user_id=user_id)
        current_app.logger.info("Purchase %s edited: total=%s", order.order_number, order.total)
        return ok(order.to_dict(include_items=True))

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to edit purchase")
        return server_error()


@purchases_bp.post("/<int:purchase_id>/cancel")
def cancel_purchase_route(purchase_id: int):
    try:
        reader = read_json()
        user_id = actor_id(reader)
        reader.raise_if_errors()

        order = purchase_service.cancel_purchase(purchase_id, user_id=user_id)
        current_app.logger.info("Purchase %s cancelled by user %s", order.order_number, user_id)
        return ok(order.to_dict(include_items=True))

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel purchase")
        return server_error()
