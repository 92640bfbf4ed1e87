# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""
Sales API routes

DESIGN:
- POST /api/sales runs the whole checkout in one transaction
- PUT /api/sales/<id> replaces the lines of a plain paid sale
- POST /api/sales/<id>/cancel voids a sale (stock, balance, debt, returns)
- Queries by id, invoice number, or filtered/paginated list
"""

from flask import Blueprint, current_app, request

from ..errors import PosError, ValidationError
from ..extensions import db
from ..money import ZERO
from ..services import sales_service
from ..time_utils import parse_date_range
from ..validation import PayloadReader, coerce_int
from .responses import actor_id, fail, ok, pagination, read_json, server_error

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _read_cart(reader: PayloadReader) -> list[dict]:
    items = []
    for idx, row in enumerate(reader.items("items")):
        line = reader.nested(row, f"items[{idx}].")
        items.append({
            "product_id": line.integer("product_id", required=True, minimum=1),
            "variant_id": line.integer("variant_id", required=True, minimum=1),
            "qty": line.decimal("qty", required=True, positive=True),
        })
    return items


@sales_bp.post("")
def create_sale_route():
    """
    Check out a cart.

    Request body:
    {
        "customer_id": 3,              (optional, null = guest)
        "items": [{"product_id": 1, "variant_id": 2, "qty": "3"}],
        "total_paid": "50000",
        "total_balance_used": "0",     (optional)
        "should_pay_old_debt": false,  (optional)
        "is_debt": false,              (optional)
        "user_id": 1                   (optional)
    }

    Returns:
        201: committed sale with items, debt and old-debt payments
        400: validation / balance errors
        404: unknown product, variant or customer
        409: insufficient stock (details.items lists every short line)
    """
    try:
        reader = read_json()
        customer_id = reader.integer("customer_id", minimum=1)
        total_paid = reader.decimal("total_paid", required=True, non_negative=True)
        total_balance_used = reader.decimal("total_balance_used", non_negative=True, default=ZERO)
        should_pay_old_debt = reader.boolean("should_pay_old_debt")
        is_debt = reader.boolean("is_debt")
        user_id = actor_id(reader)

        items = _read_cart(reader)
        reader.raise_if_errors()

        outcome = sales_service.create_sale(
            items=items,
            total_paid=total_paid,
            customer_id=customer_id,
            total_balance_used=total_balance_used,
            should_pay_old_debt=should_pay_old_debt,
            is_debt=is_debt,
            user_id=user_id,
        )
        current_app.logger.info(
            "Sale %s committed: total=%s status=%s",
            outcome.sale.invoice_number,
            outcome.sale.total_price,
            outcome.sale.status,
        )
        return ok(outcome.to_dict(), status=201)

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create sale")
        return server_error()


@sales_bp.get("")
def list_sales_route():
    """
    List sales, newest first.

    Query params: start, end (ISO-8601), status, customer_id, page, per_page
    """
    try:
        page, per_page = pagination()
        try:
            start, end = parse_date_range(request.args.get("start"), request.args.get("end"))
        except ValueError:
            raise ValidationError("start/end must be ISO-8601 dates with end >= start")
        customer_id = request.args.get("customer_id")

        rows, total = sales_service.list_sales(
            start=start,
            end=end,
            status=request.args.get("status") or None,
            customer_id=coerce_int(customer_id, "customer_id") if customer_id else None,
            page=page,
            per_page=per_page,
        )
        return ok(
            [sale.to_dict() for sale in rows],
            pagination={"page": page, "per_page": per_page, "total": total},
        )

    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return server_error()


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return ok(sale.to_dict(include_items=True))
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return server_error()


@sales_bp.get("/invoice/<invoice_number>")
def get_sale_by_invoice_route(invoice_number: str):
    try:
        sale = sales_service.get_sale_by_invoice(invoice_number)
        return ok(sale.to_dict(include_items=True))
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to load sale by invoice")
        return server_error()


@sales_bp.post("/<int:sale_id>/cancel")
def cancel_sale_route(sale_id: int):
    """
    Void a sale.

    Request body:
    {
        "reason": "Entered twice",  (optional)
        "user_id": 1                (optional)
    }
    """
    try:
        reader: PayloadReader = read_json()
        user_id = actor_id(reader)
        reason = reader.string("reason", max_length=500)
        reader.raise_if_errors()

        sale = sales_service.cancel_sale(sale_id, user_id=user_id, reason=reason)
        current_app.logger.info("Sale %s cancelled by user %s", sale.invoice_number, user_id)
        return ok(sale.to_dict(include_items=True))

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel sale")
        return server_error()


@sales_bp.put("/<int:sale_id>")
def edit_sale_route(sale_id: int):
    """
    Replace the lines of a completed, fully paid sale.

    Request body:
    {
        "items": [{"product_id": 1, "variant_id": 2, "qty": "3"}],
        "total_paid": "50000",
        "user_id": 1                   (optional)
    }

    Sales with a debt, used credit balance, returns or old-debt payments
    cannot be edited; cancel them and check out again.

    Returns:
        200: edited sale with its new items
        400: validation errors, sale not editable, under-payment
        404: unknown sale, product or variant
        409: insufficient stock
    """
    try:
        reader = read_json()
        total_paid = reader.decimal("total_paid", required=True, non_negative=True)
        user_id = actor_id(reader)
        items = _read_cart(reader)
        reader.raise_if_errors()

        outcome = sales_service.edit_sale(sale_id, items=items, total_paid=total_paid, user_id=user_id)
        current_app.logger.info(
            "Sale %s edited: total=%s",
            outcome.sale.invoice_number,
            outcome.sale.total_price,
        )
        return ok(outcome.sale.to_dict(include_items=True))

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to edit sale")
        return server_error()
