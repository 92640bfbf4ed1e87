# Overview: Flask API routes for customer returns and exchanges; parses input and returns JSON responses.

"""
Customer Return API Routes

WHY: Let the cashier look up an invoice, see what can still be returned and
commit a refund, credit note or exchange in one request.

DESIGN:
- POST /lookup returns the draft (step item_selection) and eligible lines
- POST / commits the whole return; every rule is re-checked server side
- POST /<id>/cancel reverses a committed return (no undo afterwards)
"""

from flask import Blueprint, current_app, request

from ..errors import PosError, ValidationError
from ..extensions import db
from ..services import return_service
from ..services.return_service import COMPENSATION_TYPES, SURPLUS_STRATEGIES
from ..time_utils import parse_date_range
from ..validation import coerce_int
from .responses import actor_id, fail, ok, pagination, read_json, server_error

returns_bp = Blueprint("customer_returns", __name__, url_prefix="/api/customer-returns")


@returns_bp.post("/lookup")
def lookup_route():
    """
    Step 1: resolve an invoice.

    Request body: {"invoice_number": "INV-0000001"}

    Returns:
        200: {"draft": {...}, "lines": [{sale_item_id, max_returnable, ...}]}
        404: unknown invoice
        409: sale still has an outstanding debt
    """
    try:
        reader = read_json()
        invoice_number = reader.string("invoice_number", required=True, max_length=64)
        reader.raise_if_errors()

        draft, lines = return_service.begin_return(invoice_number)
        return ok({"draft": draft.to_dict(), "lines": lines})

    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to look up invoice for return")
        return server_error()


@returns_bp.post("")
def create_return_route():
    """
    Commit a return.

    Request body:
    {
        "invoice_number": "INV-0000001",
        "items": [{"sale_item_id": 5, "qty": "2", "returned_to_stock": true, "reason": "Damaged"}],
        "compensation_type": "refund" | "credit_note" | "exchange",
        "exchange_items": [{"product_id": 1, "variant_id": 3, "qty": "1"}],  (exchange only)
        "surplus_strategy": "cash" | "credit_balance",                       (exchange only)
        "customer_id": 7,   (optional, assigns a customer to a guest sale)
        "reason": "...",    (optional)
        "user_id": 1        (optional)
    }
    """
    try:
        reader = read_json()
        invoice_number = reader.string("invoice_number", required=True, max_length=64)
        compensation_type = reader.choice("compensation_type", COMPENSATION_TYPES, required=True)
        surplus_strategy = reader.choice("surplus_strategy", SURPLUS_STRATEGIES)
        customer_id = reader.integer("customer_id", minimum=1)
        reason = reader.string("reason", max_length=500)
        user_id = actor_id(reader)

        items = []
        for idx, row in enumerate(reader.items("items")):
            line = reader.nested(row, f"items[{idx}].")
            items.append({
                "sale_item_id": line.integer("sale_item_id", required=True, minimum=1),
                "qty": line.decimal("qty", required=True, positive=True),
                "returned_to_stock": line.boolean("returned_to_stock", default=True),
                "reason": line.string("reason", max_length=500),
            })

        exchange_items = []
        if compensation_type == "exchange":
            for idx, row in enumerate(reader.items("exchange_items")):
                line = reader.nested(row, f"exchange_items[{idx}].")
                exchange_items.append({
                    "product_id": line.integer("product_id", required=True, minimum=1),
                    "variant_id": line.integer("variant_id", required=True, minimum=1),
                    "qty": line.decimal("qty", required=True, positive=True),
                })
        reader.raise_if_errors()

        customer_return = return_service.create_return(
            invoice_number=invoice_number,
            items=items,
            compensation_type=compensation_type,
            exchange_items=exchange_items,
            surplus_strategy=surplus_strategy,
            customer_id=customer_id,
            reason=reason,
            user_id=user_id,
        )
        current_app.logger.info(
            "Return %s committed (%s, refund=%s)",
            customer_return.return_number,
            customer_return.compensation_type,
            customer_return.total_refund,
        )
        return ok(customer_return.to_dict(include_items=True), status=201)

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create return")
        return server_error()


@returns_bp.get("")
def list_returns_route():
    try:
        page, per_page = pagination()
        try:
            start, end = parse_date_range(request.args.get("start"), request.args.get("end"))
        except ValueError:
            raise ValidationError("start/end must be ISO-8601 dates with end >= start")
        customer_id = request.args.get("customer_id")

        rows, total = return_service.list_returns(
            start=start,
            end=end,
            status=request.args.get("status") or None,
            customer_id=coerce_int(customer_id, "customer_id") if customer_id else None,
            page=page,
            per_page=per_page,
        )
        return ok(
            [row.to_dict() for row in rows],
            pagination={"page": page, "per_page": per_page, "total": total},
        )

    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return server_error()


@returns_bp.get("/<int:return_id>")
def get_return_route(return_id: int):
    try:
        customer_return = return_service.get_return(return_id)
        return ok(customer_return.to_dict(include_items=True))
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to load return")
        return server_error()


@returns_bp.post("/<int:return_id>/cancel")
def cancel_return_route(return_id: int):
    try:
        reader = read_json()
        user_id = actor_id(reader)
        reader.raise_if_errors()

        customer_return = return_service.cancel_return(return_id, user_id=user_id)
        current_app.logger.info("Return %s cancelled by user %s", customer_return.return_number, user_id)
        return ok(customer_return.to_dict(include_items=True))

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel return")
        return server_error()
