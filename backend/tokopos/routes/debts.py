# Overview: Flask API routes for the debt ledger; parses input and returns JSON responses.

from flask import Blueprint, current_app, request

from ..errors import PosError
from ..extensions import db
from ..services import debt_service
from ..validation import coerce_int
from .responses import actor_id, fail, ok, read_json, server_error

debts_bp = Blueprint("debts", __name__, url_prefix="/api/debts")


@debts_bp.get("")
def list_debts_route():
    """Query params: customer_id, status, active (true/false)."""
    try:
        customer_id = request.args.get("customer_id")
        debts = debt_service.list_debts(
            customer_id=coerce_int(customer_id, "customer_id") if customer_id else None,
            status=request.args.get("status") or None,
            active_only=request.args.get("active", "").lower() in ("1", "true", "yes"),
        )
        return ok([debt.to_dict() for debt in debts])
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to list debts")
        return server_error()


@debts_bp.get("/<int:debt_id>")
def get_debt_route(debt_id: int):
    try:
        return ok(debt_service.get_debt(debt_id).to_dict(include_payments=True))
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to load debt")
        return server_error()


@debts_bp.post("/<int:debt_id>/payment")
def pay_debt_route(debt_id: int):
    """
    Record a (partial) payment.

    Request body:
    {
        "amount": "20000",
        "note": "Paid at counter",  (optional)
        "paid_at": "2025-01-01T10:00:00Z",  (optional)
        "user_id": 1  (optional)
    }
    """
    try:
        reader = read_json()
        amount = reader.decimal("amount", required=True, positive=True)
        note = reader.string("note", max_length=500)
        paid_at = reader.datetime("paid_at")
        user_id = actor_id(reader)
        reader.raise_if_errors()

        payment = debt_service.apply_payment(debt_id, amount, user_id=user_id, note=note, paid_at=paid_at)
        debt = debt_service.get_debt(debt_id)
        current_app.logger.info("Debt %s paid %s (remaining %s)", debt_id, payment.amount_paid, debt.remaining_amount)
        return ok({"payment": payment.to_dict(), "debt": debt.to_dict()}, status=201)

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record debt payment")
        return server_error()


@debts_bp.post("/<int:debt_id>/mark-paid")
def mark_paid_route(debt_id: int):
    try:
        reader = read_json()
        note = reader.string("note", max_length=500)
        user_id = actor_id(reader)
        reader.raise_if_errors()

        payment = debt_service.mark_as_paid(debt_id, user_id=user_id, note=note)
        debt = debt_service.get_debt(debt_id)
        current_app.logger.info("Debt %s marked as paid", debt_id)
        return ok({"payment": payment.to_dict(), "debt": debt.to_dict()})

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to mark debt as paid")
        return server_error()


@debts_bp.post("/settle")
def settle_route():
    """
    Pay a lump sum across a customer's active debts, oldest first.

    Request body: {"customer_id": 3, "amount": "75000", "note": "...", "user_id": 1}
    """
    try:
        reader = read_json()
        customer_id = reader.integer("customer_id", required=True, minimum=1)
        amount = reader.decimal("amount", required=True, positive=True)
        note = reader.string("note", max_length=500)
        user_id = actor_id(reader)
        reader.raise_if_errors()

        result = debt_service.settle_oldest_first(customer_id, amount, user_id=user_id, note=note)
        current_app.logger.info("Customer %s settled %s across debts", customer_id, amount)
        return ok(result, status=201)

    except PosError as exc:
        return fail(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to settle debts")
        return server_error()
