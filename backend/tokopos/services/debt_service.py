# Overview: Service-layer operations for the debt ledger; encapsulates business logic and database work.

"""
Debt ledger rules

- One Debt per under-paid sale. remaining_amount never increases.
- Status follows remaining_amount:
    unpaid   remaining == original
    partial  0 < remaining < original
    paid     remaining == 0   (is_active = False, sale debt -> completed)
- cancelled is only set by sale cancellation (is_active = False).
- A payment larger than remaining_amount is rejected, never truncated.
- Several active debts are settled oldest first (created_at, then id).
- A payment that can pay off a debt locks the debt's sale before the debt
  (see the lock order in concurrency.py).
"""

from __future__ import annotations

from decimal import Decimal

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Debt, DebtPayment, Sale
from ..money import ZERO, q_money, to_decimal
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_atomically

DEBT_UNPAID = "unpaid"
DEBT_PARTIAL = "partial"
DEBT_PAID = "paid"
DEBT_CANCELLED = "cancelled"

OPEN_DEBT_STATUSES = (DEBT_UNPAID, DEBT_PARTIAL)


def _get_debt(debt_id: int, *, lock: bool = False) -> Debt:
    query = db.session.query(Debt).filter_by(id=debt_id)
    if lock:
        query = lock_for_update(query)
    debt = query.first()
    if debt is None:
        raise NotFound("Debt not found", details={"debt_id": debt_id})
    return debt


def _lock_sales(sale_ids) -> None:
    ids = sorted(set(sale_ids))
    if ids:
        lock_for_update(db.session.query(Sale).filter(Sale.id.in_(ids))).order_by(Sale.id.asc()).all()


def _lock_debt_for_payment(debt_id: int) -> Debt:
    """Sale first, then the debt: paying off a debt also updates its sale."""
    debt = _get_debt(debt_id)
    _lock_sales([debt.sale_id])
    return _get_debt(debt_id, lock=True)


def lock_open_debt_sales(customer_id: int) -> None:
    """
    Lock the sales behind the customer's open debts, ahead of any product,
    customer or debt row. Needed before _settle_oldest_first.
    """
    rows = (
        db.session.query(Debt.sale_id)
        .filter(
            Debt.customer_id == customer_id,
            Debt.is_active.is_(True),
            Debt.status.in_(OPEN_DEBT_STATUSES),
        )
        .all()
    )
    _lock_sales(sale_id for (sale_id,) in rows)


def _status_for(debt: Debt) -> str:
    remaining = q_money(debt.remaining_amount)
    if remaining == ZERO:
        return DEBT_PAID
    if remaining < q_money(debt.original_amount):
        return DEBT_PARTIAL
    return DEBT_UNPAID


def _apply_payment(
    debt: Debt,
    amount,
    *,
    user_id: int | None = None,
    note: str | None = None,
    paid_at=None,
    source_sale_id: int | None = None,
) -> DebtPayment:
    """Apply a payment to a (locked) debt inside the caller's transaction."""
    amount = q_money(amount)
    if amount <= ZERO:
        raise ValidationError("Payment amount must be greater than 0", errors={"amount": ["must be greater than 0"]})
    if not debt.is_active or debt.status not in OPEN_DEBT_STATUSES:
        raise ValidationError(f"Debt is already {debt.status}", details={"debt_id": debt.id})

    remaining = q_money(debt.remaining_amount)
    if amount > remaining:
        raise ValidationError(
            "Payment exceeds remaining debt",
            details={"debt_id": debt.id, "remaining_amount": str(remaining), "amount": str(amount)},
        )

    payment = DebtPayment(
        debt_id=debt.id,
        amount_paid=amount,
        paid_at=paid_at or utcnow(),
        note=note,
        source_sale_id=source_sale_id,
        user_id=user_id,
    )
    db.session.add(payment)

    debt.remaining_amount = remaining - amount
    debt.status = _status_for(debt)
    if debt.status == DEBT_PAID:
        debt.is_active = False
        # Sale no longer owes anything
        if debt.sale is not None and debt.sale.status == "debt":
            debt.sale.status = "completed"

    db.session.flush()
    return payment


def _active_debts_oldest_first(customer_id: int, *, lock: bool = False) -> list[Debt]:
    query = (
        db.session.query(Debt)
        .filter(
            Debt.customer_id == customer_id,
            Debt.is_active.is_(True),
            Debt.status.in_(OPEN_DEBT_STATUSES),
        )
        .order_by(Debt.created_at.asc(), Debt.id.asc())
    )
    if lock:
        query = lock_for_update(query)
    return query.all()


def _settle_oldest_first(
    customer_id: int,
    amount,
    *,
    user_id: int | None = None,
    note: str | None = None,
    source_sale_id: int | None = None,
    exclude_debt_ids: tuple[int, ...] = (),
) -> tuple[Decimal, list[DebtPayment]]:
    """
    Spend `amount` on the customer's active debts, oldest first.

    Each debt takes min(left, remaining). Returns (unused amount, payments).
    """
    left = q_money(amount)
    payments: list[DebtPayment] = []
    for debt in _active_debts_oldest_first(customer_id, lock=True):
        if left <= ZERO:
            break
        if debt.id in exclude_debt_ids:
            continue
        pay = min(left, q_money(debt.remaining_amount))
        if pay <= ZERO:
            continue
        payments.append(
            _apply_payment(debt, pay, user_id=user_id, note=note, source_sale_id=source_sale_id)
        )
        left -= pay
    return left, payments


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def apply_payment(
    debt_id: int,
    amount,
    *,
    user_id: int | None = None,
    note: str | None = None,
    paid_at=None,
) -> DebtPayment:
    """
    Record a payment against one debt.

    Raises:
        NotFound: unknown debt
        ValidationError: amount <= 0, amount > remaining, debt not open
    """
    def _op() -> DebtPayment:
        debt = _lock_debt_for_payment(debt_id)
        return _apply_payment(debt, to_decimal(amount), user_id=user_id, note=note, paid_at=paid_at)

    return run_atomically(_op)


def mark_as_paid(debt_id: int, *, user_id: int | None = None, note: str | None = None) -> DebtPayment:
    """Shortcut used to unblock returns: pay the whole remaining amount."""
    def _op() -> DebtPayment:
        debt = _lock_debt_for_payment(debt_id)
        return _apply_payment(
            debt,
            debt.remaining_amount,
            user_id=user_id,
            note=note or "Marked as paid",
        )

    return run_atomically(_op)


def settle_oldest_first(
    customer_id: int,
    amount,
    *,
    user_id: int | None = None,
    note: str | None = None,
) -> dict:
    """Pay a lump sum across the customer's active debts, oldest first."""
    amount = to_decimal(amount)
    if amount <= ZERO:
        raise ValidationError("Payment amount must be greater than 0", errors={"amount": ["must be greater than 0"]})

    def _op() -> dict:
        lock_open_debt_sales(customer_id)
        unused, payments = _settle_oldest_first(customer_id, amount, user_id=user_id, note=note)
        return {
            "customer_id": customer_id,
            "amount": q_money(amount),
            "unused_amount": unused,
            "payments": [p.to_dict() for p in payments],
        }

    return run_atomically(_op)


def get_debt(debt_id: int) -> Debt:
    return _get_debt(debt_id)


def get_customer_total_debt(customer_id: int) -> Decimal:
    """Σ remaining_amount over the customer's active debts."""
    total = (
        db.session.query(db.func.coalesce(db.func.sum(Debt.remaining_amount), 0))
        .filter(
            Debt.customer_id == customer_id,
            Debt.is_active.is_(True),
            Debt.status.in_(OPEN_DEBT_STATUSES),
        )
        .scalar()
    )
    return q_money(total)


def list_debts(
    *,
    customer_id: int | None = None,
    status: str | None = None,
    active_only: bool = False,
) -> list[Debt]:
    query = db.session.query(Debt)
    if customer_id is not None:
        query = query.filter(Debt.customer_id == customer_id)
    if status is not None:
        query = query.filter(Debt.status == status)
    if active_only:
        query = query.filter(Debt.is_active.is_(True))
    return query.order_by(Debt.created_at.asc(), Debt.id.asc()).all()
