# Overview: Service-layer operations for customers and their credit balance.

from __future__ import annotations

from sqlalchemy import or_

from ..errors import BalanceExceeded, ConflictError, NotFound, ValidationError
from ..extensions import db
from ..models import Customer, CustomerBalanceMutation
from ..money import ZERO, q_money
from .concurrency import lock_for_update, run_atomically

# Balance mutation types
BALANCE_SALE_PAYMENT = "sale_payment"
BALANCE_SALE_CANCEL = "sale_cancel"
BALANCE_CREDIT_NOTE = "credit_note"
BALANCE_EXCHANGE_SURPLUS = "exchange_surplus"
BALANCE_RETURN_CANCEL = "return_cancel"
BALANCE_EXCHANGE_SURPLUS_CANCEL = "exchange_surplus_cancel"


def get_customer(customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None:
        raise NotFound("Customer not found", details={"customer_id": customer_id})
    return customer


def change_credit_balance(
    customer: Customer,
    amount,
    *,
    mutation_type: str,
    reference: str | None = None,
    user_id: int | None = None,
    clamp_at_zero: bool = False,
) -> CustomerBalanceMutation | None:
    """
    Apply a signed change to customer.credit_balance and log it.

    Negative amounts that would take the balance below zero raise
    BalanceExceeded, unless clamp_at_zero is set (reversals of credit the
    customer may already have spent): then only what is left is taken.

    Returns None when the effective change is zero (nothing is logged).
    """
    amount = q_money(amount)
    before = q_money(customer.credit_balance)
    after = before + amount

    if after < ZERO:
        if not clamp_at_zero:
            raise BalanceExceeded(
                "Insufficient credit balance",
                details={"customer_id": customer.id, "available": str(before), "requested": str(-amount)},
            )
        amount = -before
        after = ZERO

    if amount == ZERO:
        return None

    customer.credit_balance = after
    mutation = CustomerBalanceMutation(
        customer_id=customer.id,
        type=mutation_type,
        amount=amount,
        balance_before=before,
        balance_after=after,
        reference=reference,
        user_id=user_id,
    )
    db.session.add(mutation)
    db.session.flush()
    return mutation


def create_customer(*, name: str, phone: str | None = None, address: str | None = None) -> Customer:
    if not name or not name.strip():
        raise ValidationError("Customer name is required", errors={"name": ["is required"]})

    def _op() -> Customer:
        customer = Customer(name=name.strip(), phone=phone, address=address, credit_balance=ZERO)
        db.session.add(customer)
        db.session.flush()
        return customer

    return run_atomically(_op)


def update_customer(customer_id: int, *, name: str | None = None, phone: str | None = None, address: str | None = None) -> Customer:
    def _op() -> Customer:
        customer = get_customer(customer_id)
        if name is not None:
            if not name.strip():
                raise ValidationError("Customer name cannot be blank", errors={"name": ["cannot be blank"]})
            customer.name = name.strip()
        if phone is not None:
            customer.phone = phone
        if address is not None:
            customer.address = address
        return customer

    return run_atomically(_op)


def delete_customer(customer_id: int) -> Customer:
    """
    Deactivate a customer. History (sales, returns, balance log) keeps
    pointing at the row, so it is never removed.

    Raises:
        ConflictError: the customer still has open debts
    """
    from .debt_service import get_customer_total_debt

    def _op() -> Customer:
        customer = get_customer(customer_id, lock=True)
        owed = get_customer_total_debt(customer.id)
        if owed > ZERO:
            raise ConflictError(
                "Customer still has open debts",
                details={"customer_id": customer.id, "total_debt": owed},
            )
        customer.is_active = False
        return customer

    return run_atomically(_op)


def list_customers(search: str | None = None, *, include_inactive: bool = False) -> list[Customer]:
    query = db.session.query(Customer)
    if not include_inactive:
        query = query.filter(Customer.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Customer.name.ilike(like), Customer.phone.ilike(like)))
    return query.order_by(Customer.name.asc(), Customer.id.asc()).all()


def list_balance_mutations(customer_id: int) -> list[CustomerBalanceMutation]:
    get_customer(customer_id)
    return (
        db.session.query(CustomerBalanceMutation)
        .filter_by(customer_id=customer_id)
        .order_by(CustomerBalanceMutation.created_at.asc(), CustomerBalanceMutation.id.asc())
        .all()
    )


def customer_summary(customer_id: int) -> dict:
    """Customer with credit balance and derived total debt."""
    from .debt_service import get_customer_total_debt

    customer = get_customer(customer_id)
    data = customer.to_dict()
    data["total_debt"] = get_customer_total_debt(customer_id)
    return data
