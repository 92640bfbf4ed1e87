# Overview: Service-layer operations for customer returns and exchanges.

"""
Customer return / exchange orchestrator

WHY: Returns reverse part of a sale. They must never give back more than was
sold, must value goods at what the customer actually paid, and must keep the
stock ledger and the customer's credit balance consistent.

STEPS (ReturnDraft.step only moves forward, one step at a time):
    invoice_lookup -> item_selection -> compensation_selection -> committed

1. invoice_lookup: sale resolved by invoice number. Rejected when unknown
   (NotFound), cancelled, or still carrying an active unpaid/partial debt
   (DebtOutstanding).
2. item_selection: per sale line,
       max_returnable = sold qty - qty on non-cancelled returns
   and each requested qty must satisfy 0 < qty <= max_returnable.
   total_value_returned = Σ qty * price_at_sale (frozen sale price).
3. compensation_selection:
   - refund: cash back total_value_returned
   - credit_note: credit_balance += total_value_returned (customer required)
   - exchange: replacements at current sell_price,
       total_value_exchange <= total_value_returned (ExchangeOverLimit)
     net = returned - exchange, paid as cash or credit_balance
4. committed: all rows written in one transaction. Every check from steps
   1-3 is repeated under row locks first, so a stale draft cannot commit.

Stock effects:
- returned_to_stock lines: return_restock  +qty * unit_factor_at_return
- waste lines:             waste           0 (audit row only)
- exchange lines:          exchange        -qty * unit_factor_at_exchange
Cancellation writes return_cancel / exchange_cancel offsets and takes back
any credit that was granted (never below a zero balance).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from ..errors import DebtOutstanding, ExchangeOverLimit, InsufficientStock, NotFound, ValidationError
from ..extensions import db
from ..models import (
    Customer,
    CustomerExchangeItem,
    CustomerReturn,
    CustomerReturnItem,
    Debt,
    ProductVariant,
    Sale,
    SaleItem,
)
from ..models.documents import DOC_RETURN
from ..models.inventory import (
    MUTATION_EXCHANGE,
    MUTATION_EXCHANGE_CANCEL,
    MUTATION_RETURN_CANCEL,
    MUTATION_RETURN_RESTOCK,
    MUTATION_WASTE,
)
from ..money import ZERO, q_money, q_stock, to_decimal
from ..time_utils import utcnow
from .catalog_service import lock_products
from .concurrency import lock_for_update, run_atomically
from .customer_service import (
    BALANCE_CREDIT_NOTE,
    BALANCE_EXCHANGE_SURPLUS,
    BALANCE_EXCHANGE_SURPLUS_CANCEL,
    BALANCE_RETURN_CANCEL,
    change_credit_balance,
    get_customer,
)
from .debt_service import OPEN_DEBT_STATUSES
from .document_service import next_document_number
from .sales_service import SALE_CANCELLED, SALE_COMPLETED, SALE_REFUNDED
from .stock_ledger_service import insufficient_stock_line, record_mutation
from .unit_conversion import quantity_error, to_base_unit

RETURN_COMPLETED = "completed"
RETURN_CANCELLED = "cancelled"

COMPENSATION_REFUND = "refund"
COMPENSATION_CREDIT_NOTE = "credit_note"
COMPENSATION_EXCHANGE = "exchange"
COMPENSATION_TYPES = (COMPENSATION_REFUND, COMPENSATION_CREDIT_NOTE, COMPENSATION_EXCHANGE)

SURPLUS_CASH = "cash"
SURPLUS_CREDIT_BALANCE = "credit_balance"
SURPLUS_STRATEGIES = (SURPLUS_CASH, SURPLUS_CREDIT_BALANCE)


class ReturnStep(str, Enum):
    INVOICE_LOOKUP = "invoice_lookup"
    ITEM_SELECTION = "item_selection"
    COMPENSATION_SELECTION = "compensation_selection"
    COMMITTED = "committed"


_STEP_ORDER = [
    ReturnStep.INVOICE_LOOKUP,
    ReturnStep.ITEM_SELECTION,
    ReturnStep.COMPENSATION_SELECTION,
    ReturnStep.COMMITTED,
]


@dataclass
class ReturnDraft:
    """
    Server-side state of one return in progress.

    items:          [{sale_item_id, qty, returned_to_stock, reason}]
    exchange_items: [{product_id, variant_id, qty}]
    """
    invoice_number: str
    step: ReturnStep = ReturnStep.INVOICE_LOOKUP
    sale_id: int | None = None
    customer_id: int | None = None
    items: list[dict] = field(default_factory=list)
    exchange_items: list[dict] = field(default_factory=list)
    compensation_type: str | None = None
    surplus_strategy: str | None = None
    reason: str | None = None
    total_value_returned: Decimal = ZERO
    total_value_exchange: Decimal = ZERO
    total_refund: Decimal = ZERO
    return_id: int | None = None

    def advance(self, to_step: ReturnStep) -> None:
        current = _STEP_ORDER.index(self.step)
        if _STEP_ORDER.index(to_step) != current + 1:
            raise ValidationError(
                f"Cannot move a return from {self.step.value} to {to_step.value}",
                details={"step": self.step.value},
            )
        self.step = to_step

    def to_dict(self) -> dict:
        return {
            "invoice_number": self.invoice_number,
            "step": self.step.value,
            "sale_id": self.sale_id,
            "customer_id": self.customer_id,
            "items": self.items,
            "exchange_items": self.exchange_items,
            "compensation_type": self.compensation_type,
            "surplus_strategy": self.surplus_strategy,
            "total_value_returned": self.total_value_returned,
            "total_value_exchange": self.total_value_exchange,
            "total_refund": self.total_refund,
            "return_id": self.return_id,
        }


@dataclass
class _ReturnLine:
    sale_item: SaleItem
    qty: Decimal
    returned_to_stock: bool
    reason: str | None


@dataclass
class _ExchangeLine:
    variant: ProductVariant
    qty: Decimal
    subtotal: Decimal


# =============================================================================
# STEP 1: INVOICE LOOKUP
# =============================================================================

def _lookup_sale(invoice_number: str, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(invoice_number=(invoice_number or "").strip())
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise NotFound("Invoice not found", details={"invoice_number": invoice_number})
    if sale.status == SALE_CANCELLED:
        raise ValidationError("Cannot return items from a cancelled sale", details={"sale_id": sale.id})

    debt = (
        db.session.query(Debt)
        .filter(Debt.sale_id == sale.id, Debt.is_active.is_(True), Debt.status.in_(OPEN_DEBT_STATUSES))
        .first()
    )
    if debt is not None:
        raise DebtOutstanding(
            "Sale has an outstanding debt; settle it before processing a return",
            details={"debt_id": debt.id, "remaining_amount": q_money(debt.remaining_amount)},
        )
    return sale


def _returned_qty_by_sale_item(sale_id: int) -> dict[int, Decimal]:
    """Σ returned qty per sale line over the sale's non-cancelled returns."""
    query = (
        db.session.query(CustomerReturnItem.sale_item_id, db.func.sum(CustomerReturnItem.qty))
        .join(CustomerReturn, CustomerReturn.id == CustomerReturnItem.return_id)
        .filter(CustomerReturn.sale_id == sale_id, CustomerReturn.status != RETURN_CANCELLED)
        .group_by(CustomerReturnItem.sale_item_id)
    )
    return {sale_item_id: q_stock(total) for sale_item_id, total in query.all()}


def eligible_lines(sale: Sale) -> list[dict]:
    returned = _returned_qty_by_sale_item(sale.id)
    rows = []
    for item in sale.items:
        already = returned.get(item.id, ZERO)
        rows.append({
            "sale_item_id": item.id,
            "product_id": item.product_id,
            "product_name": item.product.name if item.product else None,
            "variant_id": item.variant_id,
            "variant_name": item.variant.name if item.variant else None,
            "qty_sold": q_stock(item.qty),
            "qty_returned": already,
            "max_returnable": q_stock(to_decimal(item.qty) - already),
            "price_at_sale": q_money(item.price_at_sale),
            "unit_factor_at_sale": item.unit_factor_at_sale,
        })
    return rows


def begin_return(invoice_number: str) -> tuple[ReturnDraft, list[dict]]:
    """
    Resolve the sale and list what can still be returned.

    Returns (draft at item_selection, eligible lines).
    """
    sale = _lookup_sale(invoice_number)
    draft = ReturnDraft(invoice_number=sale.invoice_number, sale_id=sale.id, customer_id=sale.customer_id)
    draft.advance(ReturnStep.ITEM_SELECTION)
    return draft, eligible_lines(sale)


# =============================================================================
# STEP 2: ITEM SELECTION
# =============================================================================

def _validate_items(sale: Sale, items: list[dict]) -> tuple[list[_ReturnLine], Decimal]:
    if not items:
        raise ValidationError("Select at least one item to return", errors={"items": ["must contain at least one item"]})

    sale_items = {item.id: item for item in sale.items}
    returned = _returned_qty_by_sale_item(sale.id)
    requested: dict[int, Decimal] = {}
    errors: dict[str, list[str]] = {}
    lines: list[_ReturnLine] = []

    for idx, raw in enumerate(items):
        sale_item = sale_items.get(raw.get("sale_item_id"))
        if sale_item is None:
            errors.setdefault(f"items[{idx}].sale_item_id", []).append("is not a line of this sale")
            continue
        problem = quantity_error(raw.get("qty"))
        if problem:
            errors.setdefault(f"items[{idx}].qty", []).append(problem)
            continue
        qty = to_decimal(raw.get("qty"))

        requested[sale_item.id] = requested.get(sale_item.id, ZERO) + qty
        max_returnable = to_decimal(sale_item.qty) - returned.get(sale_item.id, ZERO)
        if requested[sale_item.id] > max_returnable:
            errors.setdefault(f"items[{idx}].qty", []).append(
                f"exceeds returnable quantity ({q_stock(max(max_returnable, ZERO))})"
            )
            continue

        lines.append(
            _ReturnLine(
                sale_item=sale_item,
                qty=qty,
                returned_to_stock=bool(raw.get("returned_to_stock", True)),
                reason=raw.get("reason"),
            )
        )

    if errors:
        raise ValidationError("Invalid return quantities", errors=errors)

    total = q_money(sum((line.qty * to_decimal(line.sale_item.price_at_sale) for line in lines), ZERO))
    return lines, total


def select_items(draft: ReturnDraft, items: list[dict]) -> ReturnDraft:
    if draft.step != ReturnStep.ITEM_SELECTION:
        raise ValidationError(f"Return is at step {draft.step.value}, not item selection")
    sale = _lookup_sale(draft.invoice_number)
    _, total = _validate_items(sale, items)
    draft.items = list(items)
    draft.total_value_returned = total
    draft.advance(ReturnStep.COMPENSATION_SELECTION)
    return draft


# =============================================================================
# STEP 3: COMPENSATION SELECTION
# =============================================================================

def _price_exchange(exchange_items: list[dict]) -> tuple[list[_ExchangeLine], Decimal]:
    if not exchange_items:
        raise ValidationError(
            "Select at least one replacement item for an exchange",
            errors={"exchange_items": ["must contain at least one item"]},
        )

    seen: set[int] = set()
    lines: list[_ExchangeLine] = []
    for idx, raw in enumerate(exchange_items):
        variant = db.session.get(ProductVariant, raw.get("variant_id"))
        if variant is None:
            raise NotFound("Product variant not found", details={"variant_id": raw.get("variant_id")})
        if raw.get("product_id") is not None and variant.product_id != raw.get("product_id"):
            raise ValidationError(
                "Variant does not belong to product",
                details={"variant_id": variant.id, "product_id": raw.get("product_id")},
            )
        if variant.is_archived:
            raise ValidationError(f"Variant '{variant.name}' is archived", details={"variant_id": variant.id})
        if variant.id in seen:
            raise ValidationError("Duplicate replacement variant", errors={f"exchange_items[{idx}].variant_id": ["duplicate variant"]})
        seen.add(variant.id)

        problem = quantity_error(raw.get("qty"))
        if problem:
            raise ValidationError(f"Replacement qty {problem}", errors={f"exchange_items[{idx}].qty": [problem]})
        qty = to_decimal(raw.get("qty"))
        lines.append(_ExchangeLine(variant=variant, qty=qty, subtotal=q_money(qty * to_decimal(variant.sell_price))))

    return lines, q_money(sum((line.subtotal for line in lines), ZERO))


def _resolve_customer(sale: Sale, customer_id: int | None, *, lock: bool = False) -> Customer | None:
    if sale.customer_id is not None:
        if customer_id is not None and customer_id != sale.customer_id:
            raise ValidationError(
                "Return customer does not match the sale's customer",
                details={"sale_customer_id": sale.customer_id, "customer_id": customer_id},
            )
        return get_customer(sale.customer_id, lock=lock)
    if customer_id is not None:
        return get_customer(customer_id, lock=lock)
    return None


def _settle_compensation(
    *,
    total_value_returned: Decimal,
    compensation_type: str | None,
    exchange_total: Decimal,
    surplus_strategy: str | None,
    customer: Customer | None,
) -> tuple[Decimal, str | None]:
    """Returns (total_refund, effective surplus_strategy)."""
    if compensation_type not in COMPENSATION_TYPES:
        raise ValidationError(
            "Invalid compensation type",
            errors={"compensation_type": [f"must be one of: {', '.join(COMPENSATION_TYPES)}"]},
        )

    if compensation_type == COMPENSATION_EXCHANGE:
        if exchange_total > total_value_returned:
            raise ExchangeOverLimit(
                "Exchange value exceeds the value of returned items",
                details={
                    "total_value_returned": total_value_returned,
                    "total_value_exchange": exchange_total,
                    "excess": exchange_total - total_value_returned,
                },
            )
        strategy = surplus_strategy or SURPLUS_CASH
        if strategy not in SURPLUS_STRATEGIES:
            raise ValidationError(
                "Invalid surplus strategy",
                errors={"surplus_strategy": [f"must be one of: {', '.join(SURPLUS_STRATEGIES)}"]},
            )
        net = total_value_returned - exchange_total
        if strategy == SURPLUS_CREDIT_BALANCE and net > ZERO and customer is None:
            raise ValidationError("A customer is required to keep the exchange surplus as credit balance")
        return net, strategy

    if compensation_type == COMPENSATION_CREDIT_NOTE and customer is None:
        raise ValidationError("A customer is required for credit note compensation")
    return total_value_returned, None


def select_compensation(
    draft: ReturnDraft,
    *,
    compensation_type: str,
    exchange_items: list[dict] | None = None,
    surplus_strategy: str | None = None,
    customer_id: int | None = None,
    reason: str | None = None,
) -> ReturnDraft:
    """
    Value the compensation. ExchangeOverLimit is raised here, before any
    stock or balance row is touched.
    """
    if draft.step != ReturnStep.COMPENSATION_SELECTION:
        raise ValidationError(f"Return is at step {draft.step.value}, not compensation selection")

    sale = _lookup_sale(draft.invoice_number)
    customer = _resolve_customer(sale, customer_id if customer_id is not None else draft.customer_id)

    exchange_total = ZERO
    if compensation_type == COMPENSATION_EXCHANGE:
        _, exchange_total = _price_exchange(exchange_items or [])

    total_refund, strategy = _settle_compensation(
        total_value_returned=draft.total_value_returned,
        compensation_type=compensation_type,
        exchange_total=exchange_total,
        surplus_strategy=surplus_strategy,
        customer=customer,
    )

    draft.compensation_type = compensation_type
    draft.exchange_items = list(exchange_items or []) if compensation_type == COMPENSATION_EXCHANGE else []
    draft.total_value_exchange = exchange_total
    draft.total_refund = total_refund
    draft.surplus_strategy = strategy
    draft.customer_id = customer.id if customer else None
    draft.reason = reason
    return draft


# =============================================================================
# STEP 4: COMMIT
# =============================================================================

def commit_return(draft: ReturnDraft, *, user_id: int | None = None) -> CustomerReturn:
    """Write the return in one transaction, re-validating every rule under lock."""
    if draft.step != ReturnStep.COMPENSATION_SELECTION or draft.compensation_type is None:
        raise ValidationError("Select items and compensation before committing the return")

    def _op() -> CustomerReturn:
        sale = _lookup_sale(draft.invoice_number, lock=True)
        lines, total_returned = _validate_items(sale, draft.items)

        exchange_lines: list[_ExchangeLine] = []
        exchange_total = ZERO
        if draft.compensation_type == COMPENSATION_EXCHANGE:
            exchange_lines, exchange_total = _price_exchange(draft.exchange_items)

        # sale -> products -> customer, same order as checkout
        products = lock_products(
            [line.sale_item.product_id for line in lines]
            + [line.variant.product_id for line in exchange_lines]
        )
        customer = _resolve_customer(sale, draft.customer_id, lock=True)
        total_refund, strategy = _settle_compensation(
            total_value_returned=total_returned,
            compensation_type=draft.compensation_type,
            exchange_total=exchange_total,
            surplus_strategy=draft.surplus_strategy,
            customer=customer,
        )

        # Replacement stock: restocked returns of the same product count as available
        inbound: dict[int, Decimal] = {}
        for line in lines:
            if line.returned_to_stock:
                pid = line.sale_item.product_id
                inbound[pid] = inbound.get(pid, ZERO) + to_base_unit(line.qty, line.sale_item.unit_factor_at_sale)
        used: dict[int, Decimal] = {}
        shortages = []
        for line in exchange_lines:
            product = products[line.variant.product_id]
            needed = to_base_unit(line.qty, line.variant.conversion_to_base)
            available = to_decimal(product.stock) + inbound.get(product.id, ZERO) - used.get(product.id, ZERO)
            used[product.id] = used.get(product.id, ZERO) + needed
            if needed > available:
                shortages.append(
                    insufficient_stock_line(product=product, variant=line.variant, requested=needed, available=available)
                )
        if shortages:
            raise InsufficientStock(shortages)

        return_number = next_document_number(DOC_RETURN)
        customer_return = CustomerReturn(
            return_number=return_number,
            sale_id=sale.id,
            customer_id=customer.id if customer else None,
            total_value_returned=total_returned,
            total_value_exchange=exchange_total,
            total_refund=total_refund,
            compensation_type=draft.compensation_type,
            surplus_strategy=strategy,
            reason=draft.reason,
            status=RETURN_COMPLETED,
            user_id=user_id,
        )
        db.session.add(customer_return)
        db.session.flush()

        for line in lines:
            item = line.sale_item
            db.session.add(
                CustomerReturnItem(
                    return_id=customer_return.id,
                    sale_item_id=item.id,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    qty=line.qty,
                    price_at_return=item.price_at_sale,
                    unit_factor_at_return=item.unit_factor_at_sale,
                    returned_to_stock=line.returned_to_stock,
                    reason=line.reason,
                )
            )
            record_mutation(
                products[item.product_id],
                variant_id=item.variant_id,
                mutation_type=MUTATION_RETURN_RESTOCK if line.returned_to_stock else MUTATION_WASTE,
                qty_base_unit=to_base_unit(line.qty, item.unit_factor_at_sale) if line.returned_to_stock else ZERO,
                reference=return_number,
                user_id=user_id,
                unit_factor=item.unit_factor_at_sale,
                note=line.reason,
            )

        for line in exchange_lines:
            db.session.add(
                CustomerExchangeItem(
                    return_id=customer_return.id,
                    product_id=line.variant.product_id,
                    variant_id=line.variant.id,
                    qty=line.qty,
                    price_at_exchange=line.variant.sell_price,
                    unit_factor_at_exchange=line.variant.conversion_to_base,
                    subtotal=line.subtotal,
                )
            )
            record_mutation(
                products[line.variant.product_id],
                variant_id=line.variant.id,
                mutation_type=MUTATION_EXCHANGE,
                qty_base_unit=-to_base_unit(line.qty, line.variant.conversion_to_base),
                reference=return_number,
                user_id=user_id,
                unit_factor=line.variant.conversion_to_base,
            )

        if draft.compensation_type == COMPENSATION_CREDIT_NOTE:
            change_credit_balance(
                customer,
                total_returned,
                mutation_type=BALANCE_CREDIT_NOTE,
                reference=return_number,
                user_id=user_id,
            )
        elif strategy == SURPLUS_CREDIT_BALANCE and total_refund > ZERO:
            change_credit_balance(
                customer,
                total_refund,
                mutation_type=BALANCE_EXCHANGE_SURPLUS,
                reference=return_number,
                user_id=user_id,
            )

        db.session.flush()
        if _fully_returned(sale):
            sale.status = SALE_REFUNDED
        db.session.flush()
        return customer_return

    customer_return = run_atomically(_op)
    draft.return_id = customer_return.id
    draft.advance(ReturnStep.COMMITTED)
    return customer_return


def _fully_returned(sale: Sale) -> bool:
    returned = _returned_qty_by_sale_item(sale.id)
    return all(returned.get(item.id, ZERO) >= to_decimal(item.qty) for item in sale.items)


def create_return(
    *,
    invoice_number: str,
    items: list[dict],
    compensation_type: str,
    exchange_items: list[dict] | None = None,
    surplus_strategy: str | None = None,
    customer_id: int | None = None,
    reason: str | None = None,
    user_id: int | None = None,
) -> CustomerReturn:
    """
    Run every step of a return in one call.

    items: [{sale_item_id, qty, returned_to_stock=True, reason}]
    exchange_items: [{product_id, variant_id, qty}] (exchange only)

    Raises:
        NotFound, ValidationError, DebtOutstanding, ExchangeOverLimit,
        InsufficientStock, PersistenceFailure
    """
    draft, _ = begin_return(invoice_number)
    select_items(draft, items)
    select_compensation(
        draft,
        compensation_type=compensation_type,
        exchange_items=exchange_items,
        surplus_strategy=surplus_strategy,
        customer_id=customer_id,
        reason=reason,
    )
    return commit_return(draft, user_id=user_id)


# =============================================================================
# CANCELLATION
# =============================================================================

def _cancel_return_locked(customer_return: CustomerReturn, *, user_id: int | None = None) -> CustomerReturn:
    """Reverse a return inside the caller's transaction (also used by sale cancellation)."""
    if customer_return.status == RETURN_CANCELLED:
        raise ValidationError("Return is already cancelled", details={"return_id": customer_return.id})

    products = lock_products(
        [item.product_id for item in customer_return.items]
        + [item.product_id for item in customer_return.exchange_items]
    )

    # exchange_cancel (+) is applied before return_cancel (-)
    inbound: dict[int, Decimal] = {}
    for item in customer_return.exchange_items:
        inbound[item.product_id] = inbound.get(item.product_id, ZERO) + to_base_unit(item.qty, item.unit_factor_at_exchange)

    outbound: dict[int, Decimal] = {}
    shortages = []
    for item in customer_return.items:
        if not item.returned_to_stock:
            continue
        product = products[item.product_id]
        needed = to_base_unit(item.qty, item.unit_factor_at_return)
        available = to_decimal(product.stock) + inbound.get(product.id, ZERO) - outbound.get(product.id, ZERO)
        outbound[product.id] = outbound.get(product.id, ZERO) + needed
        if needed > available:
            variant = db.session.get(ProductVariant, item.variant_id)
            shortages.append(
                insufficient_stock_line(product=product, variant=variant, requested=needed, available=available)
            )
    if shortages:
        raise InsufficientStock(shortages, message="Not enough stock to reverse the restocked items")

    reference = f"VOID-{customer_return.return_number}"
    for item in customer_return.exchange_items:
        record_mutation(
            products[item.product_id],
            variant_id=item.variant_id,
            mutation_type=MUTATION_EXCHANGE_CANCEL,
            qty_base_unit=to_base_unit(item.qty, item.unit_factor_at_exchange),
            reference=reference,
            user_id=user_id,
            unit_factor=item.unit_factor_at_exchange,
        )
    for item in customer_return.items:
        if not item.returned_to_stock:
            continue
        record_mutation(
            products[item.product_id],
            variant_id=item.variant_id,
            mutation_type=MUTATION_RETURN_CANCEL,
            qty_base_unit=-to_base_unit(item.qty, item.unit_factor_at_return),
            reference=reference,
            user_id=user_id,
            unit_factor=item.unit_factor_at_return,
        )

    if customer_return.customer_id is not None:
        granted = ZERO
        balance_type = None
        if customer_return.compensation_type == COMPENSATION_CREDIT_NOTE:
            granted, balance_type = q_money(customer_return.total_value_returned), BALANCE_RETURN_CANCEL
        elif (
            customer_return.compensation_type == COMPENSATION_EXCHANGE
            and customer_return.surplus_strategy == SURPLUS_CREDIT_BALANCE
            and q_money(customer_return.total_refund) > ZERO
        ):
            granted, balance_type = q_money(customer_return.total_refund), BALANCE_EXCHANGE_SURPLUS_CANCEL
        if granted > ZERO:
            change_credit_balance(
                get_customer(customer_return.customer_id, lock=True),
                -granted,
                mutation_type=balance_type,
                reference=reference,
                user_id=user_id,
                clamp_at_zero=True,
            )

    customer_return.status = RETURN_CANCELLED
    customer_return.cancelled_at = utcnow()
    customer_return.cancelled_by_user_id = user_id

    sale = customer_return.sale
    if sale is not None and sale.status == SALE_REFUNDED:
        sale.status = SALE_COMPLETED

    db.session.flush()
    return customer_return


def cancel_return(return_id: int, *, user_id: int | None = None) -> CustomerReturn:
    """
    Cancel a committed return. There is no undo of a cancellation.

    Raises:
        NotFound, ValidationError (already cancelled), InsufficientStock
    """
    def _op() -> CustomerReturn:
        sale_id = db.session.query(CustomerReturn.sale_id).filter_by(id=return_id).scalar()
        if sale_id is None:
            raise NotFound("Return not found", details={"return_id": return_id})
        # The sale row is updated too (refunded -> completed), so it is locked first
        lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        customer_return = lock_for_update(
            db.session.query(CustomerReturn).filter_by(id=return_id)
        ).first()
        return _cancel_return_locked(customer_return, user_id=user_id)

    return run_atomically(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int) -> CustomerReturn:
    customer_return = db.session.get(CustomerReturn, return_id)
    if customer_return is None:
        raise NotFound("Return not found", details={"return_id": return_id})
    return customer_return


def get_sale_returns(sale_id: int) -> list[CustomerReturn]:
    return (
        db.session.query(CustomerReturn)
        .filter_by(sale_id=sale_id)
        .order_by(CustomerReturn.created_at.asc(), CustomerReturn.id.asc())
        .all()
    )


def list_returns(
    *,
    start=None,
    end=None,
    status: str | None = None,
    customer_id: int | None = None,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[CustomerReturn], int]:
    query = db.session.query(CustomerReturn)
    if start is not None:
        query = query.filter(CustomerReturn.created_at >= start)
    if end is not None:
        query = query.filter(CustomerReturn.created_at <= end)
    if status is not None:
        query = query.filter(CustomerReturn.status == status)
    if customer_id is not None:
        query = query.filter(CustomerReturn.customer_id == customer_id)

    total = query.count()
    rows = (
        query.order_by(CustomerReturn.created_at.desc(), CustomerReturn.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return rows, total
