# Overview: Service-layer operations for sales; checkout orchestration, edits and cancellation.

"""
Sale checkout orchestrator

WHY: A checkout touches stock, customer credit, debts and the stock ledger.
All of it must land together or not at all, and the stock check must see
the same rows the decrement writes to.

STATE MACHINE:
    building -> validating -> committed
                    |
                    +-----> rejected

- building: the request has been captured (SaleCheckout.__init__)
- validating: input checks, product/customer rows locked, stock, credit
  balance and payment rules verified. Every rejection happens here, before
  the first write.
- committed: Sale, SaleItems, ledger rows, balance change, Debt and old-debt
  payments written and committed in one transaction.

Quantities are rounded exactly once: a line qty with more than 3 decimals is
rejected, so the qty stored on SaleItem is the qty that moved stock.

Locks follow the order in concurrency.py: sales behind old debts (when
settling them), then products, customer and debts.

Old debt (should_pay_old_debt):
- amount due becomes grand_total + customer's active debt total
- only payment below grand_total is an under-payment (debt or reject)
- the surplus above grand_total pays active debts oldest first; whatever is
  left is handed back as change (total_return)

Editing (SaleEdit) replaces the cart of a fully paid sale that has no
returns. The old lines are put back with sale_cancel rows referenced
EDIT-<invoice>, the new cart is validated against stock that includes what
the old lines release, and new sale rows are written under the same invoice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from ..errors import BalanceExceeded, InsufficientStock, NotFound, PosError, ValidationError
from ..extensions import db
from ..models import Customer, Debt, DebtPayment, Product, ProductVariant, Sale, SaleItem
from ..models.documents import DOC_INVOICE
from ..models.inventory import MUTATION_SALE, MUTATION_SALE_CANCEL
from ..money import ZERO, q_cost, q_money, q_stock, to_decimal
from ..time_utils import utcnow
from .catalog_service import lock_products
from .concurrency import lock_for_update, run_atomically
from .customer_service import BALANCE_SALE_CANCEL, BALANCE_SALE_PAYMENT, change_credit_balance, get_customer
from .debt_service import (
    DEBT_CANCELLED,
    DEBT_UNPAID,
    _settle_oldest_first,
    get_customer_total_debt,
    lock_open_debt_sales,
)
from .document_service import next_document_number
from .stock_ledger_service import insufficient_stock_line, record_mutation
from .unit_conversion import quantity_error, to_base_unit

SALE_COMPLETED = "completed"
SALE_DEBT = "debt"
SALE_REFUNDED = "refunded"
SALE_CANCELLED = "cancelled"

SALE_STATUSES = (SALE_COMPLETED, SALE_DEBT, SALE_REFUNDED, SALE_CANCELLED)


class SaleState(str, Enum):
    BUILDING = "building"
    VALIDATING = "validating"
    COMMITTED = "committed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SaleLineRequest:
    product_id: int
    variant_id: int
    qty: Decimal


@dataclass
class _PricedLine:
    request: SaleLineRequest
    product: Product
    variant: ProductVariant
    qty: Decimal
    qty_base: Decimal
    subtotal: Decimal


@dataclass
class SaleOutcome:
    """What a committed checkout produced."""
    sale: Sale
    debt: Debt | None = None
    old_debt_payments: list[DebtPayment] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = self.sale.to_dict(include_items=True)
        data["old_debt_payments"] = [p.to_dict() for p in self.old_debt_payments]
        return data


class SaleCheckout:
    """
    One checkout attempt.

    Usage:
        outcome = SaleCheckout(items=[...], total_paid=..., customer_id=...).run()
    """

    def __init__(
        self,
        *,
        items: list[SaleLineRequest],
        total_paid,
        customer_id: int | None = None,
        total_balance_used=ZERO,
        should_pay_old_debt: bool = False,
        is_debt: bool = False,
        user_id: int | None = None,
    ):
        self.items = list(items)
        self.total_paid = q_money(total_paid)
        self.customer_id = customer_id
        self.total_balance_used = q_money(total_balance_used)
        self.should_pay_old_debt = should_pay_old_debt
        self.is_debt = is_debt
        self.user_id = user_id

        self.state = SaleState.BUILDING
        self.customer: Customer | None = None
        self.lines: list[_PricedLine] = []
        self.subtotal = ZERO
        self.grand_total = ZERO
        self.old_debt_total = ZERO
        self.debt_amount = ZERO
        self.surplus = ZERO

    # -------------------------------------------------------------------------
    # validating
    # -------------------------------------------------------------------------

    def _validate_input(self) -> None:
        errors: dict[str, list[str]] = {}
        if not self.items:
            errors["items"] = ["must contain at least one item"]

        seen: set[int] = set()
        for idx, line in enumerate(self.items):
            problem = quantity_error(line.qty)
            if problem:
                errors.setdefault(f"items[{idx}].qty", []).append(problem)
            if line.variant_id in seen:
                errors.setdefault(f"items[{idx}].variant_id", []).append("duplicate variant in cart")
            seen.add(line.variant_id)

        if self.total_paid < ZERO:
            errors["total_paid"] = ["must be >= 0"]
        if self.total_balance_used < ZERO:
            errors["total_balance_used"] = ["must be >= 0"]

        if errors:
            raise ValidationError("Validation failed", errors=errors)

        if self.customer_id is None:
            if self.total_balance_used > ZERO:
                raise ValidationError("Guest customers cannot pay with credit balance")
            if self.is_debt:
                raise ValidationError("A registered customer is required to record a debt")
            if self.should_pay_old_debt:
                raise ValidationError("A registered customer is required to pay old debts")

    def _lock_products(self) -> dict[int, Product]:
        return lock_products(line.product_id for line in self.items)

    def _price_lines(self) -> None:
        products = self._lock_products()

        for line in self.items:
            variant = db.session.get(ProductVariant, line.variant_id)
            if variant is None:
                raise NotFound("Product variant not found", details={"variant_id": line.variant_id})
            if variant.product_id != line.product_id:
                raise ValidationError(
                    "Variant does not belong to product",
                    details={"variant_id": variant.id, "product_id": line.product_id},
                )
            if variant.is_archived:
                raise ValidationError(f"Variant '{variant.name}' is archived", details={"variant_id": variant.id})
            product = products[line.product_id]
            if not product.is_active:
                raise ValidationError(f"Product '{product.name}' is inactive", details={"product_id": product.id})

            qty = q_stock(line.qty)
            self.lines.append(
                _PricedLine(
                    request=line,
                    product=product,
                    variant=variant,
                    qty=qty,
                    qty_base=to_base_unit(qty, variant.conversion_to_base),
                    subtotal=q_money(qty * to_decimal(variant.sell_price)),
                )
            )

    def _available(self, product: Product) -> Decimal:
        return to_decimal(product.stock)

    def _check_stock(self) -> None:
        """Cumulative per product, in cart order; every offending line is reported."""
        used: dict[int, Decimal] = {}
        shortages = []
        for line in self.lines:
            stock = self._available(line.product)
            already = used.get(line.product.id, ZERO)
            used[line.product.id] = already + line.qty_base
            if already + line.qty_base > stock:
                shortages.append(
                    insufficient_stock_line(
                        product=line.product,
                        variant=line.variant,
                        requested=line.qty_base,
                        available=stock - already,
                    )
                )
        if shortages:
            raise InsufficientStock(shortages)

    def _check_payment(self) -> None:
        self.subtotal = q_money(sum((line.subtotal for line in self.lines), ZERO))

        if self.customer_id is not None:
            self.customer = get_customer(self.customer_id, lock=True)
            if not self.customer.is_active:
                raise ValidationError(
                    f"Customer '{self.customer.name}' is inactive", details={"customer_id": self.customer.id}
                )

        if self.total_balance_used > ZERO:
            available = q_money(self.customer.credit_balance)
            if self.total_balance_used > available:
                raise BalanceExceeded(
                    "Credit balance used exceeds the customer's balance",
                    details={"available": available, "requested": self.total_balance_used},
                )
            if self.total_balance_used > self.subtotal:
                raise BalanceExceeded(
                    "Credit balance used exceeds the sale total",
                    details={"subtotal": self.subtotal, "requested": self.total_balance_used},
                )

        self.grand_total = self.subtotal - self.total_balance_used
        if self.should_pay_old_debt:
            self.old_debt_total = get_customer_total_debt(self.customer.id)

        if self.total_paid < self.grand_total:
            if not self.is_debt:
                raise ValidationError(
                    "Payment is less than the amount due",
                    details={
                        "grand_total": self.grand_total,
                        "total_paid": self.total_paid,
                        "shortfall": self.grand_total - self.total_paid,
                    },
                )
            self.debt_amount = self.grand_total - self.total_paid
        else:
            self.surplus = self.total_paid - self.grand_total

    def validate(self) -> None:
        self.state = SaleState.VALIDATING
        self._validate_input()
        if self.should_pay_old_debt:
            # Settling old debts updates their sales; those rows come first
            lock_open_debt_sales(self.customer_id)
        self._price_lines()
        self._check_stock()
        self._check_payment()

    # -------------------------------------------------------------------------
    # committed
    # -------------------------------------------------------------------------

    def _write_lines(self, sale: Sale) -> None:
        """SaleItem + sale mutation per priced line, both from the same rounded qty."""
        for line in self.lines:
            db.session.add(
                SaleItem(
                    sale_id=sale.id,
                    product_id=line.product.id,
                    variant_id=line.variant.id,
                    qty=line.qty,
                    price_at_sale=q_money(line.variant.sell_price),
                    unit_factor_at_sale=to_decimal(line.variant.conversion_to_base),
                    cost_at_sale=q_cost(line.product.average_cost),
                    subtotal=line.subtotal,
                )
            )
            record_mutation(
                line.product,
                variant_id=line.variant.id,
                mutation_type=MUTATION_SALE,
                qty_base_unit=-line.qty_base,
                reference=sale.invoice_number,
                user_id=self.user_id,
                unit_factor=line.variant.conversion_to_base,
            )

    def commit(self) -> SaleOutcome:
        if self.state != SaleState.VALIDATING:
            raise ValidationError(f"Cannot commit a sale in state {self.state.value}")

        invoice_number = next_document_number(DOC_INVOICE)
        sale = Sale(
            invoice_number=invoice_number,
            customer_id=self.customer.id if self.customer else None,
            total_price=self.subtotal,
            total_paid=self.total_paid,
            total_balance_used=self.total_balance_used,
            total_return=ZERO,
            status=SALE_DEBT if self.debt_amount > ZERO else SALE_COMPLETED,
            user_id=self.user_id,
        )
        db.session.add(sale)
        db.session.flush()
        self._write_lines(sale)

        if self.total_balance_used > ZERO:
            change_credit_balance(
                self.customer,
                -self.total_balance_used,
                mutation_type=BALANCE_SALE_PAYMENT,
                reference=invoice_number,
                user_id=self.user_id,
            )

        payments: list[DebtPayment] = []
        change = self.surplus
        if self.should_pay_old_debt and self.surplus > ZERO and self.old_debt_total > ZERO:
            change, payments = _settle_oldest_first(
                self.customer.id,
                self.surplus,
                user_id=self.user_id,
                note=f"Paid from {invoice_number}",
                source_sale_id=sale.id,
            )
        sale.total_return = q_money(change)

        debt = None
        if self.debt_amount > ZERO:
            debt = Debt(
                sale_id=sale.id,
                customer_id=self.customer.id,
                original_amount=self.debt_amount,
                remaining_amount=self.debt_amount,
                status=DEBT_UNPAID,
                is_active=True,
            )
            db.session.add(debt)

        db.session.flush()
        self.state = SaleState.COMMITTED
        return SaleOutcome(sale=sale, debt=debt, old_debt_payments=payments)

    def run(self) -> SaleOutcome:
        def _op() -> SaleOutcome:
            self.validate()
            return self.commit()

        try:
            return run_atomically(_op)
        except PosError:
            self.state = SaleState.REJECTED
            raise


def create_sale(
    *,
    items: list[dict] | list[SaleLineRequest],
    total_paid,
    customer_id: int | None = None,
    total_balance_used=ZERO,
    should_pay_old_debt: bool = False,
    is_debt: bool = False,
    user_id: int | None = None,
) -> SaleOutcome:
    """
    Check out a cart.

    items: [{product_id, variant_id, qty}] (qty in variant units)

    Raises:
        ValidationError, NotFound, InsufficientStock, BalanceExceeded,
        PersistenceFailure
    """
    return SaleCheckout(
        items=_line_requests(items),
        total_paid=total_paid,
        customer_id=customer_id,
        total_balance_used=total_balance_used,
        should_pay_old_debt=should_pay_old_debt,
        is_debt=is_debt,
        user_id=user_id,
    ).run()


def _line_requests(items: list[dict] | list[SaleLineRequest]) -> list[SaleLineRequest]:
    return [
        item if isinstance(item, SaleLineRequest)
        else SaleLineRequest(
            product_id=item["product_id"],
            variant_id=item["variant_id"],
            qty=to_decimal(item["qty"]),
        )
        for item in items
    ]


# =============================================================================
# EDITING
# =============================================================================

class SaleEdit(SaleCheckout):
    """
    Replace the cart of a committed sale in one transaction.

    Only plain sales can be edited: completed, no debt, no credit balance
    used, no old debts settled from their change and no returns. Anything
    else has to be cancelled and rung up again.

    The customer stays the sale's customer; total_paid is re-entered.
    """

    def __init__(self, sale_id: int, *, items: list[SaleLineRequest], total_paid, user_id: int | None = None):
        super().__init__(items=items, total_paid=total_paid, user_id=user_id)
        self.sale_id = sale_id
        self.sale: Sale | None = None
        self.products: dict[int, Product] = {}
        # base units the old lines give back, per product
        self.released: dict[int, Decimal] = {}

    def _load_sale(self) -> None:
        sale = lock_for_update(db.session.query(Sale).filter_by(id=self.sale_id)).first()
        if sale is None:
            raise NotFound("Sale not found", details={"sale_id": self.sale_id})

        reason = None
        if sale.status != SALE_COMPLETED:
            reason = f"Sale is {sale.status}"
        elif sale.debt is not None:
            reason = "Sale was paid through a debt"
        elif q_money(sale.total_balance_used) > ZERO:
            reason = "Sale used credit balance"
        elif sale.returns:
            reason = "Sale has returns"
        elif db.session.query(DebtPayment).filter_by(source_sale_id=sale.id).first() is not None:
            reason = "Sale settled old debts"
        if reason is not None:
            raise ValidationError(f"{reason}; cancel it and create a new sale instead", details={"sale_id": sale.id})

        self.sale = sale
        self.customer_id = sale.customer_id
        for item in sale.items:
            self.released[item.product_id] = (
                self.released.get(item.product_id, ZERO) + to_base_unit(item.qty, item.unit_factor_at_sale)
            )

    def _lock_products(self) -> dict[int, Product]:
        self.products = lock_products(list(self.released) + [line.product_id for line in self.items])
        return self.products

    def _available(self, product: Product) -> Decimal:
        return to_decimal(product.stock) + self.released.get(product.id, ZERO)

    def validate(self) -> None:
        self.state = SaleState.VALIDATING
        self._validate_input()
        self._load_sale()
        self._price_lines()
        self._check_stock()
        self._check_payment()

    def commit(self) -> SaleOutcome:
        if self.state != SaleState.VALIDATING:
            raise ValidationError(f"Cannot commit a sale edit in state {self.state.value}")

        sale = self.sale
        reference = f"EDIT-{sale.invoice_number}"
        for item in list(sale.items):
            record_mutation(
                self.products[item.product_id],
                variant_id=item.variant_id,
                mutation_type=MUTATION_SALE_CANCEL,
                qty_base_unit=to_base_unit(item.qty, item.unit_factor_at_sale),
                reference=reference,
                user_id=self.user_id,
                unit_factor=item.unit_factor_at_sale,
                note="Sale edited",
            )
            db.session.delete(item)
        db.session.flush()
        db.session.expire(sale, ["items"])

        self._write_lines(sale)
        sale.total_price = self.subtotal
        sale.total_paid = self.total_paid
        sale.total_return = q_money(self.surplus)
        db.session.flush()
        self.state = SaleState.COMMITTED
        return SaleOutcome(sale=sale)


def edit_sale(
    sale_id: int,
    *,
    items: list[dict] | list[SaleLineRequest],
    total_paid,
    user_id: int | None = None,
) -> SaleOutcome:
    """
    Replace a sale's lines and payment.

    Raises:
        NotFound, ValidationError (not editable, bad input, under-payment),
        InsufficientStock, PersistenceFailure
    """
    return SaleEdit(sale_id, items=_line_requests(items), total_paid=total_paid, user_id=user_id).run()


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_sale(sale_id: int, *, user_id: int | None = None, reason: str | None = None) -> Sale:
    """
    Void a committed sale.

    - sale_cancel mutation per line (+qty * unit_factor_at_sale)
    - credit balance used is given back
    - the sale's debt is cancelled (inactive)
    - every non-cancelled return of the sale is cancelled too
    - sale status -> cancelled

    Old debts paid out of this sale's change stay paid.
    """
    from .return_service import RETURN_CANCELLED, _cancel_return_locked

    def _op() -> Sale:
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFound("Sale not found", details={"sale_id": sale_id})
        if sale.status == SALE_CANCELLED:
            raise ValidationError("Sale is already cancelled", details={"sale_id": sale_id})

        reference = f"VOID-{sale.invoice_number}"
        live_returns = [r for r in sale.returns if r.status != RETURN_CANCELLED]
        # Every product the void can touch is locked before any customer row
        product_ids = [item.product_id for item in sale.items]
        for customer_return in live_returns:
            product_ids += [item.product_id for item in customer_return.items]
            product_ids += [item.product_id for item in customer_return.exchange_items]
        products = lock_products(product_ids)

        for item in sale.items:
            record_mutation(
                products[item.product_id],
                variant_id=item.variant_id,
                mutation_type=MUTATION_SALE_CANCEL,
                qty_base_unit=to_base_unit(item.qty, item.unit_factor_at_sale),
                reference=reference,
                user_id=user_id,
                unit_factor=item.unit_factor_at_sale,
            )

        for customer_return in live_returns:
            _cancel_return_locked(customer_return, user_id=user_id)

        if sale.customer_id is not None and q_money(sale.total_balance_used) > ZERO:
            change_credit_balance(
                get_customer(sale.customer_id, lock=True),
                sale.total_balance_used,
                mutation_type=BALANCE_SALE_CANCEL,
                reference=reference,
                user_id=user_id,
            )

        if sale.debt is not None and sale.debt.status != DEBT_CANCELLED:
            sale.debt.status = DEBT_CANCELLED
            sale.debt.is_active = False

        sale.status = SALE_CANCELLED
        sale.cancelled_at = utcnow()
        sale.cancelled_by_user_id = user_id
        sale.cancel_reason = reason
        db.session.flush()
        return sale

    return run_atomically(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFound("Sale not found", details={"sale_id": sale_id})
    return sale


def get_sale_by_invoice(invoice_number: str) -> Sale:
    sale = db.session.query(Sale).filter_by(invoice_number=(invoice_number or "").strip()).first()
    if sale is None:
        raise NotFound("Invoice not found", details={"invoice_number": invoice_number})
    return sale


def list_sales(
    *,
    start=None,
    end=None,
    status: str | None = None,
    customer_id: int | None = None,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[Sale], int]:
    """Newest first. Returns (page rows, total count)."""
    query = db.session.query(Sale)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    if status is not None:
        if status not in SALE_STATUSES:
            raise ValidationError(f"Unknown sale status: {status}")
        query = query.filter(Sale.status == status)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)

    total = query.count()
    rows = (
        query.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return rows, total
