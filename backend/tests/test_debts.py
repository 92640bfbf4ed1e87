"""
Debt ledger tests.

remaining_amount only decreases, status follows it, and a paid debt is
inactive and flips its sale back to completed.
"""

from decimal import Decimal

import pytest

from tokopos.errors import NotFound, ValidationError
from tokopos.services import debt_service, sales_service


def _debt_sale(product, variant, qty, paid, customer):
    outcome = sales_service.create_sale(
        items=[{"product_id": product.id, "variant_id": variant.id, "qty": qty}],
        total_paid=paid,
        customer_id=customer.id,
        is_debt=True,
    )
    return outcome.sale, outcome.debt


class TestDebtPayments:
    def test_partial_then_full_payment(self, db_session, product, customer, pcs):
        sale, debt = _debt_sale(product, pcs, 10, 0, customer)
        assert debt.original_amount == Decimal("50000.00")
        assert debt.status == "unpaid"

        debt_service.apply_payment(debt.id, 20000, note="Cicilan 1")
        debt = debt_service.get_debt(debt.id)
        assert debt.remaining_amount == Decimal("30000.00")
        assert debt.status == "partial"
        assert debt.is_active is True

        debt_service.apply_payment(debt.id, 30000)
        debt = debt_service.get_debt(debt.id)
        assert debt.remaining_amount == Decimal("0.00")
        assert debt.status == "paid"
        assert debt.is_active is False
        assert sales_service.get_sale(sale.id).status == "completed"
        assert [p.amount_paid for p in debt.payments] == [Decimal("20000.00"), Decimal("30000.00")]

    def test_overpayment_rejected(self, db_session, product, customer, pcs):
        _, debt = _debt_sale(product, pcs, 2, 4000, customer)

        with pytest.raises(ValidationError):
            debt_service.apply_payment(debt.id, 7000)

        assert debt_service.get_debt(debt.id).remaining_amount == Decimal("6000.00")

    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_payment_rejected(self, db_session, product, customer, pcs, amount):
        _, debt = _debt_sale(product, pcs, 2, 4000, customer)
        with pytest.raises(ValidationError):
            debt_service.apply_payment(debt.id, amount)

    def test_paid_debt_takes_no_more_payments(self, db_session, product, customer, pcs):
        _, debt = _debt_sale(product, pcs, 2, 4000, customer)
        debt_service.mark_as_paid(debt.id)
        with pytest.raises(ValidationError):
            debt_service.apply_payment(debt.id, 1)

    def test_cancelled_debt_takes_no_payments(self, db_session, product, customer, pcs):
        sale, debt = _debt_sale(product, pcs, 2, 4000, customer)
        sales_service.cancel_sale(sale.id)

        debt = debt_service.get_debt(debt.id)
        assert debt.status == "cancelled"
        assert debt.is_active is False
        with pytest.raises(ValidationError):
            debt_service.apply_payment(debt.id, 1000)

    def test_mark_as_paid(self, db_session, product, customer, pcs):
        _, debt = _debt_sale(product, pcs, 3, 5000, customer)

        payment = debt_service.mark_as_paid(debt.id, user_id=2)

        assert payment.amount_paid == Decimal("10000.00")
        assert payment.note == "Marked as paid"
        assert debt_service.get_debt(debt.id).status == "paid"

    def test_unknown_debt(self, db_session):
        with pytest.raises(NotFound):
            debt_service.apply_payment(999, 1000)


class TestSettleOldestFirst:
    def test_lump_sum_goes_to_oldest_debt_first(self, db_session, product, customer, pcs):
        _, first = _debt_sale(product, pcs, 2, 0, customer)   # 10000
        _, second = _debt_sale(product, pcs, 2, 0, customer)  # 10000

        result = debt_service.settle_oldest_first(customer.id, 15000)

        assert result["unused_amount"] == Decimal("0.00")
        assert [p["debt_id"] for p in result["payments"]] == [first.id, second.id]
        assert debt_service.get_debt(first.id).status == "paid"
        assert debt_service.get_debt(second.id).remaining_amount == Decimal("5000.00")
        assert debt_service.get_customer_total_debt(customer.id) == Decimal("5000.00")

    def test_unused_amount_reported(self, db_session, product, customer, pcs):
        _debt_sale(product, pcs, 1, 0, customer)
        result = debt_service.settle_oldest_first(customer.id, 8000)
        assert result["unused_amount"] == Decimal("3000.00")
        assert debt_service.get_customer_total_debt(customer.id) == Decimal("0.00")

    def test_non_positive_amount_rejected(self, db_session, customer):
        with pytest.raises(ValidationError):
            debt_service.settle_oldest_first(customer.id, 0)


class TestDebtQueries:
    def test_list_filters(self, db_session, product, customer, pcs):
        _, open_debt = _debt_sale(product, pcs, 2, 0, customer)
        _, paid_debt = _debt_sale(product, pcs, 1, 0, customer)
        debt_service.mark_as_paid(paid_debt.id)

        assert [d.id for d in debt_service.list_debts(customer_id=customer.id)] == [open_debt.id, paid_debt.id]
        assert [d.id for d in debt_service.list_debts(active_only=True)] == [open_debt.id]
        assert [d.id for d in debt_service.list_debts(status="paid")] == [paid_debt.id]

    def test_to_dict_with_payments(self, db_session, product, customer, pcs):
        sale, debt = _debt_sale(product, pcs, 2, 0, customer)
        debt_service.apply_payment(debt.id, 2500)

        data = debt_service.get_debt(debt.id).to_dict(include_payments=True)

        assert data["invoice_number"] == sale.invoice_number
        assert data["customer_name"] == "Budi"
        assert len(data["payments"]) == 1
