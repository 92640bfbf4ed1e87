"""
Sale checkout orchestrator tests.

Covers stock checks in base units, frozen pricing, credit balance,
under-payment (debt vs rejection), paying old debts from a new sale,
and sale cancellation.
"""

from decimal import Decimal

import pytest

from tokopos.errors import BalanceExceeded, InsufficientStock, NotFound, ValidationError
from tokopos.models import Debt, Sale, StockMutation
from tokopos.services import catalog_service, debt_service, inventory_service, sales_service
from tokopos.services.customer_service import get_customer, list_balance_mutations
from tokopos.services.sales_service import SaleCheckout, SaleLineRequest, SaleState


def _sell(product, variant, qty, paid, **kwargs):
    return sales_service.create_sale(
        items=[{"product_id": product.id, "variant_id": variant.id, "qty": qty}],
        total_paid=paid,
        **kwargs,
    )


# =============================================================================
# STOCK
# =============================================================================

class TestCheckoutStock:
    def test_box_sale_decrements_base_units(self, db_session, product, box):
        """3 boxes of 12 against 40 pcs leaves 4."""
        outcome = _sell(product, box, 3, 162000)

        assert outcome.sale.status == "completed"
        assert outcome.sale.invoice_number == "INV-0000001"
        assert catalog_service.get_product(product.id).stock == Decimal("4")

        mutation = db_session.query(StockMutation).filter_by(type="sale").one()
        assert mutation.qty_base_unit == Decimal("-36")
        assert mutation.reference == "INV-0000001"

    def test_shortfall_is_reported_and_nothing_written(self, db_session, product_factory):
        short = product_factory(sku="KOPI", stock=30)
        box = next(v for v in short.variants if v.sku == "KOPI-BOX")

        with pytest.raises(InsufficientStock) as exc_info:
            _sell(short, box, 3, 162000)

        [line] = exc_info.value.items
        assert line["requested"] == Decimal("36")
        assert line["available"] == Decimal("30")
        assert line["shortfall"] == Decimal("6")
        assert db_session.query(Sale).count() == 0
        assert catalog_service.get_product(short.id).stock == Decimal("30")

    def test_stock_is_checked_cumulatively_per_product(self, db_session, product, pcs, box):
        """Two variants of one product share the same base stock."""
        with pytest.raises(InsufficientStock) as exc_info:
            sales_service.create_sale(
                items=[
                    {"product_id": product.id, "variant_id": box.id, "qty": 3},
                    {"product_id": product.id, "variant_id": pcs.id, "qty": 5},
                ],
                total_paid=500000,
            )

        [line] = exc_info.value.items
        assert line["variant_id"] == pcs.id
        assert line["available"] == Decimal("4")
        assert line["shortfall"] == Decimal("1")

    def test_every_short_line_is_listed(self, db_session, product, product_factory, box):
        other = product_factory(sku="GULA", stock=2)
        other_box = next(v for v in other.variants if v.sku == "GULA-BOX")

        with pytest.raises(InsufficientStock) as exc_info:
            sales_service.create_sale(
                items=[
                    {"product_id": product.id, "variant_id": box.id, "qty": 4},
                    {"product_id": other.id, "variant_id": other_box.id, "qty": 1},
                ],
                total_paid=500000,
            )

        assert {line["product_id"] for line in exc_info.value.items} == {product.id, other.id}


# =============================================================================
# INPUT VALIDATION
# =============================================================================

class TestCheckoutValidation:
    def test_empty_cart_rejected(self, db_session):
        with pytest.raises(ValidationError) as exc_info:
            sales_service.create_sale(items=[], total_paid=0)
        assert "items" in exc_info.value.errors

    def test_duplicate_variant_rejected(self, db_session, product, pcs):
        with pytest.raises(ValidationError):
            sales_service.create_sale(
                items=[
                    {"product_id": product.id, "variant_id": pcs.id, "qty": 1},
                    {"product_id": product.id, "variant_id": pcs.id, "qty": 1},
                ],
                total_paid=10000,
            )

    def test_unknown_variant(self, db_session, product):
        with pytest.raises(NotFound):
            sales_service.create_sale(
                items=[{"product_id": product.id, "variant_id": 999999, "qty": 1}],
                total_paid=5000,
            )

    def test_variant_of_another_product(self, db_session, product, product_factory):
        other = product_factory(sku="GULA")
        with pytest.raises(ValidationError):
            sales_service.create_sale(
                items=[{"product_id": product.id, "variant_id": other.variants[0].id, "qty": 1}],
                total_paid=5000,
            )

    def test_archived_variant_cannot_be_sold(self, db_session, product, pcs):
        catalog_service.archive_variant(pcs.id)
        with pytest.raises(ValidationError):
            _sell(product, pcs, 1, 5000)

    @pytest.mark.parametrize("qty", ["1.0005", "0.0004", 0, "-1"])
    def test_quantity_outside_stock_precision_rejected(self, db_session, product, box, qty):
        """Quantities are rejected, never rounded, so the line and its mutation agree."""
        with pytest.raises(ValidationError) as exc_info:
            _sell(product, box, qty, 108000)

        assert "items[0].qty" in exc_info.value.errors
        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMutation).filter_by(type="sale").count() == 0
        assert catalog_service.get_product(product.id).stock == Decimal("40")

    def test_guest_cannot_take_debt(self, db_session, product, pcs):
        with pytest.raises(ValidationError):
            _sell(product, pcs, 2, 0, is_debt=True)

    def test_underpayment_without_debt_flag_rejected(self, db_session, product, customer, pcs):
        with pytest.raises(ValidationError) as exc_info:
            _sell(product, pcs, 2, 9000, customer_id=customer.id)
        assert exc_info.value.details["shortfall"] == Decimal("1000.00")
        assert db_session.query(Sale).count() == 0

    def test_state_machine(self, db_session, product, pcs):
        checkout = SaleCheckout(
            items=[SaleLineRequest(product_id=product.id, variant_id=pcs.id, qty=Decimal("1"))],
            total_paid=Decimal("5000"),
        )
        assert checkout.state == SaleState.BUILDING
        with pytest.raises(ValidationError):
            checkout.commit()

        checkout.run()
        assert checkout.state == SaleState.COMMITTED

    def test_rejected_state(self, db_session, product, pcs):
        checkout = SaleCheckout(
            items=[SaleLineRequest(product_id=product.id, variant_id=pcs.id, qty=Decimal("100"))],
            total_paid=Decimal("500000"),
        )
        with pytest.raises(InsufficientStock):
            checkout.run()
        assert checkout.state == SaleState.REJECTED


# =============================================================================
# PRICING AND PAYMENT
# =============================================================================

class TestCheckoutPricing:
    def test_price_and_factor_are_frozen(self, db_session, product, box):
        outcome = _sell(product, box, 1, 54000)
        catalog_service.update_variant(box.id, sell_price=60000, conversion_to_base=10)

        sale = sales_service.get_sale(outcome.sale.id)
        [item] = sale.items
        assert item.price_at_sale == Decimal("54000.00")
        assert item.unit_factor_at_sale == Decimal("12")
        assert item.cost_at_sale == Decimal("4000.0000")
        assert sale.total_price == Decimal("54000.00")

    def test_change_is_recorded(self, db_session, product, pcs):
        outcome = _sell(product, pcs, 3, 20000)
        assert outcome.sale.total_return == Decimal("5000.00")

    def test_credit_balance_reduces_amount_due(self, db_session, product, customer, pcs, give_credit):
        give_credit(customer, 4000)

        outcome = _sell(product, pcs, 2, 6000, customer_id=customer.id, total_balance_used=4000)

        assert outcome.sale.total_balance_used == Decimal("4000.00")
        assert outcome.sale.total_return == Decimal("0.00")
        assert catalog_service.get_product(product.id).stock == Decimal("38")
        assert get_customer(customer.id).credit_balance == Decimal("0.00")
        assert [m.type for m in list_balance_mutations(customer.id)] == ["credit_note", "sale_payment"]

    def test_balance_above_available_rejected(self, db_session, product, customer, pcs, give_credit):
        give_credit(customer, 1000)
        with pytest.raises(BalanceExceeded):
            _sell(product, pcs, 1, 3000, customer_id=customer.id, total_balance_used=2000)

    def test_balance_above_subtotal_rejected(self, db_session, product, customer, pcs, give_credit):
        give_credit(customer, 20000)
        with pytest.raises(BalanceExceeded):
            _sell(product, pcs, 1, 0, customer_id=customer.id, total_balance_used=6000)

    def test_guest_cannot_use_balance(self, db_session, product, pcs):
        with pytest.raises(ValidationError):
            _sell(product, pcs, 1, 0, total_balance_used=5000)


# =============================================================================
# DEBT
# =============================================================================

class TestCheckoutDebt:
    def test_underpayment_creates_debt(self, db_session, product, customer, pcs):
        outcome = _sell(product, pcs, 4, 5000, customer_id=customer.id, is_debt=True)

        assert outcome.sale.status == "debt"
        debt = db_session.query(Debt).filter_by(sale_id=outcome.sale.id).one()
        assert debt.original_amount == Decimal("15000.00")
        assert debt.remaining_amount == Decimal("15000.00")
        assert debt.status == "unpaid"
        assert debt.is_active is True

    def test_surplus_pays_old_debts_oldest_first(self, db_session, product, customer, pcs):
        first = _sell(product, pcs, 2, 0, customer_id=customer.id, is_debt=True)    # owes 10000
        second = _sell(product, pcs, 2, 4000, customer_id=customer.id, is_debt=True)  # owes 6000

        # New sale of 5000; 17000 paid -> 12000 surplus pays 10000 + 2000
        outcome = _sell(product, pcs, 1, 17000, customer_id=customer.id, should_pay_old_debt=True)

        first_debt = db_session.query(Debt).filter_by(sale_id=first.sale.id).one()
        second_debt = db_session.query(Debt).filter_by(sale_id=second.sale.id).one()
        assert first_debt.status == "paid"
        assert first_debt.is_active is False
        assert second_debt.status == "partial"
        assert second_debt.remaining_amount == Decimal("4000.00")
        assert outcome.sale.total_return == Decimal("0.00")
        assert [p.amount_paid for p in outcome.old_debt_payments] == [Decimal("10000.00"), Decimal("2000.00")]
        assert all(p.source_sale_id == outcome.sale.id for p in outcome.old_debt_payments)
        assert sales_service.get_sale(first.sale.id).status == "completed"

    def test_leftover_after_old_debts_is_change(self, db_session, product, customer, pcs):
        _sell(product, pcs, 1, 0, customer_id=customer.id, is_debt=True)  # owes 5000

        outcome = _sell(product, pcs, 1, 12000, customer_id=customer.id, should_pay_old_debt=True)

        assert outcome.sale.total_return == Decimal("2000.00")
        assert debt_service.get_customer_total_debt(customer.id) == Decimal("0.00")


# =============================================================================
# CANCELLATION
# =============================================================================

class TestCancelSale:
    def test_cancel_restores_stock_balance_and_debt(self, db_session, product, customer, pcs, give_credit):
        give_credit(customer, 3000)
        outcome = _sell(
            product, pcs, 4, 5000, customer_id=customer.id, total_balance_used=3000, is_debt=True
        )
        assert catalog_service.get_product(product.id).stock == Decimal("36")

        sale = sales_service.cancel_sale(outcome.sale.id, user_id=7, reason="Entered twice")

        assert sale.status == "cancelled"
        assert sale.cancelled_by_user_id == 7
        assert sale.cancel_reason == "Entered twice"
        assert catalog_service.get_product(product.id).stock == Decimal("40")
        assert get_customer(customer.id).credit_balance == Decimal("3000.00")
        debt = db_session.query(Debt).filter_by(sale_id=sale.id).one()
        assert debt.status == "cancelled"
        assert debt.is_active is False

        void = db_session.query(StockMutation).filter_by(type="sale_cancel").one()
        assert void.qty_base_unit == Decimal("4")
        assert void.reference == f"VOID-{sale.invoice_number}"

    def test_cancel_twice_rejected(self, db_session, product, pcs):
        outcome = _sell(product, pcs, 1, 5000)
        sales_service.cancel_sale(outcome.sale.id)
        with pytest.raises(ValidationError):
            sales_service.cancel_sale(outcome.sale.id)

    def test_cancel_keeps_ledger_balanced(self, db_session, product, box):
        outcome = _sell(product, box, 2, 108000)
        sales_service.cancel_sale(outcome.sale.id)

        [row] = inventory_service.verify_stock_conservation(product.id)
        assert row["ok"] is True
        assert row["stock"] == Decimal("40.000")

    def test_fractional_box_sale_and_cancel_round_trip(self, db_session, product, box):
        """1.5 boxes take 18 pcs out and the void puts the same 18 back."""
        outcome = _sell(product, box, "1.5", 81000)
        [item] = outcome.sale.items
        assert item.qty == Decimal("1.500")
        assert item.subtotal == Decimal("81000.00")
        assert catalog_service.get_product(product.id).stock == Decimal("22")

        sales_service.cancel_sale(outcome.sale.id)

        assert catalog_service.get_product(product.id).stock == Decimal("40")
        [row] = inventory_service.verify_stock_conservation(product.id)
        assert row["ok"] is True

    def test_cancel_unknown_sale(self, db_session):
        with pytest.raises(NotFound):
            sales_service.cancel_sale(123456)


class TestEditSale:
    def test_edit_swaps_lines_and_releases_old_stock(self, db_session, product, product_factory, pcs, box):
        """1 box (12 pcs) becomes 2 pcs of TEH plus 1 GULA; the 12 come back first."""
        gula = product_factory(sku="GULA", stock=10)
        gula_pcs = next(v for v in gula.variants if v.sku == "GULA-PCS")
        outcome = _sell(product, box, 1, 54000)
        assert catalog_service.get_product(product.id).stock == Decimal("28")

        edited = sales_service.edit_sale(
            outcome.sale.id,
            items=[
                {"product_id": product.id, "variant_id": pcs.id, "qty": 2},
                {"product_id": gula.id, "variant_id": gula_pcs.id, "qty": 1},
            ],
            total_paid=20000,
            user_id=4,
        ).sale

        assert edited.invoice_number == outcome.sale.invoice_number
        assert edited.total_price == Decimal("15000.00")
        assert edited.total_return == Decimal("5000.00")
        assert [(item.variant_id, item.qty) for item in edited.items] == [
            (pcs.id, Decimal("2.000")),
            (gula_pcs.id, Decimal("1.000")),
        ]
        assert catalog_service.get_product(product.id).stock == Decimal("38")
        assert catalog_service.get_product(gula.id).stock == Decimal("9")

        reversal = db_session.query(StockMutation).filter_by(type="sale_cancel").one()
        assert reversal.qty_base_unit == Decimal("12")
        assert reversal.reference == f"EDIT-{edited.invoice_number}"
        for row in inventory_service.verify_stock_conservation():
            assert row["ok"] is True

    def test_released_stock_counts_towards_new_lines(self, db_session, product_factory):
        """All 24 pcs sold as 2 boxes; editing to 24 pcs fits only with the 24 given back."""
        kopi = product_factory(sku="KOPI", stock=24)
        kopi_box = next(v for v in kopi.variants if v.sku == "KOPI-BOX")
        kopi_pcs = next(v for v in kopi.variants if v.sku == "KOPI-PCS")
        outcome = _sell(kopi, kopi_box, 2, 108000)
        assert catalog_service.get_product(kopi.id).stock == Decimal("0")

        sales_service.edit_sale(
            outcome.sale.id,
            items=[{"product_id": kopi.id, "variant_id": kopi_pcs.id, "qty": 24}],
            total_paid=120000,
        )
        assert catalog_service.get_product(kopi.id).stock == Decimal("0")

        with pytest.raises(InsufficientStock):
            sales_service.edit_sale(
                outcome.sale.id,
                items=[{"product_id": kopi.id, "variant_id": kopi_pcs.id, "qty": 25}],
                total_paid=125000,
            )

    def test_underpayment_rejected_and_sale_unchanged(self, db_session, product, pcs):
        outcome = _sell(product, pcs, 1, 5000)
        with pytest.raises(ValidationError):
            sales_service.edit_sale(
                outcome.sale.id,
                items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 3}],
                total_paid=10000,
            )

        sale = sales_service.get_sale(outcome.sale.id)
        assert [item.qty for item in sale.items] == [Decimal("1.000")]
        assert sale.total_price == Decimal("5000.00")
        assert catalog_service.get_product(product.id).stock == Decimal("39")

    def test_debt_sale_cannot_be_edited(self, db_session, product, customer, pcs):
        outcome = _sell(product, pcs, 2, 0, customer_id=customer.id, is_debt=True)
        with pytest.raises(ValidationError):
            sales_service.edit_sale(
                outcome.sale.id,
                items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 1}],
                total_paid=5000,
            )

    def test_sale_paid_with_balance_cannot_be_edited(self, db_session, product, customer, pcs, give_credit):
        give_credit(customer, 5000)
        outcome = _sell(product, pcs, 1, 0, customer_id=customer.id, total_balance_used=5000)
        with pytest.raises(ValidationError):
            sales_service.edit_sale(
                outcome.sale.id,
                items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 1}],
                total_paid=5000,
            )

    def test_sale_with_returns_cannot_be_edited(self, db_session, product, pcs):
        from tokopos.services import return_service

        outcome = _sell(product, pcs, 3, 15000)
        return_service.create_return(
            invoice_number=outcome.sale.invoice_number,
            items=[{"sale_item_id": outcome.sale.items[0].id, "qty": 1}],
            compensation_type="refund",
        )
        with pytest.raises(ValidationError):
            sales_service.edit_sale(
                outcome.sale.id,
                items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 1}],
                total_paid=5000,
            )

    def test_cancelled_sale_cannot_be_edited(self, db_session, product, pcs):
        outcome = _sell(product, pcs, 1, 5000)
        sales_service.cancel_sale(outcome.sale.id)
        with pytest.raises(ValidationError):
            sales_service.edit_sale(
                outcome.sale.id,
                items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 1}],
                total_paid=5000,
            )

    def test_unknown_sale(self, db_session, product, pcs):
        with pytest.raises(NotFound):
            sales_service.edit_sale(
                123456,
                items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 1}],
                total_paid=5000,
            )


class TestSaleQueries:
    def test_lookup_by_invoice(self, db_session, product, pcs):
        outcome = _sell(product, pcs, 1, 5000)
        sale = sales_service.get_sale_by_invoice(" INV-0000001 ")
        assert sale.id == outcome.sale.id

    def test_list_filters_by_status(self, db_session, product, customer, pcs):
        _sell(product, pcs, 1, 5000)
        _sell(product, pcs, 1, 0, customer_id=customer.id, is_debt=True)

        rows, total = sales_service.list_sales(status="debt")
        assert total == 1
        assert rows[0].status == "debt"

        with pytest.raises(ValidationError):
            sales_service.list_sales(status="bogus")
