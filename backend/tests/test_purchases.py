"""
Purchase receiving and weighted average cost.

TEH starts with 40 pcs at an average cost of 4000.
"""

from decimal import Decimal

import pytest

from tokopos.errors import InsufficientStock, NotFound, ValidationError
from tokopos.models import StockMutation
from tokopos.services import catalog_service, inventory_service, purchase_service, sales_service


def _receive(product, variant, qty, price, **kwargs):
    return purchase_service.create_purchase(
        items=[{"product_id": product.id, "variant_id": variant.id, "qty": qty, "price": price}],
        **kwargs,
    )


class TestCreatePurchase:
    def test_pcs_purchase_updates_average_cost(self, db_session, product, pcs, supplier):
        order = _receive(product, pcs, 40, 5000, supplier_id=supplier.id)

        assert order.order_number == "PO-000001"
        assert order.total == Decimal("200000.00")
        refreshed = catalog_service.get_product(product.id)
        assert refreshed.stock == Decimal("80")
        assert refreshed.average_cost == Decimal("4500.0000")
        assert refreshed.last_purchase_cost == Decimal("5000.0000")

    def test_box_price_is_spread_over_base_units(self, db_session, product, box):
        # 2 boxes @ 54000 = 24 pcs @ 4500; (4000*40 + 4500*24) / 64
        _receive(product, box, 2, 54000)

        refreshed = catalog_service.get_product(product.id)
        assert refreshed.stock == Decimal("64")
        assert refreshed.average_cost == Decimal("4187.5000")
        assert refreshed.last_purchase_cost == Decimal("4500.0000")

    def test_purchase_writes_ledger_row(self, db_session, product, box):
        order = _receive(product, box, 1, 54000)

        mutation = db_session.query(StockMutation).filter_by(reference=order.order_number).one()
        assert mutation.type == "purchase"
        assert mutation.qty_base_unit == Decimal("12")
        assert mutation.unit_factor_at_mutation == Decimal("12")

    def test_item_snapshot_keeps_cost_before(self, db_session, product, pcs):
        order = _receive(product, pcs, 10, 6000)
        [item] = purchase_service.get_purchase(order.id).items
        assert item.cost_before == Decimal("4000.0000")
        assert item.unit_factor_at_purchase == Decimal("1")

    def test_numbers_are_sequential(self, db_session, product, pcs):
        first = _receive(product, pcs, 1, 4000)
        second = _receive(product, pcs, 1, 4000)
        assert (first.order_number, second.order_number) == ("PO-000001", "PO-000002")

    def test_validation_lists_every_bad_line(self, db_session, product, pcs, box):
        with pytest.raises(ValidationError) as exc_info:
            purchase_service.create_purchase(items=[
                {"product_id": product.id, "variant_id": pcs.id, "qty": 0, "price": 4000},
                {"product_id": product.id, "variant_id": box.id, "qty": 1, "price": -1},
            ])
        assert set(exc_info.value.errors) == {"items[0].qty", "items[1].price"}

    def test_empty_purchase_rejected(self, db_session):
        with pytest.raises(ValidationError):
            purchase_service.create_purchase(items=[])

    def test_unknown_supplier(self, db_session, product, pcs):
        with pytest.raises(NotFound):
            _receive(product, pcs, 1, 4000, supplier_id=404)
        assert catalog_service.get_product(product.id).stock == Decimal("40")


class TestCancelPurchase:
    def test_cancel_restores_stock_and_cost(self, db_session, product, pcs):
        order = _receive(product, pcs, 40, 5000)

        cancelled = purchase_service.cancel_purchase(order.id, user_id=1)

        assert cancelled.status == "cancelled"
        refreshed = catalog_service.get_product(product.id)
        assert refreshed.stock == Decimal("40")
        assert refreshed.average_cost == Decimal("4000.0000")
        void = db_session.query(StockMutation).filter_by(reference=f"VOID-{order.order_number}").one()
        assert void.type == "purchase_cancel"
        assert void.qty_base_unit == Decimal("-40")
        [row] = inventory_service.verify_stock_conservation(product.id)
        assert row["ok"] is True

    def test_cannot_cancel_goods_already_sold(self, db_session, product, pcs):
        order = _receive(product, pcs, 10, 5000)
        sales_service.create_sale(
            items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 45}],
            total_paid=225000,
        )

        with pytest.raises(InsufficientStock) as exc_info:
            purchase_service.cancel_purchase(order.id)

        [line] = exc_info.value.items
        assert line["requested"] == Decimal("10.000")
        assert line["available"] == Decimal("5.000")
        assert purchase_service.get_purchase(order.id).status == "received"

    def test_cancel_twice_rejected(self, db_session, product, pcs):
        order = _receive(product, pcs, 1, 4000)
        purchase_service.cancel_purchase(order.id)
        with pytest.raises(ValidationError):
            purchase_service.cancel_purchase(order.id)

    def test_list_by_status(self, db_session, product, pcs):
        kept = _receive(product, pcs, 1, 4000)
        voided = _receive(product, pcs, 1, 4000)
        purchase_service.cancel_purchase(voided.id)

        assert [o.id for o in purchase_service.list_purchases(status="received")] == [kept.id]


class TestEditPurchase:
    def test_edit_rereceives_from_restored_cost(self, db_session, product, pcs, supplier):
        # 40 @ 5000 undone (back to 40 @ 4000), then 20 @ 6000: (4000*40 + 6000*20) / 60
        order = _receive(product, pcs, 40, 5000)

        edited = purchase_service.edit_purchase(
            order.id,
            items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 20, "price": 6000}],
            supplier_id=supplier.id,
            user_id=2,
        )

        assert edited.order_number == order.order_number
        assert edited.supplier_id == supplier.id
        assert edited.total == Decimal("120000.00")
        [item] = purchase_service.get_purchase(order.id).items
        assert item.qty == Decimal("20.000")
        assert item.cost_before == Decimal("4000.0000")
        refreshed = catalog_service.get_product(product.id)
        assert refreshed.stock == Decimal("60")
        assert refreshed.average_cost == Decimal("4666.6667")

        undo = db_session.query(StockMutation).filter_by(reference=f"EDIT-{order.order_number}").one()
        assert undo.type == "purchase_cancel"
        assert undo.qty_base_unit == Decimal("-40")
        [row] = inventory_service.verify_stock_conservation(product.id)
        assert row["ok"] is True

    def test_edit_can_switch_product(self, db_session, product, product_factory, pcs):
        gula = product_factory(sku="GULA", stock=0)
        gula_box = next(v for v in gula.variants if v.sku == "GULA-BOX")
        order = _receive(product, pcs, 10, 4000)

        purchase_service.edit_purchase(
            order.id,
            items=[{"product_id": gula.id, "variant_id": gula_box.id, "qty": 1, "price": 48000}],
        )

        assert catalog_service.get_product(product.id).stock == Decimal("40")
        assert catalog_service.get_product(gula.id).stock == Decimal("12")

    def test_cannot_edit_goods_already_sold(self, db_session, product, pcs):
        order = _receive(product, pcs, 10, 5000)
        sales_service.create_sale(
            items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 45}],
            total_paid=225000,
        )

        with pytest.raises(InsufficientStock):
            purchase_service.edit_purchase(
                order.id,
                items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 1, "price": 5000}],
            )

        [item] = purchase_service.get_purchase(order.id).items
        assert item.qty == Decimal("10.000")
        assert catalog_service.get_product(product.id).stock == Decimal("5")

    def test_cancelled_purchase_cannot_be_edited(self, db_session, product, pcs):
        order = _receive(product, pcs, 1, 4000)
        purchase_service.cancel_purchase(order.id)
        with pytest.raises(ValidationError):
            purchase_service.edit_purchase(
                order.id,
                items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 2, "price": 4000}],
            )

    def test_bad_lines_rejected_before_anything_moves(self, db_session, product, pcs):
        order = _receive(product, pcs, 1, 4000)
        with pytest.raises(ValidationError) as exc_info:
            purchase_service.edit_purchase(
                order.id,
                items=[{"product_id": product.id, "variant_id": pcs.id, "qty": "0.0001", "price": 4000}],
            )
        assert exc_info.value.errors["items[0].qty"] == ["must have at most 3 decimal places"]
        assert catalog_service.get_product(product.id).stock == Decimal("41")
