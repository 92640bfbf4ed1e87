"""
Stock adjustments, write-offs, supplier returns and the conservation check.
"""

from decimal import Decimal

import pytest
from sqlalchemy import update as sa_update

from tokopos.errors import ConflictError, InsufficientStock, NotFound, ValidationError
from tokopos.extensions import db
from tokopos.models import Product, StockMutation, SupplierReturn
from tokopos.services import catalog_service, customer_service, inventory_service, purchase_service, sales_service
from tokopos.services.concurrency import lock_for_update
from tokopos.services.stock_ledger_service import list_mutations, record_mutation


class TestCatalog:
    def test_opening_stock_is_booked_in_ledger(self, db_session, product):
        [mutation] = list_mutations(product_id=product.id)
        assert mutation.type == "adjustment"
        assert mutation.reference == "INIT-TEH"
        assert mutation.qty_base_unit == Decimal("40")

    def test_duplicate_sku_rejected(self, db_session, unit, product):
        with pytest.raises(ConflictError):
            catalog_service.create_product(sku="TEH", name="Teh lagi", base_unit_id=unit.id)

    def test_missing_fields_listed(self, db_session, unit):
        with pytest.raises(ValidationError) as exc_info:
            catalog_service.create_product(sku="", name="", base_unit_id=unit.id)
        assert set(exc_info.value.errors) == {"sku", "name"}

    def test_zero_conversion_factor_rejected(self, db_session, unit):
        with pytest.raises(ValidationError):
            catalog_service.create_product(
                sku="KOPI",
                name="Kopi",
                base_unit_id=unit.id,
                variants=[{"name": "Pcs", "sku": "KOPI-PCS", "conversion_to_base": 0, "sell_price": 3000}],
            )
        assert db_session.query(Product).filter_by(sku="KOPI").count() == 0

    def test_add_variant(self, db_session, product):
        variant = catalog_service.add_variant(
            product.id, {"name": "Pack 6", "sku": "TEH-PACK6", "conversion_to_base": 6, "sell_price": 28000}
        )
        assert variant.conversion_to_base == Decimal("6")
        assert len(catalog_service.get_product(product.id).variants) == 3

    def test_search_products(self, db_session, product, product_factory):
        product_factory(sku="KOPI")
        assert [p.sku for p in catalog_service.list_products("kop")] == ["KOPI"]
        assert len(catalog_service.list_products()) == 2

    def test_customers_and_suppliers_listed(self, db_session, customer, supplier):
        assert [c.name for c in customer_service.list_customers("bud")] == ["Budi"]
        assert [s.name for s in catalog_service.list_suppliers()] == ["CV Sumber"]

    def test_archived_variant_hidden_from_summary(self, db_session, product, box):
        catalog_service.archive_variant(box.id)
        summary = inventory_service.get_stock_summary(product.id)
        assert [v["sku"] for v in summary["variants"]] == ["TEH-PCS"]


class TestCategories:
    def test_create_rename_and_list(self, db_session):
        snack = catalog_service.create_category("Snack")
        catalog_service.create_category("Minuman")

        catalog_service.update_category(snack.id, "Makanan Ringan")

        assert [c.name for c in catalog_service.list_categories()] == ["Makanan Ringan", "Minuman"]

    def test_name_rules(self, db_session):
        catalog_service.create_category("Snack")
        with pytest.raises(ValidationError):
            catalog_service.create_category("ab")
        with pytest.raises(ConflictError):
            catalog_service.create_category("Snack")

    def test_products_filtered_by_category(self, db_session, unit, product):
        drinks = catalog_service.create_category("Minuman")
        kopi = catalog_service.create_product(sku="KOPI", name="Kopi", base_unit_id=unit.id, category_id=drinks.id)

        assert [p.id for p in catalog_service.list_products(category_id=drinks.id)] == [kopi.id]
        assert kopi.to_dict()["category"] == "Minuman"

    def test_category_in_use_cannot_be_deleted(self, db_session, product):
        drinks = catalog_service.create_category("Minuman")
        catalog_service.update_product(product.id, category_id=drinks.id)

        with pytest.raises(ConflictError):
            catalog_service.delete_category(drinks.id)

        catalog_service.update_product(product.id, clear_category=True)
        catalog_service.delete_category(drinks.id)
        assert catalog_service.list_categories() == []

    def test_unknown_category_on_product(self, db_session, unit):
        with pytest.raises(NotFound):
            catalog_service.create_product(sku="KOPI", name="Kopi", base_unit_id=unit.id, category_id=404)


class TestMasterDataMaintenance:
    def test_update_product_keeps_stock(self, db_session, product, product_factory):
        product_factory(sku="GULA")
        updated = catalog_service.update_product(product.id, sku="TEH-BTL", name="Teh Botol", min_stock=6)

        assert (updated.sku, updated.name) == ("TEH-BTL", "Teh Botol")
        assert updated.min_stock == Decimal("6.000")
        assert updated.stock == Decimal("40")
        with pytest.raises(ConflictError):
            catalog_service.update_product(product.id, sku="GULA")

    def test_deleted_product_is_hidden_and_cannot_be_sold(self, db_session, product, pcs):
        catalog_service.delete_product(product.id)

        assert catalog_service.list_products() == []
        assert [p.id for p in catalog_service.list_products(include_inactive=True)] == [product.id]
        with pytest.raises(ValidationError):
            sales_service.create_sale(
                items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 1}],
                total_paid=5000,
            )
        [row] = inventory_service.verify_stock_conservation(product.id)
        assert row["ok"] is True

    def test_unit_rename_and_delete(self, db_session, unit, product):
        kg = catalog_service.create_unit("kg")
        catalog_service.update_unit(kg.id, "kilogram")
        with pytest.raises(ConflictError):
            catalog_service.update_unit(kg.id, "pcs")
        with pytest.raises(ConflictError):
            catalog_service.delete_unit(unit.id)

        catalog_service.delete_unit(kg.id)
        assert [u.name for u in catalog_service.list_units()] == ["pcs"]

    def test_supplier_update_and_delete(self, db_session, product, pcs, supplier):
        spare = catalog_service.create_supplier(name="UD Lama")
        catalog_service.update_supplier(supplier.id, phone="0274123")
        assert catalog_service.get_supplier(supplier.id).phone == "0274123"

        purchase_service.create_purchase(
            items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 1, "price": 4000}],
            supplier_id=supplier.id,
        )
        with pytest.raises(ConflictError):
            catalog_service.delete_supplier(supplier.id)

        catalog_service.delete_supplier(spare.id)
        with pytest.raises(NotFound):
            catalog_service.get_supplier(spare.id)

    def test_customer_delete_is_soft_and_blocked_by_debt(self, db_session, product, customer, pcs):
        outcome = sales_service.create_sale(
            items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 1}],
            total_paid=0,
            customer_id=customer.id,
            is_debt=True,
        )
        with pytest.raises(ConflictError):
            customer_service.delete_customer(customer.id)

        sales_service.cancel_sale(outcome.sale.id)
        customer_service.delete_customer(customer.id)

        assert customer_service.get_customer(customer.id).is_active is False
        assert customer_service.list_customers() == []
        assert len(customer_service.list_customers(include_inactive=True)) == 1
        with pytest.raises(ValidationError):
            sales_service.create_sale(
                items=[{"product_id": product.id, "variant_id": pcs.id, "qty": 1}],
                total_paid=5000,
                customer_id=customer.id,
            )

class TestAdjustStock:
    def test_counted_quantity_becomes_stock(self, db_session, product):
        result = inventory_service.adjust_stock(product.id, actual_stock=35, reason="Stock opname")

        assert result["changed"] is True
        assert result["difference"] == Decimal("-5.000")
        assert catalog_service.get_product(product.id).stock == Decimal("35")
        assert result["mutation"]["type"] == "adjustment"

    def test_no_change_writes_nothing(self, db_session, product):
        before = db_session.query(StockMutation).count()
        result = inventory_service.adjust_stock(product.id, actual_stock=40)

        assert result["changed"] is False
        assert result["mutation"] is None
        assert db_session.query(StockMutation).count() == before

    def test_positive_adjustment_with_cost_updates_average(self, db_session, product):
        # (4000 * 40 + 6000 * 10) / 50
        inventory_service.adjust_stock(product.id, actual_stock=50, unit_cost=6000)
        assert catalog_service.get_product(product.id).average_cost == Decimal("4400.0000")

    def test_adjustment_without_cost_keeps_average(self, db_session, product):
        inventory_service.adjust_stock(product.id, actual_stock=50)
        assert catalog_service.get_product(product.id).average_cost == Decimal("4000.0000")

    def test_negative_count_rejected(self, db_session, product):
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(product.id, actual_stock=-1)

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFound):
            inventory_service.adjust_stock(999, actual_stock=1)


class TestOutbound:
    def test_waste_in_variant_units(self, db_session, product, box):
        result = inventory_service.record_waste(product.id, box.id, qty=1, reason="Expired")

        assert result["mutation"]["qty_base_unit"] == Decimal("-12.000")
        refreshed = catalog_service.get_product(product.id)
        assert refreshed.stock == Decimal("28")
        assert refreshed.average_cost == Decimal("4000.0000")

    def test_waste_more_than_on_hand(self, db_session, product, box):
        with pytest.raises(InsufficientStock) as exc_info:
            inventory_service.record_waste(product.id, box.id, qty=4)
        [line] = exc_info.value.items
        assert line["requested"] == Decimal("48.000")
        assert line["available"] == Decimal("40.000")
        assert catalog_service.get_product(product.id).stock == Decimal("40")

    def test_waste_quantity_beyond_stock_precision_rejected(self, db_session, product, box):
        with pytest.raises(ValidationError) as exc_info:
            inventory_service.record_waste(product.id, box.id, qty="0.0004")
        assert exc_info.value.errors == {"qty": ["must have at most 3 decimal places"]}
        assert catalog_service.get_product(product.id).stock == Decimal("40")

    def test_supplier_return(self, db_session, product, pcs, supplier):
        supplier_return = inventory_service.return_to_supplier(
            supplier.id, product.id, pcs.id, qty=3, reason="Salah kirim"
        )

        assert db_session.query(SupplierReturn).count() == 1
        assert supplier_return.qty == Decimal("3.000")
        mutation = db_session.query(StockMutation).filter_by(reference=f"SR-{supplier_return.id}").one()
        assert mutation.type == "supplier_return"
        assert catalog_service.get_product(product.id).stock == Decimal("37")

    def test_supplier_return_for_unknown_supplier(self, db_session, product, pcs):
        with pytest.raises(NotFound):
            inventory_service.return_to_supplier(404, product.id, pcs.id, qty=1)

    def test_variant_must_match_product(self, db_session, product, product_factory):
        other = product_factory(sku="GULA")
        other_pcs = next(v for v in other.variants if v.sku == "GULA-PCS")
        with pytest.raises(ValidationError):
            inventory_service.record_waste(product.id, other_pcs.id, qty=1)


class TestStockQueries:
    def test_low_stock(self, db_session, product, product_factory):
        low = product_factory(sku="KOPI", stock=5, min_stock=10)
        product_factory(sku="GULA", stock=10, min_stock=10)

        skus = [p.sku for p in inventory_service.list_low_stock()]

        assert skus == ["KOPI", "GULA"]
        assert low.sku in skus
        assert product.sku not in skus

    def test_summary_shows_stock_per_variant(self, db_session, product):
        summary = inventory_service.get_stock_summary(product.id)
        by_sku = {v["sku"]: v["stock_in_variant_units"] for v in summary["variants"]}
        assert by_sku == {"TEH-PCS": Decimal("40.000"), "TEH-BOX": Decimal("3.333")}
        assert len(summary["recent_mutations"]) == 1

    def test_conservation_holds_after_mixed_activity(self, db_session, product, box, supplier):
        inventory_service.record_waste(product.id, box.id, qty=1)
        inventory_service.adjust_stock(product.id, actual_stock=30)
        inventory_service.return_to_supplier(supplier.id, product.id, box.id, qty=1)

        [row] = inventory_service.verify_stock_conservation(product.id)
        assert row["ok"] is True
        assert row["stock"] == Decimal("18.000")

    def test_conservation_detects_tampering(self, db_session, product):
        db.session.query(Product).filter_by(id=product.id).update({"stock": Decimal("99")})
        db.session.commit()

        [row] = inventory_service.verify_stock_conservation(product.id)
        assert row["ok"] is False
        assert row["ledger_sum"] == Decimal("40.000")

    def test_unknown_mutation_type_rejected(self, db_session, product):
        with pytest.raises(ValidationError):
            record_mutation(product, variant_id=None, mutation_type="teleport", qty_base_unit=1)


class TestRowLocking:
    def test_locked_read_refreshes_rows_already_in_session(self, db_session, product):
        """A row loaded before the lock is re-read, so checks see the locked values."""
        loaded = db.session.get(Product, product.id)
        assert loaded.stock == Decimal("40")
        db.session.execute(
            sa_update(Product).where(Product.id == product.id).values(stock=Decimal("7")),
            execution_options={"synchronize_session": False},
        )

        locked = lock_for_update(db.session.query(Product).filter_by(id=product.id)).one()

        assert locked is loaded
        assert locked.stock == Decimal("7")
        db.session.rollback()
