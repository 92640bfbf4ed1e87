"""
Pytest fixtures for the store backend tests.

Provides the test app (in-memory SQLite), a clean database per test,
and a small seeded catalog:

- unit "pcs"
- product TEH (40 pcs on hand, average cost 4000) with variants
  "Pcs" (x1, 5000) and "Box 12" (x12, 54000)
- customer "Budi" and supplier "CV Sumber"
"""

from decimal import Decimal

import pytest

from tokopos import create_app
from tokopos.config import TestConfig
from tokopos.extensions import db
from tokopos.services import catalog_service, customer_service
from tokopos.services.customer_service import BALANCE_CREDIT_NOTE, change_credit_balance


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test (schema is kept)."""
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


# =============================================================================
# CATALOG FIXTURES
# =============================================================================

@pytest.fixture(scope='function')
def unit(db_session):
    return catalog_service.create_unit("pcs")


def make_product(unit, *, sku="TEH", stock=40, cost=4000, min_stock=10):
    return catalog_service.create_product(
        sku=sku,
        name=f"Product {sku}",
        base_unit_id=unit.id,
        min_stock=min_stock,
        initial_stock=stock,
        initial_cost=cost,
        variants=[
            {"name": "Pcs", "sku": f"{sku}-PCS", "conversion_to_base": 1, "sell_price": 5000},
            {"name": "Box 12", "sku": f"{sku}-BOX", "conversion_to_base": 12, "sell_price": 54000},
        ],
    )


@pytest.fixture(scope='function')
def product_factory(unit):
    """Build extra products: product_factory(sku="KOPI", stock=5)."""
    def _make(**kwargs):
        return make_product(unit, **kwargs)
    return _make


@pytest.fixture(scope='function')
def product(unit):
    return make_product(unit)


@pytest.fixture(scope='function')
def pcs(product):
    return next(v for v in product.variants if v.sku == "TEH-PCS")


@pytest.fixture(scope='function')
def box(product):
    return next(v for v in product.variants if v.sku == "TEH-BOX")


@pytest.fixture(scope='function')
def customer(db_session):
    return customer_service.create_customer(name="Budi", phone="0812000111")


@pytest.fixture(scope='function')
def supplier(db_session):
    return catalog_service.create_supplier(name="CV Sumber")


def _give_credit(customer, amount):
    """Top up a customer's credit balance the way a credit note would."""
    change_credit_balance(
        customer_service.get_customer(customer.id),
        Decimal(str(amount)),
        mutation_type=BALANCE_CREDIT_NOTE,
        reference="TEST-CREDIT",
    )
    db.session.commit()


@pytest.fixture(scope='function')
def give_credit(db_session):
    return _give_credit
