"""
Pytest fixtures for settlement core tests.

Provides the app on in-memory SQLite, a table-clearing session, and a small
catalog: two plain products, water sold by the unit or by the carton of 12,
tiered clients, and an open cash session.
"""

import pytest

from pos_core import create_app
from pos_core.extensions import db
from pos_core.models import Warehouse, Client, Product, ProductVariant
from pos_core.services.catalog_store import CatalogStore
from pos_core.services.ledger_store import LedgerStore
from pos_core.services import cash_session_service


TEST_SEED = 20261017


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'POS_OVERSELL_POLICY': 'warn',
        'POS_DEFAULT_UNIT_PRICE_CENTS': 1000,
        'POS_GENERAL_CLIENT_NAME': 'General Client',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def catalog(db_session):
    return CatalogStore(backoff_base=0)


@pytest.fixture(scope='function')
def ledger(db_session):
    return LedgerStore(backoff_base=0)


@pytest.fixture(scope='function')
def warehouse(db_session):
    warehouse = Warehouse(name="Main")
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def client_a(db_session):
    """Client on the A price list."""
    client = Client(name="Grocery Lina", subscription_tier="A")
    db_session.add(client)
    db_session.commit()
    return client


@pytest.fixture(scope='function')
def product_x(db_session):
    """10.00 on every tier."""
    product = Product(sku="X-001", name="Product X", price_cents=1000, price_e_cents=1000, unit_type="unit")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_y(db_session):
    """25.00 for walk-ins, 22.00 for tier A."""
    product = Product(
        sku="Y-001",
        name="Product Y",
        price_cents=2500,
        price_a_cents=2200,
        price_e_cents=2500,
        unit_type="unit",
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def water(db_session):
    """Bottle at 6.00, carton of 12 at 68.00."""
    product = Product(sku="WATER", name="Water", price_cents=600, price_e_cents=600, unit_type="unit")
    db_session.add(product)
    db_session.flush()
    carton = ProductVariant(
        product_id=product.id,
        variant_name="Carton x12",
        unit_type="carton",
        quantity_contained=12,
        price_e_cents=6800,
    )
    db_session.add(carton)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def water_carton(water):
    return water.variants[0]


@pytest.fixture(scope='function')
def stocked(catalog, warehouse, product_x, product_y, water, water_carton):
    """Stock for every fixture product in the main warehouse."""
    catalog.set_stock(product_x.id, warehouse.id, 100)
    catalog.set_stock(product_y.id, warehouse.id, 100)
    catalog.set_stock(water.id, warehouse.id, 240)
    catalog.set_stock(water.id, warehouse.id, 20, variant_id=water_carton.id)
    return warehouse


@pytest.fixture(scope='function')
def open_session(ledger, warehouse):
    """Cash session for employee 7 with a 200.00 float."""
    return cash_session_service.open_cash_session(7, warehouse.id, 20000, ledger=ledger)
