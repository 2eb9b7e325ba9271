"""
Pytest fixtures for orderdesk tests.

Every test gets its own application with an ephemeral in-memory database,
so no state leaks between tests.
"""

import pytest

from orderdesk import create_app
from orderdesk.extensions import db
from orderdesk.services.audit_service import RequestContext
from orderdesk.services.checkout_service import CheckoutRequest, checkout
from orderdesk.services.inventory_service import InventoryLedger
from orderdesk.services.unit_of_work import UnitOfWork

TEST_SKU = "BLUESHIELD-PRO-001"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    # bcrypt's minimum cost; provisional credentials only
    'BCRYPT_ROUNDS': 4,
    'DEFAULT_PRODUCT_SKU': TEST_SKU,
    'ORDER_NUMBER_PREFIX': 'BSP',
}


@pytest.fixture(scope='function')
def app():
    """Create application with a fresh in-memory database."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def session(app):
    return db.session


@pytest.fixture(scope='function')
def uow(session):
    """Components bound to the test session (no coordinator, caller commits)."""
    return UnitOfWork(session, bcrypt_rounds=4)


@pytest.fixture(scope='function')
def context():
    return RequestContext(
        ip_address="203.0.113.7",
        user_agent="pytest",
        endpoint="/api/checkout",
        http_method="POST",
    )


@pytest.fixture(scope='function')
def product(session):
    """Default catalogue product priced 100.00 with 50 units."""
    product, _ = InventoryLedger(session).seed_product(
        sku=TEST_SKU,
        name="BlueShield Pro",
        unit_price_cents=10000,
        stock_quantity=50,
        specifications={"weight": "22g", "protection": "UV400"},
    )
    session.commit()
    return product


def make_request(**overrides) -> CheckoutRequest:
    """Valid checkout for ana@example.com / tax id 111."""
    data = {
        'customer_name': "Ana Souza",
        'email': "ana@example.com",
        'tax_id': "111",
        'phone': "+55 11 99999-0000",
        'postal_code': "01310100",
        'street': "Av. Paulista",
        'number': "1000",
        'complement': "Apt 12",
        'district': "Bela Vista",
        'city': "Sao Paulo",
        'region': "sp",
        'quantity': 2,
    }
    data.update(overrides)
    return CheckoutRequest(**data)


@pytest.fixture(scope='function')
def placed_order(session, product, context):
    """A committed pending order for 2 units."""
    return checkout(session, make_request(), context=context)
