"""
Pytest fixtures for posledger backend tests.

Provides an in-memory database, tenant/product fixtures, actor contexts per
role and a test client.
"""

from decimal import Decimal

import pytest

from posledger import create_app
from posledger.context import ActorContext
from posledger.extensions import db
from posledger.models import Product, Tenant


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TAX_LOCK_DAYS': 30,
        'OPERATOR_EDIT_WINDOW_HOURS': 24,
        'REQUIRE_EDIT_REASON': True,
        'ROUNDING_POLICY': 'nearest_unit',
    })

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
    """Create fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.expunge_all()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def tenant(db_session):
    tenant = Tenant(name="Corner Shop", code="CORNER", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def other_tenant(db_session):
    tenant = Tenant(name="Other Shop", code="OTHER", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


def make_product(session, tenant_id, sku, name, stock="100", selling_price="50.00",
                 cost_price="30.00", gst_rate="18"):
    product = Product(
        tenant_id=tenant_id,
        sku=sku,
        name=name,
        unit="pcs",
        cost_price=Decimal(cost_price),
        selling_price=Decimal(selling_price),
        gst_rate=Decimal(gst_rate),
        stock_quantity=Decimal(stock),
        is_active=True,
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def product(db_session, tenant):
    """100 on hand, sells at 50.00 + 18% GST."""
    return make_product(db_session, tenant.id, "SKU-001", "Basmati Rice 1kg")


@pytest.fixture(scope='function')
def second_product(db_session, tenant):
    return make_product(db_session, tenant.id, "SKU-002", "Sunflower Oil 1L",
                        stock="40", selling_price="120.00", cost_price="95.00", gst_rate="5")


@pytest.fixture(scope='function')
def cashier(tenant):
    return ActorContext(tenant_id=tenant.id, actor_id=3, actor_role="cashier")


@pytest.fixture(scope='function')
def manager(tenant):
    return ActorContext(tenant_id=tenant.id, actor_id=2, actor_role="manager")


@pytest.fixture(scope='function')
def admin(tenant):
    return ActorContext(tenant_id=tenant.id, actor_id=1, actor_role="admin")


@pytest.fixture(scope='function')
def super_admin(tenant):
    return ActorContext(tenant_id=tenant.id, actor_id=9, actor_role="super_admin")


@pytest.fixture(scope='function')
def other_product(db_session, other_tenant):
    return make_product(db_session, other_tenant.id, "SKU-001", "Basmati Rice 1kg")


@pytest.fixture(scope='session')
def headers_for():
    """Gateway headers for a request made as ctx."""
    def _headers(ctx: ActorContext) -> dict:
        return {
            'X-Tenant-Id': str(ctx.tenant_id),
            'X-Actor-Id': str(ctx.actor_id),
            'X-Actor-Role': ctx.actor_role,
        }
    return _headers
