"""
Pytest fixtures for StockSense ledger tests.

Provides an in-memory database, a per-test clean session, two tenants, and
the locations/products most tests need.
"""

from decimal import Decimal

import pytest

from stocksense import create_app
from stocksense.extensions import db
from stocksense.locations import Location
from stocksense.models import Company, Branch, Warehouse, User, Product, Supplier
from stocksense.services.tenant_service import TenantContext


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCKSENSE_TOP_PRODUCTS_LIMIT': 5,
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
def company(db_session):
    """Company A (first tenant)."""
    c = Company(name="Company A - Acme Trading", code="ACME", is_active=True)
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def other_company(db_session):
    """Company B (second tenant)."""
    c = Company(name="Company B - Beta Retail", code="BETA", is_active=True)
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def user(db_session, company):
    u = User(company_id=company.id, name="Cashier A", email="cashier@acme.test", role="cashier")
    db_session.add(u)
    db_session.commit()
    return u


@pytest.fixture(scope='function')
def ctx(company, user):
    return TenantContext(company_id=company.id, user_id=user.id)


@pytest.fixture(scope='function')
def other_ctx(other_company):
    return TenantContext(company_id=other_company.id)


@pytest.fixture(scope='function')
def branch(db_session, company):
    b = Branch(company_id=company.id, name="Main Branch")
    db_session.add(b)
    db_session.commit()
    return b


@pytest.fixture(scope='function')
def warehouses(db_session, company):
    """Two warehouses of company A: (W1, W2)."""
    w1 = Warehouse(company_id=company.id, name="W1")
    w2 = Warehouse(company_id=company.id, name="W2")
    db_session.add_all([w1, w2])
    db_session.commit()
    return w1, w2


@pytest.fixture(scope='function')
def w1(warehouses):
    return Location.warehouse(warehouses[0].id)


@pytest.fixture(scope='function')
def w2(warehouses):
    return Location.warehouse(warehouses[1].id)


@pytest.fixture(scope='function')
def other_warehouse(db_session, other_company):
    w = Warehouse(company_id=other_company.id, name="B-W1")
    db_session.add(w)
    db_session.commit()
    return w


@pytest.fixture(scope='function')
def supplier(db_session, company):
    s = Supplier(company_id=company.id, name="Gulf Supplies")
    db_session.add(s)
    db_session.commit()
    return s


def _product(db_session, company_id, sku, name, buy, sell, min_qty="0", tax=None):
    p = Product(
        company_id=company_id,
        sku=sku,
        name=name,
        unit="piece",
        buy_price_cents=buy,
        sell_price_cents=sell,
        min_quantity=Decimal(min_qty),
        tax_rate_percent=Decimal(tax) if tax is not None else None,
        is_active=True,
    )
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def product(db_session, company):
    """Product P: buys at 10.00, sells at 15.00, reorder at 5."""
    return _product(db_session, company.id, "P-001", "Product P", 1000, 1500, min_qty="5")


@pytest.fixture(scope='function')
def second_product(db_session, company):
    return _product(db_session, company.id, "P-002", "Product Q", 200, 500)


@pytest.fixture(scope='function')
def taxed_product(db_session, company):
    """Sells at 100.00 with 15% tax."""
    return _product(db_session, company.id, "P-TAX", "Taxed Product", 6000, 10000, tax="15")


@pytest.fixture(scope='function')
def other_product(db_session, other_company):
    return _product(db_session, other_company.id, "B-001", "Beta Product", 100, 200)


@pytest.fixture(scope='function')
def make_product(db_session, company):
    """Factory for extra products of company A."""
    counter = {"n": 0}

    def _make(buy=100, sell=200, min_qty="0", name=None):
        counter["n"] += 1
        n = counter["n"]
        return _product(db_session, company.id, f"X-{n:03d}", name or f"Extra {n}", buy, sell, min_qty=min_qty)

    return _make
