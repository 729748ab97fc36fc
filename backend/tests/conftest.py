"""
Pytest fixtures for tillbook backend tests.

Provides the app on in-memory SQLite, a per-test table wipe, a product
factory, the billing services wired together, and store doubles that fail or
race on purpose.
"""

import pytest
from sqlalchemy.orm.exc import StaleDataError

from tillbook import create_app
from tillbook.config import TestingConfig
from tillbook.extensions import db
from tillbook.models import Product
from tillbook.services.cart_service import Cart, CartRegistry
from tillbook.services.catalog_service import CatalogSnapshot, CatalogStore
from tillbook.services.checkout_service import CheckoutOrchestrator
from tillbook.services.errors import PersistenceError
from tillbook.services.ledger_service import BillLedger
from tillbook.services.return_service import ReturnProcessor
from tillbook.services.stock_service import StockReconciler
from tillbook.services.wiring import CART_REGISTRY_KEY

TAX_BPS = 1800


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    app.extensions[CART_REGISTRY_KEY] = CartRegistry()

    yield db.session

    # Cleanup after test
    db.session.rollback()


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product("A-001", quantity=5, selling_price_cents=1000)."""
    def _make(code, name=None, selling_price_cents=1000, quantity=10, **fields):
        product = Product(
            product_code=code,
            name=name or f"Product {code}",
            selling_price_cents=selling_price_cents,
            quantity=quantity,
            subcategories=fields.pop("subcategories", []),
            **fields,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product_a(make_product):
    """10.00 each, 5 in stock."""
    return make_product("A-001", "Product A", selling_price_cents=1000, quantity=5)


@pytest.fixture(scope='function')
def product_b(make_product):
    """5.00 each, 3 in stock."""
    return make_product("B-001", "Product B", selling_price_cents=500, quantity=3)


@pytest.fixture(scope='function')
def store(db_session):
    return CatalogStore()


@pytest.fixture(scope='function')
def catalog(store, product_a, product_b):
    return CatalogSnapshot(store).refresh()


@pytest.fixture(scope='function')
def cart(catalog):
    return Cart(catalog, TAX_BPS)


@pytest.fixture(scope='function')
def ledger(db_session):
    return BillLedger()


@pytest.fixture(scope='function')
def reconciler(store):
    return StockReconciler(store, backoff_base=0)


@pytest.fixture(scope='function')
def orchestrator(ledger, reconciler):
    return CheckoutOrchestrator(ledger, reconciler, TAX_BPS)


@pytest.fixture(scope='function')
def returns(ledger, reconciler):
    return ReturnProcessor(ledger, reconciler, TAX_BPS)


def stock_of(code: str) -> int:
    """Persisted stock count, bypassing the session identity map."""
    db.session.expire_all()
    return db.session.query(Product).filter_by(product_code=code).one().quantity


# =============================================================================
# STORE / LEDGER DOUBLES
# =============================================================================

class FailingWriteStore(CatalogStore):
    """Catalog store whose quantity writes fail for the given product codes."""

    def __init__(self, fail_codes):
        self.fail_codes = set(fail_codes)

    def set_quantity(self, product_id, quantity, *, expected_version):
        view = self.get_by_id(product_id)
        if view is not None and view.product_code in self.fail_codes:
            raise PersistenceError("simulated write failure", details={"product_code": view.product_code})
        return super().set_quantity(product_id, quantity, expected_version=expected_version)


class RacingStore(CatalogStore):
    """
    Simulates another terminal: the first read of ``code`` is followed by a
    committed competing write of ``competitor_delta``, so the caller holds a
    stale version when it writes.
    """

    def __init__(self, code, competitor_delta):
        self.code = code
        self.competitor_delta = competitor_delta
        self.raced = False

    def get(self, code):
        view = super().get(code)
        if view is not None and not self.raced and view.product_code == self.code:
            self.raced = True
            super().set_quantity(
                view.product_id,
                max(0, view.quantity + self.competitor_delta),
                expected_version=view.version,
            )
            db.session.commit()
        return view


class AlwaysStaleStore(CatalogStore):
    def set_quantity(self, product_id, quantity, *, expected_version):
        raise StaleDataError("simulated conflict")


class FailingLedger(BillLedger):
    """Ledger whose inserts fail; ``returns_only`` limits it to return bills."""

    def __init__(self, returns_only=False):
        self.returns_only = returns_only

    def create(self, draft):
        if draft.is_return or not self.returns_only:
            raise PersistenceError("simulated insert failure", details={"bill_id": draft.bill_id})
        return super().create(draft)
