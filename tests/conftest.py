import mongomock
import pytest

from catalog import CatalogSelector
from database import create_document, ensure_indexes
from ledger import PointsLedger
from orders import OrderRepository, OrderService
from schemas import ShippingAddress


@pytest.fixture
def db():
    database = mongomock.MongoClient().gifting
    ensure_indexes(database)
    return database


@pytest.fixture
def add_product(db):
    def _add(name="Coffee Mug", point_cost=30, stock=None, active=True, category="kitchen"):
        return create_document("product", {
            "name": name,
            "description": None,
            "point_cost": point_cost,
            "stock": stock,
            "category": category,
            "image_url": None,
            "active": active,
        }, database=db)
    return _add


@pytest.fixture
def add_tenant(db):
    def _add(slug="acme", status="approved", product_ids=()):
        return create_document("tenant", {
            "name": slug.title(),
            "slug": slug,
            "status": status,
            "contact_email": f"hr@{slug}.com",
            "selected_product_ids": list(product_ids),
            "branding": {"primary_color": "#000000", "secondary_color": "#ffffff"},
        }, database=db)
    return _add


@pytest.fixture
def add_employee(db):
    def _add(tenant_id, points=100, email="jane@acme.com", name="Jane Doe"):
        return create_document("employee", {
            "tenant_id": tenant_id,
            "email": email,
            "name": name,
            "department": None,
            "points": points,
        }, database=db)
    return _add


@pytest.fixture
def catalog(db):
    return CatalogSelector(db)


@pytest.fixture
def ledger(db):
    return PointsLedger(db)


@pytest.fixture
def repo(db):
    return OrderRepository(db)


@pytest.fixture
def service(db, catalog, ledger, repo):
    return OrderService(db, catalog, ledger, repo)


@pytest.fixture
def address():
    return ShippingAddress(full_name="Jane Doe", address_line1="1 Main St", city="Springfield", country="United States", country_code="US")


class RacingCollection:
    """Collection proxy that runs a callback right after the next find_one, simulating a concurrent writer."""

    def __init__(self, inner, on_read, times=1):
        self.inner = inner
        self.on_read = on_read
        self.times = times

    def find_one(self, *args, **kwargs):
        doc = self.inner.find_one(*args, **kwargs)
        if self.times:
            self.times -= 1
            self.on_read()
        return doc

    def __getattr__(self, name):
        return getattr(self.inner, name)


@pytest.fixture
def racing():
    return RacingCollection
