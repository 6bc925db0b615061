from pathlib import Path

import mongomock
import pytest
from fastapi.testclient import TestClient

from storefront.auth import get_password_hash
from storefront.catalog import Catalog, get_catalog
from storefront.main import app
from storefront.notifications import RecordingEmailChannel, get_email_channel
from storefront.schemas import ADMINS, BLOGS, Admin, PRODUCTS, VARIANT_MAPPINGS, VARIANTS

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "s3cret-pass"


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)


@pytest.fixture()
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture()
def catalog(db):
    return Catalog(db)


@pytest.fixture()
def email_channel():
    return RecordingEmailChannel()


@pytest.fixture()
def client(catalog, email_channel):
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_email_channel] = lambda: email_channel
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def admin_headers(client, catalog):
    admin = Admin(name="Store Admin", email=ADMIN_EMAIL, password_hash=get_password_hash(ADMIN_PASSWORD))
    catalog.create(ADMINS, admin.model_dump())
    response = client.post("/api/admin/login", data={"username": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


class CatalogFactory:
    """Builds products with variants and mappings directly in the test database."""

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def variant(self, name="Red", price=10.0, sku=None, category="color"):
        return self.catalog.create(VARIANTS, {"name": name, "price": price, "sku": sku, "category": category})

    def product(self, title="Tee", slug=None, original_price=20.0, discounted_price=None, published=True, mappings=()):
        """``mappings`` holds dicts with variant, quantity and optional is_active/is_default/price_override."""
        product = self.catalog.create(
            PRODUCTS,
            {
                "title": title,
                "slug": slug or title.lower().replace(" ", "-"),
                "original_price": original_price,
                "discounted_price": discounted_price,
                "published": published,
                "variant_mappings": [],
            },
        )
        for spec in mappings:
            self.mapping(product, **spec)
        return self.catalog.find_by_id(PRODUCTS, product["id"])

    def mapping(self, product, variant, quantity=5, is_active=True, is_default=False, price_override=None):
        mapping = self.catalog.create(
            VARIANT_MAPPINGS,
            {
                "product": product["id"],
                "variant": variant["id"],
                "quantity": quantity,
                "price_override": price_override,
                "is_default": is_default,
                "is_active": is_active,
            },
            override_access=True,
        )
        self.catalog.push(PRODUCTS, product["id"], "variant_mappings", mapping["id"])
        return mapping

    def blog(self, title="Hello", slug=None, published=True):
        return self.catalog.create(
            BLOGS,
            {"title": title, "slug": slug or title.lower().replace(" ", "-"), "published": published},
        )


@pytest.fixture()
def factory(catalog):
    return CatalogFactory(catalog)
