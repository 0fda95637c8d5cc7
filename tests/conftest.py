"""Pytest fixtures for storefront tests."""

import itertools

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from storefront.auth import hash_password, issue_token
from storefront.catalog import ProductCatalog
from storefront.config import Settings
from storefront.database import ORDERS, USERS, ensure_indexes
from storefront.models import OrderStatus, PaymentMethod, Role, ShippingAddress, User
from storefront.orders import LineRequest, OrderManager

PASSWORD = "secret123"

SHIPPING = {
    "name": "Test Buyer",
    "street": "1 Main St",
    "city": "Almaty",
    "country": "KZ",
    "phone": "+7 700 000 0000",
}


@pytest.fixture(scope="session")
def password_hash():
    """Hash PASSWORD once; bcrypt is slow."""
    return hash_password(PASSWORD)


@pytest.fixture
def settings():
    return Settings(
        mongodb_uri="mongodb://unused",
        db_name="storefront_test",
        jwt_secret="test-secret",
        token_ttl_days=30,
    )


@pytest.fixture
def db():
    """A fresh in-memory database with the production indexes."""
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def make_user(db, password_hash):
    """Insert a user directly and return it."""
    counter = itertools.count(1)

    def _make(name=None, role=Role.USER, is_active=True, email=None):
        n = next(counter)
        user = User.create(
            name=name or f"User {n}",
            email=email or f"user{n}@example.com",
            password_hash=password_hash,
            role=role,
        )
        user.is_active = is_active
        db[USERS].insert_one(user.to_document())
        return user

    return _make


@pytest.fixture
def buyer(make_user):
    return make_user(name="Buyer")


@pytest.fixture
def admin(make_user):
    return make_user(name="Admin", role=Role.ADMIN)


@pytest.fixture
def make_product(db):
    counter = itertools.count(1)

    def _make(**overrides):
        n = next(counter)
        fields = {
            "name": f"Test Case {n}",
            "description": "A sturdy case for testing.",
            "category": "phone-case",
            "price": 10.0,
            "stock": 5,
            "images": [f"https://img.example.com/{n}.jpg"],
        }
        fields.update(overrides)
        return ProductCatalog(db).create_product(fields)

    return _make


@pytest.fixture
def shipping():
    return ShippingAddress(**SHIPPING)


@pytest.fixture
def place_order(db, shipping):
    """Place an order for (product, quantity) pairs on behalf of ``user``."""

    def _place(user, *lines, status=None):
        order = OrderManager(db).place_order(
            user.id,
            [LineRequest(product.id, qty) for product, qty in lines],
            shipping,
            PaymentMethod.CREDIT_CARD,
        )
        if status is not None:
            db[ORDERS].update_one(
                {"_id": ObjectId(order.id)}, {"$set": {"order_status": status.value}}
            )
        return order

    return _place


@pytest.fixture
def deliver(place_order):
    """Give ``user`` a delivered order containing one unit of ``product``."""

    def _deliver(user, product):
        return place_order(user, (product, 1), status=OrderStatus.DELIVERED)

    return _deliver


@pytest.fixture
def auth_headers(settings):
    def _headers(user):
        return {"Authorization": f"Bearer {issue_token(user.id, settings)}"}

    return _headers


@pytest.fixture
def client(db, settings):
    """TestClient bound to the in-memory database."""
    from storefront.api import app, get_app_settings, get_db

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_app_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()
