from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, get_db
from main import app
from payments import get_gateway
from schemas import Role
from security import create_access_token, hash_password

PASSWORD = "password123"
PASSWORD_HASH = hash_password(PASSWORD)

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeTransactions:
    def __init__(self):
        self.calls = []
        self.error = None
        self.result = SimpleNamespace(
            is_success=True,
            transaction=SimpleNamespace(
                id="txn_ok",
                status="submitted_for_settlement",
                type="sale",
                amount=Decimal("300.00"),
                currency_iso_code="USD",
            ),
        )

    def decline(self, message="Do Not Honor"):
        self.result = SimpleNamespace(
            is_success=False,
            message=message,
            errors=SimpleNamespace(deep_errors=[]),
            transaction=SimpleNamespace(id="txn_declined", status="processor_declined"),
        )

    def sale(self, params):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        return self.result


class FakeClientToken:
    def __init__(self):
        self.token = "fake-client-token"
        self.error = None

    def generate(self, params=None):
        if self.error is not None:
            raise self.error
        return self.token


class FakeGateway:
    def __init__(self):
        self.transaction = FakeTransactions()
        self.client_token = FakeClientToken()


@pytest.fixture
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_user(db, email, role=Role.USER, **extra):
    doc = {
        "name": extra.pop("name", "Test User"),
        "email": email,
        "password": PASSWORD_HASH,
        "phone": "12345678",
        "address": "1 Test Street",
        "answer": "Swimming",
        "role": int(role),
    }
    doc.update(extra)
    user_id = create_document(db, "user", doc)
    return db["user"].find_one({"_id": user_id})


def bearer(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user['_id'])})}"}


@pytest.fixture
def buyer(db):
    return make_user(db, "buyer@example.com")


@pytest.fixture
def admin(db):
    return make_user(db, "admin@example.com", role=Role.ADMIN, name="Admin")


@pytest.fixture
def buyer_headers(buyer):
    return bearer(buyer)


@pytest.fixture
def admin_headers(admin):
    return bearer(admin)


def make_category(db, name):
    category_id = create_document(db, "category", {"name": name, "slug": name.lower()})
    return db["category"].find_one({"_id": category_id})


def make_product(db, name, price, category, minutes=0, description=None, photo=None, quantity=10):
    doc = {
        "name": name,
        "slug": name.lower().replace(" ", "-"),
        "description": description or f"All about {name}",
        "price": price,
        "category": category["_id"] if isinstance(category, dict) else category,
        "quantity": quantity,
        "shipping": True,
        "created_at": BASE_TIME + timedelta(minutes=minutes),
    }
    if photo is not None:
        doc["photo"] = {"data": photo, "content_type": "image/jpeg"}
    product_id = create_document(db, "product", doc)
    return db["product"].find_one({"_id": product_id})


@pytest.fixture
def books(db):
    return make_category(db, "Book")


@pytest.fixture
def food(db):
    return make_category(db, "Food")
