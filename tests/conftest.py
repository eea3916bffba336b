import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from main import app
from security import create_access_token


@pytest.fixture
def db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="user", email=None, password_hash="not-a-real-hash"):
        counter["n"] += 1
        doc = {
            "name": f"User {counter['n']}",
            "age": 30,
            "email": email or f"user{counter['n']}@mail.com",
            "password_hash": password_hash,
            "role": role,
            "address": "1 Main Street",
            "contact": "5550100",
        }
        user_id = create_document(db, "user", doc)
        return db["user"].find_one({"_id": ObjectId(user_id)})

    return _make


@pytest.fixture
def make_product(db, make_user):
    seller = {}

    def _make(**overrides):
        if "seller" not in seller:
            seller["seller"] = make_user(role="admin")
        doc = {
            "seller_id": str(seller["seller"]["_id"]),
            "name": "Widget",
            "description": "A widget",
            "cost_price": 20.0,
            "sale_price": 10.0,
            "category": "electronics",
            "stock": 5,
            "images": [],
        }
        doc.update(overrides)
        product_id = create_document(db, "product", doc)
        return db["product"].find_one({"_id": ObjectId(product_id)})

    return _make


def bearer(user: dict) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role="admin")


@pytest.fixture
def user_headers(user):
    return bearer(user)


@pytest.fixture
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture
def auth_for():
    return bearer
