import os

os.environ.setdefault("ENVIRONMENT", "test")

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import database  # noqa: E402
from auth import create_token  # noqa: E402
from database import create_document  # noqa: E402
from schemas import Product, User  # noqa: E402


@pytest.fixture(autouse=True)
def db(monkeypatch):
    """Fresh in-memory MongoDB for every test."""
    mock_db = mongomock.MongoClient()["storefront_test"]
    monkeypatch.setattr(database, "db", mock_db)
    database.ensure_indexes(mock_db)
    yield mock_db


@pytest.fixture()
def make_product():
    def _make(**overrides):
        fields = {
            "name": "Test Product",
            "description": "A product",
            "price": 100.0,
            "discount": 0,
            "stock": 10,
            "category": "Electronics",
            "image": "https://example.com/p.png",
        }
        fields.update(overrides)
        return create_document("product", Product(**fields))

    return _make


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    def _make(name="Test User", email=None):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        return create_document("user", User(name=name, email=email, password_hash="salt$hash"))

    return _make


@pytest.fixture()
def user_id(make_user):
    return make_user()


@pytest.fixture()
def client():
    from main import app

    return TestClient(app)


@pytest.fixture()
def auth_headers(user_id):
    token = create_token({"id": user_id, "email": "user@example.com", "is_admin": False})
    return {"Authorization": f"Bearer {token}"}
