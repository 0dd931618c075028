"""Pytest fixtures for farmmarket tests."""

import os

# Must be set before farmmarket.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("ADMIN_EMAIL", None)
os.environ.pop("ADMIN_PASSWORD", None)
os.environ.pop("STRICT_STATUS_TRANSITIONS", None)

import pytest
from fastapi.testclient import TestClient

from farmmarket import auth, crud, schemas
from farmmarket.database import Base, SessionLocal, engine
from farmmarket.main import app


@pytest.fixture(autouse=True)
def reset_database():
    """Start every test with empty tables."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def admin_user(db):
    return crud.create_user(
        db,
        name="Admin",
        email="admin@farm.example.com",
        password_hash=auth.get_password_hash("secret123"),
        role="admin",
    )


@pytest.fixture
def customer_user(db):
    return crud.create_user(
        db,
        name="Shopper",
        email="shopper@farm.example.com",
        password_hash=auth.get_password_hash("secret123"),
    )


@pytest.fixture
def admin_headers(admin_user):
    token = auth.issue_token(admin_user).access_token
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers(customer_user):
    token = auth.issue_token(customer_user).access_token
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_product(db):
    """Factory for catalog products."""

    def _make(name="Tomatoes", price=2.0, stock=10, **kwargs):
        return crud.create_product(db, schemas.ProductCreate(name=name, price=price, stock=stock, **kwargs))

    return _make


@pytest.fixture
def make_order_request():
    """Factory for checkout payloads."""

    def _make(items, **kwargs):
        data = {
            "customerName": "Asha Patel",
            "customerPhone": "9876543210",
            "deliveryAddress": {"fullAddress": "12 Orchard Lane, Pune"},
            "items": items,
        }
        data.update(kwargs)
        return schemas.OrderCreate.model_validate(data)

    return _make
