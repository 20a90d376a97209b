import os

# Point the app at a throwaway database before main/database are imported
os.environ.setdefault("COUPONS_DATABASE_URL", "sqlite://")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  (registers the tables on Base)
from database import Base, get_db
from schemas import Cart, CartItem
from store import CouponStore


@pytest.fixture
def engine():
    """In-memory SQLite DB, fresh for every test."""
    _engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(_engine)
    yield _engine
    Base.metadata.drop_all(_engine)


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def store(db_session):
    return CouponStore(db_session)


@pytest.fixture
def client(session_factory):
    from main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_cart(*lines, cart_id=None):
    """make_cart((product_id, quantity, price), ...) with prices given as int or str."""
    return Cart(
        items=[
            CartItem(product_id=pid, quantity=qty, price=Decimal(str(price)))
            for pid, qty, price in lines
        ],
        cart_id=cart_id,
    )
