"""Pytest fixtures: a fresh SQLite database per test, seeded with roles, users and a catalog."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from sales_service.app import inventory, permissions
from sales_service.app.database import Base, build_engine, get_db
from sales_service.app.main import app
from sales_service.app.messaging.bus import get_publisher
from sales_service.app.models import ProductVariant, User


class RecordingPublisher:
    """Stands in for the RabbitMQ publisher and remembers what was sent."""

    def __init__(self):
        self.events = []

    def publish(self, routing_key, message):
        self.events.append((routing_key, message))
        return True

    def close(self):
        pass


@pytest.fixture
def engine(tmp_path):
    # File-backed so that concurrent sessions contend on real database locks.
    engine = build_engine(f"sqlite:///{tmp_path / 'sales.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def users(db):
    """Bootstrap admin plus one user per default role. Returns ids by username."""
    permissions.seed_defaults(db)
    permissions.create_user(db, "manager1", "manager")
    permissions.create_user(db, "cashier1", "cashier")
    permissions.create_user(db, "customer1", "customer", email="customer1@example.com")
    return {user.username: user.id for user in db.query(User).all()}


@pytest.fixture
def catalog(db):
    """One shirt with stock 5 (M), 0 (L) and 10 (S). Returns variant ids by size."""
    product = inventory.create_product(
        db,
        name="Linen Shirt",
        base_price=Decimal("100.00"),
        category="UNISEX",
        product_type="Shirt",
        variants=[
            {"size": "M", "sku": "SHIRT-M", "stock": 5},
            {"size": "L", "sku": "SHIRT-L", "stock": 0},
            {"size": "S", "sku": "SHIRT-S", "stock": 10},
        ],
    )
    return {variant.size.value: variant.id for variant in product.variants}


@pytest.fixture
def stock_of(session_factory):
    """Reads a variant's committed stock through a separate session."""
    def read(variant_id):
        session = session_factory()
        try:
            return session.get(ProductVariant, variant_id).stock
        finally:
            session.close()
    return read


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def client(session_factory, publisher, users, catalog):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_publisher] = lambda: publisher
    yield TestClient(app)
    app.dependency_overrides.clear()
