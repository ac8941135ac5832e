"""
Shared fixtures: in-memory SQLite database, FastAPI TestClient and small model factories.
"""
import os

# Must be set before app.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "TEST"
os.environ["SHOPIFY_STORE_DOMAIN"] = ""
os.environ["SHOPIFY_ACCESS_TOKEN"] = ""
os.environ["SHOPIFY_WEBHOOK_SECRET"] = ""
os.environ["WEBHOOK_SIGNATURE_POLICY"] = "log_only"
os.environ["SHOPIFY_ORGANIZATION_ID"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth import get_current_user
from app.database import Base, get_db
from app.models import (
    Delivery,
    DeliveryItem,
    Order,
    OrderItem,
    Organization,
    Product,
    ProductStatus,
    ProductVariant,
    User,
)

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def organization(db_session):
    org = Organization(name="Dosmicos", slug="dosmicos")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture
def test_user(db_session, organization):
    user = User(name="Operator", email="operator@example.com", organization_id=organization.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def client(db_session, test_user):
    from main import app

    def override_get_db():
        yield db_session

    async def override_get_current_user():
        return test_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(db_session):
    """make_product("Ruana", [("RUANA-M", "M", "Rojo", 5)], organization_id=...)"""
    def _make(name, variants, organization_id=None, status=ProductStatus.ACTIVE, sku=None):
        product = Product(name=name, organization_id=organization_id, status=status, sku=sku)
        for sku_variant, size, color, stock in variants:
            product.variants.append(ProductVariant(
                sku_variant=sku_variant, size=size, color=color, stock_quantity=stock
            ))
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture
def make_delivery(db_session):
    """Order + order items for the given variants + delivery with one delivery item per variant."""
    def _make(tracking_number, variants, organization_id=None, quantity=3):
        order = Order(order_number=f"ORD-{tracking_number}", organization_id=organization_id)
        db_session.add(order)
        db_session.flush()
        delivery = Delivery(tracking_number=tracking_number, order_id=order.id, organization_id=organization_id)
        db_session.add(delivery)
        db_session.flush()
        for variant in variants:
            order_item = OrderItem(order_id=order.id, product_variant_id=variant.id, quantity=quantity)
            db_session.add(order_item)
            db_session.flush()
            db_session.add(DeliveryItem(
                delivery_id=delivery.id,
                order_item_id=order_item.id,
                quantity_delivered=quantity,
                quantity_approved=0,
            ))
        db_session.commit()
        return delivery
    return _make
