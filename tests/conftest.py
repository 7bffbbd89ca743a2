"""Shared pytest fixtures for storefront tests."""

import json
import os
from datetime import datetime, timedelta

os.environ.setdefault("STOREFRONT_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.auth_utils import create_access_token
from storefront.cart import CartRegistry, CartStore
from storefront.db import models
from storefront.db.init_db import init_db
from storefront.gateway import PaymentGateway
from storefront.pricing import zero_price
from storefront.session import Session

GATEWAY_URL = "https://gateway.test/functions/v1"
CHECKOUT_SESSION_ID = "cs_test_a1b2c3"


def make_token(user_id="user-1", email="shopper@example.com", expires_delta=None):
    return create_access_token({"sub": email, "id": user_id}, expires_delta=expires_delta)


def make_session(user_id="user-1", email="shopper@example.com"):
    return Session.from_token(make_token(user_id, email))


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    factory = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
async def products(db):
    """Seed a small catalog, oldest first."""
    rows = {
        "lamp": models.Product(
            name="Desk Lamp", description="Warm LED light", price=24.5,
            image_url="https://img.test/lamp.jpg", category="Home", stock=5,
            created_at=datetime(2024, 1, 1),
        ),
        "mug": models.Product(
            name="coffee Mug", description="Ceramic, 350 ml", price=9.0,
            image_url="https://img.test/mug.jpg", category="Kitchen", stock=2,
            created_at=datetime(2024, 2, 1),
        ),
        "kettle": models.Product(
            name="Kettle", description="Steel electric kettle", price=39.99,
            image_url="https://img.test/kettle.jpg", category="Kitchen", stock=10,
            created_at=datetime(2024, 3, 1),
        ),
        "poster": models.Product(
            name="Poster", description="Limited print", price=15.0,
            image_url="", category="Art", stock=0,
            created_at=datetime(2024, 4, 1),
        ),
    }
    db.add_all(rows.values())
    await db.commit()
    return rows


@pytest.fixture
def session():
    return make_session()


@pytest.fixture
def registry():
    return CartRegistry()


@pytest.fixture
def cart(db, session, registry):
    return CartStore(db, session, registry, pricing_policy=zero_price)


class FakeGateway:
    """Records requests to the gateway and answers like a test-mode gateway."""

    def __init__(self):
        self.requests = []
        self.responder = self.default_response

    @staticmethod
    def default_response(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        path = request.url.path.rsplit("/", 1)[-1]
        if path == "create-payment-intent":
            return httpx.Response(200, json={"clientSecret": "pi_1_secret_x", "paymentIntentId": "pi_1"})
        url = body["success_url"].replace("{CHECKOUT_SESSION_ID}", CHECKOUT_SESSION_ID)
        return httpx.Response(200, json={"url": url, "id": CHECKOUT_SESSION_ID})

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responder(request)
        if not isinstance(response, httpx.Response):
            response = await response
        return response

    def json_bodies(self):
        return [json.loads(request.content) for request in self.requests]


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
async def gateway(fake_gateway):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_gateway.handler))
    gateway = PaymentGateway(base_url=GATEWAY_URL, client=client)
    yield gateway
    await gateway.aclose()


async def make_order(db, user_id, items, checkout_session_id=None, created_at=None, status="completed"):
    """Insert an order the way the server-side webhook would."""
    order = models.Order(
        user_id=user_id,
        total_amount=sum(quantity * price for _, quantity, price in items),
        status=status,
        created_at=created_at or datetime.utcnow(),
        payment_intent_id="pi_test",
        checkout_session_id=checkout_session_id,
        order_items=[
            models.OrderItem(product=product, product_id=product.id, quantity=quantity, price=price)
            for product, quantity, price in items
        ],
    )
    db.add(order)
    await db.commit()
    return order


@pytest.fixture
def expired_token():
    return make_token(expires_delta=timedelta(seconds=-10))
