import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RABBITMQ_URL"] = ""
os.environ["PAYMENT_PROVIDER"] = "simulated"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.auth import get_current_user
from storefront.cart import CartService
from storefront.database import get_db, get_session_factory
from storefront.errors import Unavailable
from storefront.main import app
from storefront.models import Base, Product
from storefront.orders import OrderWorkflow
from storefront.payments import PaymentGateway, PaymentResult, get_payment_gateway
from storefront.schemas import CheckoutData

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeGateway(PaymentGateway):
    """Records charges and answers with a fixed outcome."""

    def __init__(self, status="completed"):
        self.status = status
        self.calls = []

    def charge(self, *, amount, method, token, idempotency_key, metadata):
        self.calls.append(
            {"amount": amount, "method": method, "token": token, "idempotency_key": idempotency_key}
        )
        if self.status == "unavailable":
            raise Unavailable("Payment provider did not answer")
        reason = "Card declined" if self.status == "failed" else None
        return PaymentResult(status=self.status, reference=f"fake_{len(self.calls)}", reason=reason)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def fake_gateway():
    return FakeGateway


@pytest.fixture
def make_product(db):
    counter = {"n": 0}

    def _make(name=None, price=10000, stock=5, is_active=True, category="Rosas"):
        counter["n"] += 1
        product = Product(
            name=name or f"Product {counter['n']}",
            price=price,
            stock=stock,
            category=category,
            is_active=is_active,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def cart_for(db):
    def _cart(user_id="user-1"):
        return CartService(db, user_id)

    return _cart


@pytest.fixture
def checkout_data():
    def _data(payment_method="cash_on_delivery", payment_token=None):
        return CheckoutData(
            first_name="Ana",
            last_name="Gomez",
            email="ana@example.com",
            phone="+57 300 123 4567",
            shipping_address={
                "street": "Calle 10 # 5-20",
                "city": "Bogota",
                "state": "Cundinamarca",
                "zip_code": "110111",
            },
            payment_method=payment_method,
            payment_token=payment_token,
        )

    return _data


@pytest.fixture
def workflow_for(db, gateway):
    def _workflow(catalog=None, payment_gateway=None):
        return OrderWorkflow(
            db,
            payment_gateway or gateway,
            catalog=catalog,
            session_factory=TestingSessionLocal,
        )

    return _workflow


class AuthState:
    def __init__(self):
        self.user = {"id": "user-1", "email": "ana@example.com", "role": "client"}

    def login(self, user_id="user-1", role="client"):
        self.user = {"id": user_id, "email": f"{user_id}@example.com", "role": role}


@pytest.fixture
def auth():
    return AuthState()


@pytest.fixture
def client(db, gateway, auth):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_user] = lambda: auth.user
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    try:
        with TestClient(app) as c:
            c.headers.update({"Authorization": "Bearer test-token"})
            yield c
    finally:
        app.dependency_overrides.clear()
