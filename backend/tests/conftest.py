import hashlib
import hmac
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from config import Settings
from database import Base, get_db
from models.users import User
from models.restaurant import Restaurant, empty_rating
from models.category import Category
from models.product import Product
from utils.errors import NotFound
from utils.stripe_client import StripeClient, get_payment_client
from utils.tokenJWT import create_access_token

WEBHOOK_SECRET = "whsec_test_secret"


class FakeStripeClient(StripeClient):
    """Real line-item building and signature checks; sessions live in memory."""

    def __init__(self):
        super().__init__(Settings(STRIPE_SECRET_KEY="sk_test_dummy", STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET))
        self.sessions = []

    def create_checkout_session(self, line_items, metadata):
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({
            "id": session_id, "line_items": line_items, "metadata": metadata, "payment_status": "unpaid",
        })
        return session_id

    def add_session(self, session_id, metadata, payment_status="paid"):
        # Session as Stripe would report it after a hosted checkout
        self.sessions.append({
            "id": session_id, "line_items": [], "metadata": metadata, "payment_status": payment_status,
        })

    def pay(self, session_id):
        self.retrieve_session(session_id)["payment_status"] = "paid"

    def retrieve_session(self, session_id):
        for session in self.sessions:
            if session["id"] == session_id:
                return session
        raise NotFound("Checkout session not found")


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}


def sign_webhook(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    ts = timestamp or int(time.time())
    signature = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_stripe():
    return FakeStripeClient()


@pytest.fixture
def client(session_factory, fake_stripe):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_client] = lambda: fake_stripe
    yield TestClient(app)
    app.dependency_overrides.clear()


def _make_user(db, email, role="customer", name=None):
    user = User(email=email, name=name or email.split("@")[0].title(), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _make_restaurant(db, admin, name, minimum_order_amount=500.0, delivery_available=True):
    restaurant = Restaurant(
        name=name,
        description="Test kitchen",
        admin_id=admin.id,
        address_street="Main Boulevard 1",
        address_city="Lahore",
        address_country="Pakistan",
        address_postal_code="54000",
        contact_phone="+92 42 1111111",
        contact_email="kitchen@foodapp.pk",
        cuisine_types=["Pakistani"],
        delivery_available=delivery_available,
        minimum_order_amount=minimum_order_amount,
        rating=empty_rating(),
    )
    db.add(restaurant)
    db.flush()
    admin.restaurant_id = restaurant.id
    db.commit()
    db.refresh(restaurant)
    return restaurant


def _make_product(db, restaurant, category, name, price, stock):
    product = Product(
        name=name, price=price, stock=stock,
        category_id=category.id, restaurant_id=restaurant.id,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@pytest.fixture
def customer(db):
    return _make_user(db, "ayesha@foodapp.pk")


@pytest.fixture
def other_customer(db):
    return _make_user(db, "bilal@foodapp.pk")


@pytest.fixture
def admin(db):
    return _make_user(db, "owner@foodapp.pk", role="admin")


@pytest.fixture
def new_admin(db):
    # Admin that has not opened a restaurant yet
    return _make_user(db, "newcomer@foodapp.pk", role="admin")


@pytest.fixture
def restaurant(db, admin):
    return _make_restaurant(db, admin, "Lahore Tikka House")


@pytest.fixture
def category(db, restaurant):
    category = Category(name="Mains", restaurant_id=restaurant.id)
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


@pytest.fixture
def karahi(db, restaurant, category):
    return _make_product(db, restaurant, category, "Chicken Karahi", 1450.0, 10)


@pytest.fixture
def lassi(db, restaurant, category):
    return _make_product(db, restaurant, category, "Sweet Lassi", 250.0, 5)


@pytest.fixture
def other_admin(db):
    return _make_user(db, "rival@foodapp.pk", role="admin")


@pytest.fixture
def other_restaurant(db, other_admin):
    return _make_restaurant(db, other_admin, "Karachi Broast", minimum_order_amount=0)


@pytest.fixture
def other_product(db, other_restaurant):
    category = Category(name="Broast", restaurant_id=other_restaurant.id)
    db.add(category)
    db.commit()
    return _make_product(db, other_restaurant, category, "Quarter Broast", 600.0, 20)
