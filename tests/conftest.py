import os

# must be set before core.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DEBUG"] = "true"
os.environ["API_RATE_LIMIT"] = "100000"
os.environ.setdefault("SECRET_KEY", "test-secret")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.config import Settings, get_settings
from core.rate_limit import limiter
from db.database import get_db
from db.models import Base, CartItem, Category, Product, User
from services.notifications import Notifier, get_notifier


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        DEBUG=True,
        MIN_ORDER_AMOUNT=Decimal("100"),
        FREE_SHIPPING_THRESHOLD=Decimal("1000"),
        SHIPPING_CHARGES=Decimal("50"),
        COD_CHARGES=Decimal("20"),
        OTP_RATE_LIMIT=5,
        SMS_API_KEY="",
        SMTP_HOST="",
    )


@pytest.fixture(autouse=True)
def fresh_limiter():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def make_category(db):
    def _make(name="Oils", is_active=True):
        category = Category(name=name, description=f"{name} from the farm", is_active=is_active)
        db.add(category)
        db.commit()
        return category
    return _make


@pytest.fixture
def make_product(db):
    def _make(name="Mustard Oil", price="200", discount_price=None, stock=10, category=None,
              featured=False, is_active=True, weight="1L"):
        product = Product(
            name=name,
            description=f"Cold pressed {name.lower()}",
            price=Decimal(price),
            discount_price=Decimal(discount_price) if discount_price is not None else None,
            stock_quantity=stock,
            category_id=category.id if category else None,
            featured=featured,
            is_active=is_active,
            weight=weight,
        )
        db.add(product)
        db.commit()
        return product
    return _make


@pytest.fixture
def make_user(db):
    def _make(mobile="9876543210", name="Asha Verma", email=None, verified=True):
        user = User(mobile=mobile, name=name, email=email, is_verified=verified)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def fill_cart(db):
    def _fill(user, *lines):
        for product, quantity in lines:
            db.add(CartItem(user_id=user.id, product_id=product.id, quantity=quantity))
        db.commit()
    return _fill


@pytest.fixture
def client(session_factory, settings):
    from main import app

    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_notifier] = lambda: Notifier(settings)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    """Log ``mobile`` in the way a browser does: request an OTP, then submit it."""
    def _login(mobile):
        otp = client.post("/api/auth/send-otp", json={"mobile": mobile}).json()["data"]["otp"]
        return client.post("/api/auth/login", json={"mobile": mobile, "otp": otp})
    return _login


@pytest.fixture
def logged_in(client, make_user, login):
    """A client whose cookie jar holds a session for a fresh verified user."""
    user = make_user()
    resp = login(user.mobile)
    assert resp.status_code == 200
    return client, user
