# ================================
# TEST FIXTURES (tests/conftest.py)
# ================================

from tests.config import apply_test_environment, TEST_CONFIG

apply_test_environment()

import uuid
from decimal import Decimal
from typing import List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from app.core import database
from app.core.database import SessionLocal
from app.core.security import create_access_token
from app.models import Base, User, Property
from app.schemas.notification import ReservationEvent
from app.services.notification_service import notification_service

BASE_TIME = TEST_CONFIG["base_time"]

# ================================
# DATABASE
# ================================

@pytest.fixture
def test_engine(tmp_path):
    """Fresh SQLite file per test; every SessionLocal() in the app binds to it"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'marketplace.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal.configure(bind=engine)

    yield engine

    SessionLocal.configure(bind=database.engine)
    engine.dispose()

@pytest.fixture
def db(test_engine):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

# ================================
# USERS
# ================================

@pytest.fixture
def make_user(db):
    def _make_user(role: str, name: str = None) -> User:
        user = User(
            email=f"{role}-{uuid.uuid4().hex[:8]}@example.com",
            name=name or role.capitalize(),
            role=role,
            is_active=True,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user

@pytest.fixture
def admin(make_user):
    return make_user("admin")

@pytest.fixture
def seller(make_user):
    return make_user("seller")

@pytest.fixture
def buyer(make_user):
    return make_user("buyer", "Buyer A")

@pytest.fixture
def other_buyer(make_user):
    return make_user("buyer", "Buyer B")

@pytest.fixture
def broker(make_user):
    return make_user("broker")

@pytest.fixture
def other_broker(make_user):
    return make_user("broker", "Other Broker")

# ================================
# PROPERTIES
# ================================

@pytest.fixture
def make_property(db, seller):
    def _make_property(
        broker: User = None,
        status: str = "live",
        price: Decimal = TEST_CONFIG["property_price"],
        owner: User = None,
        **extra
    ) -> Property:
        owner = owner or seller
        prop = Property(
            title=extra.pop("title", f"Flat {uuid.uuid4().hex[:6]}"),
            price=price,
            seller_id=owner.id,
            broker_id=broker.id if broker else None,
            added_by_id=extra.pop("added_by_id", owner.id),
            added_by_role=extra.pop("added_by_role", "seller"),
            status=status,
            **extra
        )
        db.add(prop)
        db.commit()
        db.refresh(prop)
        return prop

    return _make_property

@pytest.fixture
def live_property(make_property, broker):
    """Live listing with an assigned broker, price 10,00,000"""
    return make_property(broker=broker)

# ================================
# EVENTS
# ================================

@pytest.fixture
def events(monkeypatch) -> List[ReservationEvent]:
    """Capture dispatched reservation events instead of persisting notifications"""
    captured: List[ReservationEvent] = []

    def record(batch):
        captured.extend(batch)
        return len(batch)

    monkeypatch.setattr(notification_service, "dispatch", record)
    return captured

# ================================
# API
# ================================

@pytest.fixture
def client(test_engine):
    """TestClient without lifespan; the scheduler is not started"""
    from app.main import app
    return TestClient(app)

@pytest.fixture
def auth_headers():
    def _auth_headers(user: User) -> dict:
        token = create_access_token({"sub": user.id, "role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
