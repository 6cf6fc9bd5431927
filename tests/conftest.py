from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import models  # noqa: F401
from db import get_engine, get_session
from identity import create_session_token, hash_password
from main import app
from models import Profile, Role, User, UserRole
from realtime import ChangeFeed
from schemas import DonationCreate

PASSWORD = "secret123"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def add_user(session):
    """Insert a user with profile and role straight into the store."""
    counter = {"n": 0}

    def _add(role: Role, name: str = None, city: str = "Pune", is_active: bool = True) -> int:
        counter["n"] += 1
        name = name or f"{role.value}-{counter['n']}"
        user = User(email=f"{name.lower().replace(' ', '.')}@foodbridge.org", password_hash=hash_password(PASSWORD))
        session.add(user)
        session.flush()
        session.add(Profile(user_id=user.id, full_name=name, phone="9876543210", city=city, is_active=is_active))
        session.add(UserRole(user_id=user.id, role=role))
        session.commit()
        return user.id

    return _add


@pytest.fixture
def client(engine):
    def get_session_override():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app, follow_redirects=False)
    app.dependency_overrides.clear()


@pytest.fixture
def client_for(client):
    """A separate signed-in client per user id, sharing the same app and store."""

    def _client(user_id: int) -> TestClient:
        c = TestClient(app, follow_redirects=False)
        c.cookies.set("session", create_session_token(user_id))
        return c

    return _client


def donation_data(**overrides) -> DonationCreate:
    fields = {
        "food_item": "Veg biryani",
        "quantity": 50,
        "description": "Packed in foil trays",
        "city": "Pune",
        "pickup_address": "12 MG Road",
        "food_source": "restaurant",
        "expiry_time": datetime(2026, 10, 18, 21, 0) + timedelta(hours=1),
    }
    fields.update(overrides)
    return DonationCreate(**fields)
