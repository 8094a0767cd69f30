"""
Pytest configuration and shared fixtures
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from datetime import date, timedelta
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from rate_api.database import Base, get_db
from rate_api.models import orm  # noqa: F401
from rate_api.security.auth import create_access_token
from rate_api.services.sql_store import SqlPricingStore
from rate_api.main import app
from rate_core.memory_store import InMemoryPricingStore
from rate_core.models import Actor, EntityStatus
from rate_core.mutations import RateMutationService

STAY_DATE = date(2024, 3, 1)


def seed_rates(store, rate_plan_code, room_type_code, start, days, amount, **extra):
    """Create one active rate per night directly in the store (no audit)"""
    rates = []
    for offset in range(days):
        rates.append(store.room_rates.create({
            "rate_plan_code": rate_plan_code,
            "room_type_code": room_type_code,
            "rate_date": start + timedelta(days=offset),
            "rate_amount": Decimal(str(amount)),
            "status": EntityStatus.ACTIVE,
            **extra,
        }))
    return rates


# ============== Engine fixtures ==============

@pytest.fixture
def actor():
    return Actor(id=7, display_name="Alice Manager")


@pytest.fixture
def other_actor():
    return Actor(id=9, display_name="Bob Revenue")


@pytest.fixture
def store():
    """In-memory store with room types DLX (1) and STD (2) and rate plan BAR (1)"""
    s = InMemoryPricingStore()
    s.room_types.add("DLX", "Deluxe", room_type_id=1)
    s.room_types.add("STD", "Standard", room_type_id=2)
    s.rate_plans.create({"code": "BAR", "name": "Best Available Rate", "currency": "USD"})
    return s


@pytest.fixture
def bar_plan(store):
    return store.rate_plans.get_by_code("BAR")


@pytest.fixture
def service(store):
    return RateMutationService(store)


@pytest.fixture
def week_of_rates(store):
    """DLX rates at 100.00 for five nights from STAY_DATE"""
    return seed_rates(store, "BAR", "DLX", STAY_DATE, 5, "100.00")


# ============== Database fixtures ==============

@pytest.fixture(scope="function")
def db_engine():
    """In-memory database engine"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Database session"""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def client(db_session):
    """Test client bound to the in-memory session"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def sql_store(db_session):
    """SQL store seeded like the in-memory one, plus DLX rates at 200.00 for three nights"""
    s = SqlPricingStore(db_session)
    s.room_types.add("DLX", "Deluxe")
    s.room_types.add("STD", "Standard")
    s.rate_plans.create({"code": "BAR", "name": "Best Available Rate", "currency": "USD"})
    seed_rates(s, "BAR", "DLX", STAY_DATE, 3, "200.00", availability_count=5)
    return s


# ============== Auth fixtures ==============

@pytest.fixture
def manager_token():
    return create_access_token(7, "Alice Manager")


@pytest.fixture
def auth_headers(manager_token):
    """Bearer header for the manager actor"""
    return {"Authorization": f"Bearer {manager_token}"}
