"""
Shared pytest fixtures for the credit packages backend.

Settings are read at import time, so the environment is set before anything
from credit_packages is imported. Every test gets a fresh in-memory SQLite
database, a pinned clock and a mocked Redis for events.
"""

import json
import os
from datetime import datetime
from decimal import Decimal
from unittest.mock import patch

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ["EXPIRATION_SWEEP_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from credit_packages.context import get_clock
from credit_packages.database import get_db
from credit_packages.main import app
from credit_packages.models import Base, Company, Services, Users
from credit_packages.schemas.client_packages import SellPackageItemIn, SellPackageRequest
from credit_packages.schemas.package_templates import PackageTemplateCreate, PackageTemplateItemIn
from credit_packages.services import package_sale, template_catalog
from credit_packages.services.clock import Clock
from credit_packages.services.income_sink import IncomeSink, IncomeSinkError, get_income_sink

NOW = datetime(2026, 3, 10, 12, 0, 0)


class FixedClock(Clock):
    def __init__(self, now: datetime = NOW):
        self.current = now

    def now(self) -> datetime:
        return self.current


class RecordingSink(IncomeSink):
    def __init__(self):
        self.requests = []

    def record_income(self, request):
        self.requests.append(request)


class FailingSink(IncomeSink):
    def __init__(self):
        self.calls = 0

    def record_income(self, request):
        self.calls += 1
        raise IncomeSinkError("financial ledger is down")


def _sqlite_fk(dbapi_connection, _):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", _sqlite_fk)
    Base.metadata.create_all(engine)
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
def clock():
    return FixedClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture(autouse=True)
def events_redis():
    """Events go to a mock instead of Redis; tests can inspect the pushes."""
    with patch("credit_packages.services.events.redis_client") as mock_redis:
        yield mock_redis


def emitted(events_redis) -> list[str]:
    return [json.loads(call.args[1])["type"] for call in events_redis.rpush.call_args_list]


@pytest.fixture
def seed(db):
    """Two tenants; tenant 1 has three clients and three services."""
    company = Company(id=1, name="Studio One")
    other = Company(id=2, name="Studio Two")
    db.add_all([company, other])
    db.add_all([
        Users(id=1, company_id=1, first_name="Ana", last_name="Souza"),
        Users(id=2, company_id=1, first_name="Bruno", last_name="Lima"),
        Users(id=3, company_id=1, first_name="Carla"),
        Users(id=10, company_id=2, first_name="Diego"),
        Services(id=1, company_id=1, name="Massage", price=Decimal("20.00"), duration_min=60),
        Services(id=2, company_id=1, name="Facial", price=Decimal("50.00"), duration_min=45),
        Services(id=3, company_id=1, name="Manicure", price=Decimal("15.00"), duration_min=30),
        Services(id=20, company_id=2, name="Haircut", price=Decimal("30.00")),
    ])
    db.commit()
    return {"company_id": 1, "other_company_id": 2}


def make_template(db, clock, **overrides):
    data = {
        "name": "Massage x5",
        "validity_days": 90,
        "items": [PackageTemplateItemIn(service_id=1, quantity=5)],
    }
    data.update(overrides)
    return template_catalog.create_template(db, 1, PackageTemplateCreate(**data), clock=clock)


def sell(db, clock, sink=None, **overrides):
    data = {"client_id": 1}
    data.update(overrides)
    if "items" in data and data["items"] is not None:
        data["items"] = [
            i if isinstance(i, SellPackageItemIn) else SellPackageItemIn(**i)
            for i in data["items"]
        ]
    return package_sale.sell(db, 1, 99, SellPackageRequest(**data), sink=sink, clock=clock)


@pytest.fixture
def template(db, seed, clock):
    """Scenario template: one item, 5 × Massage at 20.00."""
    return make_template(db, clock, transferable=True)


@pytest.fixture
def client(session_factory, seed, clock, sink):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_income_sink] = lambda: sink
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


HEADERS = {"X-Company-Id": "1", "X-Actor-Id": "99"}
