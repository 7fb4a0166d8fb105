import os
import uuid
from datetime import date

# Must be set before fieldops.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("AUDIT_INTEGRITY_SECRET", "test-audit-secret")
os.environ.setdefault("RATE_LIMIT", "10000/minute")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fieldops.db import Base, get_db
from fieldops.models.models import Crew, Vehicle
from fieldops.auth.security import create_access_token
from fieldops.services import coordinator


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def actor_id():
    return uuid.uuid4()


@pytest.fixture
def client(session_factory, actor_id):
    from fieldops.main import app

    def _get_test_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_test_db
    token = create_access_token(str(actor_id))
    with TestClient(app) as test_client:
        test_client.headers.update({"Authorization": f"Bearer {token}"})
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_job(db, actor_id):
    def _make(title="Roof inspection", scheduled_date=None, **kwargs):
        return coordinator.create_job(
            db,
            title=title,
            scheduled_date=scheduled_date or date.today(),
            actor_id=actor_id,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_crew(db):
    def _make(name=None, capacity=2):
        crew = Crew(name=name or f"Crew {uuid.uuid4().hex[:6]}", capacity=capacity, is_available=True)
        db.add(crew)
        db.commit()
        return crew
    return _make


@pytest.fixture
def make_vehicle(db):
    def _make(name="Truck 01", license_plate=None, mileage=0):
        vehicle = Vehicle(
            name=name,
            license_plate=license_plate or f"T-{uuid.uuid4().hex[:8]}",
            status="available",
            mileage=mileage,
        )
        db.add(vehicle)
        db.commit()
        return vehicle
    return _make
