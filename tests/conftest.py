"""
Pytest configuration and shared fixtures for the hostel allocation engine.
"""
import os

# The application engine is built at import time; keep it away from any real database
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from hostel.database import Base, build_engine, get_db
from hostel.main import app
from hostel import models
from hostel.schemas.room import RoomCreateRequest
from hostel.schemas.allocation import AllocationRequest
from hostel.services.room_service import RoomService
from hostel.services.allocation_service import AllocationService
from hostel.services.service_request_service import ServiceRequestService
from hostel.services.report_service import ReportService


class FrozenClock:
    """Clock that only moves when a test says so."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    A SQLite file per test, so worker threads in the concurrency tests
    each get their own connection to the same database.
    """
    engine = build_engine(f"sqlite:///{tmp_path / 'hostel_test.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 5, 9, 0, 0))


@pytest.fixture
def users(session_factory):
    """Mirror of the identity service: three active users and one deactivated account."""
    with session_factory() as db:
        seeded = [
            models.User(name="Asha Raman",   email="asha@campus.test"),
            models.User(name="Ben Okafor",   email="ben@campus.test"),
            models.User(name="Chen Wei",     email="chen@campus.test"),
            models.User(name="Dana Former",  email="dana@campus.test", isActive=False),
        ]
        db.add_all(seeded)
        db.commit()
        return [u.id for u in seeded]


@pytest.fixture
def rooms(clock):
    return RoomService(clock=clock)


@pytest.fixture
def allocations(rooms, clock):
    return AllocationService(rooms=rooms, clock=clock)


@pytest.fixture
def service_requests(rooms, allocations, clock):
    return ServiceRequestService(rooms=rooms, clock=clock, allocations=allocations)


@pytest.fixture
def reports(rooms, clock):
    return ReportService(rooms=rooms, clock=clock)


@pytest.fixture
def make_room(db_session, rooms):
    counter = {"n": 0}

    def _make(capacity: int = 2, block: str = "A", floor: int = 1, **extra):
        counter["n"] += 1
        data = RoomCreateRequest(
            roomNumber=extra.pop("roomNumber", f"{block}-{floor}{counter['n']:02d}"),
            block=block,
            floor=floor,
            capacity=capacity,
            **extra,
        )
        return rooms.create_room(db_session, data)
    return _make


@pytest.fixture
def allocate(db_session, allocations):
    """Request and confirm in one step; returns the allocated record."""
    def _allocate(user_id: int, room_id: int, deposit=0, bed_number=None):
        a = allocations.request_allocation(db_session, AllocationRequest(userId=user_id, roomId=room_id))
        return allocations.confirm_allocation(db_session, a.id, deposit, bed_number)
    return _allocate


@pytest.fixture(scope="function")
def client(session_factory):
    """
    Test client whose requests each get their own session on the test database.
    """
    def override_get_db():
        db = session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
