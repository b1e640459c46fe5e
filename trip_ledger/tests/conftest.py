"""
Centralized Test Configuration.
"""

from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from trip_ledger.app.main import app
from trip_ledger.app.db.session import get_db, Base
from trip_ledger.app.core.jwt import create_access_token
from trip_ledger.app.models.vehicle import Vehicle
from trip_ledger.app.models.trip import Trip

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

OWNER_ID = 1
OTHER_OWNER_ID = 2

BASE_TIME = datetime(2024, 1, 1, 8, 0)


def build_trip(
    id=None,
    vehicle_id=1,
    driver_id=None,
    start=None,
    hours=2.0,
    start_km=1000,
    end_km=1100,
    refuel=False,
    fuel=None,
    kmpl=None,
    serial=None,
    owner_id=OWNER_ID,
    **fields
):
    """Unsaved trip with sensible defaults for validator tests."""
    start = start or BASE_TIME
    return Trip(
        id=id,
        owner_id=owner_id,
        vehicle_id=vehicle_id,
        driver_id=driver_id,
        trip_serial_number=serial or f"T{vehicle_id}-{id or 0:04d}",
        start_time=start,
        end_time=start + timedelta(hours=hours),
        start_km=start_km,
        end_km=end_km,
        refueling_done=refuel,
        fuel_quantity=fuel,
        calculated_kmpl=kmpl,
        **fields
    )


@pytest.fixture
def trip_factory():
    return build_trip


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        """Enable foreign key constraints for SQLite."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture(autouse=True)
def override_db(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides = {}


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


def auth_headers_for(user_id: int) -> dict:
    token = create_access_token(data={"sub": f"user{user_id}", "user_id": user_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return auth_headers_for(OWNER_ID)


@pytest.fixture
def other_auth_headers():
    return auth_headers_for(OTHER_OWNER_ID)


@pytest.fixture
async def vehicle(db_session):
    """Vehicle owned by ``OWNER_ID``."""
    v = Vehicle(owner_id=OWNER_ID, registration_number="MH12AB1234", vehicle_type="Truck", fuel_type="Diesel")
    db_session.add(v)
    await db_session.commit()
    await db_session.refresh(v)
    return v


@pytest.fixture
async def other_vehicle(db_session):
    """Vehicle owned by ``OTHER_OWNER_ID``."""
    v = Vehicle(owner_id=OTHER_OWNER_ID, registration_number="KA01XY9999", vehicle_type="Van", fuel_type="Diesel")
    db_session.add(v)
    await db_session.commit()
    await db_session.refresh(v)
    return v


@pytest.fixture
def seed_trip(db_session):
    """Insert a trip directly, bypassing ledger validation."""
    async def _seed(vehicle, **kwargs):
        kwargs.setdefault("owner_id", vehicle.owner_id)
        trip = build_trip(vehicle_id=vehicle.id, **kwargs)
        db_session.add(trip)
        await db_session.commit()
        await db_session.refresh(trip)
        return trip
    return _seed
