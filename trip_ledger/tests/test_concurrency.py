"""
Concurrency Tests.

Validates that concurrent writers to one vehicle ledger are serialized.
"""

import asyncio
import gc
from datetime import datetime

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from trip_ledger.app.db.session import Base
from trip_ledger.app.models.vehicle import Vehicle
from trip_ledger.app.core.exceptions import LedgerValidationError, TripOverlapError
from trip_ledger.app.services.ledger_service import TripLedgerService
from trip_ledger.app.services.trip_store import TripStore
from trip_ledger.app.services.vehicle_locking import VehicleLockRegistry, vehicle_locks

OWNER_ID = 1


def trip_data(vehicle_id, start_hour, end_hour, start_km, end_km):
    return {
        "vehicle_id": vehicle_id,
        "start_time": datetime(2024, 1, 1, start_hour),
        "end_time": datetime(2024, 1, 1, end_hour),
        "start_km": start_km,
        "end_km": end_km,
        "refueling_done": False,
    }


async def write(sessions, data):
    async with sessions() as session:
        service = TripLedgerService(session, owner_id=OWNER_ID)
        try:
            return await service.create_trip(data)
        except LedgerValidationError as exc:
            return exc


@pytest.fixture
async def file_sessions(tmp_path):
    """File database: every session gets its own connection, like a real pool."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest.fixture
async def ledger_vehicle(file_sessions):
    async with file_sessions() as session:
        vehicle = Vehicle(owner_id=OWNER_ID, registration_number="RJ14GH0001")
        session.add(vehicle)
        await session.commit()
        await session.refresh(vehicle)
        return vehicle


async def ledger_trips(file_sessions, vehicle_id):
    async with file_sessions() as session:
        return await TripStore.list_by_vehicle_ordered_by_start(session, OWNER_ID, vehicle_id)


def test_one_lock_per_vehicle_ledger():
    lock = vehicle_locks.lock_for(OWNER_ID, 1)
    assert vehicle_locks.lock_for(OWNER_ID, 1) is lock
    assert vehicle_locks.lock_for(OWNER_ID, 2) is not lock
    assert vehicle_locks.lock_for(2, 1) is not lock


def test_released_locks_are_collected():
    registry = VehicleLockRegistry()
    first = registry.lock_for(OWNER_ID, 1)
    second = registry.lock_for(OWNER_ID, 2)
    assert len(registry) == 2

    del first
    gc.collect()
    assert len(registry) == 1

    del second
    gc.collect()
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_concurrent_overlapping_inserts(file_sessions, ledger_vehicle):
    """Two overlapping trips submitted at once: exactly one is accepted."""
    results = await asyncio.gather(
        write(file_sessions, trip_data(ledger_vehicle.id, 8, 12, 0, 100)),
        write(file_sessions, trip_data(ledger_vehicle.id, 10, 14, 0, 100)),
    )

    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(rejected) == 1
    assert isinstance(rejected[0], (TripOverlapError, LedgerValidationError))

    trips = await ledger_trips(file_sessions, ledger_vehicle.id)
    assert len(trips) == 1


@pytest.mark.asyncio
async def test_concurrent_chained_inserts_keep_continuity(file_sessions, ledger_vehicle):
    """Non-overlapping concurrent inserts are all accepted and the ledger stays continuous."""
    payloads = [
        trip_data(ledger_vehicle.id, 8, 10, 0, 100),
        trip_data(ledger_vehicle.id, 10, 12, 100, 200),
        trip_data(ledger_vehicle.id, 12, 14, 200, 300),
    ]
    results = await asyncio.gather(*(write(file_sessions, p) for p in payloads))
    assert not any(isinstance(r, Exception) for r in results)

    trips = await ledger_trips(file_sessions, ledger_vehicle.id)
    assert len(trips) == 3
    for previous, current in zip(trips, trips[1:]):
        assert current.start_km >= previous.end_km

    # Serials are unique even though the writers raced
    assert len({t.trip_serial_number for t in trips}) == 3
