"""
Failure Injection Tests for the audit trail.

Audit entries are written whether the ledger write commits or rolls back,
and an unavailable audit sink never fails a ledger write.
"""

from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from trip_ledger.app.core.exceptions import OdometerRegressionError
from trip_ledger.app.services.audit import AuditAction, AuditTrail, get_audit_trail
from trip_ledger.app.services.ledger_service import TripLedgerService
from trip_ledger.app.services.trip_store import TripStore

OWNER_ID = 1


def trip_data(vehicle_id, day, start_km, end_km, **extra):
    data = {
        "vehicle_id": vehicle_id,
        "start_time": datetime(2024, 1, day, 8),
        "end_time": datetime(2024, 1, day, 10),
        "start_km": start_km,
        "end_km": end_km,
        "refueling_done": False,
    }
    data.update(extra)
    return data


@pytest.mark.asyncio
async def test_successful_write_is_audited(db_session, vehicle):
    service = TripLedgerService(db_session, owner_id=OWNER_ID)
    result = await service.create_trip(trip_data(vehicle.id, 1, 0, 100, refueling_done=True, fuel_quantity=10))

    entries = await get_audit_trail(db_session, OWNER_ID, entity_id=result.trip.id)
    events = {e.event_type for e in entries}
    assert AuditAction.TRIP_CREATED in events
    assert AuditAction.ODOMETER_CONTINUITY_VALIDATION in events
    assert AuditAction.MILEAGE_RECALCULATED in events

    created = next(e for e in entries if e.event_type == AuditAction.TRIP_CREATED)
    assert created.actor_id == OWNER_ID
    assert created.after_state["end_km"] == 100


@pytest.mark.asyncio
async def test_rejected_write_is_audited_after_rollback(db_session, vehicle):
    vehicle_id = vehicle.id
    service = TripLedgerService(db_session, owner_id=OWNER_ID)
    await service.create_trip(trip_data(vehicle_id, 1, 0, 100))

    # Rollback expires loaded rows, so only plain values are used below
    with pytest.raises(OdometerRegressionError):
        await service.create_trip(trip_data(vehicle_id, 2, 50, 150))

    rejected = await get_audit_trail(db_session, OWNER_ID, event_type=AuditAction.TRIP_WRITE_REJECTED)
    assert len(rejected) == 1
    assert rejected[0].severity == "error"
    assert rejected[0].tags == ["odometer_regression"]
    assert rejected[0].after_state["start_km"] == 50

    trips = await TripStore.list_by_vehicle_ordered_by_start(db_session, OWNER_ID, vehicle_id)
    assert len(trips) == 1


@pytest.mark.asyncio
async def test_audit_failure_does_not_fail_the_write(db_session, vehicle, mocker, caplog):
    mocker.patch.object(AuditTrail, "_write", side_effect=OperationalError("INSERT", {}, Exception("disk full")))

    service = TripLedgerService(db_session, owner_id=OWNER_ID)
    result = await service.create_trip(trip_data(vehicle.id, 1, 0, 100))
    assert result.trip.id is not None

    trips = await TripStore.list_by_vehicle_ordered_by_start(db_session, OWNER_ID, vehicle.id)
    assert [t.id for t in trips] == [result.trip.id]
    assert "Failed to write" in caplog.text


@pytest.mark.asyncio
async def test_audit_trail_is_owner_scoped(db_session, vehicle):
    trail = AuditTrail(actor_id=OWNER_ID, owner_id=OWNER_ID)
    trail.record(AuditAction.TRIP_UPDATED, "trip", 1, "mine")
    assert await trail.flush(db_session) == 1

    other = AuditTrail(actor_id=2, owner_id=2)
    other.record(AuditAction.TRIP_UPDATED, "trip", 1, "theirs")
    await other.flush(db_session)

    entries = await get_audit_trail(db_session, OWNER_ID)
    assert [e.summary for e in entries] == ["mine"]
