"""
Deletion guard tests.
"""

from datetime import timedelta

import pytest

from trip_ledger.app.core.exceptions import AuthorizationError, IntegrityProtectionError
from trip_ledger.app.domain.ledger.deletion import assess_deletion, guard_hard_delete
from trip_ledger.app.models.trip_enums import DeletionImpact
from trip_ledger.app.services.trip_store import TripStore


@pytest.fixture
def make(trip_factory):
    base = trip_factory().start_time

    def _make(n, serial, start_km, end_km, refuel=False, fuel=None):
        return trip_factory(
            id=n, serial=serial, start=base + timedelta(days=n),
            start_km=start_km, end_km=end_km, refuel=refuel, fuel=fuel,
        )
    return _make


def test_non_refueling_trip_is_hard_deleted(make):
    ledger = [make(1, "A", 0, 100), make(2, "B", 100, 200)]
    plan = assess_deletion(ledger, ledger[0])

    assert plan.hard_delete is True
    assert plan.impact == DeletionImpact.NONE
    assert plan.later_trip_count == 1
    guard_hard_delete(plan)


def test_refueling_trip_with_orphaned_dependents_is_protected(make):
    ledger = [
        make(1, "A", 0, 100, refuel=True, fuel=10),
        make(2, "B", 100, 200),
        make(3, "C", 200, 300),
    ]
    plan = assess_deletion(ledger, ledger[0])

    assert plan.hard_delete is False
    assert plan.impact == DeletionImpact.HIGH
    assert plan.affected_serials == ["B", "C"]
    assert "soft-deleted" in plan.message

    with pytest.raises(IntegrityProtectionError) as exc_info:
        guard_hard_delete(plan)
    assert exc_info.value.affected_trips == ["B", "C"]
    assert exc_info.value.status_code == 409


def test_next_refueling_takes_over_as_anchor(make):
    ledger = [
        make(1, "A", 0, 100, refuel=True, fuel=10),
        make(2, "B", 100, 200),
        make(3, "C", 200, 300, refuel=True, fuel=20),
        make(4, "D", 300, 400),
    ]
    plan = assess_deletion(ledger, ledger[0])

    assert plan.hard_delete is True
    assert plan.impact == DeletionImpact.MODERATE
    assert plan.next_refueling is ledger[2]
    assert plan.affected_serials == ["B"]
    assert plan.later_trip_count == 3


def test_last_refueling_trip_without_dependents(make):
    ledger = [make(1, "A", 0, 100), make(2, "B", 100, 200, refuel=True, fuel=10)]
    plan = assess_deletion(ledger, ledger[1])

    assert plan.hard_delete is True
    assert plan.impact == DeletionImpact.LOW


def test_soft_deleted_trips_are_not_dependents(make):
    ledger = [
        make(1, "A", 0, 100, refuel=True, fuel=10),
        make(2, "B", 100, 200),
    ]
    ledger[1].deleted_at = ledger[1].start_time

    plan = assess_deletion(ledger, ledger[0])
    assert plan.hard_delete is True
    assert plan.impact == DeletionImpact.LOW


@pytest.mark.asyncio
async def test_soft_delete_requires_ownership(db_session, vehicle, seed_trip):
    trip = await seed_trip(vehicle, start_km=0, end_km=100)

    with pytest.raises(AuthorizationError):
        await TripStore.soft_delete(db_session, vehicle.owner_id + 1, trip, "Not mine")
    assert trip.deleted_at is None
    assert trip.deleted_by is None

    await TripStore.soft_delete(db_session, vehicle.owner_id, trip, "Duplicate")
    assert trip.deleted_at is not None
    assert trip.deleted_by == vehicle.owner_id
