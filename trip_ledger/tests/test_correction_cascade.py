"""
Correction cascade tests (planning only; persistence is covered by the API tests).
"""

from datetime import timedelta

import pytest

from trip_ledger.app.core.config import IntegrityThresholds
from trip_ledger.app.domain.ledger.cascade import plan_cascade, validate_cascade, apply_cascade_plan
from trip_ledger.app.domain.ledger.mileage import rebuild_chain

T = IntegrityThresholds()


@pytest.fixture
def ledger(trip_factory):
    base = trip_factory().start_time
    trips = [
        trip_factory(id=1, serial="A", start=base, start_km=0, end_km=100, refuel=True, fuel=10),
        trip_factory(id=2, serial="X", start=base + timedelta(days=1), start_km=105, end_km=150),
        trip_factory(id=3, serial="B", start=base + timedelta(days=2), start_km=150, end_km=250, refuel=True, fuel=12.5),
    ]
    rebuild_chain(trips, T)
    return trips


def test_plan_shifts_later_trips_by_delta(ledger):
    a, x, b = ledger
    plan = plan_cascade(ledger, a, 120, T)

    assert plan.delta == 20
    assert plan.total_affected == 2
    assert plan.truncated is False
    assert [(s.trip_serial_number, s.new_start_km, s.new_end_km) for s in plan.shifts] == [
        ("X", 125, 170),
        ("B", 170, 270),
    ]
    # Gaps are preserved; B's tank-to-tank distance is unchanged
    assert plan.shifts[1].old_kmpl == 12.0
    assert plan.shifts[1].projected_kmpl == 12.0
    assert plan.projected_kmpl == 12.0
    assert validate_cascade(plan) == []


def test_plan_does_not_mutate(ledger):
    a, x, b = ledger
    plan_cascade(ledger, a, 120, T)
    assert (a.end_km, x.start_km, b.end_km) == (100, 105, 250)


def test_apply_plan(ledger):
    a, x, b = ledger
    apply_cascade_plan(plan_cascade(ledger, a, 90, T))
    assert (a.end_km, x.start_km, x.end_km, b.start_km, b.end_km) == (90, 95, 140, 140, 240)


def test_zero_delta_plans_nothing(ledger):
    plan = plan_cascade(ledger, ledger[0], 100, T)
    assert plan.shifts == []
    assert plan.total_affected == 0


def test_negative_shift_is_rejected(ledger):
    # X ends at 150, so B would start at -10
    plan = plan_cascade(ledger, ledger[1], -10, T)
    found = [f.code for f in validate_cascade(plan)]
    assert "negative_odometer" in found
    assert "negative_cascade_reading" in found


def test_cascade_limit(ledger):
    limited = IntegrityThresholds(max_cascade_trips=1)
    plan = plan_cascade(ledger, ledger[0], 120, limited)

    assert plan.truncated is True
    assert plan.total_affected == 2
    assert len(plan.shifts) == 1
    assert [f.code for f in validate_cascade(plan)] == ["cascade_limit_exceeded"]
