"""
Overlap detection tests.

Intervals are half-open: a trip may start exactly when another ends.
"""

from datetime import datetime, timedelta

from trip_ledger.app.core.config import IntegrityThresholds
from trip_ledger.app.domain.ledger.overlap import (
    intervals_overlap,
    check_overlaps,
    find_overlapping_pairs,
    check_availability,
)

T = IntegrityThresholds()
BASE = datetime(2024, 1, 1, 8, 0)


def at(hours):
    return BASE + timedelta(hours=hours)


def test_three_case_overlap_test():
    # a starts inside b
    assert intervals_overlap(at(1), at(5), at(0), at(2))
    # a ends inside b
    assert intervals_overlap(at(0), at(2), at(1), at(5))
    # a contains b
    assert intervals_overlap(at(0), at(5), at(1), at(2))
    # b contains a
    assert intervals_overlap(at(1), at(2), at(0), at(5))
    # touching endpoints do not overlap
    assert not intervals_overlap(at(2), at(4), at(0), at(2))
    assert not intervals_overlap(at(0), at(2), at(2), at(4))


def test_vehicle_overlap_is_an_error(trip_factory):
    existing = trip_factory(id=1, serial="T1-0001", start=at(0), hours=4)
    candidate = trip_factory(start=at(2), hours=4, start_km=1100, end_km=1200)

    findings = check_overlaps(candidate, [existing])
    assert [f.code for f in findings] == ["vehicle_overlap"]
    assert findings[0].is_error
    assert findings[0].context["conflicting_trip"]["trip_serial_number"] == "T1-0001"
    assert findings[0].context["overlap_type"] == "partial_overlap"
    assert findings[0].context["overlap_hours"] == 2.0


def test_driver_overlap_across_vehicles(trip_factory):
    other_vehicle_trip = trip_factory(id=7, vehicle_id=2, driver_id=42, start=at(0), hours=4)
    candidate = trip_factory(vehicle_id=1, driver_id=42, start=at(1), hours=1)

    findings = check_overlaps(candidate, [], [other_vehicle_trip])
    assert [f.code for f in findings] == ["driver_overlap"]
    assert findings[0].context["overlap_type"] == "contained_within"


def test_edited_trip_does_not_conflict_with_itself(trip_factory):
    trip = trip_factory(id=1, start=at(0), hours=4)
    assert check_overlaps(trip, [trip]) == []


def test_back_to_back_trips_are_allowed(trip_factory):
    existing = trip_factory(id=1, start=at(0), hours=2)
    candidate = trip_factory(start=at(2), hours=2)
    assert check_overlaps(candidate, [existing]) == []


def test_overlap_report_pairs(trip_factory):
    trips = [
        trip_factory(id=1, serial="A", vehicle_id=1, driver_id=5, start=at(0), hours=2),
        trip_factory(id=2, serial="B", vehicle_id=1, driver_id=5, start=at(0), hours=2),
        trip_factory(id=3, serial="C", vehicle_id=2, driver_id=6, start=at(10), hours=10),
        trip_factory(id=4, serial="D", vehicle_id=3, driver_id=6, start=at(12), hours=6),
        trip_factory(id=5, serial="E", vehicle_id=4, driver_id=9, start=at(12), hours=1),
    ]
    pairs = find_overlapping_pairs(trips, T)

    assert len(pairs) == 2
    duplicate, contained = pairs

    assert (duplicate["trip_serial"], duplicate["conflicting_trip_serial"]) == ("A", "B")
    assert duplicate["overlap_type"] == "exact_duplicate"
    assert duplicate["conflict_scope"] == "vehicle_and_driver"
    assert duplicate["severity"] == "critical"
    assert "B" in duplicate["suggested_fix"]

    assert (contained["trip_serial"], contained["conflicting_trip_serial"]) == ("C", "D")
    assert contained["overlap_type"] == "contains"
    assert contained["conflict_scope"] == "driver"
    assert contained["overlap_hours"] == 6.0
    assert contained["severity"] == "high"


def test_availability(trip_factory):
    trips = [
        trip_factory(id=1, serial="A", vehicle_id=1, driver_id=5, start=at(0), hours=4),
        trip_factory(id=2, serial="B", vehicle_id=2, driver_id=6, start=at(2), hours=4),
    ]

    busy = check_availability(trips, at(3), at(5), vehicle_id=1, driver_id=6)
    assert busy["is_available"] is False
    assert busy["conflict_count"] == 2
    assert [c["conflict_type"] for c in busy["conflicts"]] == ["vehicle", "driver"]

    free = check_availability(trips, at(4), at(6), vehicle_id=1)
    assert free["is_available"] is True

    editing = check_availability(trips, at(1), at(2), vehicle_id=1, exclude_trip_id=1)
    assert editing["is_available"] is True
